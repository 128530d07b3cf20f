import pytest
from pydantic import ValidationError

from common.errors import InvalidTransition
from common.job_schema import Job, JobStatus, ProcessingStats, SourceAsset
from vectorizer.svg import VectorDocument


def new_job(**kwargs):
    return Job(source_asset=SourceAsset.from_bytes("cat.png", b"\x89PNG raw"), **kwargs)


def test_new_job_is_pending():
    job = new_job()
    assert job.status == JobStatus.PENDING
    assert job.progress == 0
    assert job.source_asset.size == len(b"\x89PNG raw")
    assert not job.is_terminal


def test_happy_path_transitions():
    job = new_job()
    job.start()
    assert (job.status, job.progress) == (JobStatus.PROCESSING, 10)
    job.advance(30)
    job.background_removed_asset = b"png"
    job.advance(70)
    job.complete(VectorDocument(width=1, height=1))
    assert (job.status, job.progress) == (JobStatus.COMPLETED, 100)
    assert job.is_terminal


def test_failure_clears_progress_and_vector():
    job = new_job()
    job.start()
    job.advance(30)
    job.fail("model exploded")
    assert (job.status, job.progress, job.failure_reason) == (JobStatus.FAILED, 0, "model exploded")


def test_progress_never_goes_back():
    job = new_job()
    job.start()
    job.advance(70)
    with pytest.raises(InvalidTransition):
        job.advance(30)


def test_terminal_states_are_final():
    job = new_job()
    job.start()
    job.fail("boom")
    with pytest.raises(InvalidTransition):
        job.start()
    with pytest.raises(InvalidTransition):
        job.fail("again")


def test_complete_requires_background_removed_asset():
    job = new_job()
    job.start()
    with pytest.raises(InvalidTransition):
        job.complete(VectorDocument(width=1, height=1))


def test_reset_requeues_interrupted_job():
    job = new_job()
    job.start()
    job.background_removed_asset = b"png"
    job.advance(70)
    job.reset()
    assert (job.status, job.progress, job.background_removed_asset) == (JobStatus.PENDING, 0, None)


@pytest.mark.parametrize(
    "fields",
    [
        {"status": JobStatus.FAILED},
        {"status": JobStatus.PENDING, "failure_reason": "nope"},
        {"status": JobStatus.COMPLETED, "progress": 70},
        {"status": JobStatus.PROCESSING, "progress": 100},
        {"status": JobStatus.PROCESSING, "progress": 70, "vector_document": VectorDocument(width=1, height=1)},
    ],
)
def test_invariants_rejected_on_load(fields):
    with pytest.raises(ValidationError):
        new_job(**fields)


def test_json_round_trip_keeps_binary_payloads():
    job = new_job()
    job.start()
    job.background_removed_asset = bytes(range(256))
    job.advance(70)
    job.complete(VectorDocument(width=2, height=2, paths=["M 0 0 Z"]))

    restored = Job.model_validate_json(job.model_dump_json())

    assert restored == job
    assert restored.background_removed_asset == bytes(range(256))


def test_stem_stops_at_first_dot():
    assert SourceAsset.from_bytes("dir/cat.final.png", b"x").stem == "cat"


def test_stats_count_each_status():
    done = new_job()
    done.start()
    done.fail("x")
    stats = ProcessingStats.from_jobs([new_job(), new_job(), done])
    assert (stats.total, stats.pending, stats.failed, stats.completed) == (3, 2, 1, 0)
