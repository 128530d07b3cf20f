import io
import zipfile
from datetime import date

import pytest

import tools.export_svgs as export_tool
from common.errors import NothingToExport
from common.export import archive_name, build_archive, svg_filename
from common.job_schema import Job, SourceAsset
from vectorizer.svg import VectorDocument


def job_named(name, completed=True):
    job = Job(source_asset=SourceAsset.from_bytes(name, b"raw"))
    job.start()
    if completed:
        job.background_removed_asset = b"png"
        job.advance(70)
        job.complete(VectorDocument(width=2, height=2, paths=["M 0 0 L 1 1 Z"]))
    else:
        job.fail("nope")
    return job


def test_archive_contains_only_completed_svgs():
    done = job_named("cat.final.png")
    failed = job_named("dog.png", completed=False)

    archive = zipfile.ZipFile(io.BytesIO(build_archive([done, failed])))

    assert archive.namelist() == [f"cat_{done.id[:8]}.svg"]
    assert archive.read(archive.namelist()[0]) == done.vector_document.to_bytes()


def test_nothing_to_export():
    with pytest.raises(NothingToExport):
        build_archive([job_named("dog.png", completed=False)])
    with pytest.raises(NothingToExport):
        build_archive([])


def test_names():
    job = job_named("photo.jpeg")
    assert svg_filename(job) == f"photo_{job.id[:8]}.svg"
    assert archive_name(date(2024, 3, 9)) == "processed_images_2024-03-09.zip"


def test_export_tool_writes_archive(tmp_path, store, monkeypatch):
    store.put(job_named("cat.png"))
    monkeypatch.setattr(export_tool, "get_job_store", lambda: store)

    assert export_tool.main(tmp_path / "out") == 0
    assert [p.name for p in (tmp_path / "out").iterdir()] == [archive_name()]


def test_export_tool_with_nothing_to_export(tmp_path, store, monkeypatch):
    monkeypatch.setattr(export_tool, "get_job_store", lambda: store)
    assert export_tool.main(tmp_path / "out") == 1
