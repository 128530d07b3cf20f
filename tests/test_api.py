import asyncio
import io
import zipfile

import pytest
from fastapi.testclient import TestClient

from api.main import app, get_store
from common.job_schema import Job, JobStatus, SourceAsset
from worker.pipeline import Pipeline
from worker.worker import run_worker


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def drain(store, identity_remover):
    """Runs the worker over everything the API queued."""
    def _drain():
        return asyncio.run(run_worker(store, Pipeline(store, identity_remover), once=True))

    return _drain


def upload(client, *named_payloads):
    files = [("files", (name, data, "image/png")) for name, data in named_payloads]
    return client.post("/batches", files=files)


def test_batch_is_queued_not_processed(client, store, identity_remover, make_png):
    resp = upload(client, ("a.png", make_png()), ("b.png", make_png(6, 6)))
    assert resp.status_code == 200
    assert resp.json()["status"] == "PENDING"

    listing = client.get("/jobs").json()
    assert listing["stats"]["pending"] == 2
    assert identity_remover.calls == 0


def test_worker_processes_queued_batch(client, drain, make_png):
    job_ids = upload(client, ("a.png", make_png()), ("b.png", make_png(6, 6))).json()["job_ids"]
    assert len(job_ids) == 2

    assert drain() == 2

    listing = client.get("/jobs").json()
    assert [j["id"] for j in listing["jobs"]] == job_ids
    assert listing["stats"]["completed"] == 2
    assert all(j["progress"] == 100 and j["has_svg"] for j in listing["jobs"])


def test_job_outputs(client, drain, make_png):
    job_id = upload(client, ("a.png", make_png())).json()["job_ids"][0]
    drain()

    summary = client.get(f"/jobs/{job_id}").json()
    assert summary["status"] == "COMPLETED"
    assert summary["name"] == "a.png"

    svg = client.get(f"/jobs/{job_id}/svg")
    assert svg.headers["content-type"].startswith("image/svg+xml")
    assert svg.text.startswith('<svg width="8" height="8"')

    cleaned = client.get(f"/jobs/{job_id}/cleaned")
    assert cleaned.headers["content-type"] == "image/png"


def test_failed_job_has_no_svg(client, drain):
    job_id = upload(client, ("bad.png", b"garbage")).json()["job_ids"][0]
    drain()

    summary = client.get(f"/jobs/{job_id}").json()
    assert summary["status"] == "FAILED"
    assert summary["failure_reason"]
    assert client.get(f"/jobs/{job_id}/svg").status_code == 404


def test_unknown_job(client):
    assert client.get("/jobs/nope").status_code == 404


def test_export(client, drain, make_png):
    assert client.get("/export").status_code == 404

    job_id = upload(client, ("cat.png", make_png())).json()["job_ids"][0]
    drain()
    resp = client.get("/export")

    assert resp.status_code == 200
    assert "processed_images_" in resp.headers["content-disposition"]
    names = zipfile.ZipFile(io.BytesIO(resp.content)).namelist()
    assert names == [f"cat_{job_id[:8]}.svg"]


def test_clear(client, make_png):
    upload(client, ("a.png", make_png()))

    assert client.delete("/jobs").json() == {"cleared": True}
    assert client.get("/jobs").json()["jobs"] == []
    assert client.delete("/jobs").status_code == 200


def in_flight_job(store, make_png):
    job = Job(source_asset=SourceAsset.from_bytes("busy.png", make_png()))
    job.start()
    store.put(job)
    return job


def test_clear_refused_while_a_job_is_processing(client, store, make_png):
    job = in_flight_job(store, make_png)

    assert client.delete("/jobs").status_code == 409
    assert store.get(job.id).status == JobStatus.PROCESSING


def test_home_page_lists_jobs(client, make_png):
    upload(client, ("holiday.png", make_png()))
    page = client.get("/")
    assert page.status_code == 200
    assert "holiday.png" in page.text
    assert 'action="/clear"' in page.text


def test_upload_form_redirects(client, make_png):
    resp = client.post(
        "/upload",
        files=[("files", ("a.png", make_png(), "image/png"))],
        follow_redirects=False,
    )
    assert resp.status_code == 303
    assert resp.headers["location"] == "/"


def test_clear_form_empties_store_and_redirects(client, store, make_png):
    upload(client, ("a.png", make_png()))

    resp = client.post("/clear", follow_redirects=False)

    assert resp.status_code == 303
    assert resp.headers["location"] == "/"
    assert store.get_all() == []


def test_clear_form_refused_while_a_job_is_processing(client, store, make_png):
    in_flight_job(store, make_png)

    assert client.post("/clear", follow_redirects=False).status_code == 409
    assert len(store.get_all()) == 1
