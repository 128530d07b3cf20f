import logging
from pathlib import Path
from typing import List

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates

from common.config import configure_logging
from common.errors import NothingToExport, StorageUnavailable
from common.export import archive_name, build_archive, svg_filename
from common.job_schema import Job, JobStatus, JobSummary, ProcessingStats, SourceAsset
from common.storage import JobStore, get_job_store, sort_jobs
from worker.pipeline import Pipeline

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Bulk Vectorizer API")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))

# The API only records PENDING jobs; worker/worker.py is the one process
# that runs them.
_store: JobStore | None = None


def get_store() -> JobStore:
    global _store
    if _store is None:
        _store = get_job_store()
        _store.init()
    return _store


def get_pipeline(store: JobStore = Depends(get_store)) -> Pipeline:
    return Pipeline(store)


@app.exception_handler(StorageUnavailable)
async def storage_unavailable_handler(request: Request, exc: StorageUnavailable):
    logger.error("Storage unavailable: %s", exc)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


async def _submit(files: List[UploadFile], pipeline: Pipeline) -> List[Job]:
    assets = []
    for file in files:
        content = await file.read()
        assets.append(SourceAsset.from_bytes(file.filename or "image", content))
    return await pipeline.submit(assets)


def _is_busy(jobs: List[Job]) -> bool:
    return any(job.status == JobStatus.PROCESSING for job in jobs)


def _clear(store: JobStore) -> None:
    if _is_busy(store.get_all()):
        raise HTTPException(status_code=409, detail="A job is still being processed")
    store.clear()


def _get_job_or_404(store: JobStore, job_id: str) -> Job:
    job = store.get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


# ---------- API endpoints ----------

@app.post("/batches")
async def create_batch(
    files: List[UploadFile] = File(...),
    pipeline: Pipeline = Depends(get_pipeline),
):
    if not files:
        raise HTTPException(status_code=400, detail="At least one file is required")
    jobs = await _submit(files, pipeline)
    return {"job_ids": [job.id for job in jobs], "status": JobStatus.PENDING}


@app.get("/jobs")
def list_jobs(store: JobStore = Depends(get_store)):
    jobs = sort_jobs(store.get_all())
    return {
        "stats": ProcessingStats.from_jobs(jobs),
        "jobs": [JobSummary.from_job(job) for job in jobs],
    }


@app.get("/jobs/{job_id}", response_model=JobSummary)
def read_job(job_id: str, store: JobStore = Depends(get_store)):
    return JobSummary.from_job(_get_job_or_404(store, job_id))


@app.get("/jobs/{job_id}/svg")
def get_svg(job_id: str, store: JobStore = Depends(get_store)):
    job = _get_job_or_404(store, job_id)
    if job.vector_document is None:
        raise HTTPException(status_code=404, detail="SVG not available")
    return Response(
        content=job.vector_document.to_bytes(),
        media_type="image/svg+xml",
        headers={"Content-Disposition": f'inline; filename="{svg_filename(job)}"'},
    )


@app.get("/jobs/{job_id}/cleaned")
def get_cleaned(job_id: str, store: JobStore = Depends(get_store)):
    job = _get_job_or_404(store, job_id)
    if job.background_removed_asset is None:
        raise HTTPException(status_code=404, detail="Background-removed image not available")
    return Response(content=job.background_removed_asset, media_type="image/png")


@app.get("/export")
def export_svgs(store: JobStore = Depends(get_store)):
    try:
        archive = build_archive(sort_jobs(store.get_all()))
    except NothingToExport as e:
        raise HTTPException(status_code=404, detail=str(e))
    return Response(
        content=archive,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{archive_name()}"'},
    )


@app.delete("/jobs")
def clear_jobs(store: JobStore = Depends(get_store)):
    _clear(store)
    return {"cleared": True}


# ---------- Web UI endpoints ----------

@app.get("/", response_class=HTMLResponse)
def home(request: Request, store: JobStore = Depends(get_store)):
    jobs = sort_jobs(store.get_all())
    return templates.TemplateResponse(
        request,
        "index.html",
        {
            "jobs": [JobSummary.from_job(job) for job in jobs],
            "stats": ProcessingStats.from_jobs(jobs),
            "processing": _is_busy(jobs),
        },
    )


@app.post("/upload", response_class=HTMLResponse)
async def upload_images(
    files: List[UploadFile] = File(...),
    pipeline: Pipeline = Depends(get_pipeline),
):
    if not files:
        raise HTTPException(status_code=400, detail="File required")
    await _submit(files, pipeline)
    return RedirectResponse(url="/", status_code=303)


# HTML forms cannot send DELETE
@app.post("/clear", response_class=HTMLResponse)
def clear_from_form(store: JobStore = Depends(get_store)):
    _clear(store)
    return RedirectResponse(url="/", status_code=303)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.main:app", host="0.0.0.0", port=8000)
