import io
import logging
import zipfile
from datetime import date
from typing import Iterable, List, Optional

from common.errors import NothingToExport
from common.job_schema import Job, JobStatus

logger = logging.getLogger(__name__)


def exportable_jobs(jobs: Iterable[Job]) -> List[Job]:
    return [j for j in jobs if j.status == JobStatus.COMPLETED and j.vector_document is not None]


def svg_filename(job: Job) -> str:
    """``<original-stem>_<first 8 chars of id>.svg``"""
    return f"{job.source_asset.stem}_{job.id[:8]}.svg"


def archive_name(day: Optional[date] = None) -> str:
    return f"processed_images_{(day or date.today()).isoformat()}.zip"


def build_archive(jobs: Iterable[Job]) -> bytes:
    """Zip the SVG of every completed job.

    Raises:
        NothingToExport: if no job is completed with a vector document
    """
    selected = exportable_jobs(jobs)
    if not selected:
        raise NothingToExport("No completed SVGs to export")

    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for job in selected:
            zf.writestr(svg_filename(job), job.vector_document.to_bytes())

    logger.info("Packed %d SVG files", len(selected))
    return buf.getvalue()
