import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from common.errors import StorageUnavailable
from common.job_schema import (
    PROGRESS_BACKGROUND_REMOVED,
    PROGRESS_LOADED,
    Job,
    SourceAsset,
)
from common.storage import JobStore
from vectorizer.svg import decode_image, encode_png, vectorize

logger = logging.getLogger(__name__)

ProgressSink = Callable[[List[Job]], None]


class Cancelled(Exception):
    """Raised between stages once the cancel token is set."""


def _check_cancel(cancel) -> None:
    if cancel is not None and cancel.is_set():
        raise Cancelled()


def _emit(progress: Optional[ProgressSink], jobs: List[Job]) -> None:
    if progress is not None:
        progress([job.model_copy() for job in jobs])


class Pipeline:
    """Runs jobs one at a time: load, remove background, vectorize.

    Every stage transition is written to the store before the next stage
    starts. A failing job is recorded as FAILED and never stops the batch.

    ``remover`` is anything with an async ``remove_background(image)`` that
    returns the image with an alpha channel, normally a BackgroundRemover.
    It may be omitted when the pipeline is only used to ``submit`` jobs.
    """

    def __init__(self, store: JobStore, remover=None):
        self.store = store
        self.remover = remover

    async def _persist(self, job: Job) -> None:
        await asyncio.to_thread(self.store.put, job)

    def create_jobs(self, assets: Sequence[SourceAsset]) -> List[Job]:
        created_at = datetime.now(timezone.utc)
        jobs = []
        seen = set()
        for position, asset in enumerate(assets):
            job = Job(source_asset=asset, created_at=created_at, position=position)
            while job.id in seen:
                job.id = str(uuid.uuid4())
            seen.add(job.id)
            jobs.append(job)
        return jobs

    async def submit(self, assets: Sequence[SourceAsset]) -> List[Job]:
        """Create and persist one PENDING job per asset."""
        await asyncio.to_thread(self.store.init)
        jobs = self.create_jobs(assets)
        for job in jobs:
            await self._persist(job)
        logger.info("Submitted %d jobs", len(jobs))
        return jobs

    async def process_batch(
        self,
        assets: Sequence[SourceAsset],
        progress: Optional[ProgressSink] = None,
        cancel=None,
    ) -> List[Job]:
        """Submit ``assets`` and process them in order.

        Args:
            assets: the raw images, in submission order
            progress: called with a snapshot of every job after creation and
                after each job reaches a terminal state
            cancel: optional event; once set, processing stops at the next
                stage boundary and the remaining jobs stay PENDING

        Returns:
            The jobs, in submission order.
        """
        jobs = await self.submit(assets)
        return await self.run(jobs, progress=progress, cancel=cancel)

    async def run(self, jobs: List[Job], progress: Optional[ProgressSink] = None, cancel=None) -> List[Job]:
        _emit(progress, jobs)
        for job in jobs:
            if cancel is not None and cancel.is_set():
                break
            await self.process_job(job, cancel=cancel)
            if not job.is_terminal:
                break
            _emit(progress, jobs)

        pending = sum(1 for job in jobs if not job.is_terminal)
        if pending:
            logger.info("Batch cancelled with %d jobs unfinished", pending)
        return jobs

    async def process_job(self, job: Job, cancel=None) -> Job:
        """Drive one PENDING job to COMPLETED or FAILED.

        If ``cancel`` is set between stages the job is left at its last
        persisted PROCESSING snapshot.
        """
        job.start()
        name = job.source_asset.name
        try:
            await self._persist(job)
            _check_cancel(cancel)

            logger.info("Processing job %s (%s): loading image", job.id, name)
            image = await asyncio.to_thread(decode_image, job.source_asset.content)
            job.advance(PROGRESS_LOADED)
            await self._persist(job)
            _check_cancel(cancel)

            logger.info("Processing job %s (%s): removing background", job.id, name)
            cleaned = await self.remover.remove_background(image)
            job.background_removed_asset = await asyncio.to_thread(encode_png, cleaned)
            job.advance(PROGRESS_BACKGROUND_REMOVED)
            await self._persist(job)
            _check_cancel(cancel)

            logger.info("Processing job %s (%s): converting to SVG", job.id, name)
            document = await asyncio.to_thread(vectorize, job.background_removed_asset)
            # Terminal state only once it is durable
            finished = job.model_copy()
            finished.complete(document)
            await self._persist(finished)
            job.complete(document)

            logger.info("Successfully processed job %s (%d paths)", job.id, len(document.paths))
        except Cancelled:
            logger.info("Job %s cancelled at %d%%", job.id, job.progress)
        except Exception as e:
            logger.exception("Error processing job %s", job.id)
            job.fail(str(e) or type(e).__name__)
            try:
                await self._persist(job)
            except StorageUnavailable:
                logger.exception("Could not record failure of job %s", job.id)
        return job
