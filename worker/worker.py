import argparse
import asyncio
import logging
import signal
from typing import List

from common.config import POLL_INTERVAL, configure_logging
from common.job_schema import Job, JobStatus
from common.storage import JobStore, get_job_store, get_next_pending_job
from worker.background import BackgroundRemover
from worker.pipeline import Pipeline

logger = logging.getLogger(__name__)


def recover_interrupted_jobs(store: JobStore) -> List[Job]:
    """Requeue jobs a previous process left in PROCESSING.

    They restart from the beginning; partial results are dropped.
    """
    recovered = []
    for job in store.get_all():
        if job.status == JobStatus.PROCESSING:
            logger.warning("Requeueing interrupted job %s (was at %d%%)", job.id, job.progress)
            job.reset()
            store.put(job)
            recovered.append(job)
    return recovered


async def _wait(cancel: asyncio.Event, seconds: float) -> None:
    try:
        await asyncio.wait_for(cancel.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass


async def run_worker(
    store: JobStore,
    pipeline: Pipeline,
    once: bool = False,
    cancel: asyncio.Event | None = None,
    poll_interval: float = POLL_INTERVAL,
) -> int:
    """Process stored PENDING jobs oldest first. Returns how many reached a terminal state."""
    cancel = cancel or asyncio.Event()
    await asyncio.to_thread(store.init)
    await asyncio.to_thread(recover_interrupted_jobs, store)

    finished = 0
    # Each job is attempted at most once per run. A job whose FAILED record
    # could not be written is still PENDING in the store; it is retried on
    # the next start.
    attempted = set()
    while not cancel.is_set():
        job = await asyncio.to_thread(get_next_pending_job, store, attempted)
        if job:
            attempted.add(job.id)
            await pipeline.process_job(job, cancel=cancel)
            if job.is_terminal:
                finished += 1
        elif once:
            break
        else:
            await _wait(cancel, poll_interval)
    return finished


async def _serve(once: bool) -> int:
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, cancel.set)

    store = get_job_store()
    pipeline = Pipeline(store, BackgroundRemover())
    return await run_worker(store, pipeline, once=once, cancel=cancel)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Process queued background-removal and vectorization jobs.")
    parser.add_argument("--once", action="store_true", help="exit once the queue is empty instead of polling")
    args = parser.parse_args(argv)

    configure_logging()
    logger.info("Worker started...")
    finished = asyncio.run(_serve(args.once))
    logger.info("Worker stopped after %d jobs", finished)


if __name__ == "__main__":
    main()
