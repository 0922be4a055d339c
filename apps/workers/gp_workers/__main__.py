"""
Single entrypoint for gitpulse worker jobs.

Usage:
    JOB_TYPE=sync python -m gp_workers    # Full sync of every scope visible to GIT_TOKEN

SIGTERM and SIGINT request cancellation; repositories already in flight
finish and persist before the job exits.
"""

import asyncio
import logging
import os
import signal
import sys

from gp_workers.logging_config import setup_logging


class GracefulShutdown:
    """Turns termination signals into an event the running job watches."""

    def __init__(self):
        self._shutdown_event = asyncio.Event()

    def signal_handler(self, signum: int) -> None:
        logger = logging.getLogger(__name__)
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        self._shutdown_event.set()

    @property
    def shutdown_event(self) -> asyncio.Event:
        return self._shutdown_event


async def run_worker_task(job_type: str, shutdown: GracefulShutdown) -> dict:
    match job_type:
        case "sync":
            from gp_workers.jobs.sync_job import run_sync_job
            return await run_sync_job(shutdown.shutdown_event)

        case _:
            raise ValueError(f"Unknown job type: {job_type}")


async def main() -> None:
    job_id = setup_logging()
    logger = logging.getLogger(__name__)

    job_type = os.getenv("JOB_TYPE", "sync").lower()

    logger.info(
        "Starting job",
        extra={"job_type": job_type, "job_id": job_id},
    )

    shutdown = GracefulShutdown()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: shutdown.signal_handler(s))

    try:
        result = await run_worker_task(job_type, shutdown)
        logger.info(
            "Job completed successfully",
            extra={"job_type": job_type, "result": result},
        )
    except Exception as exc:
        logger.exception(
            f"Job failed: {exc}",
            extra={"job_type": job_type},
        )
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
