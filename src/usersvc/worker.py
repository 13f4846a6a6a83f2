"""Background worker for OTP and refresh-token cleanup."""

import asyncio
import logging

from saq import Worker

from usersvc.logging import setup_logging
from usersvc.tasks.queue import get_queue_settings

setup_logging()
logger = logging.getLogger(__name__)


def build_worker() -> Worker:
    """Create the SAQ worker with the cleanup functions and their cron schedule."""
    queue_settings = get_queue_settings()
    cron_jobs = queue_settings.get("cron_jobs") or []
    for job in cron_jobs:
        logger.info(f"Scheduled {job.function.__name__} at '{job.cron}'")

    return Worker(
        queue=queue_settings["queue"],
        functions=queue_settings["functions"],
        concurrency=queue_settings.get("concurrency", 2),
        cron_jobs=cron_jobs,
        startup=queue_settings.get("startup"),
        shutdown=queue_settings.get("shutdown"),
    )


def main() -> None:
    """Run the cleanup worker until interrupted."""
    worker = build_worker()
    logger.info("Starting usersvc worker")
    asyncio.run(worker.start())


if __name__ == "__main__":
    main()
