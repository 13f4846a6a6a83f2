"""SAQ queue configuration for background tasks."""

from saq import CronJob, Queue

from usersvc.config import settings

# Main task queue
queue = Queue.from_url(settings.redis_url)


def get_queue_settings() -> dict:
    """Get SAQ queue settings for the worker."""
    # Import here to avoid circular imports
    from usersvc.tasks.maintenance import cleanup_expired_otps, cleanup_expired_tokens

    return {
        "queue": queue,
        "functions": [
            cleanup_expired_otps,
            cleanup_expired_tokens,
        ],
        "cron_jobs": [
            CronJob(cleanup_expired_otps, cron="0 * * * *"),
            CronJob(cleanup_expired_tokens, cron="30 3 * * *"),
        ],
        "concurrency": 2,
        "startup": startup,
        "shutdown": shutdown,
    }


async def startup(_ctx: dict) -> None:
    """Called when worker starts."""
    pass


async def shutdown(_ctx: dict) -> None:
    """Called when worker shuts down."""
    from usersvc.database import close_db

    await close_db()
