"""
Daily maintenance jobs, meant to be run from cron once a day:

    python -m scripts.daily_jobs            # both jobs
    python -m scripts.daily_jobs --only recurring

Each job commits on its own so a failure in one does not roll back the other.
"""
import argparse
import asyncio
import logging
import sys
from datetime import date, datetime

from sitetrack.cache import cache
from sitetrack.config import settings
from sitetrack.database import async_session
from sitetrack.logging_config import setup_logging
from sitetrack.services import notification_service, recurring_task_service
from sitetrack.utils import utcnow

logger = logging.getLogger("daily_jobs")


async def run_recurring(now: datetime | None = None) -> int:
    async with async_session() as db:
        created = await recurring_task_service.process_recurring_tasks(db, now)
        await db.commit()
    logger.info("Recurring tasks: %d instance(s) created", len(created))
    return len(created)


async def run_notifications(today: date | None = None) -> dict:
    async with async_session() as db:
        counts = await notification_service.schedule_automated_notifications(db, today)
        await db.commit()
    return counts


def job_clock(today: date | None = None) -> datetime | None:
    """UTC wall-clock time on *today*; ``None`` lets the job use the current time."""
    return datetime.combine(today, utcnow().time()) if today else None


async def run(only: str | None = None, today: date | None = None) -> int:
    await cache.connect()
    failures = 0
    try:
        if only in (None, "recurring"):
            try:
                await run_recurring(job_clock(today))
            except Exception:
                logger.exception("Recurring task job failed")
                failures += 1
        if only in (None, "notifications"):
            try:
                await run_notifications(today)
            except Exception:
                logger.exception("Automated notification job failed")
                failures += 1
    finally:
        await cache.disconnect()
    return failures


def main():
    parser = argparse.ArgumentParser(description="Run SiteTrack daily jobs")
    parser.add_argument("--only", choices=["recurring", "notifications"], help="Run a single job")
    parser.add_argument("--date", type=date.fromisoformat, help="Run as if today were YYYY-MM-DD")
    args = parser.parse_args()
    setup_logging(settings.LOG_LEVEL, settings.LOG_FILE)
    failures = asyncio.run(run(args.only, args.date))
    sys.exit(1 if failures else 0)


if __name__ == "__main__":
    main()
