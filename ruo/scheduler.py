# ruo/scheduler.py
import logging
import os
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ruo import config
from ruo.services.authorities import AuthorityCache

logger = logging.getLogger(__name__)


async def refresh_tick(sessionmaker: async_sessionmaker[AsyncSession], authorities: AuthorityCache) -> int:
    """Une passe de rafraîchissement des autorités trop anciennes."""
    async with sessionmaker() as db:
        try:
            return await authorities.refresh_stale(db, limit=config.AUTHORITY_REFRESH_BATCH)
        except Exception as e:
            logger.error("[scheduler] authority refresh error: %s", e)
            return 0


def start_scheduler(
    sessionmaker: async_sessionmaker[AsyncSession],
    authorities: AuthorityCache,
    interval_min: Optional[int] = None,
) -> AsyncIOScheduler:
    interval = interval_min or config.AUTHORITY_REFRESH_INTERVAL_MIN
    scheduler = AsyncIOScheduler(
        job_defaults={"coalesce": True, "max_instances": 1},
        timezone=os.getenv("TZ", "UTC"),
    )
    scheduler.add_job(
        refresh_tick,
        trigger=IntervalTrigger(minutes=interval),
        args=[sessionmaker, authorities],
        id="ruo_authority_refresh",
        replace_existing=True,
    )
    scheduler.start()
    logger.info("[scheduler] started (every %d min)", interval)
    return scheduler


def stop_scheduler(scheduler: Optional[AsyncIOScheduler]) -> None:
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("[scheduler] stopped")
