from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from medstock.core.config import get_settings
from medstock.db.session import async_session_maker
from medstock.services.expiry_monitor import ExpiryMonitor

log = logging.getLogger("medstock.scheduler")

_scheduler: AsyncIOScheduler | None = None


async def _job_expiry_sweep() -> None:
    async with async_session_maker() as session:
        await ExpiryMonitor().scan(session)


def init_scheduler() -> AsyncIOScheduler | None:
    global _scheduler
    settings = get_settings()
    if not settings.ENABLE_EXPIRY_SCHEDULER:
        return None
    if _scheduler is not None:
        return _scheduler
    _scheduler = AsyncIOScheduler()
    _scheduler.add_job(
        _job_expiry_sweep,
        "cron",
        hour=settings.EXPIRY_SWEEP_HOUR,
        minute=5,
        id="expiry_sweep",
        coalesce=True,
        max_instances=1,
    )
    _scheduler.start()
    log.info("expiry sweep scheduled daily at %02d:05", settings.EXPIRY_SWEEP_HOUR)
    return _scheduler


def shutdown_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
