"""Background scheduler for the daily point expiration sweep."""

from __future__ import annotations

import logging
from datetime import date

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI

from ..core.config import get_settings
from ..core.database import SessionLocal
from ..services.maintenance_service import run_expiration_sweep
from ..utils.datetime import today_utc

logger = logging.getLogger(__name__)

settings = get_settings()

_scheduler = AsyncIOScheduler(timezone=settings.scheduler_timezone)


async def _execute_expiration_sweep() -> None:
    session = SessionLocal()
    try:
        # The sweep commits each user on its own; a failure here only affects the current user
        summary = run_expiration_sweep(session, today=today_utc(), kind="both")
        logger.info("expiration sweep job completed: %s", summary)
    except Exception:  # pragma: no cover - safeguard for background job
        session.rollback()
        logger.exception("expiration sweep job failed")
        raise
    finally:
        session.close()


@_scheduler.scheduled_job(
    "cron",
    hour=settings.sweep_cron_hour,
    minute=settings.sweep_cron_minute,
    id="point_expiration_sweep",
    misfire_grace_time=3600,
    coalesce=True,
)
async def _scheduled_job() -> None:
    await _execute_expiration_sweep()


def register_scheduler(app: FastAPI) -> None:
    """Attach APScheduler lifecycle hooks to the FastAPI app."""

    if not settings.scheduler_enabled:
        logger.info("expiration sweep scheduler disabled by configuration")
        return

    @app.on_event("startup")
    async def start_scheduler() -> None:
        if not _scheduler.running:
            _scheduler.start()
            logger.info("expiration sweep scheduler started")

    @app.on_event("shutdown")
    async def shutdown_scheduler() -> None:
        if _scheduler.running:
            _scheduler.shutdown(wait=False)
            logger.info("expiration sweep scheduler stopped")


def run_sweep_once(today: date | None = None, kind: str = "both") -> dict[str, int]:
    """Convenience helper to run the sweep synchronously for manual runs."""

    session = SessionLocal()
    try:
        return run_expiration_sweep(session, today=today or today_utc(), kind=kind)
    finally:
        session.close()
