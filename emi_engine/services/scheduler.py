"""Daily trigger for the reminder & penalty batch

The batch itself is `run_daily_batch(now)`; this module only decides when to
call it: once a day at `batch_run_time` in `batch_timezone`. Any external
timer (cron, a cloud scheduler hitting POST /v1/batch/run) can replace it.
"""

import asyncio
import logging
from datetime import datetime, time, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo
from sqlalchemy.orm import sessionmaker

from emi_engine.config import Settings, settings as default_settings
from emi_engine.domain.models import BatchRunSummary
from emi_engine.infrastructure.clients.notifications import NotificationClient
from emi_engine.infrastructure.database.session import SessionLocal, session_scope
from emi_engine.infrastructure.observability.logging import setup_logging
from emi_engine.services.batch import run_daily_batch
from emi_engine.services.notifier import NotificationSink

logger = logging.getLogger(__name__)


def parse_run_time(value: str) -> time:
    """'09:00' → time(9, 0)"""
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def next_run_at(now: datetime, run_time: str, timezone_name: str) -> datetime:
    """Next wall-clock occurrence of run_time strictly after now"""
    tz = ZoneInfo(timezone_name)
    local_now = now.astimezone(tz) if now.tzinfo else now.replace(tzinfo=tz)
    at = parse_run_time(run_time)

    candidate = datetime.combine(local_now.date(), at, tzinfo=tz)
    if candidate <= local_now:
        candidate = datetime.combine(local_now.date() + timedelta(days=1), at, tzinfo=tz)
    return candidate


async def run_scheduled_batch(
    now: datetime,
    session_factory: sessionmaker = SessionLocal,
    sink: Optional[NotificationSink] = None,
    config: Settings = default_settings,
) -> Optional[BatchRunSummary]:
    """One scheduled firing; any error is logged so the trigger always re-arms"""
    try:
        with session_scope(session_factory) as db:
            return await run_daily_batch(now, db, sink or NotificationClient(), config)
    except Exception:
        logger.exception("Scheduled batch run crashed")
        return None


async def run_scheduler(
    session_factory: sessionmaker = SessionLocal,
    config: Settings = default_settings,
    stop: Optional[asyncio.Event] = None,
    clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
) -> None:
    """Fire the batch every day until `stop` is set"""
    stop = stop or asyncio.Event()
    while not stop.is_set():
        fire_at = next_run_at(clock(), config.batch_run_time, config.batch_timezone)
        delay = max((fire_at - clock()).total_seconds(), 0.0)
        logger.info(f"Next batch run at {fire_at.isoformat()}", extra={"delay_seconds": delay})

        try:
            await asyncio.wait_for(stop.wait(), timeout=delay)
            break
        except asyncio.TimeoutError:
            pass

        await run_scheduled_batch(clock(), session_factory, None, config)


def main() -> None:
    setup_logging(default_settings.log_level)
    try:
        asyncio.run(run_scheduler())
    except KeyboardInterrupt:
        logger.info("Scheduler stopped")


if __name__ == "__main__":
    main()
