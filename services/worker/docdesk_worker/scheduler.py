"""Daily trigger for the reminder run.

Run as ``python -m docdesk_worker.scheduler`` next to the dramatiq workers.
"""
from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import get_settings

logger = logging.getLogger(__name__)


def get_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError:
        logger.warning("[scheduler] unknown timezone %s, using Asia/Kolkata", name)
        return ZoneInfo("Asia/Kolkata")


def next_run_at(now: datetime, hour: int, tz: ZoneInfo) -> datetime:
    """First ``hour``:00 in ``tz`` strictly after ``now`` (an aware datetime)."""
    local = now.astimezone(tz)
    target = local.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= local:
        target = (local + timedelta(days=1)).replace(hour=hour, minute=0, second=0, microsecond=0)
    return target


def seconds_until_next_run(now: datetime, hour: int, tz: ZoneInfo) -> float:
    return max((next_run_at(now, hour, tz) - now).total_seconds(), 0.0)


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    settings = get_settings()
    tz = get_timezone(settings.reminder_timezone)
    # imported here so the broker is only configured by the running process
    from .actors import run_reminder_check

    while True:
        now = datetime.now(timezone.utc)
        wait = seconds_until_next_run(now, settings.reminder_hour, tz)
        logger.info("[scheduler] next reminder run at %s", next_run_at(now, settings.reminder_hour, tz).isoformat())
        time.sleep(wait)
        run_reminder_check.send()
        logger.info("[scheduler] reminder run enqueued")


if __name__ == "__main__":
    main()
