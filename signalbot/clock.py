from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def cron_expression(interval_minutes: int) -> str:
    return f"*/{interval_minutes} * * * *"


def next_run_at(now: datetime, interval_minutes: int) -> datetime:
    """
    Next firing time of a ``*/N * * * *`` schedule strictly after ``now``.

    Minutes restart at 0 every hour, so N values that do not divide 60
    produce a shorter last slot in each hour, exactly like cron.
    """
    if interval_minutes <= 0:
        raise ValueError("interval_minutes must be > 0")
    base = now.replace(second=0, microsecond=0)
    minute = base.minute + 1
    while minute < 60:
        if minute % interval_minutes == 0:
            return base.replace(minute=minute)
        minute += 1
    return base.replace(minute=0) + timedelta(hours=1)
