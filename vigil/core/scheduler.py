"""Frequency phrases and the due-task predicate."""

import re
from datetime import datetime, timedelta

from ..lib.utils import from_iso
from ..schemas.task import Task

# Real-time tasks re-run once their last run is this old.
REALTIME_STALENESS = timedelta(seconds=60)

REALTIME_FREQUENCIES = frozenset({"real-time", "continuous"})

FREQUENCY_TABLE = {
    "real-time": timedelta(minutes=1),
    "continuous": timedelta(minutes=1),
    "every 5 minutes": timedelta(minutes=5),
    "every 30 minutes": timedelta(minutes=30),
    "every hour": timedelta(hours=1),
    "hourly": timedelta(hours=1),
    "every 6 hours": timedelta(hours=6),
    "every 12 hours": timedelta(hours=12),
    "every 24 hours": timedelta(days=1),
    "daily": timedelta(days=1),
    "weekly": timedelta(weeks=1),
}

FREQUENCY_PATTERN = re.compile(r"every (\d+) (minute|hour|day)s?", re.IGNORECASE)

UNITS = {
    "minute": timedelta(minutes=1),
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
}


def frequency_interval(frequency: str | None) -> timedelta | None:
    """Resolve a frequency phrase to an interval.

    Literal table first, then ``every N minute|hour|day``. Unknown phrases
    mean the task has no periodic schedule (cron-only or manual).
    """
    if not frequency:
        return None

    phrase = frequency.strip().lower()
    if phrase in FREQUENCY_TABLE:
        return FREQUENCY_TABLE[phrase]

    match = FREQUENCY_PATTERN.search(phrase)
    if match:
        amount = int(match.group(1))
        if amount <= 0:
            return None
        return amount * UNITS[match.group(2).lower()]

    return None


def calculate_next_run(frequency: str | None, now: datetime) -> datetime | None:
    interval = frequency_interval(frequency)
    if interval is None:
        return None
    return now + interval


def is_recurring(task: Task) -> bool:
    """True if the task has a periodic or cron schedule."""
    return frequency_interval(task["frequency"]) is not None or bool(
        task["cron_expression"]
    )


def is_due(task: Task, now: datetime) -> bool:
    """Mirror of the store's due-task query for a single task."""
    if task["status"] != "active":
        return False

    next_run = from_iso(task["next_run"])
    last_run = from_iso(task["last_run"])

    if next_run is not None and next_run <= now:
        return True
    if next_run is None and last_run is None:
        return True
    if (
        (task["frequency"] or "").strip().lower() in REALTIME_FREQUENCIES
        and last_run is not None
        and last_run <= now - REALTIME_STALENESS
    ):
        return True
    return False
