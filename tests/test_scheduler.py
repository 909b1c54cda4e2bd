"""Tests for frequency phrases and the due predicate."""

from datetime import datetime, timedelta, timezone

import pytest

from vigil.core.scheduler import calculate_next_run, frequency_interval, is_due, is_recurring

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _task(**fields):
    task = {
        "status": "active",
        "frequency": "every 5 minutes",
        "cron_expression": None,
        "next_run": None,
        "last_run": None,
    }
    task.update(fields)
    return task


@pytest.mark.parametrize(
    "frequency,delta",
    [
        ("real-time", timedelta(minutes=1)),
        ("continuous", timedelta(minutes=1)),
        ("every 5 minutes", timedelta(minutes=5)),
        ("every 30 minutes", timedelta(minutes=30)),
        ("every hour", timedelta(hours=1)),
        ("hourly", timedelta(hours=1)),
        ("every 6 hours", timedelta(hours=6)),
        ("every 12 hours", timedelta(hours=12)),
        ("daily", timedelta(days=1)),
        ("weekly", timedelta(weeks=1)),
        ("every 3 hours", timedelta(hours=3)),
        ("Every 2 Days", timedelta(days=2)),
        ("every 1 minute", timedelta(minutes=1)),
    ],
)
def test_calculate_next_run(frequency, delta):
    assert calculate_next_run(frequency, NOW) == NOW + delta


@pytest.mark.parametrize("frequency", ["", None, "on demand", "every fortnight"])
def test_unrecognised_frequency_has_no_next_run(frequency):
    assert frequency_interval(frequency) is None
    assert calculate_next_run(frequency, NOW) is None


def test_never_run_task_is_due():
    """Test that a new 'every 5 minutes' task is due and then scheduled 5 minutes out."""
    task = _task()
    assert is_due(task, NOW)
    assert calculate_next_run(task["frequency"], NOW) == NOW + timedelta(minutes=5)


def test_future_next_run_is_not_due():
    task = _task(next_run=(NOW + timedelta(minutes=1)).isoformat(), last_run=NOW.isoformat())
    assert not is_due(task, NOW)


def test_past_next_run_is_due():
    task = _task(next_run=(NOW - timedelta(seconds=1)).isoformat(), last_run=NOW.isoformat())
    assert is_due(task, NOW)


def test_realtime_task_is_due_when_stale():
    fresh = _task(frequency="real-time", last_run=(NOW - timedelta(seconds=30)).isoformat(),
                  next_run=(NOW + timedelta(seconds=30)).isoformat())
    stale = _task(frequency="real-time", last_run=(NOW - timedelta(seconds=61)).isoformat(),
                  next_run=(NOW + timedelta(hours=1)).isoformat())
    assert not is_due(fresh, NOW)
    assert is_due(stale, NOW)


def test_inactive_task_is_never_due():
    assert not is_due(_task(status="paused"), NOW)


def test_is_recurring():
    assert is_recurring(_task())
    assert is_recurring(_task(frequency="", cron_expression="0 * * * *"))
    assert not is_recurring(_task(frequency=""))
