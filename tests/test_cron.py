"""Tests for native cron scheduling."""

from datetime import datetime, timezone

import pytest

from vigil.common.errors import InvalidCronExpressionError
from vigil.core.cron import CronScheduler, parse_cron


async def _noop(task_id):
    return None


def _task(task_id="t1", cron="*/5 * * * *", status="active"):
    return {"id": task_id, "name": f"task {task_id}", "cron_expression": cron, "status": status}


def test_parse_cron():
    trigger = parse_cron("30 9 * * *")
    start = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)
    fire = trigger.get_next_fire_time(None, start)
    assert fire == datetime(2026, 3, 3, 9, 30, tzinfo=timezone.utc)


@pytest.mark.parametrize("expression", ["not a cron", "61 * * * *", "* * *"])
def test_parse_invalid_cron(expression):
    with pytest.raises(InvalidCronExpressionError):
        parse_cron(expression)


@pytest.mark.asyncio
async def test_schedule_replace_and_unschedule():
    """Test that a task has at most one job, keyed by its id."""
    cron = CronScheduler(_noop)
    cron.start()
    try:
        assert cron.schedule(_task())
        assert cron.schedule(_task(cron="0 * * * *"))
        assert cron.active_jobs() == ["t1"]
        assert cron.next_fire_time("t1") is not None

        assert cron.unschedule("t1")
        assert not cron.unschedule("t1")
        assert cron.active_jobs() == []
        assert cron.next_fire_time("t1") is None
    finally:
        cron.shutdown()


@pytest.mark.asyncio
async def test_only_active_tasks_with_valid_cron_are_scheduled():
    cron = CronScheduler(_noop)
    cron.start()
    try:
        assert not cron.schedule(_task("paused", status="paused"))
        assert not cron.schedule(_task("plain", cron=None))
        assert not cron.schedule(_task("broken", cron="bogus"))

        cron.schedule(_task("t1"))
        # Re-registering a task that is no longer active drops its job.
        assert not cron.schedule(_task("t1", status="paused"))
        assert cron.active_jobs() == []
    finally:
        cron.shutdown()


def test_next_fire_time_before_start():
    cron = CronScheduler(_noop)
    cron.schedule(_task())
    assert not cron.running
    assert cron.next_fire_time("t1") is not None
    cron.shutdown()
    assert cron.active_jobs() == []
