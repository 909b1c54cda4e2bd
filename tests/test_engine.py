"""Tests for the orchestrator's execution state machine."""

import asyncio
import sqlite3
from datetime import timedelta

import pytest

from fakes import drain
from vigil.common.errors import (
    InvalidCronExpressionError,
    InvalidTaskConfigError,
    InvalidTaskStateError,
    TaskNotFoundError,
    TaskRunnerError,
)
from vigil.lib.utils import from_iso, utcnow


@pytest.mark.asyncio
async def test_successful_execution_updates_task(engine, make_task):
    """Test that a successful run updates counters, timestamps and last result."""
    task = await make_task()
    before = utcnow()

    execution = await engine.execute_task(task["id"])

    assert execution["success"] is True
    assert execution["is_cached"] is False
    assert execution["end_time"] is not None
    assert execution["execution_context"]["triggered_by"] == "manual"

    updated = await engine.get_task(task["id"])
    assert updated["status"] == "active"
    assert updated["execution_count"] == 1
    assert updated["success_count"] == 1
    assert updated["failure_count"] == 0
    assert updated["success_rate"] == 100
    assert updated["last_result"]["success"] is True
    assert updated["last_result"]["data"] == {"checked": task["name"], "alert": False}

    next_run = from_iso(updated["next_run"])
    assert before + timedelta(minutes=5) <= next_run <= utcnow() + timedelta(minutes=5)


@pytest.mark.asyncio
async def test_success_rate_law(engine, make_task, fake):
    """Test that success_rate is round(successes / executions * 100)."""
    task = await make_task()
    fake["security-scan"].script = [
        {"alert": False},
        ValueError("invalid scan target"),
        {"alert": False},
    ]

    for _ in range(3):
        await engine.execute_task(task["id"])

    updated = await engine.get_task(task["id"])
    assert updated["execution_count"] == 3
    assert updated["success_count"] == 2
    assert updated["failure_count"] == 1
    assert updated["success_count"] + updated["failure_count"] == updated["execution_count"]
    assert updated["success_rate"] == 67


@pytest.mark.asyncio
async def test_permanent_failure_of_recurring_task_stays_active(engine, make_task, fake):
    """Test that a non-retryable failure keeps a recurring task schedulable."""
    task = await make_task()
    fake["security-scan"].script = [ValueError("invalid scan target")]

    execution = await engine.execute_task(task["id"])

    assert execution["success"] is False
    assert execution["error"] == "invalid scan target"
    updated = await engine.get_task(task["id"])
    assert updated["status"] == "active"
    assert updated["retry_count"] == 0
    assert updated["next_run"] is not None
    assert updated["last_result"]["success"] is False


@pytest.mark.asyncio
async def test_permanent_failure_of_one_shot_task_marks_failed(engine, make_task, fake):
    """Test that a non-recurring task fails permanently and cannot be re-run."""
    task = await make_task(frequency="")
    fake["security-scan"].script = [ValueError("invalid scan target")]

    await engine.execute_task(task["id"])

    assert (await engine.get_task(task["id"]))["status"] == "failed"
    with pytest.raises(InvalidTaskStateError):
        await engine.execute_task(task["id"])


@pytest.mark.asyncio
async def test_missing_task_raises_not_found(engine):
    with pytest.raises(TaskNotFoundError):
        await engine.execute_task("does-not-exist")


@pytest.mark.asyncio
async def test_paused_task_cannot_be_executed(engine, make_task, fake):
    """Test that only active tasks run."""
    task = await make_task()
    await engine.pause_task(task["id"])

    with pytest.raises(InvalidTaskStateError):
        await engine.execute_task(task["id"])
    assert fake["security-scan"].calls == []


@pytest.mark.asyncio
async def test_concurrent_triggers_share_one_execution(engine, make_task, fake):
    """Test that concurrent calls for one task produce a single execution."""
    task = await make_task()
    runner = fake["security-scan"]
    runner.gate = asyncio.Event()

    first = asyncio.create_task(engine.execute_task(task["id"]))
    second = asyncio.create_task(engine.execute_task(task["id"]))
    await asyncio.sleep(0.05)
    runner.gate.set()
    a, b = await asyncio.gather(first, second)

    assert a["id"] == b["id"]
    assert len(runner.calls) == 1
    history = await engine.get_execution_history(task["id"])
    assert len(history) == 1
    assert (await engine.get_task(task["id"]))["execution_count"] == 1


@pytest.mark.asyncio
async def test_classified_failure_schedules_retry(engine, make_task, fake, monkeypatch):
    """Test that a retryable failure moves the task to retrying with backoff."""
    scheduled = []
    monkeypatch.setattr(
        engine, "_schedule_retry", lambda task_id, delay, parent: scheduled.append((task_id, delay))
    )
    task = await make_task()
    fake["security-scan"].script = [TaskRunnerError("upstream busy", category="rate_limit")]

    execution = await engine.execute_task(task["id"])

    assert execution["success"] is False
    assert scheduled == [(task["id"], 1000)]
    updated = await engine.get_task(task["id"])
    assert updated["status"] == "retrying"
    assert updated["retry_count"] == 1
    assert updated["failure_count"] == 1

    # Only the backoff re-attempt may run a retrying task.
    with pytest.raises(InvalidTaskStateError):
        await engine.execute_task(task["id"])

    retried = await engine.execute_task(task["id"], triggered_by="retry")
    assert retried["success"] is True
    assert retried["retry_count"] == 1
    updated = await engine.get_task(task["id"])
    assert updated["status"] == "active"
    assert updated["retry_count"] == 0

    report = await engine.get_task_analytics("alice")
    assert report["summary"]["total_retries"] == 1


@pytest.mark.asyncio
async def test_retry_delays_follow_backoff(engine, make_task, fake, monkeypatch):
    """Test the 1000/2000/4000 ms sequence and exhaustion after max_retries."""
    delays = []
    monkeypatch.setattr(
        engine, "_schedule_retry", lambda task_id, delay, parent: delays.append(delay)
    )
    task = await make_task(frequency="")
    fake["security-scan"].script = [TimeoutError("scan timed out")] * 4

    await engine.execute_task(task["id"])
    for _ in range(3):
        await engine.execute_task(task["id"], triggered_by="retry")

    assert delays == [1000, 2000, 4000]
    updated = await engine.get_task(task["id"])
    assert updated["status"] == "failed"
    assert updated["retry_count"] == 0
    assert updated["execution_count"] == 4


@pytest.mark.asyncio
async def test_retry_timer_reruns_task(engine, make_task, fake):
    """Test that the scheduled backoff timer re-executes the task."""
    task = await make_task(retry_config={"initial_delay": 10, "max_retries": 2})
    fake["security-scan"].script = [ConnectionError("connection reset")]

    await engine.execute_task(task["id"])
    for _ in range(50):
        if (await engine.get_task(task["id"]))["execution_count"] == 2:
            break
        await asyncio.sleep(0.02)

    history = await engine.get_execution_history(task["id"])
    assert [e["success"] for e in history] == [True, False]
    assert history[0]["execution_context"]["triggered_by"] == "retry"
    assert history[0]["execution_context"]["parent_execution_id"] == history[1]["id"]


@pytest.mark.asyncio
async def test_cached_result_skips_runner(engine, make_task, fake):
    """Test that a second identical price check is served from cache."""
    fake["price-alert"].handler = lambda task: {"current_price": 0.04, "alert": False}
    task = await make_task("price-alert")

    first = await engine.execute_task(task["id"])
    second = await engine.execute_task(task["id"])

    assert first["is_cached"] is False
    assert second["is_cached"] is True
    assert second["result"] == first["result"]
    assert len(fake["price-alert"].calls) == 1
    assert (await engine.get_task(task["id"]))["success_count"] == 2


@pytest.mark.asyncio
async def test_cache_is_shared_across_tasks_with_same_config(engine, make_task, fake):
    fake["price-alert"].handler = lambda task: {"current_price": 0.04, "alert": False}
    one = await make_task("price-alert", name="one")
    two = await make_task("price-alert", name="two")

    await engine.execute_task(one["id"])
    execution = await engine.execute_task(two["id"])

    assert execution["is_cached"] is True
    assert len(fake["price-alert"].calls) == 1


@pytest.mark.asyncio
async def test_alerting_results_are_not_cached(engine, make_task, fake):
    fake["price-alert"].handler = lambda task: {"current_price": 2.0, "alert": True}
    task = await make_task("price-alert")

    await engine.execute_task(task["id"])
    execution = await engine.execute_task(task["id"])

    assert execution["is_cached"] is False
    assert len(fake["price-alert"].calls) == 2


@pytest.mark.asyncio
async def test_alert_sends_notification(engine, make_task, fake, sink):
    """Test that an alerting result is delivered to the notification sink."""
    fake["security-scan"].handler = lambda task: {
        "alert": True,
        "alerts": ["Suspicious URL detected"],
    }
    task = await make_task(
        config={"urls": ["https://phish.example"], "notifications": {"channels": ["email"]}},
        priority="high",
    )

    await engine.execute_task(task["id"])
    await drain(engine)

    assert len(sink.sent) == 1
    sent = sink.sent[0]
    assert sent["user_id"] == "alice"
    assert sent["event_type"] == "task_alert"
    assert sent["variables"]["task_id"] == task["id"]
    assert sent["variables"]["alerts"] == ["Suspicious URL detected"]
    assert sent["options"] == {"priority": "high", "channels": ["email"]}


@pytest.mark.asyncio
async def test_no_notification_without_alert(engine, make_task, sink):
    task = await make_task()
    await engine.execute_task(task["id"])
    await drain(engine)
    assert sink.sent == []


@pytest.mark.asyncio
async def test_real_trade_result_is_rejected(engine, make_task, fake):
    """Test that trading results claiming a real order fail the execution."""
    fake["auto-trade"].handler = lambda task: {"action": "buy", "simulated": False}
    task = await make_task("auto-trade", config={"strategy": "dca", "amount": 10})

    execution = await engine.execute_task(task["id"])

    assert execution["success"] is False
    assert "simulation-only" in execution["error"]


@pytest.mark.asyncio
async def test_execute_all_due_tasks(engine, make_task):
    """Test that never-run tasks are due once and not again until next_run."""
    await make_task(name="first")
    await make_task(name="second")
    paused = await make_task(name="paused")
    await engine.pause_task(paused["id"])

    report = await engine.execute_all_due_tasks()
    assert report == {"executed": 2, "successful": 2, "failed": 0}

    again = await engine.execute_all_due_tasks()
    assert again == {"executed": 0, "successful": 0, "failed": 0}


@pytest.mark.asyncio
async def test_execute_all_due_tasks_counts_failures(engine, make_task, fake):
    fake["security-scan"].script = [ValueError("bad target")]
    await make_task()

    report = await engine.execute_all_due_tasks()

    assert report == {"executed": 1, "successful": 0, "failed": 1}


@pytest.mark.asyncio
async def test_create_task_validates_config(engine):
    with pytest.raises(InvalidTaskConfigError):
        await engine.create_task(
            {"user_id": "alice", "name": "bad", "type": "wallet-monitor", "config": {}}
        )
    with pytest.raises(InvalidTaskConfigError):
        await engine.create_task(
            {"user_id": "alice", "name": "bad", "type": "mining", "config": {}}
        )


@pytest.mark.asyncio
async def test_create_task_rejects_unknown_dependency(make_task):
    with pytest.raises(TaskNotFoundError):
        await make_task(dependencies=[{"task_id": "missing", "condition": "success"}])


@pytest.mark.asyncio
async def test_cron_task_is_registered_and_unregistered(engine, make_task):
    """Test that cron jobs follow the task's lifecycle."""
    task = await make_task(cron_expression="*/5 * * * *")
    assert task["id"] in engine.cron.active_jobs()
    assert engine.next_run_for(task) is not None

    await engine.pause_task(task["id"])
    assert task["id"] not in engine.cron.active_jobs()

    await engine.resume_task(task["id"])
    assert task["id"] in engine.cron.active_jobs()

    await engine.delete_task(task["id"])
    assert task["id"] not in engine.cron.active_jobs()
    with pytest.raises(TaskNotFoundError):
        await engine.get_task(task["id"])


@pytest.mark.asyncio
async def test_invalid_cron_expression_is_rejected(make_task):
    with pytest.raises(InvalidCronExpressionError):
        await make_task(cron_expression="every tuesday")


@pytest.mark.asyncio
async def test_cron_fire_executes_task(engine, make_task):
    task = await make_task(frequency="", cron_expression="0 0 * * *")

    await engine._on_cron_fire(task["id"])

    history = await engine.get_execution_history(task["id"])
    assert len(history) == 1
    assert history[0]["execution_context"]["triggered_by"] == "cron"


@pytest.mark.asyncio
async def test_cron_fire_for_deleted_task_removes_job(engine, make_task):
    task = await make_task(cron_expression="0 0 * * *")
    await engine.db.delete_task(task["id"])

    await engine._on_cron_fire(task["id"])

    assert task["id"] not in engine.cron.active_jobs()


@pytest.mark.asyncio
async def test_resume_requires_paused_or_failed(engine, make_task):
    task = await make_task()
    with pytest.raises(InvalidTaskStateError):
        await engine.resume_task(task["id"])


@pytest.mark.asyncio
async def test_start_recovers_interrupted_tasks(engine, make_task):
    """Test that tasks left running by a dead process become active again."""
    task = await make_task()
    await engine.db.update_task(task["id"], status="running")

    await engine.shutdown()
    await engine.start()

    assert (await engine.get_task(task["id"]))["status"] == "active"


@pytest.mark.asyncio
async def test_system_health_and_statistics(engine, make_task):
    task = await make_task()
    await make_task(name="never run")
    await engine.execute_task(task["id"])

    health = await engine.get_system_health()
    assert health["status"] == "healthy"
    assert health["running_tasks"] == 0
    assert health["pending_tasks"] == 1
    assert health["memory"]["rss"] > 0

    stats = await engine.get_user_statistics("alice")
    assert stats["total_tasks"] == 2
    assert stats["active_tasks"] == 2
    assert stats["total_executions"] == 1
    assert stats["successful_executions"] == 1
    assert stats["tasks_by_type"] == {"security-scan": 2}

    status = await engine.get_scheduler_status()
    assert status["due_tasks"] == 1
    assert [t["id"] for t in status["upcoming"]] == [task["id"]]


@pytest.mark.asyncio
async def test_cleanup_removes_old_history(engine, make_task):
    task = await make_task()
    await engine.execute_task(task["id"])
    await asyncio.sleep(0.01)

    removed = await engine.cleanup(retention_days=0)

    assert removed["executions"] == 1
    assert await engine.get_execution_history(task["id"]) == []


@pytest.mark.asyncio
async def test_store_error_mid_run_releases_task(engine, make_task, monkeypatch):
    """Test that a failed store write returns the task to active and closes its execution."""
    task = await make_task()
    finalize = engine.db.finalize_execution
    failures = [sqlite3.OperationalError("database is locked")]

    async def flaky_finalize(execution):
        if failures:
            raise failures.pop()
        await finalize(execution)

    monkeypatch.setattr(engine.db, "finalize_execution", flaky_finalize)

    with pytest.raises(sqlite3.OperationalError):
        await engine.execute_task(task["id"])

    released = await engine.get_task(task["id"])
    assert released["status"] == "active"
    assert released["execution_count"] == 0
    (interrupted,) = await engine.get_execution_history(task["id"])
    assert interrupted["end_time"] is not None
    assert interrupted["success"] is False
    assert "database is locked" in interrupted["error"]

    execution = await engine.execute_task(task["id"])
    assert execution["success"] is True
    assert (await engine.get_task(task["id"]))["status"] == "active"


@pytest.mark.asyncio
async def test_due_pass_skips_tasks_no_longer_due(engine, make_task, monkeypatch):
    """Test that a task paused after the due query is skipped, not counted as failed."""
    first = await make_task(name="first", priority="critical")
    second = await make_task(name="second")
    execute = engine.execute_task

    async def pause_second_then_execute(task_id, **kwargs):
        if task_id == first["id"]:
            await engine.pause_task(second["id"])
        return await execute(task_id, **kwargs)

    monkeypatch.setattr(engine, "execute_task", pause_second_then_execute)

    report = await engine.execute_all_due_tasks()

    assert report == {"executed": 1, "successful": 1, "failed": 0}
    assert await engine.get_execution_history(second["id"]) == []
