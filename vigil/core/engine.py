import asyncio
import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Coroutine, Dict, List, Mapping, Set
from uuid import uuid4

import psutil

from ..common.config import Settings, load_settings
from ..common.errors import (
    InvalidTaskConfigError,
    InvalidTaskStateError,
    TaskNotFoundError,
)
from ..database.base import DatabaseBackend
from ..database.db import Database
from ..lib.utils import from_iso, to_iso, utcnow
from ..schemas.analytics import AnalyticsFilters, AnalyticsReport
from ..schemas.config import validate_task_config
from ..schemas.execution import (
    DueTasksReport,
    ExecutionContext,
    TaskBatch,
    TaskExecution,
    TriggeredBy,
)
from ..schemas.task import TASK_TYPES, Task, TaskInput
from ..schemas.template import TaskTemplate, TemplateInstantiation
from .analytics import AnalyticsAggregator
from .batch import BatchCoordinator
from .cache import ResultCache
from .cron import CronScheduler, parse_cron
from .dependencies import DependencyGate
from .dispatcher import Dispatcher, RunnerRegistry
from .logger import TaskLogger
from .notifications import ALERT_EVENT, LoggingNotificationSink, NotificationSink
from .retry import RETRYABLE_CATEGORIES, decide_retry, resolve_retry_config
from .scheduler import REALTIME_STALENESS, calculate_next_run, is_due, is_recurring
from .templates import build_task_input, seed_default_templates, template_config_schema

logger = logging.getLogger(__name__)

DEPENDENCY_CONDITIONS = frozenset({"success", "failure", "completion", "custom"})

# Statuses a task may be in when an execution starts, per trigger.
RUNNABLE_STATUSES: Dict[str, frozenset] = {
    "retry": frozenset({"active", "retrying"}),
    "dependency": frozenset({"active", "scheduled"}),
}
DEFAULT_RUNNABLE = frozenset({"active"})


def _duration_ms(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() * 1000)


class Orchestrator:
    """Task orchestration engine.

    Composes the store, dependency gate, result cache, dispatcher, retry
    policy, cron scheduler, batch coordinator and analytics aggregator
    behind one object with an explicit lifecycle::

        async with Orchestrator(db=Database("vigil.sqlite3")) as engine:
            task = await engine.create_task({...})
            execution = await engine.execute_task(task["id"])

    All in-process state (in-flight executions, cache map, cron jobs,
    background jobs) lives on the instance and is drained on
    :meth:`shutdown`.

    Args:
        db: Store backend. Defaults to SQLite at ``settings.database``.
        settings: Engine settings. Defaults to :func:`load_settings`.
        registry: Runner registry. Defaults to the built-in simulated runners.
        notifier: Alert sink. Defaults to :class:`LoggingNotificationSink`.
    """

    def __init__(
        self,
        db: DatabaseBackend | None = None,
        settings: Settings | None = None,
        registry: RunnerRegistry | None = None,
        notifier: NotificationSink | None = None,
    ):
        self.settings = settings or load_settings()
        self.db = db or Database(self.settings.database)
        self.registry = registry or RunnerRegistry.from_defaults()
        self.dispatcher = Dispatcher(self.registry)
        self.cache = ResultCache(self.db, self.settings.cache_ttls)
        self.gate = DependencyGate(self.db)
        self.analytics = AnalyticsAggregator(self.db)
        self.notifier: NotificationSink = notifier or LoggingNotificationSink()
        self.cron = CronScheduler(self._on_cron_fire)
        self.batches = BatchCoordinator(
            self.db, self._execute_for_batch, self.settings.batch_chunk_delay
        )

        self._running: Dict[str, asyncio.Task] = {}
        self._background: Set[asyncio.Task] = set()
        self._retry_timers: Set[asyncio.Task] = set()
        self._started_at: datetime | None = None

    # === Lifecycle ===

    async def start(self) -> None:
        """Prepare the store, recover interrupted tasks and register cron jobs."""
        await self.db.initialize()

        recovered = await self.db.recover_interrupted_tasks()
        if recovered:
            logger.warning(f"Recovered {recovered} task(s) interrupted mid-execution")

        self.cron.start()
        scheduled = 0
        for task in await self.db.list_cron_tasks():
            if self.cron.schedule(task):
                scheduled += 1

        self._started_at = utcnow()
        logger.info(f"Orchestrator started ({scheduled} cron job(s) registered)")

    async def shutdown(self, timeout: float = 30.0) -> None:
        """Stop timers, wait for in-flight work and clear in-process state.

        Pending backoff timers are cancelled; the affected tasks stay in
        ``retrying`` and are recovered on the next :meth:`start`.
        """
        self.cron.shutdown()

        for timer in list(self._retry_timers):
            timer.cancel()

        pending = [*self._running.values(), *self._background, *self._retry_timers]
        if pending:
            done, not_done = await asyncio.wait(pending, timeout=timeout)
            for task in not_done:
                task.cancel()
            if not_done:
                logger.warning(
                    f"Shutdown timeout reached ({timeout}s), cancelled {len(not_done)} job(s)"
                )

        self.cache.clear()
        self._started_at = None
        logger.info("Orchestrator shut down")

    async def __aenter__(self) -> "Orchestrator":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    # === Execution ===

    async def execute_task(
        self,
        task_id: str,
        triggered_by: TriggeredBy = "manual",
        parent_execution_id: str | None = None,
        batch_id: str | None = None,
    ) -> TaskExecution | None:
        """Run a task once.

        Concurrent calls for the same task id share one in-flight execution.

        Args:
            task_id: Task to run
            triggered_by: Trigger source recorded on the execution
            parent_execution_id: Execution that caused this one
            batch_id: Batch the execution belongs to

        Returns:
            The finalized execution, or None if a dependency blocked the run

        Raises:
            TaskNotFoundError: If the task doesn't exist
            InvalidTaskStateError: If the task is not runnable for this trigger
        """
        in_flight = self._running.get(task_id)
        if in_flight is not None:
            logger.debug(f"Task {task_id} already running, awaiting in-flight execution")
            return await asyncio.shield(in_flight)

        context = ExecutionContext(
            triggered_by=triggered_by,
            parent_execution_id=parent_execution_id,
            batch_id=batch_id,
        )
        run = asyncio.create_task(self._execute(task_id, context), name=f"execute-{task_id}")
        self._running[task_id] = run
        run.add_done_callback(lambda t: self._release(task_id, t))
        return await asyncio.shield(run)

    def _release(self, task_id: str, run: asyncio.Task) -> None:
        if self._running.get(task_id) is run:
            del self._running[task_id]
        # Mark the outcome as retrieved; callers may have been cancelled.
        if not run.cancelled():
            run.exception()

    async def _execute(self, task_id: str, context: ExecutionContext) -> TaskExecution | None:
        task = await self.db.get_task(task_id)

        runnable = RUNNABLE_STATUSES.get(context["triggered_by"], DEFAULT_RUNNABLE)
        if task["status"] not in runnable:
            raise InvalidTaskStateError(task_id, task["status"])

        gate = await self.gate.check(task)
        if not gate.satisfied:
            logger.info(f"Task {task_id} blocked: {gate.reason}")
            if task["status"] == "retrying":
                await self.db.update_task(task_id, status="active")
            return None
        if gate.delay:
            await asyncio.sleep(gate.delay / 1000)
            task = await self.db.get_task(task_id)
            if task["status"] not in runnable:
                raise InvalidTaskStateError(task_id, task["status"])

        if not await self.db.claim_task(task_id, task["status"]):
            current = await self.db.get_task(task_id)
            raise InvalidTaskStateError(task_id, current["status"])

        task_logger = TaskLogger(task, self.db)
        started = utcnow()
        execution = TaskExecution(
            id=uuid4().hex,
            task_id=task_id,
            user_id=task["user_id"],
            start_time=to_iso(started),
            end_time=None,
            success=False,
            result=None,
            error=None,
            duration=None,
            retry_count=task["retry_count"],
            is_cached=False,
            execution_context=context,
        )
        try:
            await self.db.insert_execution(execution)
            task_logger.info(f"Running {task['type']} ({context['triggered_by']})")

            try:
                cached = await self.cache.get(task)
                if cached is not None:
                    result, is_cached = cached, True
                else:
                    result, is_cached = await self.dispatcher.dispatch(task), False
            except Exception as e:
                outcome = await self._record_failure(task, execution, e, started, task_logger)
            else:
                outcome = await self._record_success(
                    task, execution, result, is_cached, started, task_logger
                )
        except BaseException as e:
            await self._release_claim(task, execution["id"], e)
            raise

        await task_logger.flush()
        return outcome

    async def _release_claim(self, task: Task, execution_id: str, error: BaseException) -> None:
        # No retry timer is pending for an interrupted attempt.
        status = "active" if task["status"] == "retrying" else task["status"]
        message = f"Execution interrupted: {str(error) or type(error).__name__}"
        try:
            await self.db.release_task(task["id"], status, execution_id, message)
        except Exception as release_error:
            logger.error(f"Failed to release task {task['id']}: {release_error!r}")
        else:
            logger.warning(f"Task {task['id']} returned to {status}: {message}")

    async def _record_success(
        self,
        task: Task,
        execution: TaskExecution,
        result: Dict[str, Any],
        is_cached: bool,
        started: datetime,
        task_logger: TaskLogger,
    ) -> TaskExecution:
        now = utcnow()
        execution.update(
            end_time=to_iso(now),
            success=True,
            result=result,
            duration=_duration_ms(started, now),
            is_cached=is_cached,
        )
        await self.db.finalize_execution(execution)

        restored = "active" if task["status"] == "retrying" else task["status"]
        updated = await self.db.record_task_outcome(
            task["id"],
            True,
            status=restored,
            retry_count=0,
            last_run=to_iso(now),
            next_run=to_iso(calculate_next_run(task["frequency"], now)),
            last_result={
                "success": True,
                "message": "Served from cache" if is_cached else "Task executed successfully",
                "data": result,
                "error": None,
            },
        )

        if not is_cached:
            await self.cache.set(task, result)
        await self.analytics.record(
            execution, retried=execution["execution_context"]["triggered_by"] == "retry"
        )

        task_logger.info(
            f"Succeeded in {execution['duration']}ms"
            + (" (cached)" if is_cached else "")
            + (" with alert" if result.get("alert") else "")
        )

        self._spawn(self._trigger_dependents(task, execution), f"dependents-{task['id']}")
        if result.get("alert"):
            self._spawn(self._notify(updated, result), f"notify-{task['id']}")
        return execution

    async def _record_failure(
        self,
        task: Task,
        execution: TaskExecution,
        error: Exception,
        started: datetime,
        task_logger: TaskLogger,
    ) -> TaskExecution:
        now = utcnow()
        message = str(error) or type(error).__name__
        execution.update(
            end_time=to_iso(now),
            success=False,
            error=message,
            duration=_duration_ms(started, now),
        )
        await self.db.finalize_execution(execution)

        retry_config = resolve_retry_config(task["retry_config"], self.settings.default_retry)
        decision = decide_retry(error, retry_config, task["retry_count"])
        last_result = {"success": False, "data": None, "error": message}

        if decision.retry:
            await self.db.record_task_outcome(
                task["id"],
                False,
                status="retrying",
                retry_count=task["retry_count"] + 1,
                last_run=to_iso(now),
                last_result={**last_result, "message": f"Retry scheduled: {decision.reason}"},
            )
            task_logger.warning(f"Failed ({decision.category}): {message}; {decision.reason}")
            self._schedule_retry(task["id"], decision.delay, execution["id"])
        else:
            restored = "active" if task["status"] == "retrying" else task["status"]
            await self.db.record_task_outcome(
                task["id"],
                False,
                status=restored if is_recurring(task) else "failed",
                retry_count=0,
                last_run=to_iso(now),
                next_run=to_iso(calculate_next_run(task["frequency"], now)),
                last_result={**last_result, "message": "Task execution failed"},
            )
            task_logger.error(f"Failed ({decision.category}): {message}; {decision.reason}")

        await self.analytics.record(
            execution, retried=execution["execution_context"]["triggered_by"] == "retry"
        )

        # Dependents only see settled outcomes, not attempts that will be retried.
        if not decision.retry:
            self._spawn(self._trigger_dependents(task, execution), f"dependents-{task['id']}")
        return execution

    def _schedule_retry(self, task_id: str, delay: int, parent_execution_id: str) -> None:
        async def retry_later() -> None:
            await asyncio.sleep(delay / 1000)
            await self.execute_task(
                task_id, triggered_by="retry", parent_execution_id=parent_execution_id
            )

        timer = asyncio.create_task(retry_later(), name=f"retry-{task_id}")
        self._retry_timers.add(timer)
        timer.add_done_callback(self._on_background_done)

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        job = asyncio.create_task(coro, name=name)
        self._background.add(job)
        job.add_done_callback(self._on_background_done)
        return job

    def _on_background_done(self, job: asyncio.Task) -> None:
        self._background.discard(job)
        self._retry_timers.discard(job)
        if job.cancelled():
            return
        error = job.exception()
        if error is not None:
            logger.error(f"Background job {job.get_name()} failed: {error!r}")

    async def _trigger_dependents(self, task: Task, execution: TaskExecution) -> None:
        dependents = await self.db.find_dependent_tasks(task["id"])
        for dependent in dependents:
            relevant = [d for d in dependent["dependencies"] if d["task_id"] == task["id"]]
            if not all(self.gate.condition_satisfied_by(d, execution) for d in relevant):
                continue

            logger.info(f"Triggering dependent task {dependent['id']} of {task['id']}")
            self._spawn(
                self.execute_task(
                    dependent["id"],
                    triggered_by="dependency",
                    parent_execution_id=execution["id"],
                ),
                f"dependent-{dependent['id']}",
            )

    async def _notify(self, task: Task, result: Mapping[str, Any]) -> None:
        settings = (task["config"] or {}).get("notifications") or {}
        channels = settings.get("channels") or ["in-app"]
        alerts = list(result.get("alerts") or [])
        message = result.get("message") or "; ".join(alerts) or f"Task '{task['name']}' raised an alert"

        await self.notifier.send_notification(
            task["user_id"],
            ALERT_EVENT,
            {
                "task_id": task["id"],
                "task_name": task["name"],
                "task_type": task["type"],
                "alerts": alerts,
                "message": message,
            },
            {"priority": task["priority"], "channels": channels},
        )

    async def _on_cron_fire(self, task_id: str) -> None:
        try:
            await self.execute_task(task_id, triggered_by="cron")
        except TaskNotFoundError:
            logger.warning(f"Cron fired for deleted task {task_id}, removing job")
            self.cron.unschedule(task_id)
        except InvalidTaskStateError as e:
            logger.info(f"Skipping cron run: {e}")

    async def _execute_for_batch(self, task_id: str, batch_id: str) -> TaskExecution | None:
        return await self.execute_task(task_id, triggered_by="api", batch_id=batch_id)

    async def execute_all_due_tasks(self) -> DueTasksReport:
        """Run every due task once, in priority order.

        Blocked tasks are not counted; tasks that raise count as failed.
        """
        now = utcnow()
        due = await self.db.get_due_tasks(
            to_iso(now),
            to_iso(now - REALTIME_STALENESS),
        )

        report = DueTasksReport(executed=0, successful=0, failed=0)
        for task in due:
            # Earlier runs in this pass may have run or paused it already.
            current = await self.db.find_task(task["id"])
            if current is None or not is_due(current, now):
                continue

            try:
                execution = await self.execute_task(task["id"], triggered_by="cron")
            except (TaskNotFoundError, InvalidTaskStateError) as e:
                logger.warning(f"Failed to execute task {task['id']}: {e}")
                report["executed"] += 1
                report["failed"] += 1
                continue

            if execution is None:
                continue
            report["executed"] += 1
            if execution["success"]:
                report["successful"] += 1
            else:
                report["failed"] += 1

        if due:
            logger.info(
                f"Due tasks: {report['executed']} executed, "
                f"{report['successful']} succeeded, {report['failed']} failed"
            )
        return report

    async def execute_batch(
        self, task_ids: List[str], max_parallel: int | None = None
    ) -> TaskBatch:
        """Run ``task_ids`` in chunks of ``max_parallel`` concurrent executions."""
        return await self.batches.run(
            task_ids,
            max_parallel or self.settings.batch_max_parallel,
            batch_id=uuid4().hex,
        )

    # === Cron ===

    def schedule_cron_job(self, task: Task) -> bool:
        return self.cron.schedule(task)

    def unschedule_cron_job(self, task_id: str) -> bool:
        return self.cron.unschedule(task_id)

    # === Task Management ===

    async def create_task(self, task: TaskInput) -> Task:
        """Validate and store a new task, registering its cron job.

        Raises:
            InvalidTaskConfigError: Unknown type or config not matching it
            InvalidCronExpressionError: Malformed cron expression
            TaskNotFoundError: A dependency references an unknown task
            ValueError: Malformed dependency or retry config
        """
        task_type = task.get("type")
        if task_type not in TASK_TYPES:
            raise InvalidTaskConfigError(str(task_type), "unknown task type")

        prepared: TaskInput = dict(task)
        prepared["config"] = validate_task_config(task_type, task.get("config"))
        prepared["frequency"] = (task.get("frequency") or "").strip()

        if task.get("cron_expression"):
            parse_cron(task["cron_expression"])

        for dependency in task.get("dependencies") or []:
            if dependency.get("condition") not in DEPENDENCY_CONDITIONS:
                raise ValueError(
                    f"Invalid dependency condition: {dependency.get('condition')!r}"
                )
            await self.db.get_task(dependency["task_id"])

        if task.get("retry_config"):
            retry_config = resolve_retry_config(task["retry_config"], self.settings.default_retry)
            unknown = set(retry_config["retry_conditions"]) - set(RETRYABLE_CATEGORIES)
            if unknown:
                raise ValueError(f"Unknown retry conditions: {sorted(unknown)}")
            prepared["retry_config"] = retry_config

        created = await self.db.create_task(prepared)
        if created["cron_expression"]:
            self.cron.schedule(created)
        logger.info(f"Created {created['type']} task {created['id']} ({created['name']})")
        return created

    async def get_task(self, task_id: str) -> Task:
        return await self.db.get_task(task_id)

    async def list_tasks(
        self, user_id: str | None = None, status: str | None = None, limit: int = 100
    ) -> List[Task]:
        return await self.db.list_tasks(user_id=user_id, status=status, limit=limit)

    async def pause_task(self, task_id: str) -> Task:
        """Stop scheduling a task. An in-flight run finishes normally."""
        await self.db.get_task(task_id)
        await self.db.update_task(task_id, status="paused")
        self.cron.unschedule(task_id)
        return await self.db.get_task(task_id)

    async def resume_task(self, task_id: str) -> Task:
        """Return a paused or failed task to ``active``.

        Raises:
            InvalidTaskStateError: If the task is neither paused nor failed
        """
        task = await self.db.get_task(task_id)
        if task["status"] not in ("paused", "failed"):
            raise InvalidTaskStateError(task_id, task["status"])

        await self.db.update_task(task_id, status="active", retry_count=0)
        resumed = await self.db.get_task(task_id)
        if resumed["cron_expression"]:
            self.cron.schedule(resumed)
        return resumed

    async def delete_task(self, task_id: str) -> None:
        self.cron.unschedule(task_id)
        if not await self.db.delete_task(task_id):
            raise TaskNotFoundError(f"Task with ID {task_id} not found.")

    async def get_execution_history(self, task_id: str, limit: int = 10) -> List[TaskExecution]:
        return await self.db.list_executions(task_id, limit)

    async def get_task_logs(self, task_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Most recent log lines written while executing a task, newest first."""
        await self.db.get_task(task_id)
        return await self.db.get_task_logs(task_id, limit)

    # === Templates ===

    async def seed_templates(self) -> int:
        return await seed_default_templates(self.db)

    async def list_templates(self, **filters: Any) -> List[TaskTemplate]:
        return await self.db.list_templates(**filters)

    async def get_template_schema(self, template_id: str) -> Dict[str, List[Dict[str, Any]]]:
        return template_config_schema(await self.db.get_template(template_id))

    async def create_task_from_template(
        self,
        template_id: str,
        user_id: str,
        overrides: Mapping[str, Any] | None = None,
    ) -> TemplateInstantiation:
        """Instantiate a template.

        No task is created when required fields are missing; the result
        lists them instead.

        Raises:
            TemplateNotFoundError: If the template doesn't exist
        """
        template = await self.db.get_template(template_id)
        task_input, missing, recommendations = build_task_input(
            template, user_id, overrides or {}
        )
        task = await self.create_task(task_input) if task_input is not None else None
        return TemplateInstantiation(
            task=task,
            missing_required_fields=missing,
            recommendations=recommendations,
        )

    # === Reporting ===

    async def get_task_analytics(
        self, user_id: str, filters: AnalyticsFilters | None = None
    ) -> AnalyticsReport:
        return await self.analytics.summarize(user_id, filters)

    async def get_user_statistics(self, user_id: str) -> Dict[str, Any]:
        tasks = await self.db.list_tasks(user_id=user_id, limit=-1)
        executions = sum(t["execution_count"] for t in tasks)
        successes = sum(t["success_count"] for t in tasks)
        return {
            "total_tasks": len(tasks),
            "active_tasks": sum(1 for t in tasks if t["status"] == "active"),
            "total_executions": executions,
            "successful_executions": successes,
            "failed_executions": executions - successes,
            "average_success_rate": (
                round(sum(t["success_rate"] for t in tasks) / len(tasks), 2) if tasks else 100.0
            ),
            "tasks_by_type": dict(Counter(t["type"] for t in tasks)),
        }

    async def get_system_health(self) -> Dict[str, Any]:
        """Snapshot of engine load and process resources."""
        now = utcnow()
        memory = psutil.Process().memory_info()
        pending = await self.db.count_due_tasks(
            to_iso(now),
            to_iso(now - REALTIME_STALENESS),
        )
        return {
            "status": "healthy",
            "active_cron_jobs": len(self.cron.active_jobs()),
            "running_tasks": len(self._running),
            "background_jobs": len(self._background) + len(self._retry_timers),
            "cache_size": self.cache.size,
            "pending_tasks": pending,
            "memory": {"rss": memory.rss, "vms": memory.vms},
            "uptime": (now - self._started_at).total_seconds() if self._started_at else 0.0,
            "timestamp": to_iso(now),
        }

    async def get_scheduler_status(self, upcoming: int = 10) -> Dict[str, Any]:
        now = utcnow()
        return {
            "cron_running": self.cron.running,
            "cron_jobs": self.cron.active_jobs(),
            "running_tasks": sorted(self._running),
            "due_tasks": await self.db.count_due_tasks(
                to_iso(now),
                to_iso(now - REALTIME_STALENESS),
            ),
            "upcoming": [
                {"id": t["id"], "name": t["name"], "next_run": t["next_run"]}
                for t in await self.db.list_upcoming_tasks(upcoming)
            ],
        }

    async def cleanup(self, retention_days: int | None = None) -> Dict[str, int]:
        """Delete history older than the retention window and expired cache."""
        days = self.settings.retention_days if retention_days is None else retention_days
        cutoff = utcnow() - timedelta(days=days)
        cutoff_iso = to_iso(cutoff)

        removed = {
            "executions": await self.db.delete_executions_before(cutoff_iso),
            "cache_entries": await self.cache.purge_expired(),
            "analytics": await self.db.delete_analytics_before(cutoff.date().isoformat()),
            "logs": await self.db.delete_logs_before(cutoff_iso),
        }
        logger.info(f"Cleanup before {cutoff_iso}: {removed}")
        return removed

    def next_run_for(self, task: Task) -> datetime | None:
        """When a task will next be picked up, by cron or by polling."""
        if task["cron_expression"] and task["status"] == "active":
            return self.cron.next_fire_time(task["id"])
        return from_iso(task["next_run"])
