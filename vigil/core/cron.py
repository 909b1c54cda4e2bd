import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, List

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from ..common.errors import InvalidCronExpressionError
from ..schemas.task import Task

logger = logging.getLogger(__name__)

CronCallback = Callable[[str], Awaitable[Any]]


def parse_cron(expression: str, timezone: str = "UTC") -> CronTrigger:
    """Parse a five-field crontab expression.

    Raises:
        InvalidCronExpressionError: If the expression is malformed
    """
    try:
        return CronTrigger.from_crontab(expression, timezone=timezone)
    except ValueError as e:
        raise InvalidCronExpressionError(
            f"Invalid cron expression '{expression}': {e}"
        ) from e


class CronScheduler:
    """Timer registry for tasks carrying a native cron expression.

    One APScheduler job per task id. Registering a task again replaces its
    previous job, and only ``active`` tasks are registered.

    Args:
        callback: Coroutine function called with the task id on every fire
        timezone: Timezone cron fields are interpreted in
    """

    def __init__(self, callback: CronCallback, timezone: str = "UTC"):
        self._callback = callback
        self._timezone = timezone
        self._scheduler = AsyncIOScheduler(timezone=timezone)

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        else:
            self._scheduler.remove_all_jobs()

    def schedule(self, task: Task) -> bool:
        """Register (or re-register) ``task``'s cron job.

        Returns:
            True if a job is now registered. Tasks that are not active,
            have no cron expression or have an invalid one are left
            unregistered; an invalid expression is logged.
        """
        expression = task["cron_expression"]
        if not expression or task["status"] != "active":
            self.unschedule(task["id"])
            return False

        try:
            trigger = parse_cron(expression, self._timezone)
        except InvalidCronExpressionError as e:
            logger.warning(f"Not scheduling task {task['id']}: {e}")
            self.unschedule(task["id"])
            return False

        self._scheduler.add_job(
            self._callback,
            trigger=trigger,
            args=[task["id"]],
            id=task["id"],
            name=task["name"],
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=60,
        )
        logger.debug(f"Scheduled cron job for task {task['id']} ({expression})")
        return True

    def unschedule(self, task_id: str) -> bool:
        try:
            self._scheduler.remove_job(task_id)
        except JobLookupError:
            return False
        logger.debug(f"Removed cron job for task {task_id}")
        return True

    def active_jobs(self) -> List[str]:
        return [job.id for job in self._scheduler.get_jobs()]

    def next_fire_time(self, task_id: str) -> datetime | None:
        job = self._scheduler.get_job(task_id)
        if job is None:
            return None
        # Pending jobs (scheduler not started) have no computed fire time yet.
        next_run = getattr(job, "next_run_time", None)
        if next_run is None:
            next_run = job.trigger.get_next_fire_time(None, datetime.now(job.trigger.timezone))
        return next_run
