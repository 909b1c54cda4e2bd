"""Vigil - Task orchestration engine for security and market monitors.

Example:
    >>> import vigil
    >>>
    >>> async def main():
    ...     async with vigil.Orchestrator() as engine:
    ...         task = await engine.create_task({
    ...             "user_id": "alice",
    ...             "name": "SOL price",
    ...             "type": "price-alert",
    ...             "frequency": "every 5 minutes",
    ...             "config": {"token_mint": "So111...", "price_threshold": {"above": 250}},
    ...         })
    ...         execution = await engine.execute_task(task["id"])
"""

from vigil.common.errors import (
    BatchNotFoundError,
    InvalidCronExpressionError,
    InvalidTaskConfigError,
    InvalidTaskStateError,
    TaskNotFoundError,
    TaskRunnerError,
    TemplateNotFoundError,
    UnknownTaskTypeError,
)
from vigil.common.config import Settings, load_settings
from vigil.core.dispatcher import RunnerRegistry, TaskRunner, runner
from vigil.core.engine import Orchestrator
from vigil.core.notifications import LoggingNotificationSink, NotificationSink
from vigil.core.worker import TaskWorker, start_worker
from vigil.database.db import Database

__version__ = "0.1.0"

__all__ = [
    # Decorators
    "runner",
    # Core classes
    "Orchestrator",
    "TaskRunner",
    "RunnerRegistry",
    "Database",
    "TaskWorker",
    "NotificationSink",
    "LoggingNotificationSink",
    "Settings",
    # Functions
    "start_worker",
    "load_settings",
    # Version
    "__version__",
    # Exceptions
    "TaskNotFoundError",
    "InvalidTaskStateError",
    "TaskRunnerError",
    "UnknownTaskTypeError",
    "InvalidTaskConfigError",
    "InvalidCronExpressionError",
    "TemplateNotFoundError",
    "BatchNotFoundError",
]
