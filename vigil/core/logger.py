import asyncio
import logging
from typing import TYPE_CHECKING, Set

from rich.logging import RichHandler

if TYPE_CHECKING:
    from ..database.base import DatabaseBackend
    from ..schemas.task import Task

logger = logging.getLogger("vigil")


def setup_logging(level: str = "INFO") -> None:
    """Configure rich console logging for the ``vigil`` logger tree."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_time=True, show_path=False)],
    )
    logging.getLogger("vigil").setLevel(level)
    # APScheduler is chatty at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


class TaskLogger:
    """Per-task logger that mirrors messages into the ``logs`` table.

    Console output goes through the standard ``vigil.task`` logger; the
    store write is best effort and never fails the execution.
    """

    def __init__(self, task: "Task", db: "DatabaseBackend"):
        self._task = task
        self._db = db
        self._std_logger = logging.getLogger("vigil.task")
        self._pending: Set[asyncio.Task] = set()

    def info(self, msg: str):
        self._log("INFO", msg)

    def error(self, msg: str):
        self._log("ERROR", msg)

    def warning(self, msg: str):
        self._log("WARNING", msg)

    def debug(self, msg: str):
        self._log("DEBUG", msg)

    def _log(self, level: str, msg: str):
        self._std_logger.log(
            logging.getLevelName(level), f"[{self._task['id'][:8]}] {msg}"
        )
        write = asyncio.create_task(self._write_log_to_db(level, msg))
        self._pending.add(write)
        write.add_done_callback(self._pending.discard)

    async def flush(self) -> None:
        """Wait for outstanding store writes."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _write_log_to_db(self, level: str, msg: str):
        # Best effort: a failed log write must not fail the task.
        try:
            await self._db.create_log(
                task_id=self._task["id"],
                level=level,
                message=msg,
            )
        except Exception as e:
            self._std_logger.debug(f"Could not persist log line: {e}")
