from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List

from ..schemas.analytics import TaskAnalytics
from ..schemas.execution import TaskBatch, TaskCacheEntry, TaskExecution
from ..schemas.task import Task, TaskInput
from ..schemas.template import TaskTemplate, TemplateInput


class DatabaseBackend(ABC):
    """Abstract base class for task stores.

    This class defines the interface that all store backends must implement
    to support the Vigil orchestration engine: typed collections for tasks,
    executions, cache entries, batches, analytics and templates, each with
    insert, find-by-filter, update-by-id, upsert-by-key and
    delete-by-filter operations.

    Backends must make counter upserts and cache replacement atomic under
    concurrent writers.
    """

    @abstractmethod
    async def _init_db(self) -> None:
        """Initialize the database by creating directories and running migrations."""
        pass

    @abstractmethod
    async def query(self, sql: str, params: tuple = ()) -> Iterable[Any]:
        """Execute a SELECT query and return all results."""
        pass

    @abstractmethod
    async def fetchone(self, sql: str, params: tuple = ()) -> Any | None:
        """Execute a SELECT query and return the first result."""
        pass

    @abstractmethod
    async def execute(self, sql: str, params: tuple = ()) -> int:
        """Execute a SQL statement (INSERT, UPDATE, DELETE)."""
        pass

    # === Task Methods ===

    @abstractmethod
    async def create_task(self, task: TaskInput) -> Task:
        """Insert a new task and return the stored record."""
        pass

    @abstractmethod
    async def find_task(self, task_id: str) -> Task | None:
        """Retrieve a task or None."""
        pass

    @abstractmethod
    async def get_task(self, task_id: str) -> Task:
        """Retrieve a task, raising TaskNotFoundError when missing."""
        pass

    @abstractmethod
    async def list_tasks(
        self, user_id: str | None = None, status: str | None = None, limit: int = 100
    ) -> List[Task]:
        """List tasks filtered by owner and status."""
        pass

    @abstractmethod
    async def update_task(self, task_id: str, **fields: Any) -> None:
        """Update selected task columns."""
        pass

    @abstractmethod
    async def claim_task(self, task_id: str, expected_status: str) -> bool:
        """Switch a task to ``running`` only if it is still ``expected_status``."""
        pass

    @abstractmethod
    async def release_task(
        self, task_id: str, status: str, execution_id: str, error: str
    ) -> None:
        """Undo a claim after an interrupted run and close its open execution."""
        pass

    @abstractmethod
    async def record_task_outcome(
        self,
        task_id: str,
        success: bool,
        **fields: Any,
    ) -> Task:
        """Atomically bump execution counters and apply extra fields."""
        pass

    @abstractmethod
    async def delete_task(self, task_id: str) -> bool:
        """Delete a task and its executions."""
        pass

    @abstractmethod
    async def get_due_tasks(self, now: str, stale_before: str) -> List[Task]:
        """Retrieve active tasks that are due at ``now``."""
        pass

    @abstractmethod
    async def count_due_tasks(self, now: str, stale_before: str) -> int:
        """Count tasks that ``get_due_tasks`` would return."""
        pass

    @abstractmethod
    async def list_upcoming_tasks(self, limit: int = 10) -> List[Task]:
        """Retrieve active tasks ordered by their next run."""
        pass

    @abstractmethod
    async def find_dependent_tasks(self, task_id: str) -> List[Task]:
        """Retrieve active/scheduled tasks that depend on ``task_id``."""
        pass

    @abstractmethod
    async def list_cron_tasks(self) -> List[Task]:
        """Retrieve active tasks carrying a cron expression."""
        pass

    @abstractmethod
    async def recover_interrupted_tasks(self) -> int:
        """Reset tasks left running/retrying by a previous process."""
        pass

    # === Execution Methods ===

    @abstractmethod
    async def insert_execution(self, execution: TaskExecution) -> None:
        """Insert an execution record."""
        pass

    @abstractmethod
    async def finalize_execution(self, execution: TaskExecution) -> None:
        """Write the outcome of an execution."""
        pass

    @abstractmethod
    async def get_latest_execution(self, task_id: str) -> TaskExecution | None:
        """Retrieve the most recent finished execution of a task."""
        pass

    @abstractmethod
    async def get_execution(self, execution_id: str) -> TaskExecution | None:
        """Retrieve one execution or None."""
        pass

    @abstractmethod
    async def list_executions(self, task_id: str, limit: int = 10) -> List[TaskExecution]:
        """Retrieve execution history, newest first."""
        pass

    @abstractmethod
    async def list_batch_executions(self, batch_id: str) -> List[TaskExecution]:
        """Retrieve the executions that ran as part of a batch."""
        pass

    @abstractmethod
    async def delete_executions_before(self, before: str) -> int:
        """Delete executions that started before ``before``."""
        pass

    # === Cache Methods ===

    @abstractmethod
    async def touch_cache_entry(self, cache_key: str, now: str) -> TaskCacheEntry | None:
        """Return a live cache entry and record the hit."""
        pass

    @abstractmethod
    async def upsert_cache_entry(self, entry: TaskCacheEntry) -> None:
        """Insert or replace the entry for ``entry['cache_key']``."""
        pass

    @abstractmethod
    async def delete_expired_cache(self, now: str) -> int:
        """Delete expired cache entries."""
        pass

    @abstractmethod
    async def clear_cache(self) -> int:
        """Delete every cache entry."""
        pass

    @abstractmethod
    async def count_cache_entries(self, now: str) -> int:
        """Count cache entries that have not expired."""
        pass

    # === Batch Methods ===

    @abstractmethod
    async def create_batch(self, batch: TaskBatch) -> None:
        """Insert a batch record."""
        pass

    @abstractmethod
    async def update_batch(self, batch_id: str, **fields: Any) -> None:
        """Update selected batch columns."""
        pass

    @abstractmethod
    async def get_batch(self, batch_id: str) -> TaskBatch:
        """Retrieve a batch, raising BatchNotFoundError when missing."""
        pass

    # === Analytics Methods ===

    @abstractmethod
    async def upsert_analytics(
        self,
        user_id: str,
        task_id: str,
        date: str,
        *,
        success: bool,
        duration: int,
        is_cached: bool,
        retried: bool,
        error: str | None,
    ) -> None:
        """Increment the daily bucket for (user, task, date)."""
        pass

    @abstractmethod
    async def query_analytics(
        self,
        user_id: str,
        task_id: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> List[TaskAnalytics]:
        """Retrieve daily buckets in date order."""
        pass

    @abstractmethod
    async def delete_analytics_before(self, date: str) -> int:
        """Delete analytics buckets older than ``date``."""
        pass

    # === Template Methods ===

    @abstractmethod
    async def create_template(self, template: TemplateInput) -> TaskTemplate:
        """Insert a template."""
        pass

    @abstractmethod
    async def get_template(self, template_id: str) -> TaskTemplate:
        """Retrieve a template, raising TemplateNotFoundError when missing."""
        pass

    @abstractmethod
    async def list_templates(self, **filters: Any) -> List[TaskTemplate]:
        """List templates matching the given column filters."""
        pass

    # === Log Methods ===

    @abstractmethod
    async def create_log(self, task_id: str, level: str, message: str) -> None:
        """Create a log entry for a task."""
        pass

    @abstractmethod
    async def get_task_logs(self, task_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Retrieve recent log entries for a task, newest first."""
        pass

    @abstractmethod
    async def delete_logs_before(self, before: str) -> int:
        """Delete log entries older than ``before``."""
        pass

    @abstractmethod
    async def count_tasks_by_status(self, user_id: str | None = None) -> Dict[str, int]:
        """Count tasks grouped by status."""
        pass

    # === Context Manager Methods ===

    async def initialize(self) -> None:
        """Prepare the store for long-lived use outside ``async with``."""
        await self._init_db()

    async def __aenter__(self) -> "DatabaseBackend":
        """Async context manager entry point."""
        await self._init_db()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        """Async context manager exit point."""
        pass

    # === Utility Methods ===

    @abstractmethod
    def _create_id(self) -> str:
        """Generate a unique identifier."""
        pass
