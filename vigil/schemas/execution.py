from typing import Any, Dict, List, Literal, NotRequired, TypedDict

TriggeredBy = Literal["cron", "manual", "dependency", "api", "retry"]

BatchStatus = Literal["pending", "running", "completed", "failed", "partial"]


class ExecutionContext(TypedDict):
    """Why an execution happened.

    Attributes:
        triggered_by: The trigger source
        parent_execution_id: Execution that fired this one (dependency runs)
        batch_id: Batch the execution belongs to
    """

    triggered_by: TriggeredBy
    parent_execution_id: NotRequired[str | None]
    batch_id: NotRequired[str | None]


class TaskExecution(TypedDict):
    """
    One attempt of a task, matching the task_executions table.

    Executions are append-only: inserted when the attempt starts and
    finalized once with its outcome.
    """

    id: str
    task_id: str
    user_id: str
    start_time: str
    end_time: str | None
    success: bool
    result: Dict[str, Any] | None
    error: str | None
    duration: int | None
    retry_count: int
    is_cached: bool
    execution_context: ExecutionContext


class TaskCacheEntry(TypedDict):
    """A cached runner result keyed by the canonical task signature."""

    cache_key: str
    task_id: str
    result: Dict[str, Any]
    created_at: str
    expires_at: str
    hit_count: int
    last_accessed: str


class TaskBatch(TypedDict):
    """Aggregate outcome of a bounded-parallel group of executions."""

    id: str
    task_ids: List[str]
    status: BatchStatus
    total_tasks: int
    successful_tasks: int
    failed_tasks: int
    parallel_executions: int
    start_time: str
    end_time: str | None


class DueTasksReport(TypedDict):
    executed: int
    successful: int
    failed: int
