from typing import Any, Dict, List, Literal, NotRequired, TypedDict

# Task status values matching the tasks table CHECK constraint
TaskStatus = Literal[
    "active",
    "paused",
    "completed",
    "failed",
    "scheduled",
    "running",
    "retrying",
]

TaskType = Literal[
    "security-scan",
    "wallet-monitor",
    "price-alert",
    "auto-trade",
    "threat-hunter",
    "portfolio-tracker",
    "smart-contract-audit",
    "defi-monitor",
    "nft-tracker",
    "governance-monitor",
]

TASK_TYPES: tuple[str, ...] = (
    "security-scan",
    "wallet-monitor",
    "price-alert",
    "auto-trade",
    "threat-hunter",
    "portfolio-tracker",
    "smart-contract-audit",
    "defi-monitor",
    "nft-tracker",
    "governance-monitor",
)

TaskPriority = Literal["low", "normal", "high", "critical"]

DependencyCondition = Literal["success", "failure", "completion", "custom"]

ErrorCategory = Literal[
    "network_error",
    "timeout",
    "rate_limit",
    "temporary_failure",
    "unclassified",
]


class TaskDependency(TypedDict):
    """A prerequisite that must be satisfied before the owning task runs.

    Attributes:
        task_id: The prerequisite task
        condition: Required outcome of the prerequisite's latest execution
        custom_condition: Name of a registered predicate (``custom`` only)
        delay: Milliseconds to wait once the dependency is satisfied
    """

    task_id: str
    condition: DependencyCondition
    custom_condition: NotRequired[str | None]
    delay: NotRequired[int | None]


class TaskRetryConfig(TypedDict):
    """Backoff policy for classified runner failures (delays in ms)."""

    max_retries: int
    initial_delay: int
    max_delay: int
    backoff_multiplier: float
    retry_conditions: List[ErrorCategory]


class TaskResultSummary(TypedDict, total=False):
    success: bool
    message: str
    data: Dict[str, Any] | None
    error: str | None


class Task(TypedDict):
    """
    Task schema matching the tasks table structure.

    A task is a persistent automation unit. It is mutated after every
    execution (counters, timestamps, last result) and may be scheduled by
    frequency phrase, cron expression, dependency or manual trigger.
    """

    id: str
    user_id: str
    name: str
    description: str
    status: TaskStatus
    type: TaskType
    frequency: str
    cron_expression: str | None
    priority: TaskPriority
    dependencies: List[TaskDependency]
    retry_config: TaskRetryConfig | None
    template_id: str | None
    execution_count: int
    success_count: int
    failure_count: int
    retry_count: int
    success_rate: float
    last_run: str | None
    next_run: str | None
    last_result: TaskResultSummary | None
    config: Dict[str, Any]
    created_at: str
    updated_at: str


class TaskInput(TypedDict, total=False):
    """
    Input schema for creating new tasks.

    Excludes generated fields like ids, counters and timestamps.
    """

    user_id: str
    name: str
    description: str
    type: TaskType
    status: TaskStatus
    frequency: str
    cron_expression: str | None
    priority: TaskPriority
    dependencies: List[TaskDependency]
    retry_config: TaskRetryConfig | None
    template_id: str | None
    config: Dict[str, Any]
