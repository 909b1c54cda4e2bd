"""API Schema Definitions

Pydantic models describing the requests and responses of the Vigil HTTP API.
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

# === Enums ===


class TaskStatus(str, Enum):
    """Task lifecycle status"""

    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    RETRYING = "retrying"


class TaskPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class LogLevel(str, Enum):
    """Log severity levels"""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


# === Shared Models ===


class ErrorResponse(BaseModel):
    """Standard error response"""

    detail: str = Field(..., description="Error message")


class Dependency(BaseModel):
    task_id: str
    condition: Literal["success", "failure", "completion", "custom"]
    custom_condition: Optional[str] = None
    delay: Optional[int] = Field(None, ge=0, description="Milliseconds to wait once satisfied")


class RetryConfig(BaseModel):
    max_retries: int = Field(3, ge=0)
    initial_delay: int = Field(1000, ge=0, description="Milliseconds")
    max_delay: int = Field(30000, ge=0, description="Milliseconds")
    backoff_multiplier: float = Field(2.0, ge=1)
    retry_conditions: List[
        Literal["network_error", "timeout", "rate_limit", "temporary_failure"]
    ] = Field(default_factory=lambda: ["network_error", "timeout", "rate_limit", "temporary_failure"])


# === Requests ===


class TaskCreate(BaseModel):
    """Request body for creating a task"""

    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str = ""
    type: str = Field(..., description="Task type, e.g. price-alert")
    frequency: str = ""
    cron_expression: Optional[str] = None
    priority: TaskPriority = TaskPriority.NORMAL
    dependencies: List[Dependency] = Field(default_factory=list)
    retry_config: Optional[RetryConfig] = None
    config: Dict[str, Any] = Field(default_factory=dict)


class TemplateTaskCreate(BaseModel):
    """Request body for instantiating a template"""

    user_id: str = Field(..., min_length=1)
    name: Optional[str] = None
    description: Optional[str] = None
    frequency: Optional[str] = None
    cron_expression: Optional[str] = None
    priority: Optional[TaskPriority] = None
    dependencies: Optional[List[Dependency]] = None
    retry_config: Optional[RetryConfig] = None
    config: Dict[str, Any] = Field(default_factory=dict)


class BatchRequest(BaseModel):
    task_ids: List[str] = Field(..., min_length=1)
    max_parallel: Optional[int] = Field(None, ge=1)


# === Responses ===


class TaskResponse(BaseModel):
    """A stored task"""

    id: str
    user_id: str
    name: str
    description: str
    status: TaskStatus
    type: str
    frequency: str
    cron_expression: Optional[str]
    priority: TaskPriority
    dependencies: List[Dict[str, Any]]
    retry_config: Optional[Dict[str, Any]]
    template_id: Optional[str]
    execution_count: int
    success_count: int
    failure_count: int
    retry_count: int
    success_rate: float
    last_run: Optional[str]
    next_run: Optional[str]
    last_result: Optional[Dict[str, Any]]
    config: Dict[str, Any]
    created_at: str
    updated_at: str


class ExecutionResponse(BaseModel):
    """One execution attempt"""

    id: str
    task_id: str
    user_id: str
    start_time: str
    end_time: Optional[str]
    success: bool
    result: Optional[Dict[str, Any]]
    error: Optional[str]
    duration: Optional[int] = Field(None, description="Milliseconds")
    retry_count: int
    is_cached: bool
    execution_context: Dict[str, Any]


class LogEntry(BaseModel):
    """Task log entry"""

    level: LogLevel = Field(..., description="Log severity level")
    message: str = Field(..., description="Log message content")
    created_at: str = Field(..., description="When the entry was written")


class ExecuteResponse(BaseModel):
    """Outcome of a manual trigger; ``execution`` is null when blocked"""

    blocked: bool
    execution: Optional[ExecutionResponse] = None


class TemplateInstantiationResponse(BaseModel):
    task: Optional[TaskResponse]
    missing_required_fields: List[str]
    recommendations: List[str]


class BatchResponse(BaseModel):
    id: str
    task_ids: List[str]
    status: Literal["pending", "running", "completed", "failed", "partial"]
    total_tasks: int
    successful_tasks: int
    failed_tasks: int
    parallel_executions: int
    start_time: str
    end_time: Optional[str]


class DueTasksResponse(BaseModel):
    executed: int
    successful: int
    failed: int


class HealthResponse(BaseModel):
    """Engine load and process resource usage"""

    status: str
    active_cron_jobs: int
    running_tasks: int
    background_jobs: int
    cache_size: int
    pending_tasks: int
    memory: Dict[str, int]
    uptime: float = Field(..., description="Seconds since the engine started")
    timestamp: str
