"""Task API Endpoints

Provides REST endpoints for creating, executing and inspecting tasks, and
for instantiating task templates.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from ...core.engine import Orchestrator
from ..schemas import (
    BatchRequest,
    BatchResponse,
    DueTasksResponse,
    ErrorResponse,
    ExecuteResponse,
    ExecutionResponse,
    LogEntry,
    TaskCreate,
    TaskResponse,
    TaskStatus,
    TemplateInstantiationResponse,
    TemplateTaskCreate,
)
from . import get_engine

router = APIRouter()
template_router = APIRouter()

NOT_FOUND = {404: {"model": ErrorResponse, "description": "Task not found"}}


@router.get(
    "/",
    response_model=List[TaskResponse],
    summary="List tasks",
    description="List tasks, newest first, optionally filtered by owner and status.",
)
async def list_tasks(
    user_id: Optional[str] = None,
    status: Optional[TaskStatus] = None,
    limit: int = Query(100, ge=1, le=1000),
    engine: Orchestrator = Depends(get_engine),
):
    return await engine.list_tasks(
        user_id=user_id, status=status.value if status else None, limit=limit
    )


@router.post(
    "/",
    response_model=TaskResponse,
    status_code=201,
    summary="Create task",
    description="""
    Create a task. The config is validated against the task type and a
    cron expression, when given, is registered immediately.
    """,
    responses={400: {"model": ErrorResponse, "description": "Invalid task"}},
)
async def create_task(body: TaskCreate, engine: Orchestrator = Depends(get_engine)):
    payload = body.model_dump(mode="json")
    payload["dependencies"] = [
        dependency.model_dump(mode="json", exclude_none=True) for dependency in body.dependencies
    ]
    return await engine.create_task(payload)  # type: ignore


@router.post(
    "/due",
    response_model=DueTasksResponse,
    summary="Execute due tasks",
    description="Run every task that is currently due, once, in priority order.",
)
async def execute_due_tasks(engine: Orchestrator = Depends(get_engine)):
    return await engine.execute_all_due_tasks()


@router.post(
    "/batch",
    response_model=BatchResponse,
    summary="Execute a batch",
    description="Run tasks in chunks of `max_parallel` concurrent executions.",
)
async def execute_batch(body: BatchRequest, engine: Orchestrator = Depends(get_engine)):
    return await engine.execute_batch(body.task_ids, body.max_parallel)


@router.get("/{task_id}", response_model=TaskResponse, responses=NOT_FOUND)
async def get_task(task_id: str, engine: Orchestrator = Depends(get_engine)):
    return await engine.get_task(task_id)


@router.delete("/{task_id}", status_code=204, responses=NOT_FOUND)
async def delete_task(task_id: str, engine: Orchestrator = Depends(get_engine)):
    await engine.delete_task(task_id)


@router.post(
    "/{task_id}/execute",
    response_model=ExecuteResponse,
    summary="Execute task",
    description="""
    Run a task now. Returns `blocked: true` without an execution when the
    task's dependencies are not satisfied.
    """,
    responses={
        **NOT_FOUND,
        409: {"model": ErrorResponse, "description": "Task is not active"},
    },
)
async def execute_task(task_id: str, engine: Orchestrator = Depends(get_engine)):
    execution = await engine.execute_task(task_id, triggered_by="api")
    return ExecuteResponse(
        blocked=execution is None,
        execution=ExecutionResponse(**execution) if execution else None,
    )


@router.get(
    "/{task_id}/executions",
    response_model=List[ExecutionResponse],
    summary="Execution history",
    responses=NOT_FOUND,
)
async def get_execution_history(
    task_id: str,
    limit: int = Query(10, ge=1, le=500),
    engine: Orchestrator = Depends(get_engine),
):
    await engine.get_task(task_id)
    return await engine.get_execution_history(task_id, limit)


@router.get(
    "/{task_id}/logs",
    response_model=List[LogEntry],
    summary="Task logs",
    description="Log lines written while executing the task, newest first.",
    responses=NOT_FOUND,
)
async def get_task_logs(
    task_id: str,
    limit: int = Query(50, ge=1, le=1000),
    engine: Orchestrator = Depends(get_engine),
):
    return await engine.get_task_logs(task_id, limit)


@router.post("/{task_id}/pause", response_model=TaskResponse, responses=NOT_FOUND)
async def pause_task(task_id: str, engine: Orchestrator = Depends(get_engine)):
    return await engine.pause_task(task_id)


@router.post(
    "/{task_id}/resume",
    response_model=TaskResponse,
    responses={
        **NOT_FOUND,
        409: {"model": ErrorResponse, "description": "Task is neither paused nor failed"},
    },
)
async def resume_task(task_id: str, engine: Orchestrator = Depends(get_engine)):
    return await engine.resume_task(task_id)


# === Templates ===


@template_router.get("/", summary="List templates")
async def list_templates(
    type: Optional[str] = None,
    category: Optional[str] = None,
    engine: Orchestrator = Depends(get_engine),
) -> List[Dict[str, Any]]:
    filters = {k: v for k, v in {"type": type, "category": category}.items() if v}
    return await engine.list_templates(**filters)  # type: ignore


@template_router.get("/{template_id}/schema", summary="Template field schema")
async def get_template_schema(
    template_id: str, engine: Orchestrator = Depends(get_engine)
) -> Dict[str, List[Dict[str, Any]]]:
    return await engine.get_template_schema(template_id)


@template_router.post(
    "/{template_id}/tasks",
    response_model=TemplateInstantiationResponse,
    summary="Create task from template",
    description="""
    Merge the template defaults with the given overrides. No task is
    created when required fields are missing; they are listed instead.
    """,
)
async def create_task_from_template(
    template_id: str,
    body: TemplateTaskCreate,
    engine: Orchestrator = Depends(get_engine),
):
    overrides = body.model_dump(mode="json", exclude_none=True, exclude={"user_id"})
    if not overrides.get("config"):
        overrides.pop("config", None)
    return await engine.create_task_from_template(template_id, body.user_id, overrides)
