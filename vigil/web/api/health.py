"""Health API Endpoints"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from ...core.engine import Orchestrator
from ..schemas import HealthResponse
from . import get_engine

router = APIRouter()


@router.get(
    "",
    response_model=HealthResponse,
    summary="Health Check",
    description="""
    Engine load and process resources.

    **Returns:**
    - Registered cron jobs, running and due task counts
    - In-process cache size and background job count
    - Resident and virtual memory of the process
    """,
)
async def health_check(engine: Orchestrator = Depends(get_engine)):
    return await engine.get_system_health()


@router.get("/scheduler", summary="Scheduler status")
async def scheduler_status(engine: Orchestrator = Depends(get_engine)) -> Dict[str, Any]:
    return await engine.get_scheduler_status()
