"""Analytics API Endpoints

Per-user execution roll-ups built from the daily analytics buckets.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from ...core.engine import Orchestrator
from ...schemas.analytics import AnalyticsFilters
from . import get_engine

router = APIRouter()


@router.get(
    "/{user_id}",
    summary="Get task analytics",
    description="""
    Summary, most frequent errors and daily trend for a user's executions.

    **Filtering Options:**
    - `task_id`: Restrict to one task
    - `start_date` / `end_date`: Inclusive day range (YYYY-MM-DD)
    - `top_errors`: Number of distinct errors to return
    """,
)
async def get_task_analytics(
    user_id: str,
    task_id: Optional[str] = None,
    start_date: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}-\d{2}$"),
    end_date: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}-\d{2}$"),
    top_errors: int = Query(10, ge=0, le=100),
    engine: Orchestrator = Depends(get_engine),
) -> Dict[str, Any]:
    filters = AnalyticsFilters(top_errors=top_errors)
    if task_id:
        filters["task_id"] = task_id
    if start_date:
        filters["start_date"] = start_date
    if end_date:
        filters["end_date"] = end_date
    return dict(await engine.get_task_analytics(user_id, filters))


@router.get("/{user_id}/statistics", summary="Get user task statistics")
async def get_user_statistics(
    user_id: str, engine: Orchestrator = Depends(get_engine)
) -> Dict[str, Any]:
    return await engine.get_user_statistics(user_id)
