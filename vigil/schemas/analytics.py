from typing import List, TypedDict


class TaskAnalytics(TypedDict):
    """Daily roll-up for one (user, task, day) bucket."""

    user_id: str
    task_id: str
    date: str
    executions: int
    successes: int
    failures: int
    retries: int
    total_execution_time: int
    average_execution_time: float
    cache_hits: int
    cache_misses: int
    errors: List[str]


class AnalyticsFilters(TypedDict, total=False):
    task_id: str
    start_date: str
    end_date: str
    top_errors: int


class AnalyticsSummary(TypedDict):
    total_executions: int
    successful_executions: int
    failed_executions: int
    success_rate: float
    average_execution_time: float
    total_retries: int
    cache_hits: int
    cache_misses: int
    cache_hit_rate: float


class ErrorFrequency(TypedDict):
    error: str
    count: int


class TrendPoint(TypedDict):
    date: str
    executions: int
    successes: int
    failures: int
    success_rate: float
    average_execution_time: float


class AnalyticsReport(TypedDict):
    summary: AnalyticsSummary
    top_errors: List[ErrorFrequency]
    trend: List[TrendPoint]
