from collections import Counter, defaultdict
from typing import Dict, List

from ..database.base import DatabaseBackend
from ..schemas.analytics import (
    AnalyticsFilters,
    AnalyticsReport,
    AnalyticsSummary,
    ErrorFrequency,
    TaskAnalytics,
    TrendPoint,
)
from ..schemas.execution import TaskExecution


def _rate(part: int | float, whole: int | float) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


class AnalyticsAggregator:
    """Daily per-task roll-ups and range summaries."""

    def __init__(self, db: DatabaseBackend):
        self._db = db

    async def record(self, execution: TaskExecution, retried: bool = False) -> None:
        """Fold one finished execution into its (user, task, day) bucket.

        Args:
            execution: A finalized execution
            retried: Whether this execution was a backoff re-attempt
        """
        await self._db.upsert_analytics(
            execution["user_id"],
            execution["task_id"],
            execution["start_time"][:10],
            success=execution["success"],
            duration=execution["duration"] or 0,
            is_cached=execution["is_cached"],
            retried=retried,
            error=execution["error"],
        )

    async def summarize(
        self, user_id: str, filters: AnalyticsFilters | None = None
    ) -> AnalyticsReport:
        """Aggregate a user's buckets over an optional task and date range.

        Returns:
            ``summary`` totals, the ``top_errors`` table (count = number of
            daily buckets an error appeared in) and a per-day ``trend``.
        """
        filters = filters or {}
        rows = await self._db.query_analytics(
            user_id,
            task_id=filters.get("task_id"),
            start_date=filters.get("start_date"),
            end_date=filters.get("end_date"),
        )
        return AnalyticsReport(
            summary=self._summary(rows),
            top_errors=self._top_errors(rows, filters.get("top_errors", 10)),
            trend=self._trend(rows),
        )

    @staticmethod
    def _summary(rows: List[TaskAnalytics]) -> AnalyticsSummary:
        executions = sum(r["executions"] for r in rows)
        successes = sum(r["successes"] for r in rows)
        total_time = sum(r["total_execution_time"] for r in rows)
        hits = sum(r["cache_hits"] for r in rows)
        misses = sum(r["cache_misses"] for r in rows)

        return AnalyticsSummary(
            total_executions=executions,
            successful_executions=successes,
            failed_executions=sum(r["failures"] for r in rows),
            success_rate=_rate(successes, executions),
            average_execution_time=round(total_time / executions, 2) if executions else 0.0,
            total_retries=sum(r["retries"] for r in rows),
            cache_hits=hits,
            cache_misses=misses,
            cache_hit_rate=_rate(hits, hits + misses),
        )

    @staticmethod
    def _top_errors(rows: List[TaskAnalytics], limit: int) -> List[ErrorFrequency]:
        counts: Counter[str] = Counter()
        for row in rows:
            counts.update(row["errors"])
        return [ErrorFrequency(error=e, count=c) for e, c in counts.most_common(limit)]

    @staticmethod
    def _trend(rows: List[TaskAnalytics]) -> List[TrendPoint]:
        days: Dict[str, Dict[str, int]] = defaultdict(
            lambda: {"executions": 0, "successes": 0, "failures": 0, "time": 0}
        )
        for row in rows:
            day = days[row["date"]]
            day["executions"] += row["executions"]
            day["successes"] += row["successes"]
            day["failures"] += row["failures"]
            day["time"] += row["total_execution_time"]

        return [
            TrendPoint(
                date=date,
                executions=day["executions"],
                successes=day["successes"],
                failures=day["failures"],
                success_rate=_rate(day["successes"], day["executions"]),
                average_execution_time=(
                    round(day["time"] / day["executions"], 2) if day["executions"] else 0.0
                ),
            )
            for date, day in sorted(days.items())
        ]
