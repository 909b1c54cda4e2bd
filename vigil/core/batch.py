import asyncio
import logging
from typing import Awaitable, Callable, List

from ..database.base import DatabaseBackend
from ..lib.utils import chunked, to_iso, utcnow
from ..schemas.execution import BatchStatus, TaskBatch, TaskExecution

logger = logging.getLogger(__name__)

BatchExecute = Callable[[str, str], Awaitable[TaskExecution | None]]


def batch_status(successful: int, failed: int) -> BatchStatus:
    if failed == 0:
        return "completed"
    if successful == 0:
        return "failed"
    return "partial"


class BatchCoordinator:
    """Runs groups of tasks with bounded fan-out.

    Tasks are split into chunks of ``max_parallel``; each chunk runs
    concurrently and chunks run one after another, separated by
    ``chunk_delay`` seconds. A member that raises, is dependency-blocked
    or fails counts as failed without affecting its siblings.

    Args:
        db: Store for batch records
        execute: ``execute(task_id, batch_id)`` returning the execution,
            or None when the task did not run
        chunk_delay: Seconds to pause between chunks
    """

    def __init__(self, db: DatabaseBackend, execute: BatchExecute, chunk_delay: float = 1.0):
        self._db = db
        self._execute = execute
        self._chunk_delay = chunk_delay

    async def run(self, task_ids: List[str], max_parallel: int, batch_id: str) -> TaskBatch:
        if not task_ids:
            raise ValueError("A batch needs at least one task id")
        if max_parallel < 1:
            raise ValueError(f"max_parallel must be >= 1, got {max_parallel}")

        batch = TaskBatch(
            id=batch_id,
            task_ids=list(task_ids),
            status="running",
            total_tasks=len(task_ids),
            successful_tasks=0,
            failed_tasks=0,
            parallel_executions=max_parallel,
            start_time=to_iso(utcnow()),  # type: ignore
            end_time=None,
        )
        await self._db.create_batch(batch)
        logger.info(
            f"Batch {batch_id[:8]} started: {len(task_ids)} tasks, max {max_parallel} in parallel"
        )

        chunks = chunked(task_ids, max_parallel)
        for index, chunk in enumerate(chunks):
            outcomes = await asyncio.gather(
                *(self._execute(task_id, batch_id) for task_id in chunk),
                return_exceptions=True,
            )

            for task_id, outcome in zip(chunk, outcomes):
                if isinstance(outcome, BaseException):
                    logger.warning(f"Batch {batch_id[:8]}: task {task_id} raised {outcome!r}")
                    batch["failed_tasks"] += 1
                elif outcome is None:
                    logger.info(f"Batch {batch_id[:8]}: task {task_id} blocked by dependencies")
                    batch["failed_tasks"] += 1
                elif outcome["success"]:
                    batch["successful_tasks"] += 1
                else:
                    batch["failed_tasks"] += 1

            if index < len(chunks) - 1 and self._chunk_delay > 0:
                await asyncio.sleep(self._chunk_delay)

        batch["status"] = batch_status(batch["successful_tasks"], batch["failed_tasks"])
        batch["end_time"] = to_iso(utcnow())
        await self._db.update_batch(
            batch_id,
            status=batch["status"],
            successful_tasks=batch["successful_tasks"],
            failed_tasks=batch["failed_tasks"],
            end_time=batch["end_time"],
        )
        logger.info(
            f"Batch {batch_id[:8]} {batch['status']}: "
            f"{batch['successful_tasks']} succeeded, {batch['failed_tasks']} failed"
        )
        return batch
