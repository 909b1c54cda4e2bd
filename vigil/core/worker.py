"""Long-running scheduler worker with graceful shutdown."""

import asyncio
import logging
import signal
import sys
from datetime import datetime, timezone

from .engine import Orchestrator

logger = logging.getLogger(__name__)


class TaskWorker:
    """Drives an :class:`Orchestrator` until told to stop.

    Features:
    - Cron jobs fire from the orchestrator's own timer
    - Frequency-based tasks are picked up by polling for due tasks
    - Periodic cleanup of old executions, analytics and expired cache
    - Graceful shutdown on SIGINT/SIGTERM
    - Run statistics logged on exit
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        poll_interval: float | None = None,
        cleanup_interval: float = 3600.0,
        shutdown_timeout: float = 30.0,
    ):
        """Initialize the worker.

        Args:
            orchestrator: Engine to drive; started and shut down by the worker
            poll_interval: Seconds between due-task polls (default: from settings)
            cleanup_interval: Seconds between retention cleanups (default: 3600)
            shutdown_timeout: Max seconds to wait for in-flight work (default: 30)
        """
        self.orchestrator = orchestrator
        self.poll_interval = (
            orchestrator.settings.poll_interval if poll_interval is None else poll_interval
        )
        self.cleanup_interval = cleanup_interval
        self.shutdown_timeout = shutdown_timeout
        self._shutdown_event = asyncio.Event()
        self._stats: dict[str, int | datetime | None] = {
            "polls": 0,
            "tasks_executed": 0,
            "tasks_failed": 0,
            "started_at": None,
        }

    @property
    def stats(self) -> dict[str, int | datetime | None]:
        return dict(self._stats)

    def stop(self) -> None:
        self._shutdown_event.set()

    async def start(self) -> None:
        """Start the orchestrator and poll until a shutdown signal."""
        self._stats["started_at"] = datetime.now(timezone.utc)
        self._register_signal_handlers()

        await self.orchestrator.start()
        logger.info(f"Task worker started, polling every {self.poll_interval}s")

        loops = [
            asyncio.create_task(self._poll_loop(), name="poll"),
            asyncio.create_task(self._cleanup_loop(), name="cleanup"),
        ]
        try:
            await self._shutdown_event.wait()
        finally:
            for loop in loops:
                loop.cancel()
            await asyncio.gather(*loops, return_exceptions=True)
            await self.orchestrator.shutdown(self.shutdown_timeout)
            self._log_stats()

    async def run_once(self) -> None:
        """Execute every due task once."""
        report = await self.orchestrator.execute_all_due_tasks()
        self._stats["polls"] = int(self._stats["polls"]) + 1  # type: ignore
        self._stats["tasks_executed"] = int(self._stats["tasks_executed"]) + report["executed"]  # type: ignore
        self._stats["tasks_failed"] = int(self._stats["tasks_failed"]) + report["failed"]  # type: ignore

    async def _poll_loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Due-task poll failed: {e}")

            await self._sleep(self.poll_interval)

    async def _cleanup_loop(self) -> None:
        while not self._shutdown_event.is_set():
            await self._sleep(self.cleanup_interval)
            if self._shutdown_event.is_set():
                break
            try:
                await self.orchestrator.cleanup()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Cleanup failed: {e}")

    async def _sleep(self, seconds: float) -> None:
        """Sleep, waking early on shutdown."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def _register_signal_handlers(self) -> None:
        """Register handlers for SIGINT and SIGTERM."""

        def signal_handler(sig, frame):
            logger.info(f"Received signal {signal.Signals(sig).name}")
            self._shutdown_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        if sys.platform != "win32":
            signal.signal(signal.SIGTERM, signal_handler)

    def _log_stats(self) -> None:
        started_at = self._stats["started_at"]
        if started_at and isinstance(started_at, datetime):
            uptime = datetime.now(timezone.utc) - started_at
            logger.info(
                f"Worker stopped after {uptime}: {self._stats['polls']} polls, "
                f"{self._stats['tasks_executed']} executed, "
                f"{self._stats['tasks_failed']} failed"
            )


async def start_worker(orchestrator: Orchestrator | None = None, poll_interval: float | None = None) -> None:
    """Start a scheduler worker process.

    Args:
        orchestrator: Engine to drive (default: one built from settings)
        poll_interval: Seconds between due-task polls
    """
    worker = TaskWorker(orchestrator or Orchestrator(), poll_interval=poll_interval)
    await worker.start()
