"""Test doubles for runners and notification delivery."""

import asyncio
from typing import Any, Callable, Dict, List

from vigil.core.dispatcher import RunnerRegistry, TaskRunner
from vigil.schemas.task import TASK_TYPES, Task

Handler = Callable[[Task], Dict[str, Any]]


def ok(task: Task) -> Dict[str, Any]:
    return {"checked": task["name"], "alert": False}


class FakeRunner(TaskRunner):
    """Runner driven by a handler and an optional queue of scripted outcomes.

    Scripted outcomes are consumed first; each is either a result dict or an
    exception instance to raise. After that ``handler`` is used.
    """

    def __init__(self, handler: Handler = ok, delay: float = 0.0):
        self.handler = handler
        self.delay = delay
        self.script: List[Any] = []
        self.calls: List[str] = []
        self.active = 0
        self.max_active = 0
        self.gate: asyncio.Event | None = None

    async def execute(self, task: Task) -> Dict[str, Any]:
        self.calls.append(task["id"])
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)

            if self.script:
                outcome = self.script.pop(0)
                if isinstance(outcome, BaseException):
                    raise outcome
                return outcome
            return self.handler(task)
        finally:
            self.active -= 1


def fake_registry() -> tuple[RunnerRegistry, Dict[str, FakeRunner]]:
    """A registry with an independent :class:`FakeRunner` per task type."""
    registry = RunnerRegistry()
    runners = {}
    for task_type in TASK_TYPES:
        runners[task_type] = FakeRunner()
        registry.register(task_type, runners[task_type])
    return registry, runners


class RecordingSink:
    """Notification sink that keeps every call."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []

    async def send_notification(self, user_id, event_type, variables, options) -> None:
        self.sent.append(
            {
                "user_id": user_id,
                "event_type": event_type,
                "variables": variables,
                "options": options,
            }
        )


async def drain(engine) -> None:
    """Wait until the engine has no background work left (dependents, alerts)."""
    for _ in range(100):
        pending = list(engine._background)
        if not pending:
            return
        await asyncio.gather(*pending, return_exceptions=True)
    raise AssertionError("background work did not settle")
