import logging
from dataclasses import dataclass
from typing import Callable, Dict

from ..database.base import DatabaseBackend
from ..schemas.execution import TaskExecution
from ..schemas.task import Task, TaskDependency

logger = logging.getLogger(__name__)

CustomCondition = Callable[[TaskDependency, TaskExecution | None], bool]


@dataclass(frozen=True)
class GateResult:
    """Whether a task may run now.

    Attributes:
        satisfied: True if every dependency holds
        reason: Why the task is blocked (None when satisfied)
        delay: Milliseconds to wait before dispatching
    """

    satisfied: bool
    reason: str | None = None
    delay: int = 0


class DependencyGate:
    """Evaluates a task's declared prerequisites against the store.

    Custom conditions are looked up by name in a per-gate registry; an
    unregistered custom condition passes.
    """

    def __init__(self, db: DatabaseBackend):
        self._db = db
        self._custom: Dict[str, CustomCondition] = {}

    def register_custom_condition(self, name: str, predicate: CustomCondition) -> None:
        self._custom[name] = predicate

    def condition_satisfied_by(
        self, dependency: TaskDependency, execution: TaskExecution | None
    ) -> bool:
        """Evaluate one dependency against one prerequisite execution."""
        condition = dependency["condition"]

        if condition == "custom":
            name = dependency.get("custom_condition")
            predicate = self._custom.get(name) if name else None
            if predicate is None:
                return True
            return bool(predicate(dependency, execution))

        if execution is None:
            return False
        if condition == "success":
            return execution["success"]
        if condition == "failure":
            return not execution["success"]
        if condition == "completion":
            return True

        logger.warning(f"Unknown dependency condition '{condition}'")
        return False

    async def check(self, task: Task) -> GateResult:
        """Check every dependency of ``task``.

        Short-circuits on the first unsatisfied dependency. The returned
        delay is the largest delay among satisfied dependencies.
        """
        delay = 0
        for dependency in task["dependencies"] or []:
            execution = await self._db.get_latest_execution(dependency["task_id"])

            if not self.condition_satisfied_by(dependency, execution):
                if execution is None:
                    reason = f"dependency {dependency['task_id']} has not run yet"
                else:
                    reason = (
                        f"dependency {dependency['task_id']} does not satisfy "
                        f"'{dependency['condition']}'"
                    )
                return GateResult(False, reason)

            delay = max(delay, dependency.get("delay") or 0)

        return GateResult(True, None, delay)
