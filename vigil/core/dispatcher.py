import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, ClassVar, Dict, Iterator, List, Type, TypeVar

from ..common.errors import TaskRunnerError, UnknownTaskTypeError
from ..schemas.task import TASK_TYPES, Task

logger = logging.getLogger(__name__)

# Task types whose runners may only ever simulate.
SIMULATION_ONLY_TYPES = frozenset({"auto-trade"})


class TaskRunner(ABC):
    """Execution strategy for one task type.

    Runners must be safe to retry, must return a dict exposing an ``alert``
    signal, and signal failure by raising (ideally a
    :class:`~vigil.common.errors.TaskRunnerError` with a category).
    """

    task_type: ClassVar[str] = ""
    description: ClassVar[str] = ""

    @abstractmethod
    async def execute(self, task: Task) -> Dict[str, Any]:
        pass


RunnerT = TypeVar("RunnerT", bound=Type[TaskRunner])

# Classes registered with @runner, keyed by task type.
RUNNER_CLASSES: Dict[str, Type[TaskRunner]] = {}


def runner(task_type: str, description: str | None = None) -> Callable[[RunnerT], RunnerT]:
    """
    Class decorator registering a :class:`TaskRunner` for a task type.

    Registered classes are instantiated by :meth:`RunnerRegistry.from_defaults`.
    A later registration for the same type replaces the earlier one.

    Args:
        task_type: One of the ten task types.
        description: Human-readable summary; defaults to the class docstring.

    Example:
        ```python
        @runner("price-alert")
        class MyPriceAlert(TaskRunner):
            async def execute(self, task):
                return {"price": 1.0, "alert": False}
        ```

    Raises:
        ValueError: If ``task_type`` is not a known task type.
    """
    if task_type not in TASK_TYPES:
        raise ValueError(
            f"Unknown task type '{task_type}'. Expected one of: {', '.join(TASK_TYPES)}"
        )

    def decorator(cls: RunnerT) -> RunnerT:
        if not issubclass(cls, TaskRunner):
            raise TypeError(f"{cls.__name__} must subclass TaskRunner")

        cls.task_type = task_type
        cls.description = description or (cls.__doc__ or "").strip().split("\n")[0]
        RUNNER_CLASSES[task_type] = cls
        return cls

    return decorator


class RunnerRegistry:
    """Maps task types to runner instances."""

    def __init__(self) -> None:
        self._runners: Dict[str, TaskRunner] = {}

    @classmethod
    def from_defaults(cls, *args: Any, **kwargs: Any) -> "RunnerRegistry":
        """Instantiate every ``@runner``-registered class.

        Extra arguments (e.g. a data provider) are passed to each runner.
        """
        # Importing the package registers the built-in runners.
        from .. import runners  # noqa: F401

        registry = cls()
        for task_type, runner_cls in RUNNER_CLASSES.items():
            registry.register(task_type, runner_cls(*args, **kwargs))
        return registry

    def register(self, task_type: str, task_runner: TaskRunner) -> None:
        if task_type not in TASK_TYPES:
            raise ValueError(f"Unknown task type '{task_type}'")
        self._runners[task_type] = task_runner

    def unregister(self, task_type: str) -> None:
        self._runners.pop(task_type, None)

    def get(self, task_type: str) -> TaskRunner:
        try:
            return self._runners[task_type]
        except KeyError:
            raise UnknownTaskTypeError(
                f"No runner registered for task type '{task_type}'"
            ) from None

    def types(self) -> List[str]:
        return sorted(self._runners)

    def __contains__(self, task_type: object) -> bool:
        return task_type in self._runners

    def __iter__(self) -> Iterator[str]:
        return iter(self._runners)


class Dispatcher:
    """Routes a task to its runner and normalizes the result.

    The dispatcher is type-agnostic apart from one rule: results of
    simulation-only types are forced to ``simulated=True`` and a runner
    claiming a real trade is treated as a failure.
    """

    def __init__(self, registry: RunnerRegistry):
        self.registry = registry

    async def dispatch(self, task: Task) -> Dict[str, Any]:
        task_runner = self.registry.get(task["type"])
        raw = await task_runner.execute(task)
        return self._normalize(task, raw)

    @staticmethod
    def _normalize(task: Task, raw: Any) -> Dict[str, Any]:
        if not isinstance(raw, dict):
            raise TaskRunnerError(
                f"Runner for '{task['type']}' returned {type(raw).__name__}, expected dict",
                category="unclassified",
            )

        result = dict(raw)
        result["alert"] = bool(result.get("alert", False))

        if task["type"] in SIMULATION_ONLY_TYPES:
            if result.get("simulated") is False:
                raise TaskRunnerError(
                    f"Runner for '{task['type']}' reported a real trade; "
                    "trading tasks are simulation-only",
                    category="unclassified",
                )
            result["simulated"] = True

        return result
