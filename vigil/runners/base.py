from typing import Any

from ..core.dispatcher import TaskRunner
from ..schemas.config import parse_task_config
from ..schemas.task import Task
from .provider import DataProvider, SimulatedDataProvider


class ProviderRunner(TaskRunner):
    """Base for the built-in runners: a data provider plus typed config."""

    def __init__(self, provider: DataProvider | None = None):
        self.provider: DataProvider = provider or SimulatedDataProvider()

    def config_for(self, task: Task) -> Any:
        return parse_task_config(task["type"], task["config"])
