from typing import Any, Dict, List, TypedDict

from .task import Task, TaskType


class TaskTemplate(TypedDict):
    """Reusable defaults for instantiating tasks of one type."""

    id: str
    name: str
    description: str
    type: TaskType
    default_config: Dict[str, Any]
    required_fields: List[str]
    optional_fields: List[str]
    default_frequency: str
    category: str
    tags: List[str]
    is_public: bool
    created_by: str


class TemplateInput(TypedDict):
    name: str
    description: str
    type: TaskType
    default_config: Dict[str, Any]
    required_fields: List[str]
    optional_fields: List[str]
    default_frequency: str
    category: str
    tags: List[str]
    is_public: bool
    created_by: str


class TemplateInstantiation(TypedDict):
    """Outcome of creating a task from a template.

    ``task`` is None when required fields are missing.
    """

    task: Task | None
    missing_required_fields: List[str]
    recommendations: List[str]
