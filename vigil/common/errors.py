class TaskNotFoundError(Exception):
    """Exception raised when a task id is unknown to the store."""

    pass


class InvalidTaskStateError(Exception):
    """Exception raised when a task is triggered while not ``active``."""

    def __init__(self, task_id: str, status: str):
        self.task_id = task_id
        self.status = status
        super().__init__(f"Task '{task_id}' is not active (status: {status})")


class TaskRunnerError(Exception):
    """Exception raised by a task runner with an explicit error category.

    Runners may raise any exception; this one lets them skip keyword
    classification by naming the bucket directly.

    Example usage:

        raise TaskRunnerError("price feed returned 429", category="rate_limit")
    """

    def __init__(self, message: str, category: str | None = None):
        self.category = category
        super().__init__(message)


class UnknownTaskTypeError(Exception):
    """Exception raised when no runner is registered for a task type."""

    pass


class InvalidTaskConfigError(Exception):
    """Exception raised when a task config does not match its type's schema."""

    def __init__(self, task_type: str, detail: str):
        self.task_type = task_type
        self.detail = detail
        super().__init__(f"Invalid config for task type '{task_type}': {detail}")


class InvalidCronExpressionError(Exception):
    """Exception raised when a cron expression cannot be parsed."""

    pass


class TemplateNotFoundError(Exception):
    """Exception raised when a task template is not found in the database."""

    pass


class BatchNotFoundError(Exception):
    """Exception raised when a batch is not found in the database."""

    pass
