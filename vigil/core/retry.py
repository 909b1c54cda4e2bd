"""Retry policy for failed task executions.

Runner failures are bucketed into an error category, and the category
decides whether a backoff re-attempt is allowed. Everything here is pure;
the orchestrator owns the actual re-scheduling.
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Tuple

from ..common.config import DEFAULT_RETRY_CONFIG
from ..common.errors import TaskRunnerError
from ..schemas.task import ErrorCategory, TaskRetryConfig

RETRYABLE_CATEGORIES: Tuple[ErrorCategory, ...] = (
    "network_error",
    "timeout",
    "rate_limit",
    "temporary_failure",
)

# Matched case-insensitively against the error message, in this order.
ERROR_KEYWORDS: Dict[ErrorCategory, Tuple[str, ...]] = {
    "rate_limit": ("rate limit", "too many requests", "429", "quota"),
    "timeout": ("timeout", "timed out", "etimedout"),
    "network_error": (
        "network",
        "connection",
        "econnrefused",
        "econnreset",
        "enotfound",
        "socket",
        "dns",
    ),
    "temporary_failure": (
        "temporar",
        "unavailable",
        "502",
        "503",
        "try again",
    ),
}


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of evaluating a failure against a retry config.

    Attributes:
        retry: Whether a re-attempt should be scheduled
        delay: Backoff delay in milliseconds (0 when not retrying)
        category: The classified error bucket
        reason: Short human-readable explanation
    """

    retry: bool
    delay: int
    category: ErrorCategory
    reason: str


def classify_error(error: BaseException | str) -> ErrorCategory:
    """Bucket an error into one of the retry categories.

    A :class:`TaskRunnerError` with an explicit ``category`` wins; otherwise
    the message is matched against :data:`ERROR_KEYWORDS`.
    ``asyncio.TimeoutError`` and ``ConnectionError`` are recognised by type.
    """
    if isinstance(error, TaskRunnerError) and error.category:
        if error.category in ERROR_KEYWORDS:
            return error.category  # type: ignore
        return "unclassified"

    if isinstance(error, TimeoutError):
        return "timeout"
    if isinstance(error, ConnectionError):
        return "network_error"

    message = str(error).lower()
    for category, keywords in ERROR_KEYWORDS.items():
        if any(keyword in message for keyword in keywords):
            return category
    return "unclassified"


def resolve_retry_config(
    config: Mapping[str, Any] | None,
    default: Mapping[str, Any] | None = None,
) -> TaskRetryConfig:
    """Fill a (possibly partial) task retry config from the default."""
    merged: Dict[str, Any] = dict(default or DEFAULT_RETRY_CONFIG)
    if config:
        merged.update({k: v for k, v in config.items() if v is not None})
    return TaskRetryConfig(
        max_retries=int(merged["max_retries"]),
        initial_delay=int(merged["initial_delay"]),
        max_delay=int(merged["max_delay"]),
        backoff_multiplier=float(merged["backoff_multiplier"]),
        retry_conditions=list(merged["retry_conditions"]),
    )


def compute_backoff(config: TaskRetryConfig, attempt: int) -> int:
    """Return the delay in ms before re-attempt number ``attempt`` (0-based).

    ``min(max_delay, initial_delay * backoff_multiplier ** attempt)``
    """
    if attempt < 0:
        raise ValueError(f"attempt must be >= 0, got {attempt}")
    delay = config["initial_delay"] * config["backoff_multiplier"] ** attempt
    return int(min(config["max_delay"], delay))


def decide_retry(
    error: BaseException | str,
    config: TaskRetryConfig,
    attempt: int,
) -> RetryDecision:
    """Decide whether a failed attempt should be retried.

    Args:
        error: The exception (or message) raised by the runner
        config: Effective retry config for the task
        attempt: Retries already scheduled for the current failure streak

    Returns:
        A :class:`RetryDecision`
    """
    category = classify_error(error)

    if category not in RETRYABLE_CATEGORIES:
        return RetryDecision(False, 0, category, "error is not retryable")
    if category not in config["retry_conditions"]:
        return RetryDecision(
            False, 0, category, f"{category} is not in retry_conditions"
        )
    if attempt >= config["max_retries"]:
        return RetryDecision(
            False, 0, category, f"retries exhausted ({config['max_retries']})"
        )

    delay = compute_backoff(config, attempt)
    return RetryDecision(
        True,
        delay,
        category,
        f"retry {attempt + 1}/{config['max_retries']} in {delay}ms",
    )
