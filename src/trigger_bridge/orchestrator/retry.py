"""Retry policy and failure classification.

The classification partitions failures that will probably succeed on a later
attempt from failures that can never succeed without human or code changes.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from pydantic import ValidationError

from .errors import (
    NonRetriableDeliveryError,
    NonRetriableStepError,
    RetriableDeliveryError,
    RunBusyError,
    StepTimeoutError,
)


class ErrorClass(str, Enum):
    RETRIABLE = "retriable"
    NON_RETRIABLE = "non_retriable"


# 429 (rate limited) and 408 (request timeout) are the only retriable 4xx codes.
RETRIABLE_CLIENT_STATUS_CODES: frozenset[int] = frozenset({408, 429})


def classify_status_code(status_code: int) -> ErrorClass:
    if 500 <= status_code < 600 or status_code in RETRIABLE_CLIENT_STATUS_CODES:
        return ErrorClass.RETRIABLE
    return ErrorClass.NON_RETRIABLE


def classify_exception(error: BaseException) -> ErrorClass:
    """Default classifier for step and delivery failures.

    Validation errors and explicit non-retriable errors are permanent; anything
    else (including timeouts) is assumed transient.
    """

    if isinstance(error, (NonRetriableStepError, NonRetriableDeliveryError, ValidationError)):
        return ErrorClass.NON_RETRIABLE
    if isinstance(error, (RetriableDeliveryError, StepTimeoutError, RunBusyError)):
        return ErrorClass.RETRIABLE
    status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int):
        return classify_status_code(status_code)
    return ErrorClass.RETRIABLE


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """How many times a failing unit of work may be attempted, and how long to wait.

    ``max_attempts`` counts total attempts, so ``1`` means "never retry".
    """

    max_attempts: int = 1
    backoff_seconds: float = 1.0
    max_backoff_seconds: float = 300.0
    classifier: Callable[[BaseException], ErrorClass] = field(
        default=classify_exception, compare=False
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_seconds < 0:
            raise ValueError("backoff_seconds must be non-negative")

    @classmethod
    def for_environment(
        cls,
        environment: str,
        *,
        retries: int | None = None,
        backoff_seconds: float = 1.0,
    ) -> RetryPolicy:
        """Fast feedback in development (no retries), three retries in production."""

        if retries is None:
            retries = 3 if environment == "production" else 0
        return cls(max_attempts=retries + 1, backoff_seconds=backoff_seconds)

    def classify(self, error: BaseException) -> ErrorClass:
        return self.classifier(error)

    def should_retry(self, error: BaseException, *, attempt: int) -> bool:
        return self.classify(error) is ErrorClass.RETRIABLE and attempt < self.max_attempts

    def backoff_for(self, attempt: int) -> float:
        """Exponential backoff before the given (1-based) retry attempt."""

        exponent = max(attempt - 1, 0)
        return min(self.backoff_seconds * (2**exponent), self.max_backoff_seconds)
