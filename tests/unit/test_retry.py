"""Unit tests for failure classification and retry policy."""

from __future__ import annotations

import pytest
from pydantic import BaseModel, ValidationError

from trigger_bridge.orchestrator.errors import (
    NonRetriableStepError,
    RetriableDeliveryError,
    StepTimeoutError,
)
from trigger_bridge.orchestrator.retry import (
    ErrorClass,
    RetryPolicy,
    classify_exception,
    classify_status_code,
)


class _Model(BaseModel):
    amount: float


class _HttpError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


@pytest.mark.parametrize("status_code", [500, 502, 503, 504, 429, 408])
def test_retriable_status_codes(status_code: int) -> None:
    assert classify_status_code(status_code) is ErrorClass.RETRIABLE


@pytest.mark.parametrize("status_code", [400, 401, 403, 404, 409, 422])
def test_non_retriable_status_codes(status_code: int) -> None:
    assert classify_status_code(status_code) is ErrorClass.NON_RETRIABLE


def test_classify_exception() -> None:
    with pytest.raises(ValidationError) as exc_info:
        _Model.model_validate({})

    assert classify_exception(exc_info.value) is ErrorClass.NON_RETRIABLE
    assert classify_exception(NonRetriableStepError("bad")) is ErrorClass.NON_RETRIABLE
    assert classify_exception(StepTimeoutError("s", 1.0)) is ErrorClass.RETRIABLE
    assert classify_exception(RetriableDeliveryError("later")) is ErrorClass.RETRIABLE
    assert classify_exception(_HttpError(401)) is ErrorClass.NON_RETRIABLE
    assert classify_exception(_HttpError(503)) is ErrorClass.RETRIABLE
    assert classify_exception(RuntimeError("boom")) is ErrorClass.RETRIABLE


def test_environment_defaults() -> None:
    assert RetryPolicy.for_environment("development").max_attempts == 1
    assert RetryPolicy.for_environment("production").max_attempts == 4
    assert RetryPolicy.for_environment("development", retries=2).max_attempts == 3


def test_should_retry_counts_total_attempts() -> None:
    policy = RetryPolicy(max_attempts=3)
    error = RuntimeError("transient")

    assert policy.should_retry(error, attempt=1)
    assert policy.should_retry(error, attempt=2)
    assert not policy.should_retry(error, attempt=3)
    assert not policy.should_retry(NonRetriableStepError("no"), attempt=1)


def test_backoff_is_exponential_and_capped() -> None:
    policy = RetryPolicy(max_attempts=10, backoff_seconds=2.0, max_backoff_seconds=10.0)

    assert policy.backoff_for(1) == 2.0
    assert policy.backoff_for(2) == 4.0
    assert policy.backoff_for(3) == 8.0
    assert policy.backoff_for(4) == 10.0


def test_policy_rejects_zero_attempts() -> None:
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
