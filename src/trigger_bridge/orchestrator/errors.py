"""Exception hierarchy for the trigger bridge.

Delivery errors are split by whether the upstream scheduler should redeliver.
Step errors are governed by the step's retry policy. Registration errors are
fatal at boot.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for all trigger bridge errors."""


class RetriableDeliveryError(BridgeError):
    """A forwarding attempt failed in a way that may succeed if retried later."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retry_after_seconds: float | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retry_after_seconds = retry_after_seconds


class NonRetriableDeliveryError(BridgeError):
    """A forwarding attempt failed permanently (validation, auth, unknown route)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NonRetriableStepError(BridgeError):
    """Raised by a step when retrying can never succeed without intervention."""


class StepTimeoutError(BridgeError):
    """A step exceeded its wall-clock budget. Classified like a 408."""

    def __init__(self, step_id: str, timeout_seconds: float) -> None:
        super().__init__(f"Step {step_id!r} timed out after {timeout_seconds:g}s")
        self.step_id = step_id
        self.timeout_seconds = timeout_seconds


class RegistrationConflictError(BridgeError, ValueError):
    """Two registrations claim the same identifier with different bindings."""


class RegistryFrozenError(BridgeError, RuntimeError):
    """Registration attempted after the server started accepting traffic."""


class ResumeMismatchError(BridgeError):
    """Resume data does not match the suspended run (wrong state, step or shape)."""


class RunNotFoundError(BridgeError, LookupError):
    def __init__(self, run_id: str) -> None:
        super().__init__(f"Workflow run not found: {run_id}")
        self.run_id = run_id


class RunCanceledError(BridgeError):
    def __init__(self, run_id: str) -> None:
        super().__init__(f"Workflow run {run_id} was canceled")
        self.run_id = run_id


class RunBusyError(BridgeError):
    """Another caller currently holds the lease on this run."""

    def __init__(self, run_id: str) -> None:
        super().__init__(f"Workflow run {run_id} is being advanced by another caller")
        self.run_id = run_id


class UnknownWorkflowError(BridgeError, LookupError):
    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Unknown workflow: {workflow_id}")
        self.workflow_id = workflow_id
