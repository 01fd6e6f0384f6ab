from __future__ import annotations

from enum import Enum


class RunStatus(str, Enum):
    RUNNING = "running"
    SUSPENDED = "suspended"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELED = "canceled"


class StepStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    SUSPENDED = "suspended"


TERMINAL_STATUSES: frozenset[RunStatus] = frozenset(
    {RunStatus.SUCCESS, RunStatus.FAILED, RunStatus.CANCELED}
)


ALLOWED_TRANSITIONS: dict[RunStatus, set[RunStatus]] = {
    RunStatus.RUNNING: {
        RunStatus.SUSPENDED,
        RunStatus.SUCCESS,
        RunStatus.FAILED,
        RunStatus.CANCELED,
    },
    RunStatus.SUSPENDED: {RunStatus.RUNNING, RunStatus.CANCELED},
    RunStatus.SUCCESS: set(),
    RunStatus.FAILED: set(),
    RunStatus.CANCELED: set(),
}


class IllegalTransitionError(ValueError):
    pass


def is_terminal(status: RunStatus) -> bool:
    return status in TERMINAL_STATUSES


def transition(*, current: RunStatus, to: RunStatus) -> RunStatus:
    allowed = ALLOWED_TRANSITIONS.get(current, set())
    if to not in allowed:
        raise IllegalTransitionError(f"Illegal transition: {current.value} -> {to.value}")
    return to
