"""Unit tests for the explicit run state machine.

These tests assert that illegal transitions fail loudly and that terminal
states stay terminal.
"""

from __future__ import annotations

import pytest

from trigger_bridge.orchestrator.workflow.state_machine import (
    IllegalTransitionError,
    RunStatus,
    is_terminal,
    transition,
)


@pytest.mark.parametrize(
    ("current", "to"),
    [
        (RunStatus.RUNNING, RunStatus.SUSPENDED),
        (RunStatus.RUNNING, RunStatus.SUCCESS),
        (RunStatus.RUNNING, RunStatus.FAILED),
        (RunStatus.RUNNING, RunStatus.CANCELED),
        (RunStatus.SUSPENDED, RunStatus.RUNNING),
        (RunStatus.SUSPENDED, RunStatus.CANCELED),
    ],
)
def test_allowed_transitions(current: RunStatus, to: RunStatus) -> None:
    assert transition(current=current, to=to) == to


@pytest.mark.parametrize(
    ("current", "to"),
    [
        (RunStatus.SUSPENDED, RunStatus.SUCCESS),
        (RunStatus.SUCCESS, RunStatus.RUNNING),
        (RunStatus.FAILED, RunStatus.RUNNING),
        (RunStatus.CANCELED, RunStatus.RUNNING),
        (RunStatus.CANCELED, RunStatus.CANCELED),
    ],
)
def test_transition_rejects_illegal_transitions(current: RunStatus, to: RunStatus) -> None:
    with pytest.raises(IllegalTransitionError):
        transition(current=current, to=to)


def test_terminal_statuses() -> None:
    assert is_terminal(RunStatus.SUCCESS)
    assert is_terminal(RunStatus.FAILED)
    assert is_terminal(RunStatus.CANCELED)
    assert not is_terminal(RunStatus.RUNNING)
    assert not is_terminal(RunStatus.SUSPENDED)
