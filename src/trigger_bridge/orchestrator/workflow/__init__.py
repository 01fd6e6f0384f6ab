"""Durable step execution.

This package provides:
- immutable workflow and step descriptors, built with a builder
- a persisted run state machine (running / suspended / success / failed / canceled)
- a runtime that memoizes step outputs per run and resumes from the right step

The intent is to make multi-step execution restartable, inspectable, and
deterministic in its control flow.
"""

from .definition import (
    StepContext,
    StepDefinition,
    SuspendStep,
    WorkflowBuilder,
    WorkflowDefinition,
)
from .run_store import RunStore, StepResult, WorkflowRun
from .runtime import StepExecutionRuntime
from .state_machine import RunStatus, StepStatus

__all__ = [
    "RunStatus",
    "RunStore",
    "StepContext",
    "StepDefinition",
    "StepExecutionRuntime",
    "StepResult",
    "StepStatus",
    "SuspendStep",
    "WorkflowBuilder",
    "WorkflowDefinition",
    "WorkflowRun",
]
