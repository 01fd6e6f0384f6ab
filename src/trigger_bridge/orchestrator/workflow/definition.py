"""Workflow and step descriptors.

A workflow is an explicit, immutable tuple of step descriptors. Each step owns
its retry policy, input schema, resume schema and timeout. Steps run in
declared order; a step may name explicit predecessors (``after``) to describe
a DAG, otherwise it depends on the step declared just before it.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, NoReturn

from pydantic import BaseModel

from ..retry import RetryPolicy

if TYPE_CHECKING:
    from .run_store import WorkflowRun


class SuspendStep(Exception):
    """Control-flow signal: the step needs external input it does not have yet."""

    def __init__(self, payload: Any = None) -> None:
        super().__init__("Step requested suspension")
        self.payload = payload


@dataclass(frozen=True, slots=True)
class StepContext:
    """Fully materialised inputs for a single step execution."""

    run_id: str
    workflow_id: str
    step_id: str
    attempt: int
    input: Any
    resume_data: dict[str, Any] | None = None

    def suspend(self, payload: Any = None) -> NoReturn:
        raise SuspendStep(payload)


StepFn = Callable[[StepContext], Any]
FailureHook = Callable[["WorkflowRun", str], None]


@dataclass(frozen=True, slots=True)
class StepDefinition:
    step_id: str
    execute: StepFn
    description: str = ""
    retry_policy: RetryPolicy | None = None
    input_schema: type[BaseModel] | None = None
    resume_schema: type[BaseModel] | None = None
    after: tuple[str, ...] | None = None
    timeout_seconds: float | None = None


@dataclass(frozen=True, slots=True)
class WorkflowDefinition:
    workflow_id: str
    steps: tuple[StepDefinition, ...]
    retry_policy: RetryPolicy
    input_schema: type[BaseModel] | None = None
    on_failure: FailureHook | None = None

    def step(self, step_id: str) -> StepDefinition:
        for step in self.steps:
            if step.step_id == step_id:
                return step
        raise KeyError(step_id)

    def predecessors(self, step_id: str) -> tuple[str, ...]:
        step = self.step(step_id)
        if step.after is not None:
            return step.after
        index = self.steps.index(step)
        if index == 0:
            return ()
        return (self.steps[index - 1].step_id,)

    def policy_for(self, step: StepDefinition) -> RetryPolicy:
        return step.retry_policy or self.retry_policy


class WorkflowBuilder:
    """Collects step descriptors and produces an immutable :class:`WorkflowDefinition`."""

    def __init__(
        self,
        workflow_id: str,
        *,
        retry_policy: RetryPolicy | None = None,
        input_schema: type[BaseModel] | None = None,
    ) -> None:
        if not workflow_id.strip():
            raise ValueError("workflow_id is required")
        self._workflow_id = workflow_id
        self._retry_policy = retry_policy or RetryPolicy()
        self._input_schema = input_schema
        self._steps: list[StepDefinition] = []
        self._on_failure: FailureHook | None = None

    def step(
        self,
        step_id: str,
        execute: StepFn,
        *,
        description: str = "",
        retry_policy: RetryPolicy | None = None,
        input_schema: type[BaseModel] | None = None,
        resume_schema: type[BaseModel] | None = None,
        after: tuple[str, ...] | list[str] | None = None,
        timeout_seconds: float | None = None,
    ) -> WorkflowBuilder:
        self._steps.append(
            StepDefinition(
                step_id=step_id,
                execute=execute,
                description=description,
                retry_policy=retry_policy,
                input_schema=input_schema,
                resume_schema=resume_schema,
                after=tuple(after) if after is not None else None,
                timeout_seconds=timeout_seconds,
            )
        )
        return self

    def on_failure(self, hook: FailureHook) -> WorkflowBuilder:
        self._on_failure = hook
        return self

    def build(self) -> WorkflowDefinition:
        if not self._steps:
            raise ValueError(f"Workflow {self._workflow_id!r} has no steps")

        seen: set[str] = set()
        for step in self._steps:
            if not step.step_id.strip():
                raise ValueError("step_id is required")
            if step.step_id in seen:
                raise ValueError(f"Duplicate step id {step.step_id!r}")
            for predecessor in step.after or ():
                # Predecessors must be declared first so declared order stays topological.
                if predecessor not in seen:
                    raise ValueError(
                        f"Step {step.step_id!r} depends on {predecessor!r}, "
                        "which is not declared before it"
                    )
            seen.add(step.step_id)

        return WorkflowDefinition(
            workflow_id=self._workflow_id,
            steps=tuple(self._steps),
            retry_policy=self._retry_policy,
            input_schema=self._input_schema,
            on_failure=self._on_failure,
        )
