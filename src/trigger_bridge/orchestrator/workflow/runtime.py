"""Step execution runtime.

Drives a :class:`WorkflowRun` through its workflow's steps, persisting every
step result before moving on. A step with a recorded success is never executed
again for that run; re-invoking :meth:`StepExecutionRuntime.advance` after a
crash or a retriable failure therefore picks up exactly where the run left
off.

Retries are not timed in-process. A retriable failure records the next attempt
and returns; whoever redelivers (the scheduler, an operator, the HTTP
``advance`` endpoint) re-invokes ``advance`` later. A step that overran its
timeout keeps the run busy until its worker thread returns, so a retry never
overlaps the abandoned execution.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Iterable, Iterator
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from contextlib import contextmanager
from typing import Any

from pydantic import TypeAdapter, ValidationError

from ..errors import (
    RegistrationConflictError,
    ResumeMismatchError,
    RunBusyError,
    RunCanceledError,
    RunNotFoundError,
    StepTimeoutError,
    UnknownWorkflowError,
)
from .definition import StepContext, StepDefinition, SuspendStep, WorkflowDefinition
from .run_store import RunStore, StepResult, WorkflowRun
from .state_machine import RunStatus, StepStatus, transition

logger = logging.getLogger(__name__)

_JSON = TypeAdapter(Any)


def _jsonable(value: Any) -> Any:
    return _JSON.dump_python(value, mode="json")


class StepExecutionRuntime:
    def __init__(
        self,
        *,
        store: RunStore,
        workflows: Iterable[WorkflowDefinition] = (),
        default_step_timeout_seconds: float | None = None,
        max_workers: int = 4,
    ) -> None:
        self._store = store
        self._workflows: dict[str, WorkflowDefinition] = {}
        self._default_timeout = default_step_timeout_seconds
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="step")
        self._leases: set[str] = set()
        self._leases_lock = threading.Lock()
        # Timed-out step executions whose worker thread is still running, by run id.
        self._abandoned: dict[str, Future[Any]] = {}
        for definition in workflows:
            self.register_workflow(definition)

    @property
    def store(self) -> RunStore:
        return self._store

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    # -- workflows ---------------------------------------------------------

    def register_workflow(self, definition: WorkflowDefinition) -> None:
        existing = self._workflows.get(definition.workflow_id)
        if existing is not None and existing is not definition:
            raise RegistrationConflictError(
                f"Workflow {definition.workflow_id!r} is already registered"
            )
        self._workflows[definition.workflow_id] = definition

    def workflow(self, workflow_id: str) -> WorkflowDefinition:
        try:
            return self._workflows[workflow_id]
        except KeyError:
            raise UnknownWorkflowError(workflow_id) from None

    def workflow_ids(self) -> list[str]:
        return sorted(self._workflows)

    # -- runs --------------------------------------------------------------

    def create_run(
        self, workflow_id: str, input_data: dict[str, Any] | None = None
    ) -> WorkflowRun:
        definition = self.workflow(workflow_id)
        data = dict(input_data or {})
        if definition.input_schema is not None:
            data = definition.input_schema.model_validate(data).model_dump(mode="json")
        run = self._store.create(workflow_id=workflow_id, input_data=data)
        logger.info(
            "Workflow run created", extra={"run_id": run.run_id, "workflow_id": workflow_id}
        )
        return run

    def get_run(self, run_id: str) -> WorkflowRun:
        run = self._store.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    def list_runs(self, *, status: RunStatus | None = None) -> list[WorkflowRun]:
        return self._store.list(status=status)

    def advance(self, run_id: str) -> WorkflowRun:
        with self._lease(run_id):
            run = self.get_run(run_id)
            log_extra = {"run_id": run_id, "workflow_id": run.workflow_id}
            if run.status == RunStatus.CANCELED:
                raise RunCanceledError(run_id)
            if run.is_terminal:
                logger.info(
                    "Run already finished; nothing to advance",
                    extra={**log_extra, "status": run.status.value},
                )
                return run
            if run.status == RunStatus.SUSPENDED:
                logger.info(
                    "Run is suspended; waiting for resume",
                    extra={**log_extra, "step_id": run.suspended_step_id},
                )
                return run
            return self._drive(run, self.workflow(run.workflow_id))

    def resume(
        self,
        run_id: str,
        resume_data: dict[str, Any] | None = None,
        *,
        step_id: str | None = None,
    ) -> WorkflowRun:
        """Continue a suspended run with the external input it was waiting for.

        Any mismatch (run not suspended, wrong step, resume data of the wrong
        shape) raises :class:`ResumeMismatchError` and leaves the run suspended.
        """

        with self._lease(run_id):
            run = self.get_run(run_id)
            if run.status == RunStatus.CANCELED:
                raise RunCanceledError(run_id)
            if run.status != RunStatus.SUSPENDED or run.suspended_step_id is None:
                raise ResumeMismatchError(
                    f"Run {run_id} is {run.status.value}, not suspended"
                )
            suspended = run.suspended_step_id
            if step_id is not None and step_id != suspended:
                raise ResumeMismatchError(
                    f"Run {run_id} is suspended at step {suspended!r}, not {step_id!r}"
                )

            definition = self.workflow(run.workflow_id)
            step = definition.step(suspended)
            data = dict(resume_data or {})
            if step.resume_schema is not None:
                try:
                    data = step.resume_schema.model_validate(data).model_dump(mode="json")
                except ValidationError as e:
                    raise ResumeMismatchError(
                        f"Resume data does not match step {suspended!r}: {e}"
                    ) from e

            held = run.step_results.get(suspended) or StepResult(
                step_id=suspended, status=StepStatus.SUSPENDED
            )
            run.step_results[suspended] = held.model_copy(update={"resume_data": data})
            run.status = transition(current=run.status, to=RunStatus.RUNNING)
            run.suspended_step_id = None
            run.suspend_payload = None
            run = self._store.save(run)
            logger.info(
                "Resuming workflow run",
                extra={"run_id": run_id, "workflow_id": run.workflow_id, "step_id": suspended},
            )
            return self._drive(run, definition)

    def cancel(self, run_id: str, reason: str = "") -> WorkflowRun:
        with self._lease(run_id, wait_for_steps=False):
            run = self.get_run(run_id)
            run.status = transition(current=run.status, to=RunStatus.CANCELED)
            run.error = reason or "Canceled by operator"
            run.suspended_step_id = None
            run.suspend_payload = None
            run = self._store.save(run)
            logger.warning(
                "Workflow run canceled",
                extra={"run_id": run_id, "workflow_id": run.workflow_id, "reason": run.error},
            )
            return run

    def retry_after_seconds(self, run: WorkflowRun) -> float | None:
        pending = run.pending_retry()
        if pending is None:
            return None
        definition = self.workflow(run.workflow_id)
        policy = definition.policy_for(definition.step(pending.step_id))
        return policy.backoff_for(pending.attempt - 1)

    # -- internals ---------------------------------------------------------

    @contextmanager
    def _lease(self, run_id: str, *, wait_for_steps: bool = True) -> Iterator[None]:
        with self._leases_lock:
            if run_id in self._leases:
                raise RunBusyError(run_id)
            if wait_for_steps and self._step_still_running(run_id):
                raise RunBusyError(run_id)
            self._leases.add(run_id)
        try:
            yield
        finally:
            with self._leases_lock:
                self._leases.discard(run_id)

    def _step_still_running(self, run_id: str) -> bool:
        """Caller must hold ``_leases_lock``."""

        future = self._abandoned.get(run_id)
        if future is None:
            return False
        if future.done():
            del self._abandoned[run_id]
            return False
        return True

    def _drive(self, run: WorkflowRun, definition: WorkflowDefinition) -> WorkflowRun:
        for step in definition.steps:
            if run.succeeded(step.step_id):
                continue
            predecessors = definition.predecessors(step.step_id)
            if not all(run.succeeded(p) for p in predecessors):
                continue

            proceed = self._run_step(run, definition, step)
            run = self._store.save(run)
            if not proceed:
                if run.status == RunStatus.FAILED:
                    self._notify_failure(run, definition)
                return run

        if all(run.succeeded(s.step_id) for s in definition.steps):
            run.status = transition(current=run.status, to=RunStatus.SUCCESS)
            run.error = None
            run = self._store.save(run)
            logger.info(
                "Workflow run succeeded",
                extra={"run_id": run.run_id, "workflow_id": run.workflow_id},
            )
        return run

    def _run_step(
        self,
        run: WorkflowRun,
        definition: WorkflowDefinition,
        step: StepDefinition,
    ) -> bool:
        previous = run.step_results.get(step.step_id)
        attempt = previous.attempt if previous is not None else 1
        # Resume data stays with the step until it succeeds, so retries see it too.
        resume_data = previous.resume_data if previous is not None else None

        step_input = self._input_for(run, definition, step)
        if resume_data is not None:
            step_input = {**step_input, **resume_data} if isinstance(step_input, dict) else dict(
                resume_data
            )

        ctx = StepContext(
            run_id=run.run_id,
            workflow_id=run.workflow_id,
            step_id=step.step_id,
            attempt=attempt,
            input=step_input,
            resume_data=resume_data,
        )
        log_extra = {
            "run_id": run.run_id,
            "workflow_id": run.workflow_id,
            "step_id": step.step_id,
            "attempt": attempt,
        }
        logger.info("Executing step", extra=log_extra)

        try:
            if step.input_schema is not None:
                step.input_schema.model_validate(step_input)
            output = self._call(step, ctx)
        except SuspendStep as signal:
            payload = _jsonable(signal.payload)
            run.step_results[step.step_id] = StepResult(
                step_id=step.step_id,
                status=StepStatus.SUSPENDED,
                attempt=attempt,
                suspend_payload=payload,
            )
            run.status = transition(current=run.status, to=RunStatus.SUSPENDED)
            run.suspended_step_id = step.step_id
            run.suspend_payload = payload
            logger.info("Step suspended; waiting for external input", extra=log_extra)
            return False
        except Exception as e:
            return self._record_failure(run, definition, step, attempt, e, resume_data)

        run.step_results[step.step_id] = StepResult(
            step_id=step.step_id,
            status=StepStatus.SUCCESS,
            output=_jsonable(output),
            attempt=attempt,
        )
        logger.info("Step succeeded", extra=log_extra)
        return True

    def _record_failure(
        self,
        run: WorkflowRun,
        definition: WorkflowDefinition,
        step: StepDefinition,
        attempt: int,
        error: Exception,
        resume_data: dict[str, Any] | None = None,
    ) -> bool:
        policy = definition.policy_for(step)
        message = f"{type(error).__name__}: {error}"
        log_extra = {
            "run_id": run.run_id,
            "workflow_id": run.workflow_id,
            "step_id": step.step_id,
            "attempt": attempt,
            "error_class": policy.classify(error).value,
        }

        if policy.should_retry(error, attempt=attempt):
            run.step_results[step.step_id] = StepResult(
                step_id=step.step_id,
                status=StepStatus.PENDING,
                attempt=attempt + 1,
                error=message,
                resume_data=resume_data,
            )
            logger.warning(
                "Step failed; retry pending",
                extra={
                    **log_extra,
                    "error": message,
                    "retry_after_seconds": policy.backoff_for(attempt),
                },
            )
            return False

        run.step_results[step.step_id] = StepResult(
            step_id=step.step_id,
            status=StepStatus.FAILED,
            attempt=attempt,
            error=message,
        )
        run.status = transition(current=run.status, to=RunStatus.FAILED)
        run.error = message
        logger.error("Step failed permanently; run failed", extra=log_extra, exc_info=error)
        return False

    def _input_for(
        self, run: WorkflowRun, definition: WorkflowDefinition, step: StepDefinition
    ) -> Any:
        predecessors = definition.predecessors(step.step_id)
        if not predecessors:
            return copy.deepcopy(run.input)
        if len(predecessors) == 1:
            return copy.deepcopy(run.step_results[predecessors[0]].output)
        return {p: copy.deepcopy(run.step_results[p].output) for p in predecessors}

    def _call(self, step: StepDefinition, ctx: StepContext) -> Any:
        timeout = step.timeout_seconds
        if timeout is None:
            timeout = self._default_timeout
        if timeout is None:
            return step.execute(ctx)
        future = self._executor.submit(step.execute, ctx)
        try:
            return future.result(timeout=timeout)
        except FuturesTimeoutError as e:
            if not future.cancel():
                with self._leases_lock:
                    self._abandoned[ctx.run_id] = future
                logger.warning(
                    "Timed-out step is still running; run stays busy until it finishes",
                    extra={"run_id": ctx.run_id, "step_id": step.step_id},
                )
            raise StepTimeoutError(step.step_id, timeout) from e

    def _notify_failure(self, run: WorkflowRun, definition: WorkflowDefinition) -> None:
        if definition.on_failure is None:
            return
        try:
            definition.on_failure(run, run.error or "")
        except Exception:
            logger.exception(
                "Failure hook raised",
                extra={"run_id": run.run_id, "workflow_id": run.workflow_id},
            )
