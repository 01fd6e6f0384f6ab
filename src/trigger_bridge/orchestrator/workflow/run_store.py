"""Durable storage for workflow runs.

One JSON document per run under a state directory. Every access is a short
lock-guarded load or save; the lock is never held while a step executes.
Writes go through a temporary file and an atomic rename so a crash mid-write
leaves the previous version intact.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from .state_machine import RunStatus, StepStatus, is_terminal

logger = logging.getLogger(__name__)


def _utc_iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


class StepResult(BaseModel):
    step_id: str
    status: StepStatus = StepStatus.PENDING
    output: Any = None
    attempt: int = 1
    error: str | None = None
    suspend_payload: Any = None
    resume_data: dict[str, Any] | None = None
    updated_at: str = Field(default_factory=_utc_iso_now)


class WorkflowRun(BaseModel):
    run_id: str
    workflow_id: str
    status: RunStatus = RunStatus.RUNNING
    input: dict[str, Any] = Field(default_factory=dict)
    step_results: dict[str, StepResult] = Field(default_factory=dict)

    suspended_step_id: str | None = None
    suspend_payload: Any = None
    error: str | None = None

    created_at: str = Field(default_factory=_utc_iso_now)
    updated_at: str = Field(default_factory=_utc_iso_now)

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    def succeeded(self, step_id: str) -> bool:
        result = self.step_results.get(step_id)
        return result is not None and result.status == StepStatus.SUCCESS

    def pending_retry(self) -> StepResult | None:
        """The step waiting to be re-attempted, if the run is mid-retry."""

        if self.status != RunStatus.RUNNING:
            return None
        for result in self.step_results.values():
            if result.status == StepStatus.PENDING and result.error is not None:
                return result
        return None


@dataclass
class RunStore:
    root: Path

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def _path(self, run_id: str) -> Path:
        if not run_id or "/" in run_id or run_id.startswith("."):
            raise ValueError(f"Invalid run id: {run_id!r}")
        return self.root / f"{run_id}.json"

    def _load_unlocked(self, path: Path) -> WorkflowRun | None:
        if not path.exists():
            return None
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Run state file is not valid JSON; ignoring", extra={"path": str(path)})
            return None
        if not isinstance(raw, dict):
            return None
        return WorkflowRun.model_validate(raw)

    def _save_unlocked(self, run: WorkflowRun) -> None:
        path = self._path(run.run_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(
            json.dumps(run.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n",
            encoding="utf-8",
        )
        tmp.replace(path)

    def create(self, *, workflow_id: str, input_data: dict[str, Any] | None = None) -> WorkflowRun:
        with self._lock:
            now = _utc_iso_now()
            run = WorkflowRun(
                run_id=str(uuid.uuid4()),
                workflow_id=workflow_id,
                input=dict(input_data or {}),
                created_at=now,
                updated_at=now,
            )
            self._save_unlocked(run)
            return run

    def get(self, run_id: str) -> WorkflowRun | None:
        with self._lock:
            return self._load_unlocked(self._path(run_id))

    def save(self, run: WorkflowRun) -> WorkflowRun:
        with self._lock:
            stamped = run.model_copy(update={"updated_at": _utc_iso_now()})
            self._save_unlocked(stamped)
            return stamped

    def list(self, *, status: RunStatus | None = None) -> list[WorkflowRun]:
        with self._lock:
            if not self.root.exists():
                return []
            runs: list[WorkflowRun] = []
            for path in sorted(self.root.glob("*.json")):
                run = self._load_unlocked(path)
                if run is None:
                    continue
                if status is not None and run.status != status:
                    continue
                runs.append(run)
        runs.sort(key=lambda r: r.created_at)
        return runs
