"""Unit tests for workflow descriptors and the run store."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from trigger_bridge.orchestrator.retry import RetryPolicy
from trigger_bridge.orchestrator.workflow.definition import WorkflowBuilder
from trigger_bridge.orchestrator.workflow.run_store import RunStore, StepResult
from trigger_bridge.orchestrator.workflow.state_machine import RunStatus, StepStatus


def _noop(_ctx):
    return None


def test_builder_requires_steps() -> None:
    with pytest.raises(ValueError):
        WorkflowBuilder("empty").build()


def test_builder_rejects_duplicate_step_ids() -> None:
    with pytest.raises(ValueError):
        WorkflowBuilder("dup").step("a", _noop).step("a", _noop).build()


def test_builder_rejects_forward_references() -> None:
    with pytest.raises(ValueError):
        WorkflowBuilder("fwd").step("a", _noop, after=["b"]).step("b", _noop).build()


def test_predecessors_default_to_previous_step() -> None:
    workflow = (
        WorkflowBuilder("wf")
        .step("a", _noop)
        .step("b", _noop)
        .step("c", _noop, after=["a"])
        .build()
    )

    assert workflow.predecessors("a") == ()
    assert workflow.predecessors("b") == ("a",)
    assert workflow.predecessors("c") == ("a",)


def test_step_policy_overrides_workflow_policy() -> None:
    workflow = (
        WorkflowBuilder("wf", retry_policy=RetryPolicy(max_attempts=2))
        .step("a", _noop)
        .step("b", _noop, retry_policy=RetryPolicy(max_attempts=5))
        .build()
    )

    assert workflow.policy_for(workflow.step("a")).max_attempts == 2
    assert workflow.policy_for(workflow.step("b")).max_attempts == 5


def test_run_store_roundtrip(tmp_path: Path) -> None:
    store = RunStore(tmp_path / "runs")
    run = store.create(workflow_id="wf", input_data={"amount": 5})

    run.status = RunStatus.SUSPENDED
    run.suspended_step_id = "ask"
    run.step_results["ask"] = StepResult(step_id="ask", status=StepStatus.SUSPENDED)
    store.save(run)

    loaded = store.get(run.run_id)
    assert loaded is not None
    assert loaded.status == RunStatus.SUSPENDED
    assert loaded.input == {"amount": 5}
    assert loaded.step_results["ask"].status == StepStatus.SUSPENDED

    raw = json.loads((tmp_path / "runs" / f"{run.run_id}.json").read_text(encoding="utf-8"))
    assert raw["status"] == "suspended"
    assert store.get("missing") is None
