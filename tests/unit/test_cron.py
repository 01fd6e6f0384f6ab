"""Unit tests for cron trigger sources and the scheduler."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from unittest.mock import Mock

import pytest

from trigger_bridge.orchestrator.triggers.cron import (
    CronScheduler,
    CronTriggerSource,
    forwarding_dispatch,
)
from trigger_bridge.orchestrator.triggers.forwarder import EventForwarder
from trigger_bridge.orchestrator.triggers.registry import CronRegistration
from trigger_bridge.orchestrator.workflow.definition import WorkflowBuilder
from trigger_bridge.orchestrator.workflow.run_store import RunStore, WorkflowRun
from trigger_bridge.orchestrator.workflow.runtime import StepExecutionRuntime

REGISTRATION = CronRegistration(
    identifier="cron-trigger", schedule="0 3 * * *", workflow_id="housekeeping"
)


@pytest.fixture
def runtime(run_store: RunStore) -> StepExecutionRuntime:
    workflow = WorkflowBuilder("housekeeping").step("prune", lambda _ctx: {"removed": 0}).build()
    return StepExecutionRuntime(store=run_store, workflows=[workflow])


def test_fire_creates_run_and_dispatches(
    runtime: StepExecutionRuntime, caplog: pytest.LogCaptureFixture
) -> None:
    dispatched: list[WorkflowRun] = []
    source = CronTriggerSource(REGISTRATION, runtime=runtime, dispatch=dispatched.append)

    with caplog.at_level(logging.INFO):
        run = source.fire(reason="manual")

    assert [r.run_id for r in dispatched] == [run.run_id]
    assert runtime.get_run(run.run_id).workflow_id == "housekeeping"

    messages = {r.getMessage(): r for r in caplog.records}
    assert "Cron trigger fired" in messages
    assert messages["Cron workflow run created"].run_id == run.run_id
    assert messages["Cron workflow run dispatched"].run_id == run.run_id
    assert messages["Cron trigger fired"].reason == "manual"


def test_fire_logs_and_reraises_dispatch_failures(
    runtime: StepExecutionRuntime, caplog: pytest.LogCaptureFixture
) -> None:
    dispatch = Mock(side_effect=RuntimeError("server down"))
    source = CronTriggerSource(REGISTRATION, runtime=runtime, dispatch=dispatch)

    with caplog.at_level(logging.ERROR), pytest.raises(RuntimeError):
        source.fire()

    failure = next(r for r in caplog.records if r.getMessage() == "Cron workflow dispatch failed")
    assert failure.exc_info is not None
    assert failure.run_id


def test_handles_manual_event_only(runtime: StepExecutionRuntime) -> None:
    source = CronTriggerSource(REGISTRATION, runtime=runtime, dispatch=lambda _run: None)

    assert source.handles("cron.trigger")
    assert not source.handles("event/api.webhooks.linear.action")


def test_next_fire_time() -> None:
    source = CronTriggerSource(REGISTRATION, runtime=Mock(), dispatch=lambda _run: None)

    base = datetime(2025, 1, 1, 0, 0, tzinfo=UTC)
    assert source.next_fire_time(base) == datetime(2025, 1, 1, 3, 0, tzinfo=UTC)
    assert source.next_fire_time(datetime(2025, 1, 1, 4, 0, tzinfo=UTC)) == datetime(
        2025, 1, 2, 3, 0, tzinfo=UTC
    )


def test_scheduler_fires_when_due(runtime: StepExecutionRuntime) -> None:
    dispatched: list[WorkflowRun] = []
    source = CronTriggerSource(REGISTRATION, runtime=runtime, dispatch=dispatched.append)
    scheduler = CronScheduler([source], poll_seconds=1.0)

    start = datetime(2025, 1, 1, 0, 0, tzinfo=UTC)
    assert scheduler.tick(start) == []
    assert scheduler.next_fire_times() == {"cron-trigger": start + timedelta(hours=3)}

    assert scheduler.tick(start + timedelta(hours=2)) == []
    fired = scheduler.tick(start + timedelta(hours=3))

    assert len(fired) == 1
    assert dispatched == fired
    assert scheduler.next_fire_times()["cron-trigger"] == datetime(2025, 1, 2, 3, 0, tzinfo=UTC)


def test_scheduler_keeps_running_when_a_source_fails(runtime: StepExecutionRuntime) -> None:
    failing = CronTriggerSource(
        CronRegistration(identifier="broken", schedule="0 3 * * *", workflow_id="housekeeping"),
        runtime=runtime,
        dispatch=Mock(side_effect=RuntimeError("nope")),
    )
    dispatched: list[WorkflowRun] = []
    healthy = CronTriggerSource(REGISTRATION, runtime=runtime, dispatch=dispatched.append)
    scheduler = CronScheduler([failing, healthy])

    start = datetime(2025, 1, 1, 0, 0, tzinfo=UTC)
    scheduler.tick(start)
    fired = scheduler.tick(start + timedelta(hours=3, seconds=5))

    assert len(fired) == 1
    assert len(dispatched) == 1


def test_forwarding_dispatch_sends_workflow_event(runtime: StepExecutionRuntime) -> None:
    forwarder = Mock(spec=EventForwarder)
    run = runtime.create_run("housekeeping")

    forwarding_dispatch(forwarder)(run)

    forwarder.forward.assert_called_once()
    event = forwarder.forward.call_args.args[0]
    assert event.name == "workflow.housekeeping"
    assert event.data.run_id == run.run_id
    assert event.data.body == b"{}"
    assert forwarder.forward.call_args.kwargs["target_path"] == (
        "/api/v1/workflows/housekeeping/start"
    )
