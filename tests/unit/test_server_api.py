from __future__ import annotations

from collections import Counter
from pathlib import Path
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from trigger_bridge.alerts.notifier import LoggingNotifier
from trigger_bridge.orchestrator.config import BridgeSettings
from trigger_bridge.orchestrator.retry import RetryPolicy
from trigger_bridge.orchestrator.triggers.forwarder import EventForwarder
from trigger_bridge.orchestrator.workflow.definition import StepContext, WorkflowBuilder
from trigger_bridge.server.app import create_app
from trigger_bridge.server.bootstrap import Bridge, build_bridge
from trigger_bridge.server.config import ServerSettings

EXPENSE_PATH = "/webhooks/expenses/action"


@pytest.fixture
def bridge(clean_env: Path, monkeypatch: pytest.MonkeyPatch, mock_session: Mock) -> Bridge:
    monkeypatch.setenv("BRIDGE_STATE_PATH", str(clean_env / "state"))
    monkeypatch.setenv("BRIDGE_CRON_ENABLED", "false")

    forwarder = EventForwarder(base_url="http://bridge.test", session=mock_session)
    return build_bridge(
        BridgeSettings(), ServerSettings(), notifier=LoggingNotifier(), forwarder=forwarder
    )


@pytest.fixture
def client(bridge: Bridge) -> TestClient:
    return TestClient(create_app(bridge=bridge))


def _expense(**overrides: object) -> dict[str, object]:
    return {
        "subjectId": "user-1",
        "chatId": "chat-1",
        "amount": 25,
        "category": "Food",
        "occurredAt": "2025-01-10T12:00:00+00:00",
        **overrides,
    }


def test_health_and_triggers(client: TestClient, bridge: Bridge) -> None:
    assert client.get("/api/v1/health").json() == {"status": "ok"}

    triggers = client.get("/api/v1/triggers").json()
    assert triggers["frozen"] is True
    assert bridge.registry.frozen
    assert triggers["routes"][0]["path"] == EXPENSE_PATH
    assert triggers["forwardingFunctions"][0]["channel"] == "event/api.webhooks.webhooks.action"
    assert triggers["cronTriggers"][0]["workflowId"] == "alert-housekeeping"


def test_webhook_starts_and_completes_run(client: TestClient, bridge: Bridge) -> None:
    resp = client.post(EXPENSE_PATH, json=_expense())

    assert resp.status_code == 202
    body = resp.json()
    assert body["status"] == "running"

    # Background advancement has finished by the time TestClient returns.
    run = client.get(f"/api/v1/runs/{body['runId']}").json()
    assert run["status"] == "success"
    assert [s["step_id"] for s in run["steps"]] == ["validate", "persist", "notify"]
    assert len(bridge.ledger.expenses(subject_id="user-1")) == 1


def test_webhook_rejects_invalid_payload(client: TestClient) -> None:
    resp = client.post(EXPENSE_PATH, json={"amount": 5})

    assert resp.status_code == 422


def test_webhook_ignores_payload_without_expense(client: TestClient, bridge: Bridge) -> None:
    resp = client.post(EXPENSE_PATH, json={"message": "hi"})

    assert resp.status_code == 202
    assert resp.json() == {"runId": None, "status": "ignored"}
    assert bridge.runtime.list_runs() == []


def test_suspended_run_resumes_over_http(client: TestClient) -> None:
    payload = _expense()
    del payload["category"]
    run_id = client.post(EXPENSE_PATH, json=payload).json()["runId"]

    run = client.get(f"/api/v1/runs/{run_id}").json()
    assert run["status"] == "suspended"
    assert run["suspended_step_id"] == "validate"

    mismatch = client.post(f"/api/v1/runs/{run_id}/resume", json={"data": {"category": ""}})
    assert mismatch.status_code == 409
    assert client.get(f"/api/v1/runs/{run_id}").json()["status"] == "suspended"

    resumed = client.post(
        f"/api/v1/runs/{run_id}/resume", json={"data": {"category": "Food"}, "step_id": "validate"}
    )
    assert resumed.status_code == 200
    assert resumed.json()["status"] == "success"


def test_channel_event_is_forwarded(client: TestClient, mock_session: Mock) -> None:
    resp = client.post(
        "/api/v1/events",
        json={
            "name": "event/api.webhooks.webhooks.action",
            "data": {
                "method": "POST",
                "headers": {"content-type": "application/json"},
                "body": "{}",
            },
        },
    )

    assert resp.status_code == 200
    assert resp.json()["kind"] == "webhook"
    assert resp.json()["target"] == EXPENSE_PATH
    args = mock_session.request.call_args
    assert args.args == ("POST", f"http://bridge.test{EXPENSE_PATH}")


def test_retriable_delivery_failure_maps_to_503(
    client: TestClient, mock_session: Mock, response_factory
) -> None:
    mock_session.request.return_value = response_factory(503, headers={"Retry-After": "12"})

    resp = client.post("/api/v1/events", json={"name": "event/api.webhooks.webhooks.action"})

    assert resp.status_code == 503
    assert resp.headers["Retry-After"] == "12"


def test_non_retriable_delivery_failure_maps_to_400(
    client: TestClient, mock_session: Mock, response_factory
) -> None:
    mock_session.request.return_value = response_factory(404)

    channel_event = {"name": "event/api.webhooks.webhooks.action"}
    assert client.post("/api/v1/events", json=channel_event).status_code == 400
    assert client.post("/api/v1/events", json={"name": "no.such.event"}).status_code == 400


def test_cron_event_creates_run_and_dispatches_it(
    client: TestClient, bridge: Bridge, mock_session: Mock
) -> None:
    resp = client.post("/api/v1/events", json={"name": "cron.trigger"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["kind"] == "cron"
    assert len(body["runIds"]) == 1

    call = mock_session.request.call_args
    assert call.args == ("POST", "http://bridge.test/api/v1/workflows/alert-housekeeping/start")
    assert call.kwargs["headers"]["x-run-id"] == body["runIds"][0]
    assert bridge.runtime.get_run(body["runIds"][0]).workflow_id == "alert-housekeeping"


def test_workflow_start_attaches_to_existing_run(client: TestClient, bridge: Bridge) -> None:
    run = bridge.runtime.create_run("alert-housekeeping")

    resp = client.post(
        "/api/v1/workflows/alert-housekeeping/start", json={}, headers={"x-run-id": run.run_id}
    )

    assert resp.status_code == 202
    assert resp.json()["runId"] == run.run_id
    assert bridge.runtime.get_run(run.run_id).status.value == "success"
    assert len(bridge.runtime.list_runs()) == 1


def test_workflow_start_errors(client: TestClient, bridge: Bridge) -> None:
    assert client.post("/api/v1/workflows/unknown/start", json={}).status_code == 404
    assert (
        client.post(
            "/api/v1/workflows/alert-housekeeping/start", json={}, headers={"x-run-id": "missing"}
        ).status_code
        == 404
    )

    other = bridge.runtime.create_run("expense-workflow", {"amount": 1})
    mismatched = client.post(
        "/api/v1/workflows/alert-housekeeping/start", json={}, headers={"x-run-id": other.run_id}
    )
    assert mismatched.status_code == 409


def test_advance_reports_pending_retry_as_503(bridge: Bridge) -> None:
    calls: Counter[str] = Counter()

    def flaky(_ctx: StepContext) -> str:
        calls["flaky"] += 1
        if calls["flaky"] == 1:
            raise RuntimeError("upstream 502")
        return "ok"

    bridge.runtime.register_workflow(
        WorkflowBuilder("flaky", retry_policy=RetryPolicy(max_attempts=3, backoff_seconds=2.0))
        .step("flaky", flaky)
        .build()
    )
    client = TestClient(create_app(bridge=bridge))
    run = bridge.runtime.create_run("flaky")

    first = client.post(f"/api/v1/runs/{run.run_id}/advance")
    assert first.status_code == 503
    assert first.headers["Retry-After"] == "2"

    second = client.post(f"/api/v1/runs/{run.run_id}/advance")
    assert second.status_code == 200
    assert second.json()["status"] == "success"


def test_cancel_then_advance_conflicts(client: TestClient, bridge: Bridge) -> None:
    run = bridge.runtime.create_run("alert-housekeeping")

    canceled = client.post(f"/api/v1/runs/{run.run_id}/cancel", json={"reason": "not needed"})
    assert canceled.status_code == 200
    assert canceled.json()["status"] == "canceled"
    assert canceled.json()["error"] == "not needed"

    assert client.post(f"/api/v1/runs/{run.run_id}/advance").status_code == 409
    assert client.post(f"/api/v1/runs/{run.run_id}/resume", json={}).status_code == 409
    assert client.post(f"/api/v1/runs/{run.run_id}/cancel").status_code == 409


def test_list_and_get_runs(client: TestClient, bridge: Bridge) -> None:
    waiting = bridge.runtime.create_run("alert-housekeeping")
    finished = bridge.runtime.advance(bridge.runtime.create_run("alert-housekeeping").run_id)

    all_runs = client.get("/api/v1/runs").json()
    assert {r["run_id"] for r in all_runs} == {waiting.run_id, finished.run_id}

    succeeded = client.get("/api/v1/runs", params={"status": "success"}).json()
    assert [r["run_id"] for r in succeeded] == [finished.run_id]

    assert client.get("/api/v1/runs/does-not-exist").status_code == 404
    assert client.post("/api/v1/runs/does-not-exist/advance").status_code == 404
