from __future__ import annotations

from dataclasses import dataclass, field

CORRELATION_HEADER = "x-run-id"
CRON_MANUAL_EVENT = "cron.trigger"
WORKFLOW_EVENT_PREFIX = "workflow."


def workflow_event_name(workflow_id: str) -> str:
    return f"{WORKFLOW_EVENT_PREFIX}{workflow_id}"


def workflow_start_path(workflow_id: str) -> str:
    return f"/api/v1/workflows/{workflow_id}/start"


@dataclass(frozen=True, slots=True)
class InboundEventData:
    method: str = "POST"
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    run_id: str | None = None


@dataclass(frozen=True, slots=True)
class InboundEvent:
    """A single trigger delivery.

    Events are transient: constructed, forwarded, discarded. Delivery is
    at-least-once, so anything acting on an event must tolerate duplicates.
    """

    name: str
    data: InboundEventData = field(default_factory=InboundEventData)

    def to_json(self) -> dict[str, object]:
        data: dict[str, object] = {
            "method": self.data.method,
            "headers": dict(self.data.headers),
            "body": self.data.body.decode("utf-8", errors="replace"),
        }
        if self.data.run_id is not None:
            data["runId"] = self.data.run_id
        return {"name": self.name, "data": data}

    @staticmethod
    def from_json(obj: dict[str, object]) -> InboundEvent:
        name = obj.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValueError("Event name is required")

        raw = obj.get("data")
        data = raw if isinstance(raw, dict) else {}

        method = data.get("method")
        headers_raw = data.get("headers")
        headers = (
            {str(k): str(v) for k, v in headers_raw.items()}
            if isinstance(headers_raw, dict)
            else {}
        )
        body_raw = data.get("body")
        if isinstance(body_raw, bytes):
            body = body_raw
        elif isinstance(body_raw, str):
            body = body_raw.encode("utf-8")
        else:
            body = b""
        run_raw = data.get("runId", data.get("run_id"))
        run_id = run_raw if isinstance(run_raw, str) and run_raw.strip() else None

        return InboundEvent(
            name=name.strip(),
            data=InboundEventData(
                method=method.upper() if isinstance(method, str) and method else "POST",
                headers=headers,
                body=body,
                run_id=run_id,
            ),
        )
