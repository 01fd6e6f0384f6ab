"""CLI entrypoint for the trigger bridge.

Commands either talk to a running server over HTTP (``send-event``,
``cron-trigger``) or operate on the local state directly (``runs``,
``advance``, ``resume``, ``cancel``, ``prune-alerts``).
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

import requests
import uvicorn
from pydantic import ValidationError

from trigger_bridge import __version__
from trigger_bridge.alerts.store import period_months_ago
from trigger_bridge.orchestrator.config import BridgeSettings
from trigger_bridge.orchestrator.errors import (
    ResumeMismatchError,
    RunBusyError,
    RunCanceledError,
    RunNotFoundError,
)
from trigger_bridge.orchestrator.logging import configure_logging
from trigger_bridge.orchestrator.triggers.connector import (
    channel_name_for,
    function_identifier,
    resolve_connector,
)
from trigger_bridge.orchestrator.triggers.events import (
    CRON_MANUAL_EVENT,
    InboundEvent,
    InboundEventData,
)
from trigger_bridge.orchestrator.workflow.run_store import WorkflowRun
from trigger_bridge.orchestrator.workflow.state_machine import IllegalTransitionError, RunStatus
from trigger_bridge.server.app import create_app
from trigger_bridge.server.bootstrap import build_bridge
from trigger_bridge.server.config import ServerSettings

logger = logging.getLogger(__name__)


def _parse_json_object(value: str | None, *, flag: str) -> dict[str, Any]:
    if value is None:
        return {}
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"{flag} must be valid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise argparse.ArgumentTypeError(f"{flag} must be a JSON object")
    return parsed


def _print_run(run: WorkflowRun) -> None:
    print(json.dumps(run.model_dump(mode="json"), indent=2, ensure_ascii=False))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="trigger-bridge",
        description="Route webhook and cron triggers into durable workflow runs",
    )
    parser.add_argument("--version", action="version", version=f"trigger-bridge {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP server")
    serve.add_argument("--host", default=None, help="Bind address (default: BRIDGE_HOST)")
    serve.add_argument("--port", type=int, default=None, help="Bind port (default: BRIDGE_PORT)")

    channel = subparsers.add_parser(
        "channel", help="Show the connector, channel and forwarding function for a route path"
    )
    channel.add_argument("--path", required=True, help="Route path, e.g. /webhooks/slack/action")

    send_event = subparsers.add_parser(
        "send-event", help="Deliver an event to a running server's event endpoint"
    )
    send_event.add_argument("name", nargs="?", default=None, help="Event name")
    send_event.add_argument(
        "--path", default=None, help="Route path; the event name is its channel name"
    )
    send_event.add_argument("--body", default="{}", help="JSON request body to forward")
    send_event.add_argument("--run-id", default=None, help="Correlate with an existing run")
    send_event.add_argument(
        "--base-url",
        default=None,
        help="Server base URL (default: BRIDGE_FORWARD_BASE_URL or http://BRIDGE_HOST:BRIDGE_PORT)",
    )

    cron_trigger = subparsers.add_parser(
        "cron-trigger", help=f"Fire the cron trigger now by sending {CRON_MANUAL_EVENT!r}"
    )
    cron_trigger.add_argument("--base-url", default=None, help="Server base URL")

    runs = subparsers.add_parser("runs", help="Inspect workflow runs in the local state")
    runs_sub = runs.add_subparsers(dest="runs_command", required=True)
    runs_list = runs_sub.add_parser("list", help="List runs")
    runs_list.add_argument(
        "--status",
        choices=[s.value for s in RunStatus],
        default=None,
        help="Only show runs with this status",
    )
    runs_show = runs_sub.add_parser("show", help="Show a single run")
    runs_show.add_argument("run_id")

    advance = subparsers.add_parser("advance", help="Drive a run as far as it can go")
    advance.add_argument("run_id")

    resume = subparsers.add_parser("resume", help="Resume a suspended run")
    resume.add_argument("run_id")
    resume.add_argument("--data", default="{}", help="Resume data as a JSON object")
    resume.add_argument("--step", default=None, help="Expected suspended step id")

    cancel = subparsers.add_parser("cancel", help="Cancel a run")
    cancel.add_argument("run_id")
    cancel.add_argument("--reason", default="", help="Why the run is being canceled")

    prune = subparsers.add_parser("prune-alerts", help="Delete old alert dedup records")
    prune.add_argument(
        "--before",
        default=None,
        help="Delete records from periods before YYYY-MM "
        "(default: BRIDGE_ALERT_RETENTION_PERIODS months ago)",
    )

    return parser


def _post_event(event: InboundEvent, *, base_url: str) -> int:
    url = f"{base_url.rstrip('/')}/api/v1/events"
    resp = requests.post(url, json=event.to_json(), timeout=30)
    print(f"{resp.status_code} {resp.text}")
    if resp.status_code == 503:
        logger.warning(
            "Delivery failed; retry later",
            extra={"event": event.name, "retry_after": resp.headers.get("Retry-After")},
        )
    return 0 if resp.ok else 1


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "send-event" and bool(args.name) == bool(args.path):
        parser.error("send-event needs exactly one of NAME or --path")

    try:
        settings = BridgeSettings()
        server_settings = ServerSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level, json_output=settings.environment == "production")

    try:
        if args.command == "serve":
            host = args.host or server_settings.host
            port = args.port or server_settings.port
            server_settings = server_settings.model_copy(update={"host": host, "port": port})
            app = create_app(settings=settings, server_settings=server_settings)
            uvicorn.run(app, host=host, port=port, log_config=None)
            return 0

        if args.command == "channel":
            connector = resolve_connector(args.path)
            print(f"connector: {connector}")
            print(f"channel:   {channel_name_for(args.path)}")
            print(f"function:  {function_identifier(connector)}")
            return 0

        if args.command in ("send-event", "cron-trigger"):
            base_url = args.base_url or server_settings.resolved_forward_base_url()
            if args.command == "cron-trigger":
                event = InboundEvent(name=CRON_MANUAL_EVENT)
            else:
                body = _parse_json_object(args.body, flag="--body")
                event = InboundEvent(
                    name=args.name or channel_name_for(args.path),
                    data=InboundEventData(
                        method="POST",
                        headers={"content-type": "application/json"},
                        body=json.dumps(body).encode("utf-8"),
                        run_id=args.run_id,
                    ),
                )
            return _post_event(event, base_url=base_url)

        bridge = build_bridge(settings, server_settings)
        runtime = bridge.runtime
        try:
            if args.command == "runs":
                if args.runs_command == "show":
                    _print_run(runtime.get_run(args.run_id))
                    return 0
                status = RunStatus(args.status) if args.status else None
                for run in runtime.list_runs(status=status):
                    print(
                        f"{run.run_id}  {run.workflow_id:<20} "
                        f"{run.status.value:<10} {run.updated_at}"
                    )
                return 0

            if args.command == "advance":
                run = runtime.advance(args.run_id)
                _print_run(run)
                retry_after = runtime.retry_after_seconds(run)
                if retry_after is not None:
                    print(f"Retry pending; advance again in {retry_after:.0f}s", file=sys.stderr)
                return 0

            if args.command == "resume":
                data = _parse_json_object(args.data, flag="--data")
                _print_run(runtime.resume(args.run_id, data, step_id=args.step))
                return 0

            if args.command == "cancel":
                _print_run(runtime.cancel(args.run_id, args.reason))
                return 0

            if args.command == "prune-alerts":
                before = args.before or period_months_ago(
                    datetime.now(tz=UTC), settings.alert_retention_periods
                )
                removed = bridge.alert_store.prune(before_period=before)
                print(f"Removed {removed} alert record(s) from periods before {before}")
                return 0
        finally:
            bridge.close()

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except argparse.ArgumentTypeError as e:
        print(str(e), file=sys.stderr)
        return 2

    except RunNotFoundError as e:
        print(str(e), file=sys.stderr)
        return 1

    except (
        ResumeMismatchError,
        RunBusyError,
        RunCanceledError,
        IllegalTransitionError,
    ) as e:
        logger.warning(str(e), extra={"run_id": getattr(args, "run_id", None)})
        print(str(e), file=sys.stderr)
        return 3

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
