#!/usr/bin/env python3
"""Programmatic expense run example.

This drives the bridge components directly, without the HTTP server:

* load settings from `.env`
* start an expense workflow run from a webhook-style payload
* resume it if it suspends waiting for a category

State is written under `BRIDGE_STATE_PATH` (default `bridge_state/`).
"""

from __future__ import annotations

import argparse
import json
from typing import Sequence

from trigger_bridge.expenses import EXPENSE_WORKFLOW_ID, expense_input_from_payload
from trigger_bridge.orchestrator.config import BridgeSettings
from trigger_bridge.orchestrator.logging import configure_logging
from trigger_bridge.orchestrator.workflow.state_machine import RunStatus
from trigger_bridge.server.bootstrap import build_bridge
from trigger_bridge.server.config import ServerSettings


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Record an expense (programmatic example).")
    parser.add_argument("--subject", required=True, help="Who the expense belongs to")
    parser.add_argument("--amount", required=True, type=float, help="Expense amount")
    parser.add_argument("--category", default=None, help="Category (omit to be asked)")
    parser.add_argument("--description", default="", help="Free-text description")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = BridgeSettings()
    configure_logging(settings.log_level, json_output=False)

    bridge = build_bridge(settings, ServerSettings())
    try:
        payload = {
            "subjectId": args.subject,
            "amount": args.amount,
            "category": args.category,
            "description": args.description,
        }
        input_data = expense_input_from_payload(payload)
        if input_data is None:
            print("Nothing to record")
            return 1

        run = bridge.runtime.create_run(EXPENSE_WORKFLOW_ID, input_data)
        run = bridge.runtime.advance(run.run_id)

        if run.status == RunStatus.SUSPENDED:
            print(json.dumps(run.suspend_payload, indent=2))
            answer = input("Category: ").strip()
            run = bridge.runtime.resume(run.run_id, {"category": answer})

        print(f"Run {run.run_id}: {run.status.value}")
        return 0 if run.status == RunStatus.SUCCESS else 1
    finally:
        bridge.close()


if __name__ == "__main__":
    raise SystemExit(main())
