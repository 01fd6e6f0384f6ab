"""Durable Trigger Bridge.

Routes webhook deliveries and cron ticks into durable workflow runs:
- configuration loaded from `.env`
- structured logging
- a boot-time trigger registry and an HTTP event forwarder
- a step runtime that memoizes, retries, suspends and resumes runs
- idempotent budget alerts
"""

__version__ = "0.1.0"

from trigger_bridge.orchestrator.config import BridgeSettings

__all__ = ["__version__", "BridgeSettings"]
