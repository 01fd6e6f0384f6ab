"""Idempotent threshold alerting.

Alerts are sent at most once per (subject, category, period, threshold), even
when the step that evaluates them is retried or redelivered.
"""

from trigger_bridge.alerts.dispatcher import AlertDispatcher, AlertOutcome
from trigger_bridge.alerts.notifier import LoggingNotifier, Notifier, WebhookNotifier
from trigger_bridge.alerts.store import AlertDedupKey, AlertDedupStore, AlertRecord

__all__ = [
    "AlertDedupKey",
    "AlertDedupStore",
    "AlertDispatcher",
    "AlertOutcome",
    "AlertRecord",
    "LoggingNotifier",
    "Notifier",
    "WebhookNotifier",
]
