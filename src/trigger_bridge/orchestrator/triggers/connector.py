"""Route path -> connector name -> event channel name.

Examples:
    /linear/webhook          -> linear   -> event/api.webhooks.linear.action
    /api/github/events       -> github   -> event/api.webhooks.github.action
    /webhooks/slack/action   -> webhooks -> event/api.webhooks.webhooks.action

Only the first remaining segment is used, so every route mounted under
``/webhooks/<name>/...`` shares one channel. Callers sharing a channel must
tell their payloads apart themselves.
"""

from __future__ import annotations

CHANNEL_PREFIX = "event/api.webhooks."
CHANNEL_SUFFIX = ".action"
FUNCTION_ID_PREFIX = "api-"


def resolve_connector(path: str) -> str:
    stripped = path.lstrip("/")
    if stripped.startswith("api/"):
        stripped = stripped[len("api/") :]
    return stripped.split("/")[0]


def channel_name_for_connector(connector: str) -> str:
    return f"{CHANNEL_PREFIX}{connector}{CHANNEL_SUFFIX}"


def channel_name_for(path: str) -> str:
    return channel_name_for_connector(resolve_connector(path))


def function_identifier(connector: str) -> str:
    return f"{FUNCTION_ID_PREFIX}{connector}"
