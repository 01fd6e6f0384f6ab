"""Unit tests for route path -> connector -> channel resolution."""

from __future__ import annotations

import pytest

from trigger_bridge.orchestrator.triggers.connector import (
    channel_name_for,
    channel_name_for_connector,
    function_identifier,
    resolve_connector,
)


@pytest.mark.parametrize(
    ("path", "connector"),
    [
        ("/linear/webhook", "linear"),
        ("/api/github/events", "github"),
        ("/webhooks/slack/action", "webhooks"),
        ("/webhooks/telegram/action", "webhooks"),
        ("stripe", "stripe"),
    ],
)
def test_resolve_connector(path: str, connector: str) -> None:
    assert resolve_connector(path) == connector


def test_channel_name_and_function_identifier() -> None:
    assert channel_name_for_connector("linear") == "event/api.webhooks.linear.action"
    assert channel_name_for("/api/github/events") == "event/api.webhooks.github.action"
    assert function_identifier("linear") == "api-linear"


def test_routes_under_webhooks_share_a_channel() -> None:
    assert channel_name_for("/webhooks/slack/action") == channel_name_for(
        "/webhooks/telegram/action"
    )
