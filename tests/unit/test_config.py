"""Unit tests for settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from trigger_bridge.orchestrator.config import BridgeSettings
from trigger_bridge.server.config import ServerSettings


def test_defaults(clean_env: Path) -> None:
    settings = BridgeSettings()

    assert settings.environment == "development"
    assert settings.log_level == "INFO"
    assert settings.state_path == Path("bridge_state")
    assert settings.runs_state_dir == Path("bridge_state") / "runs"
    assert settings.alerts_state_file == Path("bridge_state") / "alerts.json"
    assert settings.ledger_state_file == Path("bridge_state") / "ledger.json"
    assert settings.alert_thresholds == (80, 100)
    assert settings.expense_webhook_path == "/webhooks/expenses/action"
    assert settings.strict_channels is False
    assert settings.retry_policy().max_attempts == 1
    assert settings.step_timeout_seconds == 300.0


def test_settings_loads_from_dotenv(clean_env: Path) -> None:
    (clean_env / ".env").write_text(
        "\n".join(
            [
                "LOG_LEVEL=DEBUG",
                "BRIDGE_ENV=production",
                "BRIDGE_STATE_PATH=/var/lib/bridge",
                "BRIDGE_ALERT_THRESHOLDS=50, 90,100",
                "BRIDGE_STRICT_CHANNELS=true",
                "",
            ]
        ),
        encoding="utf-8",
    )

    settings = BridgeSettings()

    assert settings.log_level == "DEBUG"
    assert settings.environment == "production"
    assert settings.state_path == Path("/var/lib/bridge")
    assert settings.alert_thresholds == (50, 90, 100)
    assert settings.strict_channels is True
    assert settings.retry_policy().max_attempts == 4


def test_step_retries_override_environment_default(
    clean_env: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("BRIDGE_ENV", "production")
    monkeypatch.setenv("BRIDGE_STEP_RETRIES", "1")
    monkeypatch.setenv("BRIDGE_RETRY_BACKOFF_SECONDS", "2.5")

    policy = BridgeSettings().retry_policy()

    assert policy.max_attempts == 2
    assert policy.backoff_seconds == 2.5


@pytest.mark.parametrize("value", ["none", "Off", ""])
def test_step_timeout_can_be_disabled(
    clean_env: Path, monkeypatch: pytest.MonkeyPatch, value: str
) -> None:
    monkeypatch.setenv("BRIDGE_STEP_TIMEOUT_SECONDS", value)

    assert BridgeSettings().step_timeout_seconds is None

    monkeypatch.setenv("BRIDGE_STEP_TIMEOUT_SECONDS", "12.5")
    assert BridgeSettings().step_timeout_seconds == 12.5


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("BRIDGE_ENV", "staging"),
        ("BRIDGE_ALERT_THRESHOLDS", "80,lots"),
        ("BRIDGE_ALERT_THRESHOLDS", " , "),
        ("BRIDGE_EXPENSE_WEBHOOK_PATH", "webhooks/expenses"),
        ("BRIDGE_STEP_WORKERS", "0"),
        ("BRIDGE_STEP_TIMEOUT_SECONDS", "0"),
    ],
)
def test_invalid_settings_are_rejected(
    clean_env: Path, monkeypatch: pytest.MonkeyPatch, name: str, value: str
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        BridgeSettings()


def test_server_settings_forward_to_own_address_by_default(
    clean_env: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("BRIDGE_HOST", "0.0.0.0")
    monkeypatch.setenv("BRIDGE_PORT", "9000")

    settings = ServerSettings()
    assert settings.resolved_forward_base_url() == "http://0.0.0.0:9000"

    monkeypatch.setenv("BRIDGE_FORWARD_BASE_URL", "https://bridge.internal/")
    assert ServerSettings().resolved_forward_base_url() == "https://bridge.internal"
