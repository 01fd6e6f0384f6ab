"""Configuration for the trigger bridge.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Everything has a usable default so a bare checkout can serve and run the
reference workflows without any setup.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from trigger_bridge.orchestrator.retry import RetryPolicy


class BridgeSettings(BaseSettings):
    """Settings for the bridge runtime.

    Environment variables:
    - LOG_LEVEL                       (optional)
    - BRIDGE_ENV                      (development | production)
    - BRIDGE_STATE_PATH               (optional)
    - BRIDGE_STEP_RETRIES             (optional; overrides the environment default)
    - BRIDGE_RETRY_BACKOFF_SECONDS    (optional)
    - BRIDGE_STEP_TIMEOUT_SECONDS     (optional; default 300, "none" disables)
    - BRIDGE_STEP_WORKERS             (optional)
    - BRIDGE_ALERT_THRESHOLDS         (optional, e.g. "80,100")
    - BRIDGE_ALERT_RETENTION_PERIODS  (optional)
    - BRIDGE_NOTIFIER_URL             (optional; logs notifications when unset)
    - BRIDGE_CRON_SCHEDULE            (optional)
    - BRIDGE_CRON_ENABLED             (optional)
    - BRIDGE_CRON_POLL_SECONDS        (optional)
    - BRIDGE_STRICT_CHANNELS          (optional)
    - BRIDGE_EXPENSE_WEBHOOK_PATH     (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `BridgeSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    environment: Literal["development", "production"] = Field(
        default="development",
        validation_alias="BRIDGE_ENV",
        description="Selects retry defaults and the log format",
    )

    state_path: Path = Field(
        default=Path("bridge_state"),
        validation_alias="BRIDGE_STATE_PATH",
        description="Directory where runs, alert records and the ledger are persisted",
    )

    step_retries: int | None = Field(
        default=None,
        ge=0,
        validation_alias="BRIDGE_STEP_RETRIES",
        description="Retries after the first attempt (default: 0 in development, 3 in production)",
    )
    retry_backoff_seconds: float = Field(
        default=1.0,
        ge=0,
        validation_alias="BRIDGE_RETRY_BACKOFF_SECONDS",
        description="Base delay for exponential retry backoff",
    )
    step_timeout_seconds: float | None = Field(
        default=300.0,
        gt=0,
        validation_alias="BRIDGE_STEP_TIMEOUT_SECONDS",
        description="Default wall-clock limit per step (\"none\" disables the limit)",
    )
    step_workers: int = Field(
        default=4,
        ge=1,
        validation_alias="BRIDGE_STEP_WORKERS",
        description="Worker threads used to enforce step timeouts",
    )

    alert_thresholds_raw: str = Field(
        default="80,100",
        validation_alias="BRIDGE_ALERT_THRESHOLDS",
        description="Comma-separated budget alert thresholds in percent",
    )
    alert_retention_periods: int = Field(
        default=3,
        ge=1,
        validation_alias="BRIDGE_ALERT_RETENTION_PERIODS",
        description="Monthly periods of alert dedup records kept by housekeeping",
    )
    notifier_url: str = Field(
        default="",
        validation_alias="BRIDGE_NOTIFIER_URL",
        description="Webhook that receives outbound notifications",
    )

    cron_schedule: str = Field(
        default="0 3 * * *",
        validation_alias="BRIDGE_CRON_SCHEDULE",
        description="Schedule of the housekeeping cron trigger",
    )
    cron_enabled: bool = Field(
        default=True,
        validation_alias="BRIDGE_CRON_ENABLED",
        description="Run the in-process cron scheduler while serving",
    )
    cron_poll_seconds: float = Field(
        default=15.0,
        gt=0,
        validation_alias="BRIDGE_CRON_POLL_SECONDS",
        description="How often the cron scheduler checks for due triggers",
    )

    strict_channels: bool = Field(
        default=False,
        validation_alias="BRIDGE_STRICT_CHANNELS",
        description="Reject routes that resolve to an already-served channel",
    )
    expense_webhook_path: str = Field(
        default="/webhooks/expenses/action",
        validation_alias="BRIDGE_EXPENSE_WEBHOOK_PATH",
        description="Mount path of the expense webhook route",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("step_timeout_seconds", mode="before")
    @classmethod
    def _parse_timeout(cls, value: object) -> object:
        if isinstance(value, str) and value.strip().lower() in {"", "none", "off"}:
            return None
        return value

    @field_validator("alert_thresholds_raw")
    @classmethod
    def _validate_thresholds(cls, value: str) -> str:
        parts = [p.strip() for p in value.split(",") if p.strip()]
        if not parts:
            raise ValueError("BRIDGE_ALERT_THRESHOLDS must list at least one threshold")
        for part in parts:
            if not part.isdigit() or int(part) <= 0:
                raise ValueError(f"Invalid alert threshold: {part!r}")
        return value

    @field_validator("expense_webhook_path")
    @classmethod
    def _validate_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("BRIDGE_EXPENSE_WEBHOOK_PATH must start with '/'")
        return value

    @property
    def alert_thresholds(self) -> tuple[int, ...]:
        return tuple(int(p) for p in self.alert_thresholds_raw.split(",") if p.strip())

    @property
    def runs_state_dir(self) -> Path:
        """Directory holding one JSON file per workflow run."""

        return self.state_path / "runs"

    @property
    def alerts_state_file(self) -> Path:
        return self.state_path / "alerts.json"

    @property
    def ledger_state_file(self) -> Path:
        return self.state_path / "ledger.json"

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy.for_environment(
            self.environment,
            retries=self.step_retries,
            backoff_seconds=self.retry_backoff_seconds,
        )
