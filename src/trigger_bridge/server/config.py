"""Configuration for the REST server.

The server is where forwarded events land, so the forwarder's base URL
defaults to this server's own bind address.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """Settings for the HTTP surface.

    Notes:
        - Runtime behaviour (retries, state, alerts, cron) lives in
          :class:`trigger_bridge.orchestrator.config.BridgeSettings`; this class only
          covers binding and forwarding.
    """

    host: str = Field(default="127.0.0.1", validation_alias="BRIDGE_HOST")
    port: int = Field(default=8000, ge=1, le=65535, validation_alias="BRIDGE_PORT")

    forward_base_url: str = Field(
        default="",
        validation_alias="BRIDGE_FORWARD_BASE_URL",
        description=(
            "Base URL that forwarded events are POSTed to. Defaults to http://<host>:<port>, "
            "i.e. this server's own webhook and workflow-start handlers."
        ),
    )
    forward_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        validation_alias="BRIDGE_FORWARD_TIMEOUT_SECONDS",
        description="Per-request timeout when forwarding an event.",
    )

    # Dev-friendly CORS for an operator UI. Override via BRIDGE_CORS_ORIGINS=...
    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        validation_alias="BRIDGE_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    def resolved_forward_base_url(self) -> str:
        if self.forward_base_url.strip():
            return self.forward_base_url.strip().rstrip("/")
        return f"http://{self.host}:{self.port}"

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
