"""Outbound notification channels.

A notifier has no ordering or delivery guarantee of its own; idempotency comes
from the dedup store in front of it.
"""

from __future__ import annotations

import logging
from typing import Protocol

import requests

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def send(self, address: str, message: str) -> bool: ...


class LoggingNotifier:
    """Writes notifications to the log. Used when no outbound channel is configured."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    def send(self, address: str, message: str) -> bool:
        self.sent.append((address, message))
        logger.info("Notification", extra={"address": address, "text": message})
        return True


class WebhookNotifier:
    """POSTs ``{"address": ..., "text": ...}`` to a configured URL."""

    def __init__(
        self,
        *,
        url: str,
        timeout_seconds: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        if not url:
            raise ValueError("Notifier URL is required")
        self._url = url
        self._timeout_seconds = timeout_seconds
        self._session = session or requests.Session()

    def close(self) -> None:
        self._session.close()

    def send(self, address: str, message: str) -> bool:
        try:
            resp = self._session.post(
                self._url,
                json={"address": address, "text": message},
                timeout=self._timeout_seconds,
            )
        except requests.RequestException as e:
            logger.warning(
                "Notification request failed", extra={"address": address, "error": str(e)}
            )
            return False
        if not resp.ok:
            logger.warning(
                "Notification rejected",
                extra={"address": address, "status_code": resp.status_code},
            )
            return False
        return True
