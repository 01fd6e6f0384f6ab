"""HTTP delivery of inbound events to the local workflow-start handler.

The forwarder's job is delivery, not business logic: a 2xx means the handler
accepted the event. Failures are classified so the upstream scheduler knows
whether redelivery can help.
"""

from __future__ import annotations

import logging

import requests

from ..errors import NonRetriableDeliveryError, RetriableDeliveryError
from ..retry import ErrorClass, RetryPolicy, classify_status_code
from .events import CORRELATION_HEADER, InboundEvent

logger = logging.getLogger(__name__)


class EventForwarder:
    """Small wrapper around a requests session pointed at the local server."""

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("Forwarding base URL is required")
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        if session is None:
            session = requests.Session()
            session.headers.update({"User-Agent": "durable-trigger-bridge"})
        self._session = session

    @property
    def base_url(self) -> str:
        return self._base_url

    def close(self) -> None:
        self._session.close()

    def target_url(self, target_path: str) -> str:
        return f"{self._base_url}/{target_path.lstrip('/')}"

    def forward(
        self,
        event: InboundEvent,
        *,
        target_path: str,
        retry_policy: RetryPolicy | None = None,
    ) -> int:
        policy = retry_policy or RetryPolicy()
        headers = dict(event.data.headers)
        if event.data.run_id:
            headers[CORRELATION_HEADER] = event.data.run_id

        url = self.target_url(target_path)
        log_extra = {
            "event": event.name,
            "url": url,
            "method": event.data.method,
            "run_id": event.data.run_id,
        }
        logger.debug("Forwarding event", extra=log_extra)

        try:
            resp = self._session.request(
                event.data.method,
                url,
                headers=headers,
                data=event.data.body,
                timeout=self._timeout_seconds,
            )
        except requests.Timeout as e:
            logger.warning("Forwarding timed out", extra=log_extra)
            raise RetriableDeliveryError(
                f"Timed out forwarding {event.name} to {url}",
                status_code=408,
                retry_after_seconds=policy.backoff_for(1),
            ) from e
        except requests.RequestException as e:
            logger.warning("Forwarding failed", extra={**log_extra, "error": str(e)})
            raise RetriableDeliveryError(
                f"Failed to forward {event.name} to {url}: {e}",
                retry_after_seconds=policy.backoff_for(1),
            ) from e

        if resp.ok:
            logger.info("Event forwarded", extra={**log_extra, "status_code": resp.status_code})
            return resp.status_code

        message = f"Failed to forward {event.name}: {resp.status_code} {resp.reason}"
        if classify_status_code(resp.status_code) is ErrorClass.RETRIABLE:
            logger.warning(
                "Forwarding rejected (retriable)",
                extra={**log_extra, "status_code": resp.status_code},
            )
            raise RetriableDeliveryError(
                message,
                status_code=resp.status_code,
                retry_after_seconds=_retry_after(resp, policy),
            )

        logger.error(
            "Forwarding rejected (non-retriable)",
            extra={**log_extra, "status_code": resp.status_code},
        )
        raise NonRetriableDeliveryError(message, status_code=resp.status_code)


def _retry_after(resp: requests.Response, policy: RetryPolicy) -> float:
    raw = resp.headers.get("Retry-After", "")
    try:
        return max(float(raw), 0.0)
    except ValueError:
        return policy.backoff_for(1)
