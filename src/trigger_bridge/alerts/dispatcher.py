from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from trigger_bridge.alerts.notifier import Notifier
from trigger_bridge.alerts.store import AlertDedupKey, AlertDedupStore, AlertRecord

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLDS: tuple[int, ...] = (80, 100)


@dataclass(frozen=True, slots=True)
class AlertOutcome:
    percent_used: int
    threshold: int | None = None
    sent: bool = False
    delivered: bool = False
    suppressed: bool = False
    message: str | None = None


def percent_used(spent: float, limit: float) -> int:
    if limit <= 0:
        return 0
    return round(spent / limit * 100)


def render_message(
    *, category: str, threshold: int, percent: int, spent: float, limit: float
) -> str:
    if threshold >= 100:
        return (
            f"Budget exceeded: you've spent {spent:.2f} on {category}, "
            f"which is {percent}% of your {limit:.2f} budget."
        )
    return (
        f"Budget warning: you've reached {percent}% of your {category} budget. "
        f"Spent {spent:.2f} of {limit:.2f}; {max(0.0, limit - spent):.2f} remaining."
    )


class AlertDispatcher:
    """Sends threshold alerts at most once per (subject, category, period, threshold).

    Only the highest crossed threshold is considered. If it was already alerted
    this period nothing happens, and lower thresholds are not revisited.

    The dedup record is written before the notification is sent: a crash in
    between loses one notification instead of duplicating it on redelivery.
    """

    def __init__(
        self,
        *,
        store: AlertDedupStore,
        notifier: Notifier,
        thresholds: Sequence[int] = DEFAULT_THRESHOLDS,
    ) -> None:
        if not thresholds:
            raise ValueError("At least one threshold is required")
        self._store = store
        self._notifier = notifier
        self._thresholds = tuple(sorted({int(t) for t in thresholds}, reverse=True))

    @property
    def thresholds(self) -> tuple[int, ...]:
        return self._thresholds

    def evaluate(
        self,
        *,
        subject_id: str,
        address: str,
        category: str,
        period: str,
        spent: float,
        limit: float,
    ) -> AlertOutcome:
        percent = percent_used(spent, limit)
        crossed = next((t for t in self._thresholds if percent >= t), None)
        log_extra = {
            "subject_id": subject_id,
            "category": category,
            "period": period,
            "percent_used": percent,
        }
        if crossed is None:
            return AlertOutcome(percent_used=percent)

        log_extra["threshold"] = crossed
        key = AlertDedupKey(
            subject_id=subject_id, category=category, period=period, threshold_percent=crossed
        )
        if self._store.exists(key):
            logger.debug("Alert already sent this period", extra=log_extra)
            return AlertOutcome(percent_used=percent, threshold=crossed, suppressed=True)

        message = render_message(
            category=category, threshold=crossed, percent=percent, spent=spent, limit=limit
        )
        record = AlertRecord(
            subject_id=subject_id,
            category=category,
            period=period,
            threshold_percent=crossed,
            value_percent=percent,
            message=message,
        )
        if not self._store.insert_if_absent(record):
            # Lost the race to a concurrent evaluation.
            return AlertOutcome(percent_used=percent, threshold=crossed, suppressed=True)

        logger.info("Sending threshold alert", extra=log_extra)
        try:
            delivered = self._notifier.send(address, message)
        except Exception:
            logger.exception(
                "Alert notification failed after dedup record was written", extra=log_extra
            )
            delivered = False
        if not delivered:
            logger.warning("Alert notification not delivered", extra=log_extra)

        return AlertOutcome(
            percent_used=percent,
            threshold=crossed,
            sent=True,
            delivered=delivered,
            message=message,
        )
