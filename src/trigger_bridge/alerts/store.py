"""JSON-file backed dedup store for sent alerts.

The store is the uniqueness constraint: at most one record per
:class:`AlertDedupKey`. ``insert_if_absent`` checks and inserts under one lock,
so two concurrent evaluations cannot both claim the same key.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


def _utc_iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


def period_for(moment: datetime | None = None) -> str:
    """Monthly alert period, e.g. ``2025-01``."""

    return (moment or datetime.now(tz=UTC)).strftime("%Y-%m")


def period_months_ago(moment: datetime, months: int) -> str:
    """The monthly period ``months`` before the one containing ``moment``."""

    index = moment.year * 12 + (moment.month - 1) - months
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


@dataclass(frozen=True, slots=True)
class AlertDedupKey:
    subject_id: str
    category: str
    period: str
    threshold_percent: int


class AlertRecord(BaseModel):
    subject_id: str
    category: str
    period: str
    threshold_percent: int
    value_percent: int = 0
    message: str = ""
    created_at: str = Field(default_factory=_utc_iso_now)

    @property
    def key(self) -> AlertDedupKey:
        return AlertDedupKey(
            subject_id=self.subject_id,
            category=self.category,
            period=self.period,
            threshold_percent=self.threshold_percent,
        )


@dataclass
class AlertDedupStore:
    path: Path

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def _load_unlocked(self) -> list[AlertRecord]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning(
                "Alert state file is not valid JSON; treating as empty",
                extra={"path": str(self.path)},
            )
            return []
        if not isinstance(raw, list):
            return []
        return [AlertRecord.model_validate(item) for item in raw if isinstance(item, dict)]

    def _save_unlocked(self, records: list[AlertRecord]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = [r.model_dump(mode="json") for r in records]
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        tmp.replace(self.path)

    def exists(self, key: AlertDedupKey) -> bool:
        with self._lock:
            return any(r.key == key for r in self._load_unlocked())

    def insert_if_absent(self, record: AlertRecord) -> bool:
        """Insert ``record`` unless its key is already present. Returns True if inserted."""

        with self._lock:
            records = self._load_unlocked()
            if any(r.key == record.key for r in records):
                return False
            records.append(record)
            self._save_unlocked(records)
            return True

    def list(self, *, subject_id: str | None = None) -> list[AlertRecord]:
        with self._lock:
            records = self._load_unlocked()
        if subject_id is None:
            return records
        return [r for r in records if r.subject_id == subject_id]

    def prune(self, *, before_period: str) -> int:
        """Delete records from periods strictly older than ``before_period``."""

        with self._lock:
            records = self._load_unlocked()
            kept = [r for r in records if r.period >= before_period]
            removed = len(records) - len(kept)
            if removed:
                self._save_unlocked(kept)
        if removed:
            logger.info(
                "Pruned alert records", extra={"removed": removed, "before_period": before_period}
            )
        return removed
