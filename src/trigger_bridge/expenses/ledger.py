"""Local expense ledger.

Stands in for the relational store of the full product. Entries are keyed by
the workflow run that recorded them, so a redelivered ``persist`` step never
counts the same expense twice.
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


class ExpenseRecord(BaseModel):
    run_id: str
    subject_id: str
    category: str
    amount: float
    period: str
    description: str = ""
    created_at: str = Field(default_factory=_utc_iso_now)


class BudgetRecord(BaseModel):
    subject_id: str
    category: str
    monthly_limit: float


class LedgerState(BaseModel):
    expenses: list[ExpenseRecord] = Field(default_factory=list)
    budgets: list[BudgetRecord] = Field(default_factory=list)


@dataclass
class ExpenseLedger:
    path: Path

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def _load_unlocked(self) -> LedgerState:
        if not self.path.exists():
            return LedgerState()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning(
                "Ledger file is not valid JSON; treating as empty", extra={"path": str(self.path)}
            )
            return LedgerState()
        if not isinstance(raw, dict):
            return LedgerState()
        return LedgerState.model_validate(raw)

    def _save_unlocked(self, state: LedgerState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(
            json.dumps(state.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n",
            encoding="utf-8",
        )
        tmp.replace(self.path)

    def record(self, expense: ExpenseRecord) -> ExpenseRecord:
        """Record ``expense`` once per run id; returns the stored entry."""

        with self._lock:
            state = self._load_unlocked()
            for existing in state.expenses:
                if existing.run_id == expense.run_id:
                    return existing
            state.expenses.append(expense)
            self._save_unlocked(state)
            return expense

    def total(self, *, subject_id: str, category: str, period: str) -> float:
        with self._lock:
            state = self._load_unlocked()
        return sum(
            e.amount
            for e in state.expenses
            if e.subject_id == subject_id and e.category == category and e.period == period
        )

    def set_budget(self, *, subject_id: str, category: str, monthly_limit: float) -> None:
        if monthly_limit < 0:
            raise ValueError("monthly_limit must be non-negative")
        with self._lock:
            state = self._load_unlocked()
            state.budgets = [
                b
                for b in state.budgets
                if not (b.subject_id == subject_id and b.category == category)
            ]
            state.budgets.append(
                BudgetRecord(subject_id=subject_id, category=category, monthly_limit=monthly_limit)
            )
            self._save_unlocked(state)

    def budget_for(self, *, subject_id: str, category: str) -> float | None:
        with self._lock:
            state = self._load_unlocked()
        for budget in state.budgets:
            if budget.subject_id == subject_id and budget.category == category:
                return budget.monthly_limit
        return None

    def expenses(self, *, subject_id: str | None = None) -> list[ExpenseRecord]:
        with self._lock:
            state = self._load_unlocked()
        if subject_id is None:
            return state.expenses
        return [e for e in state.expenses if e.subject_id == subject_id]
