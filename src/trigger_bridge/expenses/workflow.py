"""Reference workflows built on the step runtime.

``expense-workflow``: validate -> persist -> notify. Validation suspends the
run when the category is missing and resumes once the user supplies one.
The notify step runs the idempotent budget alert check.

``alert-housekeeping``: zero-input workflow bound to the cron trigger; prunes
alert dedup records from periods that can no longer matter.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from trigger_bridge.alerts.dispatcher import AlertDispatcher
from trigger_bridge.alerts.notifier import Notifier
from trigger_bridge.alerts.store import AlertDedupStore, period_for, period_months_ago
from trigger_bridge.expenses.ledger import ExpenseLedger, ExpenseRecord
from trigger_bridge.orchestrator.errors import NonRetriableStepError
from trigger_bridge.orchestrator.retry import RetryPolicy
from trigger_bridge.orchestrator.workflow.definition import (
    StepContext,
    WorkflowBuilder,
    WorkflowDefinition,
)
from trigger_bridge.orchestrator.workflow.run_store import WorkflowRun

logger = logging.getLogger(__name__)

EXPENSE_WORKFLOW_ID = "expense-workflow"
HOUSEKEEPING_WORKFLOW_ID = "alert-housekeeping"

CATEGORIES: tuple[str, ...] = (
    "Food",
    "Transport",
    "Utilities",
    "Rent",
    "Business",
    "Personal",
    "Equipment",
    "Raw materials",
    "Uncategorized",
)


class ExpenseInput(BaseModel):
    subject_id: str = Field(min_length=1)
    address: str = Field(min_length=1)
    amount: float
    category: str | None = None
    description: str = ""
    occurred_at: datetime | None = None


class CategoryAnswer(BaseModel):
    category: str = Field(min_length=1)


def expense_input_from_payload(payload: Mapping[str, object]) -> dict[str, object] | None:
    """Map a generic JSON webhook body to expense workflow input.

    Accepts either a flat object or one nested under ``"expense"``. Payloads
    without an amount are acknowledged without starting a run.
    """

    raw = payload.get("expense", payload)
    if not isinstance(raw, Mapping) or "amount" not in raw:
        return None

    subject = raw.get("subjectId", raw.get("subject_id"))
    if subject is None or not str(subject).strip():
        raise ValueError("subjectId is required")
    address = raw.get("address", raw.get("chatId", subject))

    data: dict[str, object] = {
        "subject_id": str(subject),
        "address": str(address),
        "amount": raw.get("amount"),
        "description": str(raw.get("description") or ""),
    }
    category = raw.get("category")
    if isinstance(category, str) and category.strip():
        data["category"] = category.strip()
    occurred_at = raw.get("occurredAt", raw.get("occurred_at"))
    if occurred_at is not None:
        data["occurred_at"] = occurred_at
    return data


def build_expense_workflow(
    *,
    ledger: ExpenseLedger,
    dispatcher: AlertDispatcher,
    notifier: Notifier,
    retry_policy: RetryPolicy | None = None,
) -> WorkflowDefinition:
    def validate(ctx: StepContext) -> dict[str, Any]:
        expense = ExpenseInput.model_validate(ctx.input)
        if expense.amount <= 0:
            raise NonRetriableStepError(f"Amount must be positive, got {expense.amount}")
        if not expense.category:
            ctx.suspend(
                {
                    "question": "Which category does this expense belong to?",
                    "choices": list(CATEGORIES),
                }
            )
        category = expense.category if expense.category in CATEGORIES else "Uncategorized"
        occurred = expense.occurred_at or datetime.now(tz=UTC)
        return {
            "subject_id": expense.subject_id,
            "address": expense.address,
            "amount": round(expense.amount, 2),
            "category": category,
            "description": expense.description,
            "period": period_for(occurred),
        }

    def persist(ctx: StepContext) -> dict[str, Any]:
        recorded = ledger.record(
            ExpenseRecord(
                run_id=ctx.run_id,
                subject_id=ctx.input["subject_id"],
                category=ctx.input["category"],
                amount=ctx.input["amount"],
                period=ctx.input["period"],
                description=ctx.input["description"],
            )
        )
        return {**ctx.input, "recorded_at": recorded.created_at}

    def notify(ctx: StepContext) -> dict[str, Any]:
        subject_id = ctx.input["subject_id"]
        category = ctx.input["category"]
        period = ctx.input["period"]
        address = ctx.input["address"]

        alert: dict[str, Any] | None = None
        limit = ledger.budget_for(subject_id=subject_id, category=category)
        if limit is None:
            logger.debug(
                "No budget configured; skipping alert check",
                extra={"run_id": ctx.run_id, "subject_id": subject_id, "category": category},
            )
        else:
            spent = ledger.total(subject_id=subject_id, category=category, period=period)
            outcome = dispatcher.evaluate(
                subject_id=subject_id,
                address=address,
                category=category,
                period=period,
                spent=spent,
                limit=limit,
            )
            alert = {
                "percentUsed": outcome.percent_used,
                "threshold": outcome.threshold,
                "sent": outcome.sent,
                "suppressed": outcome.suppressed,
            }

        confirmed = notifier.send(
            address, f"Recorded {ctx.input['amount']:.2f} under {category}."
        )
        return {"confirmed": confirmed, "alert": alert}

    def on_failure(run: WorkflowRun, error: str) -> None:
        address = run.input.get("address")
        if not address:
            return
        notifier.send(
            str(address),
            "Sorry, we couldn't process your expense. Please check the details and try again.",
        )

    return (
        WorkflowBuilder(EXPENSE_WORKFLOW_ID, retry_policy=retry_policy)
        .step("validate", validate, resume_schema=CategoryAnswer)
        .step("persist", persist)
        .step("notify", notify)
        .on_failure(on_failure)
        .build()
    )


def build_housekeeping_workflow(
    *,
    alerts: AlertDedupStore,
    retention_periods: int = 3,
    retry_policy: RetryPolicy | None = None,
) -> WorkflowDefinition:
    def prune(_ctx: StepContext) -> dict[str, Any]:
        cutoff = period_months_ago(datetime.now(tz=UTC), retention_periods)
        removed = alerts.prune(before_period=cutoff)
        return {"before_period": cutoff, "removed": removed}

    return (
        WorkflowBuilder(HOUSEKEEPING_WORKFLOW_ID, retry_policy=retry_policy)
        .step("prune-alerts", prune)
        .build()
    )
