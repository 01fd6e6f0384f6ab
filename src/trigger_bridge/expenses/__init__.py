"""Reference workflows: expense intake with budget alerts, and alert housekeeping."""

from trigger_bridge.expenses.ledger import ExpenseLedger, ExpenseRecord
from trigger_bridge.expenses.workflow import (
    EXPENSE_WORKFLOW_ID,
    HOUSEKEEPING_WORKFLOW_ID,
    build_expense_workflow,
    build_housekeeping_workflow,
    expense_input_from_payload,
)

__all__ = [
    "EXPENSE_WORKFLOW_ID",
    "HOUSEKEEPING_WORKFLOW_ID",
    "ExpenseLedger",
    "ExpenseRecord",
    "build_expense_workflow",
    "build_housekeeping_workflow",
    "expense_input_from_payload",
]
