"""ORM models for the budget kernel."""

from budget_kernel.models.approval_history import ApprovalHistory
from budget_kernel.models.budget import Budget, BudgetLineItem
from budget_kernel.models.expenditure import Expenditure, ExpenditureRetirement
from budget_kernel.models.snapshot import BudgetSnapshot
from budget_kernel.models.version import BudgetVersion

__all__ = [
    "ApprovalHistory",
    "Budget",
    "BudgetLineItem",
    "BudgetSnapshot",
    "BudgetVersion",
    "Expenditure",
    "ExpenditureRetirement",
]
