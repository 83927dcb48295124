"""Kernel services.  Flush-only; callers own the transaction."""

from budget_kernel.services.approval_workflow import ApprovalHandler, ApprovalWorkflow
from budget_kernel.services.budget_service import BudgetStore
from budget_kernel.services.expenditure_service import ExpenditureGate
from budget_kernel.services.ledger_service import Ledger
from budget_kernel.services.retirement_service import RetirementService
from budget_kernel.services.sequence_service import SequenceService
from budget_kernel.services.snapshot_service import SnapshotService
from budget_kernel.services.version_service import VersionControl

__all__ = [
    "ApprovalHandler",
    "ApprovalWorkflow",
    "BudgetStore",
    "ExpenditureGate",
    "Ledger",
    "RetirementService",
    "SequenceService",
    "SnapshotService",
    "VersionControl",
]
