"""
Kernel Invariants Contract.

These invariants are structural law for the budget kernel. No configuration
value may switch them off. This module declares them explicitly; enforcement
lives in the Ledger, VersionControl, SnapshotService, ApprovalWorkflow,
SequenceService and the ORM immutability listeners.
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the budget kernel."""

    BALANCE_NON_NEGATIVE = "balance_non_negative"
    """A line item's balance equals its amount minus the sum of approved
    expenditures against it, and is never negative. Enforced by
    Ledger.debit under a row lock on the line item."""

    SINGLE_CURRENT_VERSION = "single_current_version"
    """At most one BudgetVersion per budget has is_current set. Enforced by
    VersionControl (clear-then-set under a budget row lock) and a partial
    unique index."""

    SINGLE_BASELINE_SNAPSHOT = "single_baseline_snapshot"
    """At most one BudgetSnapshot per budget has is_baseline set. Enforced
    by SnapshotService and a partial unique index."""

    TRANSITION_LEGALITY = "transition_legality"
    """Approval transitions are validated against the entity's current
    status using the workflow transition table. Enforced by
    ApprovalWorkflow via domain.approval.resolve_transition."""

    APPEND_ONLY_HISTORY = "append_only_history"
    """ApprovalHistory rows are never updated or deleted; versions and
    snapshots change only their flag and status fields. Enforced by
    budget_kernel.db.immutability."""

    REFERENCE_SEQUENCE = "reference_sequence"
    """Expenditure and retirement reference numbers come from a locked
    counter row keyed by (kind, year, month). Enforced by SequenceService."""

    AGGREGATE_RECOMPUTE = "aggregate_recompute"
    """Budget.total_amount and line-item balances are recomputed from their
    sources, never incremented. Enforced by BudgetStore and Ledger."""


# All invariants as a frozenset for programmatic checks.
ALL_KERNEL_INVARIANTS: frozenset[KernelInvariant] = frozenset(KernelInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "budget_services",
    "budget_config",
)
