"""
Utilization classification (``budget_kernel.domain.utilization``).

Pure functions computing spent/allocated percentages and the four-level
early-warning classification.  The thresholds are fixed design constants
and are not configurable per entity.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID

from budget_kernel.db.types import round_money

HUNDRED = Decimal("100")


class UtilizationLevel(str, Enum):
    NORMAL = "normal"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]


_LEVEL_RANK = {
    UtilizationLevel.NORMAL: 0,
    UtilizationLevel.MEDIUM: 1,
    UtilizationLevel.HIGH: 2,
    UtilizationLevel.CRITICAL: 3,
}

# Highest threshold first; first match wins.
UTILIZATION_THRESHOLDS: tuple[tuple[Decimal, UtilizationLevel], ...] = (
    (Decimal("95"), UtilizationLevel.CRITICAL),
    (Decimal("85"), UtilizationLevel.HIGH),
    (Decimal("75"), UtilizationLevel.MEDIUM),
)


def raw_percentage(spent: Decimal, amount: Decimal) -> Decimal:
    """Unrounded spent / amount * 100; 0 when nothing is allocated."""
    if amount == 0:
        return Decimal("0")
    return spent / amount * HUNDRED


def utilization_percentage(spent: Decimal, amount: Decimal) -> Decimal:
    """Display percentage, rounded to two places."""
    return round_money(raw_percentage(spent, amount))


def classify(percentage: Decimal) -> UtilizationLevel:
    # Pass the unrounded percentage; 94.996 is high, not critical.
    for threshold, level in UTILIZATION_THRESHOLDS:
        if percentage >= threshold:
            return level
    return UtilizationLevel.NORMAL


@dataclass(frozen=True)
class LineItemUtilization:
    """Point-in-time utilization of one line item."""

    line_item_id: UUID
    code: str
    amount: Decimal
    spent: Decimal
    balance: Decimal
    percentage: Decimal
    level: UtilizationLevel

    @classmethod
    def compute(
        cls, line_item_id: UUID, code: str, amount: Decimal, spent: Decimal
    ) -> LineItemUtilization:
        return cls(
            line_item_id=line_item_id,
            code=code,
            amount=amount,
            spent=spent,
            balance=amount - spent,
            percentage=utilization_percentage(spent, amount),
            level=classify(raw_percentage(spent, amount)),
        )


@dataclass(frozen=True)
class BudgetUtilization:
    """Aggregate utilization of a whole budget."""

    budget_id: UUID
    total_amount: Decimal
    total_spent: Decimal
    total_balance: Decimal
    percentage: Decimal
    level: UtilizationLevel
    line_items: tuple[LineItemUtilization, ...]
