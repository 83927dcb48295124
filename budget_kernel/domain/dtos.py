"""
Domain DTOs (``budget_kernel.domain.dtos``).

Frozen value objects passed into kernel services (specs) and returned by
aggregate queries (summaries, statistics).  No ORM types appear here.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID


class LineItemCategory(str, Enum):
    PERSONNEL = "personnel"
    OVERHEAD = "overhead"
    RECURRENT = "recurrent"
    CAPITAL = "capital"


class Quarter(str, Enum):
    Q1 = "Q1"
    Q2 = "Q2"
    Q3 = "Q3"
    Q4 = "Q4"


class SnapshotType(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"
    AD_HOC = "ad-hoc"


@dataclass(frozen=True)
class LineItemSpec:
    """Proposed line item for a new or updated budget."""

    code: str
    name: str
    category: LineItemCategory
    amount: Decimal
    description: str | None = None
    quarter: Quarter | None = None

    def to_payload(self) -> dict:
        return {
            "code": self.code,
            "name": self.name,
            "category": LineItemCategory(self.category).value,
            "amount": str(self.amount),
            "description": self.description,
            "quarter": Quarter(self.quarter).value if self.quarter else None,
        }


@dataclass(frozen=True)
class BudgetSpec:
    """Everything needed to create a budget with its line items."""

    code: str
    title: str
    org_unit_id: UUID
    fiscal_year: int
    start_date: date
    end_date: date
    line_items: tuple[LineItemSpec, ...] = ()
    description: str | None = None


@dataclass(frozen=True)
class ExpenditureSpec:
    """Proposed expenditure against one line item."""

    budget_id: UUID
    line_item_id: UUID
    amount: Decimal
    description: str
    expenditure_date: date | None = None
    beneficiary_name: str | None = None
    beneficiary_account: str | None = None
    beneficiary_bank: str | None = None


@dataclass(frozen=True)
class BudgetSummaryRow:
    """Budgeted vs spent for one (org unit, fiscal year) group."""

    org_unit_id: UUID
    fiscal_year: int
    budget_count: int
    total_budgeted: Decimal
    total_spent: Decimal
    available: Decimal
    utilization_percentage: Decimal


@dataclass(frozen=True)
class RetirementStats:
    total_retirements: int
    approved_retirements: int
    pending_retirements: int
    total_amount_retired: Decimal

