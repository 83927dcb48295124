"""
Expenditure and retirement models.

An Expenditure draws on one line item.  Approval debits the ledger;
only approved expenditures count against a line item's balance.  An
ExpenditureRetirement accounts for how an approved expenditure's funds
were actually spent.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from budget_kernel.db.base import TrackedBase, UUIDString
from budget_kernel.models._common import ApprovalStampMixin
from budget_kernel.models.budget import Budget, BudgetLineItem


class Expenditure(ApprovalStampMixin, TrackedBase):
    """
    A spend request against a line item.

    Guarantees:
        - reference_number is unique (EXP-YYYYMM-NNNN from a locked counter).
        - amount <= line item balance at approval time, checked under lock.
        - Soft-deleted only, and only while draft or rejected.
    """

    __tablename__ = "expenditures"

    __table_args__ = (
        Index("idx_expenditure_line_item_status", "line_item_id", "status"),
        Index("idx_expenditure_budget", "budget_id"),
    )

    budget_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("budgets.id"), nullable=False
    )
    line_item_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("budget_line_items.id"), nullable=False
    )
    reference_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    expenditure_date: Mapped[date] = mapped_column(Date, nullable=False)
    beneficiary_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    beneficiary_account: Mapped[str | None] = mapped_column(String(50), nullable=True)
    beneficiary_bank: Mapped[str | None] = mapped_column(String(255), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    budget: Mapped[Budget] = relationship("Budget")
    line_item: Mapped[BudgetLineItem] = relationship("BudgetLineItem")

    def __repr__(self) -> str:
        return f"<Expenditure {self.reference_number}: {self.amount} [{self.status}]>"


class ExpenditureRetirement(ApprovalStampMixin, TrackedBase):
    """
    Retirement (accounting) of an approved expenditure.

    Guarantees:
        - One retirement per expenditure (unique expenditure_id).
        - 0 <= amount_retired <= expenditure.amount.
        - balance_unretired == expenditure.amount - amount_retired.
    """

    __tablename__ = "expenditure_retirements"

    expenditure_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("expenditures.id"), nullable=False, unique=True
    )
    retirement_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    amount_retired: Mapped[Decimal] = mapped_column(nullable=False)
    balance_unretired: Mapped[Decimal] = mapped_column(nullable=False)
    purpose: Mapped[str | None] = mapped_column(Text, nullable=True)
    retirement_date: Mapped[date] = mapped_column(Date, nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    expenditure: Mapped[Expenditure] = relationship("Expenditure")

    def __repr__(self) -> str:
        return (
            f"<ExpenditureRetirement {self.retirement_number}: "
            f"{self.amount_retired} [{self.status}]>"
        )
