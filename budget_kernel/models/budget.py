"""
Budget and line-item models.

Budget owns its line items.  ``total_amount`` and each line item's
``balance`` are denormalized aggregates recomputed from their sources by
BudgetStore and Ledger; nothing increments them in place.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from budget_kernel.db.base import TrackedBase, UUIDString
from budget_kernel.models._common import ApprovalStampMixin


class Budget(ApprovalStampMixin, TrackedBase):
    """
    Annual budget of one organizational unit.

    Guarantees:
        - (org_unit_id, code, fiscal_year) is unique.
        - total_amount == sum of active line-item amounts after every
          line-item mutation made through BudgetStore.
        - Soft-deleted only (deleted_at), never hard-deleted.
    """

    __tablename__ = "budgets"

    __table_args__ = (
        UniqueConstraint("org_unit_id", "code", "fiscal_year", name="uq_budget_unit_code_year"),
        Index("idx_budget_fiscal_year", "fiscal_year"),
        Index("idx_budget_status", "status"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    org_unit_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    line_items: Mapped[list["BudgetLineItem"]] = relationship(
        "BudgetLineItem",
        back_populates="budget",
        order_by="BudgetLineItem.code",
        lazy="selectin",
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def active_line_items(self) -> list["BudgetLineItem"]:
        return [li for li in self.line_items if li.deleted_at is None]

    def __repr__(self) -> str:
        return f"<Budget {self.code} FY{self.fiscal_year} [{self.status}]>"


class BudgetLineItem(TrackedBase):
    """
    Funded sub-allocation of a budget.

    Guarantees:
        - (budget_id, code) is unique; code is the stable business key.
        - balance == amount - sum(approved expenditures), never negative.
    """

    __tablename__ = "budget_line_items"

    __table_args__ = (
        UniqueConstraint("budget_id", "code", name="uq_line_item_budget_code"),
        Index("idx_line_item_budget", "budget_id"),
    )

    budget_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("budgets.id"), nullable=False
    )
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    balance: Mapped[Decimal] = mapped_column(nullable=False)
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)
    quarter: Mapped[str | None] = mapped_column(String(2), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    budget: Mapped[Budget] = relationship("Budget", back_populates="line_items")

    @property
    def spent(self) -> Decimal:
        return self.amount - self.balance

    def __repr__(self) -> str:
        return f"<BudgetLineItem {self.code}: {self.balance}/{self.amount}>"
