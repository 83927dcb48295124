"""
BudgetSnapshot model -- immutable point-in-time copy of a budget.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from budget_kernel.db.base import TrackedBase, UUIDString
from budget_kernel.models._common import JSONType


class BudgetSnapshot(TrackedBase):
    """
    Serialized budget plus line items at capture time.

    Guarantees:
        - ``data`` never changes after insert; only is_baseline may be
          cleared (db/immutability.py).
        - At most one baseline per budget (partial unique index
          ``uq_budget_snapshot_baseline`` backs the transactional flip).
    """

    __tablename__ = "budget_snapshots"

    __table_args__ = (
        Index("idx_snapshot_budget_date", "budget_id", "snapshot_date"),
        Index(
            "uq_budget_snapshot_baseline",
            "budget_id",
            unique=True,
            postgresql_where=text("is_baseline"),
            sqlite_where=text("is_baseline"),
        ),
    )

    budget_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("budgets.id"), nullable=False
    )
    snapshot_type: Mapped[str] = mapped_column(String(20), nullable=False, default="ad-hoc")
    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False)
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)
    is_baseline: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    data: Mapped[dict] = mapped_column(JSONType, nullable=False)
    details: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        flag = " baseline" if self.is_baseline else ""
        return f"<BudgetSnapshot {self.snapshot_type} {self.snapshot_date}{flag}>"
