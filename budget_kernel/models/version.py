"""
BudgetVersion model -- append-only revision history with a current pointer.
"""

from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from budget_kernel.db.base import TrackedBase, UUIDString
from budget_kernel.models._common import ApprovalStampMixin, JSONType


class BudgetVersion(ApprovalStampMixin, TrackedBase):
    """
    One numbered revision of a budget.

    Guarantees:
        - (budget_id, version) is unique and version increases by one per
          budget.
        - At most one row per budget has is_current set.  VersionControl
          flips the flag transactionally; the partial unique index
          ``uq_budget_version_current`` backs it up.
        - Only is_current and approval fields may change after insert
          (db/immutability.py).
    """

    __tablename__ = "budget_versions"

    __table_args__ = (
        UniqueConstraint("budget_id", "version", name="uq_budget_version_number"),
        Index(
            "uq_budget_version_current",
            "budget_id",
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current"),
        ),
    )

    budget_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("budgets.id"), nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    changes: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        flag = " current" if self.is_current else ""
        return f"<BudgetVersion v{self.version}{flag} [{self.status}]>"
