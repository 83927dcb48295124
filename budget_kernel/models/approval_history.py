"""
ApprovalHistory model -- the append-only audit trail of approval transitions.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, DateTime, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from budget_kernel.db.base import Base, UUIDString
from budget_kernel.models._common import JSONType


class ApprovalHistory(Base):
    """
    One approval-workflow transition of one entity.

    Guarantees:
        - Never updated or deleted (db/immutability.py).
        - ``sequence`` counts 1, 2, 3 ... per entity and orders its rows
          even when created_at values tie.
    """

    __tablename__ = "approval_history"

    __table_args__ = (
        Index(
            "idx_approval_history_entity", "entity_type", "entity_id", "sequence", unique=True
        ),
    )

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    details: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    sequence: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalHistory #{self.sequence} {self.entity_type} "
            f"{self.action} -> {self.status}>"
        )
