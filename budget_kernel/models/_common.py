"""Column mixins shared by approvable models."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from budget_kernel.db.base import UUIDString

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


class ApprovalStampMixin:
    """Who moved the row through each approval step, and when."""

    status: Mapped[str] = mapped_column(String(50), nullable=False, default="draft")

    submitted_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejected_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)


# Fields ApprovalWorkflow may write on any approvable row.
APPROVAL_STAMP_FIELDS: frozenset[str] = frozenset(
    {
        "status",
        "submitted_by_id",
        "submitted_at",
        "approved_by_id",
        "approved_at",
        "rejected_by_id",
        "rejected_at",
        "rejection_reason",
    }
)
