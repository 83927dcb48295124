"""
SnapshotService -- immutable point-in-time budget captures.

Responsibility:
    Serializes a budget and its active line items into a BudgetSnapshot,
    manages the single baseline flag, and compares two snapshots with the
    pure functions in ``budget_kernel.domain.snapshot_diff``.

Invariants enforced:
    SINGLE_BASELINE_SNAPSHOT -- when a new snapshot is the baseline, the
        budget row is locked, any prior baseline is cleared and flushed, and
        only then is the new baseline inserted.

Failure modes:
    - BudgetNotFoundError / SnapshotNotFoundError.
    - ValidationError: unknown snapshot type; comparing snapshots of two
      different budgets.
"""

from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import select

from budget_kernel.db.types import money_str
from budget_kernel.domain.dtos import SnapshotType
from budget_kernel.domain.snapshot_diff import SnapshotComparison, compare_snapshot_data
from budget_kernel.exceptions import SnapshotNotFoundError, ValidationError
from budget_kernel.logging_config import get_logger
from budget_kernel.models import Budget, BudgetSnapshot
from budget_kernel.services.base import BaseService
from budget_kernel.services.budget_service import BudgetStore

logger = get_logger("services.snapshot")


def serialize_budget(budget: Budget) -> dict[str, Any]:
    """Snapshot payload: budget scalars plus active line items sorted by code."""
    return {
        "budget": {
            "id": str(budget.id),
            "code": budget.code,
            "title": budget.title,
            "description": budget.description,
            "org_unit_id": str(budget.org_unit_id),
            "fiscal_year": budget.fiscal_year,
            "start_date": budget.start_date.isoformat(),
            "end_date": budget.end_date.isoformat(),
            "status": budget.status,
            "total_amount": money_str(budget.total_amount),
        },
        "line_items": [
            {
                "id": str(li.id),
                "code": li.code,
                "name": li.name,
                "description": li.description,
                "category": li.category,
                "quarter": li.quarter,
                "amount": money_str(li.amount),
                "balance": money_str(li.balance),
            }
            for li in sorted(budget.active_line_items, key=lambda li: li.code)
        ],
    }


class SnapshotService(BaseService):
    """Capture, query and compare budget snapshots."""

    def __init__(self, session, clock=None, budget_store: BudgetStore | None = None):
        super().__init__(session, clock)
        self.budget_store = budget_store or BudgetStore(session, self.clock)

    def create_snapshot(
        self,
        budget_id: UUID,
        actor_id: UUID,
        snapshot_type: str | SnapshotType = SnapshotType.AD_HOC,
        is_baseline: bool = False,
        notes: str | None = None,
    ) -> BudgetSnapshot:
        try:
            snapshot_type = SnapshotType(snapshot_type).value
        except ValueError as exc:
            raise ValidationError(
                f"Unknown snapshot type {snapshot_type!r}", field="snapshot_type"
            ) from exc

        budget = self.budget_store.get_budget(budget_id, for_update=is_baseline)

        cleared = []
        if is_baseline:
            previous = self.session.execute(
                select(BudgetSnapshot).where(
                    BudgetSnapshot.budget_id == budget_id,
                    BudgetSnapshot.is_baseline.is_(True),
                )
            ).scalars().all()
            for snap in previous:
                snap.is_baseline = False
                snap.updated_by_id = actor_id
                cleared.append(str(snap.id))
            self.session.flush()

        snapshot = BudgetSnapshot(
            budget_id=budget.id,
            snapshot_type=snapshot_type,
            snapshot_date=self.clock.now().date(),
            fiscal_year=budget.fiscal_year,
            is_baseline=is_baseline,
            data=serialize_budget(budget),
            details={"budget_title": budget.title, "budget_code": budget.code},
            notes=notes,
            created_by_id=actor_id,
        )
        self.session.add(snapshot)
        self.session.flush()

        logger.info(
            "snapshot_created",
            extra={
                "budget_id": str(budget.id),
                "snapshot_id": str(snapshot.id),
                "snapshot_type": snapshot_type,
                "is_baseline": is_baseline,
                "cleared_baselines": cleared,
            },
        )
        return snapshot

    def get_snapshot(self, snapshot_id: UUID) -> BudgetSnapshot:
        snapshot = self.session.get(BudgetSnapshot, snapshot_id)
        if snapshot is None:
            raise SnapshotNotFoundError(str(snapshot_id))
        return snapshot

    def get_snapshots(
        self,
        budget_id: UUID,
        snapshot_type: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[BudgetSnapshot]:
        """Snapshots of a budget, newest first, optionally filtered."""
        stmt = select(BudgetSnapshot).where(BudgetSnapshot.budget_id == budget_id)
        if snapshot_type is not None:
            try:
                snapshot_type = SnapshotType(snapshot_type).value
            except ValueError as exc:
                raise ValidationError(
                    f"Unknown snapshot type {snapshot_type!r}", field="snapshot_type"
                ) from exc
            stmt = stmt.where(BudgetSnapshot.snapshot_type == snapshot_type)
        if start_date is not None:
            stmt = stmt.where(BudgetSnapshot.snapshot_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(BudgetSnapshot.snapshot_date <= end_date)
        stmt = stmt.order_by(BudgetSnapshot.snapshot_date.desc(), BudgetSnapshot.created_at.desc())
        return list(self.session.execute(stmt).scalars())

    def get_baseline_snapshot(self, budget_id: UUID) -> BudgetSnapshot:
        snapshot = self.session.execute(
            select(BudgetSnapshot).where(
                BudgetSnapshot.budget_id == budget_id,
                BudgetSnapshot.is_baseline.is_(True),
            )
        ).scalar_one_or_none()
        if snapshot is None:
            raise SnapshotNotFoundError(str(budget_id), entity_type="baseline snapshot for budget")
        return snapshot

    def compare_snapshots(self, snapshot_id_1: UUID, snapshot_id_2: UUID) -> SnapshotComparison:
        """
        Diff snapshot 1 (earlier) against snapshot 2 (later).

        Raises:
            SnapshotNotFoundError: either snapshot is missing.
            ValidationError: the snapshots belong to different budgets.
        """
        first = self.get_snapshot(snapshot_id_1)
        second = self.get_snapshot(snapshot_id_2)
        if first.budget_id != second.budget_id:
            raise ValidationError(
                "Cannot compare snapshots from different budgets", field="snapshot_id_2"
            )
        comparison = compare_snapshot_data(first.id, first.data, second.id, second.data)
        logger.debug(
            "snapshots_compared",
            extra={
                "budget_id": str(first.budget_id),
                "added": comparison.summary.added,
                "removed": comparison.summary.removed,
                "modified": comparison.summary.modified,
            },
        )
        return comparison
