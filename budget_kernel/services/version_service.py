"""
VersionControl -- append-only budget revisions with a single current pointer.

Responsibility:
    Creates, lists and restores BudgetVersion rows.  Restoring never deletes
    or renumbers history: it re-applies a stored payload to the live budget
    and records the restoration as a new version.

Invariants enforced:
    SINGLE_CURRENT_VERSION -- ``create_version`` locks the budget row,
        computes ``max(version) + 1``, clears ``is_current`` on every other
        version and flushes, then inserts the new current version, all in
        the caller's transaction.  Concurrent creators for the same budget
        serialize on the budget lock, so readers never observe two current
        versions or a duplicate number.  The partial unique index
        ``uq_budget_version_current`` is a second line of defense.

Failure modes:
    - BudgetNotFoundError / VersionNotFoundError.
    - CircularRestoreError: the version to restore is already current.
    - InvalidStateError: restoring onto a budget awaiting approval.
"""

from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import func, select

from budget_kernel.domain.approval import ApprovalStatus
from budget_kernel.exceptions import CircularRestoreError, VersionNotFoundError
from budget_kernel.logging_config import get_logger
from budget_kernel.models import Budget, BudgetVersion
from budget_kernel.services.base import BaseService
from budget_kernel.services.budget_service import BudgetStore

logger = get_logger("services.version")

RESTORED_FROM_KEY = "restored_from"


class VersionControl(BaseService):
    """
    Revision history of budgets.

    Guarantees:
        - Version numbers per budget are 1, 2, 3, ... with no gaps.
        - Exactly one version per budget is current once any exists.
        - Version rows are never deleted (db/immutability.py).
    """

    def __init__(self, session, clock=None, budget_store: BudgetStore | None = None):
        super().__init__(session, clock)
        self.budget_store = budget_store or BudgetStore(session, self.clock)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_version(
        self,
        budget_id: UUID,
        changes: Mapping[str, Any] | None,
        actor_id: UUID,
        notes: str | None = None,
    ) -> BudgetVersion:
        """
        Record a new current version of the budget.

        Args:
            budget_id: Budget being versioned.
            changes: Free-form JSON-safe payload.  None captures the budget's
                full current state, which makes the version restorable.
            actor_id: Creator.
            notes: Optional free text.
        """
        budget = self.budget_store.get_budget(budget_id, for_update=True)
        payload = dict(changes) if changes is not None else self.budget_store.capture_state(budget)
        return self._append_version(budget, payload, actor_id, notes)

    def _append_version(
        self,
        budget: Budget,
        payload: dict[str, Any],
        actor_id: UUID,
        notes: str | None,
    ) -> BudgetVersion:
        # Caller holds the budget row lock.
        latest = self.session.execute(
            select(func.max(BudgetVersion.version)).where(BudgetVersion.budget_id == budget.id)
        ).scalar_one()
        next_number = (latest or 0) + 1

        previous = self.session.execute(
            select(BudgetVersion).where(
                BudgetVersion.budget_id == budget.id,
                BudgetVersion.is_current.is_(True),
            )
        ).scalars().all()
        for version in previous:
            version.is_current = False
            version.updated_by_id = actor_id
        # The clear must reach the database before the insert so the partial
        # unique index never sees two current rows.
        self.session.flush()

        version = BudgetVersion(
            budget_id=budget.id,
            version=next_number,
            status=ApprovalStatus.DRAFT.value,
            is_current=True,
            changes=payload,
            notes=notes,
            created_by_id=actor_id,
        )
        self.session.add(version)
        self.session.flush()

        logger.info(
            "version_created",
            extra={
                "budget_id": str(budget.id),
                "version_id": str(version.id),
                "version": next_number,
                "superseded": [v.version for v in previous],
            },
        )
        return version

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def restore_version(self, version_id: UUID, actor_id: UUID, notes: str | None = None) -> BudgetVersion:
        """
        Re-apply a stored version to the live budget and record a new
        current version marking the restoration.

        The new version's payload is the restored payload plus a
        ``restored_from`` entry naming the source version.

        Raises:
            VersionNotFoundError: unknown version.
            CircularRestoreError: the version is already current.
            InvalidStateError: the budget is awaiting approval.
        """
        target = self.get_version(version_id)
        budget = self.budget_store.get_budget(target.budget_id, for_update=True)

        # Re-read under the budget lock; another restore may have moved the
        # current pointer since the unlocked read above.
        self.session.refresh(target)
        if target.is_current:
            raise CircularRestoreError(str(target.id), target.version)
        self.budget_store.ensure_editable(budget, "restore")

        payload = {k: v for k, v in (target.changes or {}).items() if k != RESTORED_FROM_KEY}
        self.budget_store.apply_changes(budget, payload, actor_id)

        payload[RESTORED_FROM_KEY] = {
            "version_id": str(target.id),
            "version": target.version,
        }
        version = self._append_version(
            budget,
            payload,
            actor_id,
            notes or f"Restored from version {target.version}",
        )
        logger.info(
            "version_restored",
            extra={
                "budget_id": str(budget.id),
                "restored_version": target.version,
                "new_version": version.version,
            },
        )
        return version

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_versions(self, budget_id: UUID) -> list[BudgetVersion]:
        """All versions of a budget, newest first."""
        self.budget_store.get_budget(budget_id)
        return list(
            self.session.execute(
                select(BudgetVersion)
                .where(BudgetVersion.budget_id == budget_id)
                .order_by(BudgetVersion.version.desc())
            ).scalars()
        )

    def get_version(self, version_id: UUID) -> BudgetVersion:
        version = self.session.get(BudgetVersion, version_id)
        if version is None:
            raise VersionNotFoundError(str(version_id))
        return version

    def get_current_version(self, budget_id: UUID) -> BudgetVersion | None:
        return self.session.execute(
            select(BudgetVersion).where(
                BudgetVersion.budget_id == budget_id,
                BudgetVersion.is_current.is_(True),
            )
        ).scalar_one_or_none()
