"""
Budget control facade (``budget_services.control_service``).

Responsibility
--------------
``BudgetControlService`` is the single public entry point for budget
control operations.  It composes the flush-only kernel services over one
session, owns the transaction boundary, and sends notifications once a
transaction has committed.

Architecture position
---------------------
**Services layer** -- above ``budget_kernel`` and ``budget_config``.
Authorization is the caller's concern: ``actor_id`` arrives already
checked.

Invariants enforced
-------------------
* Each mutating method commits on success and rolls back on any
  exception, re-raising it unchanged.
* Notifications are queued during the operation and delivered only after
  commit; a delivery failure is logged as ``notification_failed`` and
  never affects the committed state.
* A ``utilization_warning`` is sent only when an expenditure approval
  raises the line item's utilization level.

Failure modes
-------------
* Any ``BudgetKernelError`` from the kernel propagates after rollback.
* Database errors propagate after rollback.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from budget_config import BudgetConfig
from budget_kernel.domain.approval import EntityType, TransitionOutcome
from budget_kernel.domain.clock import Clock, SystemClock
from budget_kernel.domain.dtos import (
    BudgetSpec,
    BudgetSummaryRow,
    ExpenditureSpec,
    RetirementStats,
    SnapshotType,
)
from budget_kernel.domain.snapshot_diff import SnapshotComparison
from budget_kernel.domain.utilization import BudgetUtilization, LineItemUtilization
from budget_kernel.logging_config import LogContext, get_logger
from budget_kernel.models import (
    ApprovalHistory,
    Budget,
    BudgetLineItem,
    BudgetSnapshot,
    BudgetVersion,
    Expenditure,
    ExpenditureRetirement,
)
from budget_kernel.selectors import UtilizationSelector, UtilizationWarning
from budget_kernel.services import (
    ApprovalWorkflow,
    BudgetStore,
    ExpenditureGate,
    Ledger,
    RetirementService,
    SnapshotService,
    VersionControl,
)
from budget_services.notification import (
    APPROVAL_SUBMITTED,
    APPROVED,
    REJECTED,
    UTILIZATION_WARNING,
    LoggingNotifier,
    Notification,
    Notifier,
)

logger = get_logger("services.control")


class BudgetControlService:
    """
    Facade over the budget kernel.

    Contract
    --------
    * Mutating methods return the affected ORM entity (or outcome) after a
      successful commit.
    * Read methods neither flush nor commit.

    Non-goals
    ---------
    * No permission checks.
    * No retry on serialization failure; the caller decides.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        notifier: Notifier | None = None,
        expenditure_prefix: str = "EXP",
        retirement_prefix: str = "RET",
        reference_width: int = 4,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._notifier = notifier or LoggingNotifier()

        self._ledger = Ledger(session, self._clock)
        self._budgets = BudgetStore(session, self._clock, ledger=self._ledger)
        self._versions = VersionControl(session, self._clock, budget_store=self._budgets)
        self._snapshots = SnapshotService(session, self._clock, budget_store=self._budgets)
        self._expenditures = ExpenditureGate(
            session,
            self._clock,
            ledger=self._ledger,
            reference_prefix=expenditure_prefix,
            reference_width=reference_width,
        )
        self._retirements = RetirementService(
            session,
            self._clock,
            reference_prefix=retirement_prefix,
            reference_width=reference_width,
        )
        self._approvals = ApprovalWorkflow(session, self._clock)
        self._utilization = UtilizationSelector(session)

    @classmethod
    def from_config(
        cls,
        session: Session,
        config: BudgetConfig,
        clock: Clock | None = None,
        notifier: Notifier | None = None,
    ) -> BudgetControlService:
        refs = config.references
        return cls(
            session,
            clock=clock,
            notifier=notifier,
            expenditure_prefix=refs.expenditure_prefix,
            retirement_prefix=refs.retirement_prefix,
            reference_width=refs.sequence_width,
        )

    # =========================================================================
    # Transaction and notification plumbing
    # =========================================================================

    @contextmanager
    def _unit_of_work(self, operation: str, actor_id: UUID | None) -> Iterator[list[Notification]]:
        """Commit on success, roll back and re-raise on failure, then notify."""
        outbox: list[Notification] = []
        with LogContext.bind(actor_id=actor_id):
            try:
                yield outbox
                self._session.commit()
            except Exception as exc:
                self._session.rollback()
                logger.warning(
                    "operation_rolled_back",
                    extra={
                        "operation": operation,
                        "error_code": getattr(exc, "code", type(exc).__name__),
                    },
                )
                raise
            self._deliver(outbox)

    def _deliver(self, outbox: list[Notification]) -> None:
        for note in outbox:
            try:
                self._notifier.notify(note.user_id, note.event, note.payload)
            except Exception:
                logger.warning(
                    "notification_failed",
                    extra={
                        "event": note.event,
                        "recipient_id": str(note.user_id) if note.user_id else None,
                    },
                    exc_info=True,
                )

    @staticmethod
    def _outcome_payload(outcome: TransitionOutcome) -> dict[str, Any]:
        payload = {
            "entity_type": outcome.entity_type,
            "entity_id": str(outcome.entity_id),
            "action": outcome.action,
            "status": outcome.to_status,
            "actor_id": str(outcome.actor_id),
        }
        if "reason" in outcome.details:
            payload["reason"] = outcome.details["reason"]
        return payload

    # =========================================================================
    # Budgets
    # =========================================================================

    def create_budget(self, spec: BudgetSpec, actor_id: UUID) -> Budget:
        with self._unit_of_work("create_budget", actor_id):
            budget = self._budgets.create_budget(spec, actor_id)
        return budget

    def update_budget(self, budget_id: UUID, changes: Mapping[str, Any], actor_id: UUID) -> Budget:
        with self._unit_of_work("update_budget", actor_id):
            budget = self._budgets.update_budget(budget_id, changes, actor_id)
        return budget

    def delete_budget(self, budget_id: UUID, actor_id: UUID) -> Budget:
        with self._unit_of_work("delete_budget", actor_id):
            budget = self._budgets.delete_budget(budget_id, actor_id)
        return budget

    def get_budget(self, budget_id: UUID) -> Budget:
        return self._budgets.get_budget(budget_id)

    def list_line_items(self, budget_id: UUID) -> list[BudgetLineItem]:
        return self._budgets.list_line_items(budget_id)

    def budget_summary(
        self, org_unit_id: UUID | None = None, fiscal_year: int | None = None
    ) -> list[BudgetSummaryRow]:
        return self._budgets.summary(org_unit_id=org_unit_id, fiscal_year=fiscal_year)

    def budget_utilization(self, budget_id: UUID) -> BudgetUtilization:
        self._budgets.get_budget(budget_id)
        return self._ledger.budget_utilization(budget_id)

    def line_item_utilization(self, line_item_id: UUID) -> LineItemUtilization:
        return self._ledger.utilization(line_item_id)

    def recalculate_line_item(self, line_item_id: UUID, actor_id: UUID) -> Decimal:
        """Rebuild a line item's balance from approved expenditures."""
        with self._unit_of_work("recalculate_line_item", actor_id):
            line_item = self._ledger.recalculate(line_item_id)
        return line_item.balance

    # =========================================================================
    # Approval
    # =========================================================================

    def submit(
        self,
        entity_type: str | EntityType,
        entity_id: UUID,
        actor_id: UUID,
        comments: str | None = None,
    ) -> TransitionOutcome:
        with self._unit_of_work("submit", actor_id) as outbox:
            outcome = self._approvals.submit_for_approval(entity_type, entity_id, actor_id, comments)
            outbox.append(Notification(None, APPROVAL_SUBMITTED, self._outcome_payload(outcome)))
        return outcome

    def review(
        self,
        entity_type: str | EntityType,
        entity_id: UUID,
        actor_id: UUID,
        comments: str | None = None,
    ) -> TransitionOutcome:
        with self._unit_of_work("review", actor_id):
            outcome = self._approvals.review(entity_type, entity_id, actor_id, comments)
        return outcome

    def approve(
        self,
        entity_type: str | EntityType,
        entity_id: UUID,
        actor_id: UUID,
        comments: str | None = None,
    ) -> TransitionOutcome:
        with self._unit_of_work("approve", actor_id) as outbox:
            handler = self._approvals.handler_for(entity_type)
            line_item_id = None
            level_before = None
            if handler.entity_type is EntityType.EXPENDITURE:
                line_item_id = self._expenditures.get_expenditure(entity_id).line_item_id
                level_before = self._utilization.line_item_level(line_item_id)

            outcome = self._approvals.approve(entity_type, entity_id, actor_id, comments)
            outbox.append(
                Notification(outcome.submitted_by_id, APPROVED, self._outcome_payload(outcome))
            )

            if line_item_id is not None:
                self._queue_utilization_warning(outbox, line_item_id, level_before)
        return outcome

    def _queue_utilization_warning(self, outbox, line_item_id, level_before) -> None:
        usage = self._ledger.utilization(line_item_id)
        if usage.level.rank <= level_before.rank:
            return
        line_item = self._ledger.get_line_item(line_item_id)
        budget = line_item.budget
        logger.info(
            "utilization_level_raised",
            extra={
                "budget_id": str(budget.id),
                "line_item_id": str(line_item_id),
                "from_level": level_before.value,
                "to_level": usage.level.value,
                "percentage": str(usage.percentage),
            },
        )
        outbox.append(
            Notification(
                budget.created_by_id,
                UTILIZATION_WARNING,
                {
                    "budget_id": str(budget.id),
                    "budget_code": budget.code,
                    "line_item_id": str(line_item_id),
                    "line_item_code": line_item.code,
                    "level": usage.level.value,
                    "previous_level": level_before.value,
                    "percentage": str(usage.percentage),
                },
            )
        )

    def reject(
        self,
        entity_type: str | EntityType,
        entity_id: UUID,
        actor_id: UUID,
        reason: str | None,
        comments: str | None = None,
    ) -> TransitionOutcome:
        with self._unit_of_work("reject", actor_id) as outbox:
            outcome = self._approvals.reject(entity_type, entity_id, actor_id, reason, comments)
            outbox.append(
                Notification(outcome.submitted_by_id, REJECTED, self._outcome_payload(outcome))
            )
        return outcome

    def approval_history(
        self, entity_type: str | EntityType, entity_id: UUID
    ) -> list[ApprovalHistory]:
        return self._approvals.get_approval_history(entity_type, entity_id)

    # =========================================================================
    # Versions
    # =========================================================================

    def create_version(
        self,
        budget_id: UUID,
        actor_id: UUID,
        changes: Mapping[str, Any] | None = None,
        notes: str | None = None,
    ) -> BudgetVersion:
        with self._unit_of_work("create_version", actor_id):
            version = self._versions.create_version(budget_id, changes, actor_id, notes=notes)
        return version

    def restore_version(
        self, version_id: UUID, actor_id: UUID, notes: str | None = None
    ) -> BudgetVersion:
        with self._unit_of_work("restore_version", actor_id):
            version = self._versions.restore_version(version_id, actor_id, notes=notes)
        return version

    def get_versions(self, budget_id: UUID) -> list[BudgetVersion]:
        return self._versions.get_versions(budget_id)

    def get_version(self, version_id: UUID) -> BudgetVersion:
        return self._versions.get_version(version_id)

    def get_current_version(self, budget_id: UUID) -> BudgetVersion | None:
        return self._versions.get_current_version(budget_id)

    # =========================================================================
    # Snapshots
    # =========================================================================

    def create_snapshot(
        self,
        budget_id: UUID,
        actor_id: UUID,
        snapshot_type: str | SnapshotType = SnapshotType.AD_HOC,
        is_baseline: bool = False,
        notes: str | None = None,
    ) -> BudgetSnapshot:
        with self._unit_of_work("create_snapshot", actor_id):
            snapshot = self._snapshots.create_snapshot(
                budget_id, actor_id, snapshot_type=snapshot_type, is_baseline=is_baseline, notes=notes
            )
        return snapshot

    def compare_snapshots(self, snapshot_id_1: UUID, snapshot_id_2: UUID) -> SnapshotComparison:
        return self._snapshots.compare_snapshots(snapshot_id_1, snapshot_id_2)

    def get_snapshots(
        self,
        budget_id: UUID,
        snapshot_type: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[BudgetSnapshot]:
        return self._snapshots.get_snapshots(budget_id, snapshot_type, start_date, end_date)

    def get_snapshot(self, snapshot_id: UUID) -> BudgetSnapshot:
        return self._snapshots.get_snapshot(snapshot_id)

    def get_baseline_snapshot(self, budget_id: UUID) -> BudgetSnapshot:
        return self._snapshots.get_baseline_snapshot(budget_id)

    # =========================================================================
    # Expenditures
    # =========================================================================

    def create_expenditure(self, spec: ExpenditureSpec, actor_id: UUID) -> Expenditure:
        with self._unit_of_work("create_expenditure", actor_id):
            expenditure = self._expenditures.create_expenditure(spec, actor_id)
        return expenditure

    def update_expenditure(
        self, expenditure_id: UUID, changes: Mapping[str, Any], actor_id: UUID
    ) -> Expenditure:
        with self._unit_of_work("update_expenditure", actor_id):
            expenditure = self._expenditures.update_expenditure(expenditure_id, changes, actor_id)
        return expenditure

    def delete_expenditure(self, expenditure_id: UUID, actor_id: UUID) -> Expenditure:
        with self._unit_of_work("delete_expenditure", actor_id):
            expenditure = self._expenditures.delete_expenditure(expenditure_id, actor_id)
        return expenditure

    def get_expenditure(self, expenditure_id: UUID) -> Expenditure:
        return self._expenditures.get_expenditure(expenditure_id)

    def list_expenditures(
        self,
        budget_id: UUID | None = None,
        line_item_id: UUID | None = None,
        status: str | None = None,
    ) -> list[Expenditure]:
        return self._expenditures.list_expenditures(budget_id, line_item_id, status)

    # =========================================================================
    # Retirements
    # =========================================================================

    def create_retirement(
        self,
        expenditure_id: UUID,
        amount_retired: Decimal,
        actor_id: UUID,
        purpose: str | None = None,
        retirement_date: date | None = None,
        remarks: str | None = None,
    ) -> ExpenditureRetirement:
        with self._unit_of_work("create_retirement", actor_id):
            retirement = self._retirements.create_retirement(
                expenditure_id,
                amount_retired,
                actor_id,
                purpose=purpose,
                retirement_date=retirement_date,
                remarks=remarks,
            )
        return retirement

    def update_retirement(
        self, retirement_id: UUID, changes: Mapping[str, Any], actor_id: UUID
    ) -> ExpenditureRetirement:
        with self._unit_of_work("update_retirement", actor_id):
            retirement = self._retirements.update_retirement(retirement_id, changes, actor_id)
        return retirement

    def get_retirement(self, retirement_id: UUID) -> ExpenditureRetirement:
        return self._retirements.get_retirement(retirement_id)

    def retirement_stats(self) -> RetirementStats:
        return self._retirements.retirement_stats()

    # =========================================================================
    # Early warning
    # =========================================================================

    def utilization_warnings(self, budget_id: UUID | None = None) -> list[UtilizationWarning]:
        return self._utilization.warnings(budget_id)
