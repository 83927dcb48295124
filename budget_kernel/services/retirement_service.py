"""
RetirementService -- accounting for how approved expenditures were spent.

Responsibility:
    Creates and edits ExpenditureRetirement rows and reports retirement
    statistics.  Approval runs through ApprovalWorkflow using the reviewed
    workflow (submit -> review -> approve/reject).

Invariants enforced:
    - A retirement exists only for an approved expenditure, at most one
      per expenditure.
    - 0 <= amount_retired <= expenditure.amount, and
      balance_unretired == expenditure.amount - amount_retired.
    - Retirement numbers come from SequenceService (RET-YYYYMM-NNNN).
"""

from datetime import date
from decimal import Decimal
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import func, select

from budget_kernel.db.types import to_decimal
from budget_kernel.domain.approval import REVIEWED_APPROVAL_WORKFLOW, ApprovalStatus, EntityType
from budget_kernel.domain.dtos import RetirementStats
from budget_kernel.exceptions import (
    DuplicateRetirementError,
    InvalidStateError,
    RetirementNotFoundError,
    ValidationError,
)
from budget_kernel.logging_config import get_logger
from budget_kernel.models import Expenditure, ExpenditureRetirement
from budget_kernel.services.approval_workflow import ApprovalHandler
from budget_kernel.services.base import BaseService
from budget_kernel.services.budget_service import parse_date
from budget_kernel.services.expenditure_service import ExpenditureGate
from budget_kernel.services.sequence_service import SequenceService

logger = get_logger("services.retirement")

ZERO = Decimal("0")

EDITABLE_RETIREMENT_FIELDS = frozenset({"amount_retired", "purpose", "retirement_date", "remarks"})
PENDING_STATUSES = (ApprovalStatus.SUBMITTED.value, ApprovalStatus.UNDER_REVIEW.value)


class RetirementApprovalHandler(ApprovalHandler):
    """Retirements pass through review; approval has no ledger effect."""

    entity_type = EntityType.EXPENDITURE_RETIREMENT
    model = ExpenditureRetirement
    not_found = RetirementNotFoundError
    workflow = REVIEWED_APPROVAL_WORKFLOW

    def budget_id(self, entity: ExpenditureRetirement) -> UUID | None:
        return entity.expenditure.budget_id if entity.expenditure else None


class RetirementService(BaseService):
    def __init__(
        self,
        session,
        clock=None,
        reference_prefix: str = "RET",
        reference_width: int = 4,
    ):
        super().__init__(session, clock)
        self.expenditures = ExpenditureGate(session, self.clock)
        self.sequences = SequenceService(session)
        self.reference_prefix = reference_prefix
        self.reference_width = reference_width

    def _validated_amount(self, value: Any, expenditure: Expenditure) -> Decimal:
        try:
            amount = to_decimal(value, field="amount_retired")
        except ValueError as exc:
            raise ValidationError(str(exc), field="amount_retired") from exc
        if amount < ZERO:
            raise ValidationError(
                f"Amount retired cannot be negative: {amount}", field="amount_retired"
            )
        if amount > expenditure.amount:
            raise ValidationError(
                f"Amount retired {amount} exceeds expenditure amount {expenditure.amount}",
                field="amount_retired",
            )
        return amount

    def create_retirement(
        self,
        expenditure_id: UUID,
        amount_retired: Decimal,
        actor_id: UUID,
        purpose: str | None = None,
        retirement_date: date | None = None,
        remarks: str | None = None,
    ) -> ExpenditureRetirement:
        """
        Open a draft retirement for an approved expenditure.

        Raises:
            InvalidStateError: expenditure is not approved.
            DuplicateRetirementError: a retirement already exists.
            ValidationError: amount outside [0, expenditure.amount].
        """
        expenditure = self.expenditures.get_expenditure(expenditure_id)
        if expenditure.status != ApprovalStatus.APPROVED.value:
            raise InvalidStateError(
                entity_type=EntityType.EXPENDITURE.value,
                entity_id=str(expenditure.id),
                current_status=expenditure.status,
                action="retire",
                message="Only approved expenditures can be retired",
            )
        existing = self.session.execute(
            select(ExpenditureRetirement.id).where(
                ExpenditureRetirement.expenditure_id == expenditure.id
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateRetirementError(str(expenditure.id), str(existing))

        amount = self._validated_amount(amount_retired, expenditure)
        now = self.clock.now()
        retirement = ExpenditureRetirement(
            expenditure_id=expenditure.id,
            retirement_number=self.sequences.next_reference(
                self.reference_prefix, now, self.reference_width
            ),
            amount_retired=amount,
            balance_unretired=expenditure.amount - amount,
            purpose=purpose,
            retirement_date=retirement_date or now.date(),
            remarks=remarks,
            status=ApprovalStatus.DRAFT.value,
            created_by_id=actor_id,
        )
        self.session.add(retirement)
        self.session.flush()

        logger.info(
            "retirement_created",
            extra={
                "retirement_id": str(retirement.id),
                "retirement_number": retirement.retirement_number,
                "expenditure_id": str(expenditure.id),
                "amount_retired": str(amount),
            },
        )
        return retirement

    def get_retirement(self, retirement_id: UUID) -> ExpenditureRetirement:
        retirement = self.session.get(ExpenditureRetirement, retirement_id)
        if retirement is None:
            raise RetirementNotFoundError(str(retirement_id))
        return retirement

    def update_retirement(
        self, retirement_id: UUID, changes: Mapping[str, Any], actor_id: UUID
    ) -> ExpenditureRetirement:
        """Edit a draft retirement."""
        unknown = set(changes) - EDITABLE_RETIREMENT_FIELDS
        if unknown:
            raise ValidationError(
                f"Unknown retirement fields: {', '.join(sorted(unknown))}",
                field=sorted(unknown)[0],
            )
        retirement = self.get_retirement(retirement_id)
        if retirement.status != ApprovalStatus.DRAFT.value:
            raise InvalidStateError(
                entity_type=EntityType.EXPENDITURE_RETIREMENT.value,
                entity_id=str(retirement.id),
                current_status=retirement.status,
                action="update",
                message="Only draft retirements can be updated",
            )
        if "amount_retired" in changes:
            expenditure = retirement.expenditure
            amount = self._validated_amount(changes["amount_retired"], expenditure)
            retirement.amount_retired = amount
            retirement.balance_unretired = expenditure.amount - amount
        if "retirement_date" in changes:
            retirement.retirement_date = parse_date(changes["retirement_date"], "retirement_date")
        for field in ("purpose", "remarks"):
            if field in changes:
                setattr(retirement, field, changes[field])
        retirement.updated_by_id = actor_id
        self.session.flush()
        return retirement

    def retirement_stats(self) -> RetirementStats:
        total = self.session.execute(select(func.count(ExpenditureRetirement.id))).scalar_one()
        approved = self.session.execute(
            select(func.count(ExpenditureRetirement.id)).where(
                ExpenditureRetirement.status == ApprovalStatus.APPROVED.value
            )
        ).scalar_one()
        pending = self.session.execute(
            select(func.count(ExpenditureRetirement.id)).where(
                ExpenditureRetirement.status.in_(PENDING_STATUSES)
            )
        ).scalar_one()
        retired = self.session.execute(
            select(func.coalesce(func.sum(ExpenditureRetirement.amount_retired), 0)).where(
                ExpenditureRetirement.status == ApprovalStatus.APPROVED.value
            )
        ).scalar_one()
        return RetirementStats(
            total_retirements=total,
            approved_retirements=approved,
            pending_retirements=pending,
            total_amount_retired=Decimal(retired),
        )
