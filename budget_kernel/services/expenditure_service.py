"""
ExpenditureGate -- admits expenditures only when the ledger can fund them.

Responsibility:
    Creates, edits and soft-deletes expenditures, and supplies the
    expenditure ``ApprovalHandler`` whose hooks tie approval to the Ledger:

        create / submit   -> Ledger.reserve (optimistic, no mutation)
        approve           -> lock line item, re-check, Ledger.debit
        reject / delete   -> Ledger.recalculate

Invariants enforced:
    BALANCE_NON_NEGATIVE -- the approval-time check runs under the line-item
        row lock, not only at creation, so two approvals racing for the same
        balance cannot both succeed.
    REFERENCE_SEQUENCE -- reference numbers come from SequenceService.

Failure modes:
    - ValidationError: non-positive amount, missing description, line item
      from another budget, unknown field in an update.
    - InvalidStateError: budget not approved; edit or delete outside
      draft/rejected.
    - InsufficientBalanceError: amount exceeds the available balance.
"""

from decimal import Decimal
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import select

from budget_kernel.db.types import to_decimal
from budget_kernel.domain.approval import ApprovalStatus, EntityType
from budget_kernel.domain.dtos import ExpenditureSpec
from budget_kernel.exceptions import (
    ExpenditureNotFoundError,
    InsufficientBalanceError,
    InvalidStateError,
    ValidationError,
)
from budget_kernel.logging_config import get_logger
from budget_kernel.models import Expenditure
from budget_kernel.services.approval_workflow import ApprovalHandler
from budget_kernel.services.base import BaseService
from budget_kernel.services.budget_service import BudgetStore, parse_date
from budget_kernel.services.ledger_service import Ledger
from budget_kernel.services.sequence_service import SequenceService

logger = get_logger("services.expenditure")

ZERO = Decimal("0")

EDITABLE_STATUSES = frozenset({ApprovalStatus.DRAFT.value, ApprovalStatus.REJECTED.value})
EDITABLE_EXPENDITURE_FIELDS = frozenset(
    {
        "amount",
        "description",
        "expenditure_date",
        "beneficiary_name",
        "beneficiary_account",
        "beneficiary_bank",
    }
)


def _positive_amount(value: Any) -> Decimal:
    try:
        amount = to_decimal(value)
    except ValueError as exc:
        raise ValidationError(str(exc), field="amount") from exc
    if amount <= ZERO:
        raise ValidationError(f"Expenditure amount must be positive: {amount}", field="amount")
    return amount


class ExpenditureApprovalHandler(ApprovalHandler):
    """Approval debits the ledger; rejection recomputes it."""

    entity_type = EntityType.EXPENDITURE
    model = Expenditure
    not_found = ExpenditureNotFoundError

    def __init__(self, session, clock):
        super().__init__(session, clock)
        self.ledger = Ledger(session, clock)

    def before_submit(self, entity: Expenditure, actor_id: UUID) -> None:
        self.ledger.reserve(entity.line_item_id, entity.amount)

    def before_approve(self, entity: Expenditure, actor_id: UUID) -> None:
        # Lock first; the check below must see every committed approval.
        line_item = self.ledger.get_line_item(entity.line_item_id, for_update=True)
        available = line_item.amount - self.ledger.approved_total(line_item.id)
        if entity.amount > available:
            logger.warning(
                "expenditure_approval_blocked",
                extra={
                    "expenditure_id": str(entity.id),
                    "requested": str(entity.amount),
                    "available": str(available),
                },
            )
            raise InsufficientBalanceError(
                line_item_id=str(line_item.id),
                requested=entity.amount,
                available=available,
            )

    def on_approved(self, entity: Expenditure, actor_id: UUID) -> None:
        self.ledger.debit(entity.line_item_id, entity.amount)

    def on_rejected(self, entity: Expenditure, actor_id: UUID) -> None:
        self.ledger.recalculate(entity.line_item_id)


class ExpenditureGate(BaseService):
    """
    Entry point for recording spend against line items.

    Non-goals:
        - Does NOT approve; approval goes through ApprovalWorkflow, which
          calls ExpenditureApprovalHandler.
        - Does NOT move money.
    """

    def __init__(
        self,
        session,
        clock=None,
        ledger: Ledger | None = None,
        reference_prefix: str = "EXP",
        reference_width: int = 4,
    ):
        super().__init__(session, clock)
        self.ledger = ledger or Ledger(session, self.clock)
        self.budget_store = BudgetStore(session, self.clock, ledger=self.ledger)
        self.sequences = SequenceService(session)
        self.reference_prefix = reference_prefix
        self.reference_width = reference_width

    def create_expenditure(self, spec: ExpenditureSpec, actor_id: UUID) -> Expenditure:
        """
        Record a draft expenditure after an optimistic balance check.

        Raises:
            ValidationError: bad amount/description, line item not in budget.
            InvalidStateError: the budget is not approved.
            InsufficientBalanceError: amount exceeds the line item balance.
        """
        amount = _positive_amount(spec.amount)
        description = (spec.description or "").strip()
        if not description:
            raise ValidationError("Expenditure description is required", field="description")

        budget = self.budget_store.get_budget(spec.budget_id)
        if budget.status != ApprovalStatus.APPROVED.value:
            raise InvalidStateError(
                entity_type="budget",
                entity_id=str(budget.id),
                current_status=budget.status,
                action="record expenditure against",
            )
        line_item = self.ledger.get_line_item(spec.line_item_id)
        if line_item.budget_id != budget.id:
            raise ValidationError(
                f"Line item {line_item.code} does not belong to budget {budget.code}",
                field="line_item_id",
            )
        self.ledger.reserve(line_item.id, amount)

        now = self.clock.now()
        expenditure = Expenditure(
            budget_id=budget.id,
            line_item_id=line_item.id,
            reference_number=self.sequences.next_reference(
                self.reference_prefix, now, self.reference_width
            ),
            amount=amount,
            description=description,
            expenditure_date=spec.expenditure_date or now.date(),
            beneficiary_name=spec.beneficiary_name,
            beneficiary_account=spec.beneficiary_account,
            beneficiary_bank=spec.beneficiary_bank,
            status=ApprovalStatus.DRAFT.value,
            created_by_id=actor_id,
        )
        self.session.add(expenditure)
        self.session.flush()

        logger.info(
            "expenditure_created",
            extra={
                "expenditure_id": str(expenditure.id),
                "reference_number": expenditure.reference_number,
                "line_item_id": str(line_item.id),
                "amount": str(amount),
            },
        )
        return expenditure

    def get_expenditure(self, expenditure_id: UUID) -> Expenditure:
        expenditure = self.session.execute(
            select(Expenditure).where(
                Expenditure.id == expenditure_id,
                Expenditure.deleted_at.is_(None),
            )
        ).scalar_one_or_none()
        if expenditure is None:
            raise ExpenditureNotFoundError(str(expenditure_id))
        return expenditure

    def list_expenditures(
        self,
        budget_id: UUID | None = None,
        line_item_id: UUID | None = None,
        status: str | None = None,
    ) -> list[Expenditure]:
        stmt = select(Expenditure).where(Expenditure.deleted_at.is_(None))
        if budget_id is not None:
            stmt = stmt.where(Expenditure.budget_id == budget_id)
        if line_item_id is not None:
            stmt = stmt.where(Expenditure.line_item_id == line_item_id)
        if status is not None:
            try:
                status = ApprovalStatus(status).value
            except ValueError as exc:
                raise ValidationError(f"Unknown status {status!r}", field="status") from exc
            stmt = stmt.where(Expenditure.status == status)
        return list(self.session.execute(stmt.order_by(Expenditure.reference_number)).scalars())

    def _ensure_editable(self, expenditure: Expenditure, action: str) -> None:
        if expenditure.status not in EDITABLE_STATUSES:
            raise InvalidStateError(
                entity_type=EntityType.EXPENDITURE.value,
                entity_id=str(expenditure.id),
                current_status=expenditure.status,
                action=action,
            )

    def update_expenditure(
        self, expenditure_id: UUID, changes: Mapping[str, Any], actor_id: UUID
    ) -> Expenditure:
        """Edit a draft or rejected expenditure, re-checking the balance."""
        unknown = set(changes) - EDITABLE_EXPENDITURE_FIELDS
        if unknown:
            raise ValidationError(
                f"Unknown expenditure fields: {', '.join(sorted(unknown))}",
                field=sorted(unknown)[0],
            )
        expenditure = self.get_expenditure(expenditure_id)
        self._ensure_editable(expenditure, "update")

        if "amount" in changes:
            amount = _positive_amount(changes["amount"])
            self.ledger.reserve(expenditure.line_item_id, amount)
            expenditure.amount = amount
        if "description" in changes:
            description = (changes["description"] or "").strip()
            if not description:
                raise ValidationError("Expenditure description is required", field="description")
            expenditure.description = description
        if "expenditure_date" in changes:
            expenditure.expenditure_date = parse_date(changes["expenditure_date"], "expenditure_date")
        for field in ("beneficiary_name", "beneficiary_account", "beneficiary_bank"):
            if field in changes:
                setattr(expenditure, field, changes[field])
        expenditure.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "expenditure_updated",
            extra={"expenditure_id": str(expenditure.id), "fields": sorted(changes)},
        )
        return expenditure

    def delete_expenditure(self, expenditure_id: UUID, actor_id: UUID) -> Expenditure:
        """Soft-delete a draft or rejected expenditure and recompute its line item."""
        expenditure = self.get_expenditure(expenditure_id)
        self._ensure_editable(expenditure, "delete")
        expenditure.deleted_at = self.clock.now()
        expenditure.updated_by_id = actor_id
        self.session.flush()
        self.ledger.recalculate(expenditure.line_item_id)

        logger.info(
            "expenditure_deleted",
            extra={
                "expenditure_id": str(expenditure.id),
                "reference_number": expenditure.reference_number,
            },
        )
        return expenditure
