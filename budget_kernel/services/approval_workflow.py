"""
ApprovalWorkflow -- one state machine for every approvable entity.

Responsibility:
    Validates a requested action (submit, review, approve, reject) against
    the entity's current status, applies the transition, runs the
    entity-specific side effect and appends an ApprovalHistory row.  The
    transition tables live in ``budget_kernel.domain.approval``; each entity
    type contributes only an ``ApprovalHandler`` (loading, stamping and
    hooks).

Architecture position:
    Kernel > Services.  Handlers for budgets and budget versions live here;
    the expenditure and retirement handlers live beside their services
    because their hooks need the Ledger.

Invariants enforced:
    TRANSITION_LEGALITY -- ``resolve_transition`` runs against the status
        read under a row lock; an illegal action raises InvalidStateError
        and changes nothing.
    APPEND_ONLY_HISTORY -- every successful transition writes exactly one
        history row, numbered per entity while the entity row is locked.
    All-or-nothing approval -- status change, hook and history row run in
        one SAVEPOINT; if the hook raises (e.g. InsufficientBalanceError
        from the ledger debit) all three are rolled back.

Failure modes:
    - ValidationError: unknown entity type; reject without a reason.
    - NotFoundError subclasses: unknown entity.
    - InvalidStateError: illegal transition.
    - Anything raised by a handler hook.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select

from budget_kernel.domain.approval import (
    ACTION_STAMP_PREFIX,
    STANDARD_APPROVAL_WORKFLOW,
    ApprovalAction,
    EntityType,
    TransitionOutcome,
    resolve_transition,
)
from budget_kernel.domain.clock import Clock
from budget_kernel.domain.workflow import Transition, Workflow
from budget_kernel.exceptions import (
    BudgetNotFoundError,
    MissingReasonError,
    NotFoundError,
    ValidationError,
    VersionNotFoundError,
)
from budget_kernel.logging_config import LogContext, get_logger
from budget_kernel.models import ApprovalHistory, Budget, BudgetVersion
from budget_kernel.services.base import BaseService

logger = get_logger("services.approval")


class ApprovalHandler:
    """
    Default ``Approvable`` implementation for a model carrying the approval
    stamp columns.  Subclasses set ``entity_type``, ``model`` and
    ``not_found`` and override hooks as needed.
    """

    entity_type: EntityType
    model: type
    not_found: type[NotFoundError] = NotFoundError
    workflow: Workflow = STANDARD_APPROVAL_WORKFLOW

    def __init__(self, session, clock: Clock):
        self.session = session
        self.clock = clock

    def load(self, entity_id: UUID, *, for_update: bool = False) -> Any:
        stmt = select(self.model).where(self.model.id == entity_id)
        if hasattr(self.model, "deleted_at"):
            stmt = stmt.where(self.model.deleted_at.is_(None))
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        entity = self.session.execute(stmt).scalar_one_or_none()
        if entity is None:
            raise self.not_found(str(entity_id))
        return entity

    def current_status(self, entity: Any) -> str:
        return entity.status

    def apply_transition(
        self,
        entity: Any,
        transition: Transition,
        actor_id: UUID,
        at: datetime,
        reason: str | None = None,
    ) -> None:
        entity.status = transition.to_state
        prefix = ACTION_STAMP_PREFIX[transition.action]
        setattr(entity, f"{prefix}_by_id", actor_id)
        setattr(entity, f"{prefix}_at", at)
        if transition.action == ApprovalAction.REJECT.value:
            entity.rejection_reason = reason
        elif transition.action == ApprovalAction.SUBMIT.value:
            # A new cycle starts; the previous rejection stays in history.
            entity.rejection_reason = None
        entity.updated_by_id = actor_id

    def budget_id(self, entity: Any) -> UUID | None:
        return getattr(entity, "budget_id", None)

    def before_submit(self, entity: Any, actor_id: UUID) -> None:
        """Checks run before a submission is recorded."""

    def before_approve(self, entity: Any, actor_id: UUID) -> None:
        """Checks run under lock before the approved status is written."""

    def on_approved(self, entity: Any, actor_id: UUID) -> None:
        """Side effect after the approved status is flushed."""

    def on_rejected(self, entity: Any, actor_id: UUID) -> None:
        """Side effect after the rejected status is flushed."""


class BudgetApprovalHandler(ApprovalHandler):
    """Budgets have no side effect on approval."""

    entity_type = EntityType.BUDGET
    model = Budget
    not_found = BudgetNotFoundError

    def budget_id(self, entity: Budget) -> UUID:
        return entity.id


class BudgetVersionApprovalHandler(ApprovalHandler):
    entity_type = EntityType.BUDGET_VERSION
    model = BudgetVersion
    not_found = VersionNotFoundError


def default_handlers(session, clock: Clock) -> list[ApprovalHandler]:
    """Handlers for every entity type the kernel knows."""
    from budget_kernel.services.expenditure_service import ExpenditureApprovalHandler
    from budget_kernel.services.retirement_service import RetirementApprovalHandler

    return [
        BudgetApprovalHandler(session, clock),
        BudgetVersionApprovalHandler(session, clock),
        ExpenditureApprovalHandler(session, clock),
        RetirementApprovalHandler(session, clock),
    ]


class ApprovalWorkflow(BaseService):
    """
    Generic approval engine.

    Guarantees:
        - A failed action leaves status, stamps and history unchanged.
        - ``get_approval_history`` is read-only.
    """

    def __init__(self, session, clock=None, handlers: list[ApprovalHandler] | None = None):
        super().__init__(session, clock)
        handler_list = handlers if handlers is not None else default_handlers(session, self.clock)
        self._handlers: dict[str, ApprovalHandler] = {
            h.entity_type.value: h for h in handler_list
        }

    def handler_for(self, entity_type: str | EntityType) -> ApprovalHandler:
        key = entity_type.value if isinstance(entity_type, EntityType) else str(entity_type)
        handler = self._handlers.get(key)
        if handler is None:
            raise ValidationError(
                f"Unknown approvable entity type {key!r} "
                f"(known: {', '.join(sorted(self._handlers))})",
                field="entity_type",
            )
        return handler

    # ------------------------------------------------------------------
    # Public actions
    # ------------------------------------------------------------------

    def submit_for_approval(
        self,
        entity_type: str | EntityType,
        entity_id: UUID,
        actor_id: UUID,
        comments: str | None = None,
    ) -> TransitionOutcome:
        """draft or rejected -> submitted."""
        return self._transition(entity_type, entity_id, ApprovalAction.SUBMIT, actor_id, comments)

    def review(
        self,
        entity_type: str | EntityType,
        entity_id: UUID,
        actor_id: UUID,
        comments: str | None = None,
    ) -> TransitionOutcome:
        """submitted -> under_review (reviewed workflow only)."""
        return self._transition(entity_type, entity_id, ApprovalAction.REVIEW, actor_id, comments)

    def approve(
        self,
        entity_type: str | EntityType,
        entity_id: UUID,
        actor_id: UUID,
        comments: str | None = None,
    ) -> TransitionOutcome:
        """submitted (or under_review) -> approved, running the approval hook."""
        return self._transition(entity_type, entity_id, ApprovalAction.APPROVE, actor_id, comments)

    def reject(
        self,
        entity_type: str | EntityType,
        entity_id: UUID,
        actor_id: UUID,
        reason: str | None,
        comments: str | None = None,
    ) -> TransitionOutcome:
        """
        submitted (or under_review) -> rejected.

        Raises:
            MissingReasonError: reason is missing or blank.
        """
        return self._transition(
            entity_type, entity_id, ApprovalAction.REJECT, actor_id, comments, reason=reason
        )

    def get_approval_history(
        self, entity_type: str | EntityType, entity_id: UUID
    ) -> list[ApprovalHistory]:
        """History rows of one entity, oldest first."""
        handler = self.handler_for(entity_type)
        return list(
            self.session.execute(
                select(ApprovalHistory)
                .where(
                    ApprovalHistory.entity_type == handler.entity_type.value,
                    ApprovalHistory.entity_id == entity_id,
                )
                .order_by(ApprovalHistory.sequence)
            ).scalars()
        )

    # ------------------------------------------------------------------
    # Engine
    # ------------------------------------------------------------------

    def _next_history_sequence(self, entity_type: str, entity_id: UUID) -> int:
        # Caller holds the entity row lock, so max+1 cannot race.
        latest = self.session.execute(
            select(func.max(ApprovalHistory.sequence)).where(
                ApprovalHistory.entity_type == entity_type,
                ApprovalHistory.entity_id == entity_id,
            )
        ).scalar_one()
        return (latest or 0) + 1

    def _transition(
        self,
        entity_type: str | EntityType,
        entity_id: UUID,
        action: ApprovalAction,
        actor_id: UUID,
        comments: str | None,
        reason: str | None = None,
    ) -> TransitionOutcome:
        handler = self.handler_for(entity_type)
        type_name = handler.entity_type.value

        with LogContext.bind(entity_type=type_name, entity_id=entity_id, actor_id=actor_id):
            with self.session.begin_nested():
                entity = handler.load(entity_id, for_update=True)
                from_status = handler.current_status(entity)

                transition = resolve_transition(
                    handler.workflow, from_status, action.value, type_name, str(entity_id)
                )
                if action is ApprovalAction.REJECT and not (reason and reason.strip()):
                    raise MissingReasonError(type_name, str(entity_id))

                if action is ApprovalAction.SUBMIT:
                    handler.before_submit(entity, actor_id)
                elif action is ApprovalAction.APPROVE:
                    handler.before_approve(entity, actor_id)

                now = self.clock.now()
                handler.apply_transition(
                    entity,
                    transition,
                    actor_id,
                    now,
                    reason=reason.strip() if reason else None,
                )
                self.session.flush()

                if action is ApprovalAction.APPROVE:
                    handler.on_approved(entity, actor_id)
                elif action is ApprovalAction.REJECT:
                    handler.on_rejected(entity, actor_id)

                details: dict[str, Any] = {
                    "from_status": from_status,
                    "to_status": transition.to_state,
                }
                if reason:
                    details["reason"] = reason.strip()
                history = ApprovalHistory(
                    entity_type=type_name,
                    entity_id=entity.id,
                    action=action.value,
                    status=transition.to_state,
                    actor_id=actor_id,
                    comments=comments,
                    details=details,
                    sequence=self._next_history_sequence(type_name, entity.id),
                )
                self.session.add(history)
                self.session.flush()

            logger.info(
                "approval_transition",
                extra={
                    "action": action.value,
                    "from_status": from_status,
                    "to_status": transition.to_state,
                    "budget_id": str(handler.budget_id(entity) or ""),
                    "history_id": str(history.id),
                },
            )

        return TransitionOutcome(
            entity_type=type_name,
            entity_id=entity.id,
            action=action.value,
            from_status=from_status,
            to_status=transition.to_state,
            actor_id=actor_id,
            history_id=history.id,
            submitted_by_id=getattr(entity, "submitted_by_id", None),
            details=details,
        )
