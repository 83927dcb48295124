"""
Approval state machine (``budget_kernel.domain.approval``).

Responsibility
--------------
Declares the approval statuses, actions and entity types, the two
transition tables used by every approvable entity, and the ``Approvable``
capability an entity handler must provide.  ``resolve_transition`` is the
single place where a requested action is checked against the current
status.

Architecture position
---------------------
**Kernel domain layer** -- pure.  ZERO I/O.  The service-layer
``ApprovalWorkflow`` persists the outcome and writes history.

Workflows
---------
Standard (budget, budget version, expenditure)::

    draft ----submit----> submitted ----approve----> approved
    rejected --submit--/            \\---reject----> rejected

Reviewed (expenditure retirement)::

    draft ----submit----> submitted --review--> under_review --approve--> approved
    rejected --submit--/        |                     |
                                +------reject---------+--------reject---> rejected
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol
from uuid import UUID

from budget_kernel.domain.workflow import Transition, Workflow
from budget_kernel.exceptions import InvalidStateError


class ApprovalStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class ApprovalAction(str, Enum):
    SUBMIT = "submit"
    REVIEW = "review"
    APPROVE = "approve"
    REJECT = "reject"


class EntityType(str, Enum):
    BUDGET = "budget"
    BUDGET_VERSION = "budget_version"
    EXPENDITURE = "expenditure"
    EXPENDITURE_RETIREMENT = "expenditure_retirement"


# Stamp-field prefix written by each action (e.g. approved_by_id / approved_at)
ACTION_STAMP_PREFIX: dict[str, str] = {
    ApprovalAction.SUBMIT.value: "submitted",
    ApprovalAction.REVIEW.value: "reviewed",
    ApprovalAction.APPROVE.value: "approved",
    ApprovalAction.REJECT.value: "rejected",
}

_S = ApprovalStatus
_A = ApprovalAction


STANDARD_APPROVAL_WORKFLOW = Workflow(
    name="standard_approval",
    description="Submit, then approve or reject; rejected items may be resubmitted",
    initial_state=_S.DRAFT.value,
    states=(
        _S.DRAFT.value,
        _S.SUBMITTED.value,
        _S.APPROVED.value,
        _S.REJECTED.value,
    ),
    transitions=(
        Transition(_S.DRAFT.value, _S.SUBMITTED.value, _A.SUBMIT.value),
        Transition(_S.REJECTED.value, _S.SUBMITTED.value, _A.SUBMIT.value),
        Transition(_S.SUBMITTED.value, _S.APPROVED.value, _A.APPROVE.value),
        Transition(_S.SUBMITTED.value, _S.REJECTED.value, _A.REJECT.value),
    ),
)


REVIEWED_APPROVAL_WORKFLOW = Workflow(
    name="reviewed_approval",
    description="Submit, review, then approve or reject",
    initial_state=_S.DRAFT.value,
    states=(
        _S.DRAFT.value,
        _S.SUBMITTED.value,
        _S.UNDER_REVIEW.value,
        _S.APPROVED.value,
        _S.REJECTED.value,
    ),
    transitions=(
        Transition(_S.DRAFT.value, _S.SUBMITTED.value, _A.SUBMIT.value),
        Transition(_S.REJECTED.value, _S.SUBMITTED.value, _A.SUBMIT.value),
        Transition(_S.SUBMITTED.value, _S.UNDER_REVIEW.value, _A.REVIEW.value),
        Transition(_S.UNDER_REVIEW.value, _S.APPROVED.value, _A.APPROVE.value),
        Transition(_S.SUBMITTED.value, _S.REJECTED.value, _A.REJECT.value),
        Transition(_S.UNDER_REVIEW.value, _S.REJECTED.value, _A.REJECT.value),
    ),
)


def resolve_transition(
    workflow: Workflow,
    current_status: str,
    action: str,
    entity_type: str,
    entity_id: str,
) -> Transition:
    """
    Return the transition for ``action`` from ``current_status``.

    Raises:
        InvalidStateError: If the workflow declares no such transition.
    """
    transition = workflow.find_transition(current_status, action)
    if transition is None:
        allowed = workflow.allowed_actions(current_status)
        raise InvalidStateError(
            entity_type=entity_type,
            entity_id=entity_id,
            current_status=current_status,
            action=action,
            message=(
                f"Cannot {action} {entity_type} {entity_id} in status "
                f"'{current_status}' (allowed: {', '.join(allowed) or 'none'})"
            ),
        )
    return transition


class Approvable(Protocol):
    """
    Capability an entity handler provides to the approval workflow.

    The transition table lives in the workflow; handlers only expose the
    entity's status and the side effects specific to their type (a ledger
    debit for expenditures, nothing for budgets).
    """

    entity_type: EntityType
    workflow: Workflow

    def current_status(self, entity: Any) -> str: ...

    def apply_transition(
        self,
        entity: Any,
        transition: Transition,
        actor_id: UUID,
        at: datetime,
        reason: str | None = None,
    ) -> None: ...

    def before_approve(self, entity: Any, actor_id: UUID) -> None: ...

    def on_approved(self, entity: Any, actor_id: UUID) -> None: ...

    def on_rejected(self, entity: Any, actor_id: UUID) -> None: ...


@dataclass(frozen=True)
class TransitionOutcome:
    """Result of one approval-workflow transition."""

    entity_type: str
    entity_id: UUID
    action: str
    from_status: str
    to_status: str
    actor_id: UUID
    history_id: UUID
    submitted_by_id: UUID | None = None
    details: dict[str, Any] = field(default_factory=dict)
