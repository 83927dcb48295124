"""
Typed exception hierarchy for the budget kernel.

Every error raised by the kernel is an instance of ``BudgetKernelError``
and carries:

  1. A typed class, so callers catch by type rather than by message.
  2. A ``code`` class attribute that is machine-readable and API-safe.
  3. Structured attributes describing what went wrong.

Hierarchy:

    BudgetKernelError (base)
    |
    +-- ValidationError                 malformed input, caller must correct it
    |   +-- MissingReasonError
    |
    +-- InvalidStateError               transition not legal from current status
    |
    +-- InsufficientBalanceError        ledger debit would go negative
    |
    +-- ConflictError                   operation conflicts with existing data
    |   +-- DuplicateBudgetCodeError
    |   +-- CircularRestoreError
    |   +-- DuplicateRetirementError
    |
    +-- NotFoundError                   entity does not exist (404 at boundary)
    |   +-- BudgetNotFoundError
    |   +-- LineItemNotFoundError
    |   +-- VersionNotFoundError
    |   +-- SnapshotNotFoundError
    |   +-- ExpenditureNotFoundError
    |   +-- RetirementNotFoundError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

Error codes:

Code                      | When raised
--------------------------|---------------------------------------------------
VALIDATION_ERROR          | Bad dates, negative amounts, missing fields
MISSING_REASON            | Rejection without a reason
INVALID_STATE             | approve/reject/submit from an illegal status
INSUFFICIENT_BALANCE      | Expenditure exceeds line-item balance
CONFLICT                  | Delete with expenditures, other data conflicts
DUPLICATE_BUDGET_CODE     | Same (org unit, code, fiscal year) already exists
CIRCULAR_RESTORE          | Restoring the version that is already current
DUPLICATE_RETIREMENT      | Second retirement for the same expenditure
NOT_FOUND                 | Generic missing entity
IMMUTABILITY_VIOLATION    | Update/delete of an append-only record

None of these errors is retried automatically by the kernel.
"""

from decimal import Decimal


class BudgetKernelError(Exception):
    """
    Base exception for all budget kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "BUDGET_KERNEL_ERROR"


# Validation


class ValidationError(BudgetKernelError):
    """Malformed input. Recoverable by the caller correcting the input."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        self.reason = message
        super().__init__(message)


class MissingReasonError(ValidationError):
    """A rejection was attempted without a reason."""

    code: str = "MISSING_REASON"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"A rejection reason is required to reject {entity_type} {entity_id}",
            field="reason",
        )


# State machine


class InvalidStateError(BudgetKernelError):
    """The requested action is not legal from the entity's current status."""

    code: str = "INVALID_STATE"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_status: str,
        action: str,
        message: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            message
            or f"Cannot {action} {entity_type} {entity_id} in status '{current_status}'"
        )


# Ledger


class InsufficientBalanceError(BudgetKernelError):
    """
    A reservation or debit would take a line item's balance below zero.

    The kernel never clamps the amount; the caller may resubmit a smaller one.
    """

    code: str = "INSUFFICIENT_BALANCE"

    def __init__(self, line_item_id: str, requested: Decimal, available: Decimal):
        self.line_item_id = line_item_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient balance on line item {line_item_id}: "
            f"requested {requested}, available {available}"
        )


# Conflicts


class ConflictError(BudgetKernelError):
    """The operation conflicts with existing data."""

    code: str = "CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Conflict on {entity_type} {entity_id}: {reason}")


class DuplicateBudgetCodeError(ConflictError):
    """A budget with the same code already exists for the unit and year."""

    code: str = "DUPLICATE_BUDGET_CODE"

    def __init__(self, code: str, org_unit_id: str, fiscal_year: int):
        self.budget_code = code
        self.org_unit_id = org_unit_id
        self.fiscal_year = fiscal_year
        super().__init__(
            "budget",
            code,
            f"code '{code}' already exists for unit {org_unit_id} in {fiscal_year}",
        )


class CircularRestoreError(ConflictError):
    """The version selected for restore is already the current version."""

    code: str = "CIRCULAR_RESTORE"

    def __init__(self, version_id: str, version: int):
        self.version = version
        super().__init__(
            "budget_version",
            version_id,
            f"version {version} is already the current version",
        )


class DuplicateRetirementError(ConflictError):
    """A retirement already exists for the expenditure."""

    code: str = "DUPLICATE_RETIREMENT"

    def __init__(self, expenditure_id: str, retirement_id: str):
        self.retirement_id = retirement_id
        super().__init__(
            "expenditure",
            expenditure_id,
            f"retirement {retirement_id} already exists for this expenditure",
        )


# Not found


class NotFoundError(BudgetKernelError):
    """The requested entity does not exist."""

    code: str = "NOT_FOUND"
    entity_type: str = "entity"

    def __init__(self, entity_id: str, entity_type: str | None = None):
        if entity_type is not None:
            self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class BudgetNotFoundError(NotFoundError):
    code: str = "BUDGET_NOT_FOUND"
    entity_type: str = "budget"


class LineItemNotFoundError(NotFoundError):
    code: str = "LINE_ITEM_NOT_FOUND"
    entity_type: str = "budget_line_item"


class VersionNotFoundError(NotFoundError):
    code: str = "VERSION_NOT_FOUND"
    entity_type: str = "budget_version"


class SnapshotNotFoundError(NotFoundError):
    code: str = "SNAPSHOT_NOT_FOUND"
    entity_type: str = "budget_snapshot"


class ExpenditureNotFoundError(NotFoundError):
    code: str = "EXPENDITURE_NOT_FOUND"
    entity_type: str = "expenditure"


class RetirementNotFoundError(NotFoundError):
    code: str = "RETIREMENT_NOT_FOUND"
    entity_type: str = "expenditure_retirement"


# Immutability


class ImmutabilityError(BudgetKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an append-only record.

    ApprovalHistory is immutable from creation; BudgetVersion and
    BudgetSnapshot may only change their flag and status fields.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
