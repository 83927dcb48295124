"""
ORM-level immutability enforcement for append-only records.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners registered here inspect the pending attribute
history and raise ImmutabilityViolationError, aborting the flush:

    session.flush()
         |
         v
    [before_update] --> _check_*_update() --> ImmutabilityViolationError
         |
    [before_delete] --> _reject_delete() ---> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | Mutable fields                            | Delete
------------------|-------------------------------------------|--------
ApprovalHistory   | none                                      | never
BudgetVersion     | is_current, approval status/stamp fields  | never
BudgetSnapshot    | is_baseline                               | never

updated_at / updated_by_id are audit metadata and always allowed to change.
"""

from sqlalchemy import event, inspect

from budget_kernel.exceptions import ImmutabilityViolationError
from budget_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_METADATA_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _changed_fields(target) -> set[str]:
    """Names of column attributes with pending changes on ``target``."""
    state = inspect(target)
    changed: set[str] = set()
    for attr in state.mapper.column_attrs:
        if state.attrs[attr.key].history.has_changes():
            changed.add(attr.key)
    return changed


def _block(target, operation: str, reason: str) -> None:
    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _restricted_update_check(allowed: frozenset[str]):
    """Build a before_update listener that permits only ``allowed`` fields."""

    def _check(mapper, connection, target):
        forbidden = _changed_fields(target) - allowed - _AUDIT_METADATA_FIELDS
        if forbidden:
            _block(
                target,
                "UPDATE",
                f"fields {sorted(forbidden)} cannot be modified after creation",
            )

    return _check


def _check_approval_history_update(mapper, connection, target):
    _block(target, "UPDATE", "Approval history is append-only and cannot be modified")


def _reject_delete(mapper, connection, target):
    _block(target, "DELETE", f"{type(target).__name__} records cannot be deleted")


def _version_allowed_fields() -> frozenset[str]:
    from budget_kernel.models._common import APPROVAL_STAMP_FIELDS

    return APPROVAL_STAMP_FIELDS | {"is_current"}


_check_version_update = _restricted_update_check(_version_allowed_fields())
_check_snapshot_update = _restricted_update_check(frozenset({"is_baseline"}))


def _listener_table():
    from budget_kernel.models import ApprovalHistory, BudgetSnapshot, BudgetVersion

    return (
        (ApprovalHistory, "before_update", _check_approval_history_update),
        (ApprovalHistory, "before_delete", _reject_delete),
        (BudgetVersion, "before_update", _check_version_update),
        (BudgetVersion, "before_delete", _reject_delete),
        (BudgetSnapshot, "before_update", _check_snapshot_update),
        (BudgetSnapshot, "before_delete", _reject_delete),
    )


def register_immutability_listeners() -> None:
    """
    Register all immutability enforcement listeners.

    Call once at startup after models are imported and before any database
    operations begin.  Calling it again is a no-op.
    """
    for target, event_name, fn in _listener_table():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability enforcement listeners.

    WARNING: Only use this in tests that need to bypass the rules.
    """
    for target, event_name, fn in _listener_table():
        _safe_remove_listener(target, event_name, fn)
