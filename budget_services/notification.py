"""
Notification delivery (``budget_services.notification``).

``BudgetControlService`` calls ``Notifier.notify`` only after the
transaction that caused the event has committed.  Delivery is
fire-and-forget: the facade logs a failure and carries on, it never rolls
back or re-raises.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from budget_kernel.logging_config import get_logger

logger = get_logger("services.notification")

APPROVAL_SUBMITTED = "approval_submitted"
APPROVED = "approved"
REJECTED = "rejected"
UTILIZATION_WARNING = "utilization_warning"


@runtime_checkable
class Notifier(Protocol):
    def notify(self, user_id: UUID | None, event: str, payload: dict[str, Any]) -> None:
        """Deliver one event.  ``user_id`` is None for the approver queue."""
        ...


@dataclass(frozen=True)
class Notification:
    user_id: UUID | None
    event: str
    payload: dict[str, Any] = field(default_factory=dict)


class LoggingNotifier:
    """Default notifier: one structured log record per event."""

    def notify(self, user_id: UUID | None, event: str, payload: dict[str, Any]) -> None:
        logger.info(
            "notification_sent",
            extra={
                "event": event,
                "recipient_id": str(user_id) if user_id else None,
                "payload": payload,
            },
        )


class RecordingNotifier:
    """Keeps every notification in memory; used by tests and dry runs."""

    def __init__(self) -> None:
        self.sent: list[Notification] = []

    def notify(self, user_id: UUID | None, event: str, payload: dict[str, Any]) -> None:
        self.sent.append(Notification(user_id, event, dict(payload)))

    def events(self) -> list[str]:
        return [n.event for n in self.sent]
