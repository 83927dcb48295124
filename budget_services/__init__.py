"""
budget_services -- application layer over ``budget_kernel``.

``BudgetControlService`` owns transactions and notifications;
``bootstrap`` wires configuration into the kernel at process start.
"""

from budget_services.bootstrap import bootstrap
from budget_services.control_service import BudgetControlService
from budget_services.notification import LoggingNotifier, Notification, Notifier, RecordingNotifier

__all__ = [
    "BudgetControlService",
    "LoggingNotifier",
    "Notification",
    "Notifier",
    "RecordingNotifier",
    "bootstrap",
]
