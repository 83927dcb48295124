"""
BaseService -- abstract base for kernel services.

Every kernel service receives a SQLAlchemy ``Session`` from its caller and
persists with ``session.flush()`` -- never ``session.commit()``.  The
caller (``budget_services.BudgetControlService`` or a test) owns the
transaction boundary, so multi-step operations such as approve-then-debit
commit or roll back as one unit.
"""

from abc import ABC

from sqlalchemy.orm import Session

from budget_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()`` on the outer transaction.
        - A Clock is always available (SystemClock by default).
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
