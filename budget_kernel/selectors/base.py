"""
Module: budget_kernel.selectors.base
Responsibility: Base class for read-only query selectors.

Architecture position: Kernel > Selectors.  May import from db/, models/ and
    the pure value objects in domain/.  MUST NOT import from services/.

Invariants enforced:
    - Read-only access: selectors never add, delete, flush or commit.
    - Selectors return frozen dataclasses, not ORM instances.
    - The caller owns the session and its transaction scope.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """Holds the caller's session for subclass queries."""

    def __init__(self, session: Session):
        self.session = session
