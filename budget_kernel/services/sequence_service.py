"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly increasing integers per named counter, and the
    reference numbers built on them (``EXP-202503-0001``,
    ``RET-202503-0001``).  Counters are keyed by kind and year-month, so
    numbering restarts each month.

Invariants enforced:
    Reference numbers come from a locked counter row
    (``SELECT ... FOR UPDATE``).  Scanning for the last issued number and
    parsing its suffix is FORBIDDEN -- two concurrent creations would read
    the same "last" number and collide.

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via
      savepoint rollback and retry).

Audit relevance:
    Allocation is logged at DEBUG with the counter name and value.
"""

from datetime import datetime

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from budget_kernel.db.base import Base
from budget_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Named counter row.  Row-level locking keeps allocation monotonic under
    concurrency.
    """

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


def format_reference(prefix: str, at: datetime, value: int, width: int = 4) -> str:
    """``EXP`` + 2025-03 + 7 -> ``EXP-202503-0007``."""
    return f"{prefix}-{at.year}{at.month:02d}-{value:0{width}d}"


class SequenceService:
    """
    Transactional sequence numbers.

    Non-goals:
        - Does NOT commit.  A rolled-back transaction returns its value.

    Usage:
        ref = SequenceService(session).next_reference("EXP", clock.now())
    """

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Lock (or create) the counter row, increment it and return the new
        value.  The increment is only visible once the caller commits.

        Returns:
            The next value, always > 0.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            # First use.  Another transaction may create the row at the same
            # time, so insert inside a savepoint and fall back to the lock.
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value without incrementing, or None if never used."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None

    def next_reference(self, prefix: str, at: datetime, width: int = 4) -> str:
        """Allocate the next ``PREFIX-YYYYMM-NNNN`` reference for ``at``'s month."""
        key = f"{prefix.lower()}:{at.year}{at.month:02d}"
        return format_reference(prefix, at, self.next_value(key), width)
