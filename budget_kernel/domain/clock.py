"""
Injectable time source.

Services take a Clock instead of calling ``datetime.now()``, so approval
stamps, snapshot dates and the month in a reference number can be pinned
in tests.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone

DEFAULT_TEST_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Timezone-aware current time."""


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Returns a fixed instant until ``set_time`` moves it."""

    def __init__(self, fixed_time: datetime | None = None):
        self._now = fixed_time or DEFAULT_TEST_TIME

    def now(self) -> datetime:
        return self._now

    def set_time(self, time: datetime) -> None:
        self._now = time
