"""
Injectable time source.

Engine, scheduler and audit code take a ``Clock`` instead of calling
``datetime.now()``, so ``entered_stage_at``, ``StatusRecord.timestamp`` and
every SLA deadline comparison can be pinned in tests.

All clocks return timezone-aware UTC datetimes.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta

DEFAULT_START = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current instant, timezone-aware."""


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock(Clock):
    """
    A clock that only moves when told to.

    ``advance`` accepts the keyword arguments of ``timedelta`` so SLA tests
    read in the units the workflow uses::

        clock.advance(hours=73)
    """

    def __init__(self, start: datetime = DEFAULT_START):
        self._current = _require_aware(start)

    def now(self) -> datetime:
        return self._current

    def advance(self, delta: timedelta | None = None, **units: float) -> datetime:
        step = (delta or timedelta(0)) + timedelta(**units)
        if step < timedelta(0):
            raise ValueError("DeterministicClock cannot move backwards")
        self._current += step
        return self._current

    def set_time(self, moment: datetime) -> None:
        self._current = _require_aware(moment).astimezone(UTC)


def _require_aware(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        raise ValueError("DeterministicClock requires a timezone-aware datetime")
    return moment
