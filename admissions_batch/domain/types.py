"""
admissions_batch.domain.types -- Pure frozen dataclasses for trigger sweeps.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from admissions_kernel.domain.workflow import TriggerType


class SweepItemStatus(str, Enum):
    """Per-application outcome of one sweep."""

    FIRED = "fired"  # One transition applied
    NOT_ELIGIBLE = "not_eligible"  # Guard or SLA did not hold
    SKIPPED = "skipped"  # Moved concurrently or never started; picked up next sweep
    FAILED = "failed"  # Unexpected error
    TIMED_OUT = "timed_out"  # Exceeded the per-application time limit


@dataclass(frozen=True)
class SweepCandidate:
    """An application with at least one automatic or SLA transition to try.

    ``transition_ids`` are ordered: expired SLA transitions first, then
    automatic ones, each in definition order.
    """

    application_id: UUID
    version: int
    stage_id: UUID
    stage_name: str
    entered_stage_at: datetime
    transition_ids: tuple[UUID, ...]
    trigger_types: tuple[TriggerType, ...] = ()


@dataclass(frozen=True)
class SweepItemResult:
    application_id: UUID
    status: SweepItemStatus
    transition_id: UUID | None = None
    to_stage_id: UUID | None = None
    error_code: str | None = None
    error_message: str | None = None
    duration_ms: int = 0


@dataclass(frozen=True)
class SweepResult:
    """Immutable summary of one ``TriggerScheduler.tick()``."""

    started_at: datetime
    completed_at: datetime
    item_results: tuple[SweepItemResult, ...] = ()
    duration_ms: int = 0

    def _count(self, status: SweepItemStatus) -> int:
        return sum(1 for r in self.item_results if r.status == status)

    @property
    def fired(self) -> int:
        return self._count(SweepItemStatus.FIRED)

    @property
    def not_eligible(self) -> int:
        return self._count(SweepItemStatus.NOT_ELIGIBLE)

    @property
    def skipped(self) -> int:
        return self._count(SweepItemStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(SweepItemStatus.FAILED)

    @property
    def timed_out(self) -> int:
        return self._count(SweepItemStatus.TIMED_OUT)

    @property
    def total(self) -> int:
        return len(self.item_results)
