"""
admissions_batch.domain.eligibility -- Pure SLA evaluation.

ZERO I/O.  All timestamps come from the caller (the scheduler's injected
Clock), so these functions are deterministic.
"""

from __future__ import annotations

from datetime import datetime, timedelta


def sla_deadline(entered_at: datetime, sla: timedelta | None) -> datetime | None:
    """When the stage SLA elapses, or None for stages without one."""
    if sla is None:
        return None
    return entered_at + sla


def is_sla_expired(entered_at: datetime, sla: timedelta | None, now: datetime) -> bool:
    """True once ``now`` has reached the deadline (inclusive)."""
    deadline = sla_deadline(entered_at, sla)
    return deadline is not None and now >= deadline
