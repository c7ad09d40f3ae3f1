from admissions_batch.domain.eligibility import is_sla_expired, sla_deadline
from admissions_batch.domain.types import (
    SweepCandidate,
    SweepItemResult,
    SweepItemStatus,
    SweepResult,
)

__all__ = [
    "SweepCandidate",
    "SweepItemResult",
    "SweepItemStatus",
    "SweepResult",
    "is_sla_expired",
    "sla_deadline",
]
