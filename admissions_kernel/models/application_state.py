"""
Module: admissions_kernel.models.application_state
Responsibility: ORM persistence for per-application workflow state and its
    append-only status history.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain types only.

Invariants enforced:
    - One state row per application (UNIQUE application_id).
    - ``version`` is the SQLAlchemy version counter: every UPDATE is issued as
      ``... WHERE version = :loaded``, so of two concurrent transitions on the
      same application only the first commit succeeds.
    - Status records are append-only: ORM listeners reject UPDATE and DELETE.
    - Status record ``seq`` is globally unique and allocated by
      SequenceService, so history order is commit order.

Failure modes:
    - StaleDataError on a lost optimistic-concurrency race.
    - ImmutabilityViolationError on status record UPDATE/DELETE.

Audit relevance:
    The status history is the per-application trail the timeline view
    reads; state rows are never deleted, even after a terminal stage.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from admissions_kernel.db.base import Base, UUIDString
from admissions_kernel.domain.workflow import (
    ApplicationWorkflowState,
    StatusRecord,
    TriggerType,
)
from admissions_kernel.exceptions import ImmutabilityViolationError


class ApplicationWorkflowStateModel(Base):
    """Mutable pointer into the bound workflow definition."""

    __tablename__ = "application_workflow_states"

    __table_args__ = (
        Index("ix_application_states_stage", "current_stage_id", "entered_stage_at"),
    )

    application_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    application_type: Mapped[str] = mapped_column(String(50), nullable=False)
    workflow_definition_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_definitions.id"), nullable=False,
    )
    current_stage_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_stages.id"), nullable=False,
    )
    entered_stage_at: Mapped[datetime] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<ApplicationWorkflowState {self.application_id} "
            f"stage={self.current_stage_id} v{self.version}>"
        )

    def to_dto(self, history: tuple[StatusRecord, ...] = ()) -> ApplicationWorkflowState:
        return ApplicationWorkflowState(
            application_id=self.application_id,
            application_type=self.application_type,
            workflow_definition_id=self.workflow_definition_id,
            current_stage_id=self.current_stage_id,
            entered_stage_at=self.entered_stage_at,
            version=self.version,
            created_at=self.created_at,
            history=history,
        )


class StatusRecordModel(Base):
    """Append-only history entry for one committed transition."""

    __tablename__ = "application_status_records"

    __table_args__ = (
        Index("ix_status_records_application_seq", "application_id", "seq"),
    )

    application_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("application_workflow_states.application_id"),
        nullable=False,
    )
    seq: Mapped[int] = mapped_column(nullable=False, unique=True)
    from_stage_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    to_stage_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    transition_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    triggered_by: Mapped[str] = mapped_column(String(100), nullable=False)
    trigger_type: Mapped[str] = mapped_column(String(20), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<StatusRecord #{self.seq} {self.application_id} "
            f"{self.from_stage_id}->{self.to_stage_id}>"
        )

    def to_dto(self) -> StatusRecord:
        return StatusRecord(
            id=self.id,
            application_id=self.application_id,
            seq=self.seq,
            from_stage_id=self.from_stage_id,
            to_stage_id=self.to_stage_id,
            transition_id=self.transition_id,
            triggered_by=self.triggered_by,
            trigger_type=TriggerType(self.trigger_type),
            timestamp=self.timestamp,
            notes=self.notes,
        )

    @classmethod
    def from_dto(cls, dto: StatusRecord) -> StatusRecordModel:
        return cls(
            id=dto.id,
            application_id=dto.application_id,
            seq=dto.seq,
            from_stage_id=dto.from_stage_id,
            to_stage_id=dto.to_stage_id,
            transition_id=dto.transition_id,
            triggered_by=dto.triggered_by,
            trigger_type=dto.trigger_type.value,
            timestamp=dto.timestamp,
            notes=dto.notes,
        )


# =============================================================================
# ORM-Level Immutability for Status Records (Append-Only)
# =============================================================================


@event.listens_for(StatusRecordModel, "before_update")
def prevent_status_record_update(mapper, connection, target):
    """Prevent updates to status history records."""
    raise ImmutabilityViolationError(
        entity_type="StatusRecord",
        entity_id=str(target.id),
        reason="Status history is append-only -- cannot modify",
    )


@event.listens_for(StatusRecordModel, "before_delete")
def prevent_status_record_delete(mapper, connection, target):
    """Prevent deletion of status history records."""
    raise ImmutabilityViolationError(
        entity_type="StatusRecord",
        entity_id=str(target.id),
        reason="Status history is append-only -- cannot delete",
    )
