"""
Module: admissions_kernel.models.workflow
Responsibility: ORM persistence for workflow definitions, their stages and
    transitions, and the per-application-type activation record.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain types only.

Invariants enforced:
    - UNIQUE(application_type, version): versions are distinct per type.
    - UNIQUE(definition_id, sequence) and UNIQUE(definition_id, name) on stages.
    - CHECK(source_stage_id <> target_stage_id): no self-loops.
    - Exactly one activation row per application type (UNIQUE) with a
      version counter, so concurrent activations cannot both commit.
    - Stages and transitions cascade-delete with their definition; the
      service only allows that for drafts.

Failure modes:
    - IntegrityError on duplicate version, stage sequence or activation row.
    - StaleDataError when two activations race on the same activation row.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from admissions_kernel.db.base import Base, UUIDString
from admissions_kernel.domain.guards import guard_from_dict, guard_to_dict
from admissions_kernel.domain.workflow import (
    DefinitionStatus,
    Stage,
    Transition,
    TriggerType,
    WorkflowDefinition,
)


class WorkflowDefinitionModel(Base):
    """Persistent workflow definition header."""

    __tablename__ = "workflow_definitions"

    __table_args__ = (
        UniqueConstraint(
            "application_type", "version",
            name="uq_workflow_definitions_type_version",
        ),
        CheckConstraint(
            "status IN ('draft', 'active', 'retired')",
            name="ck_workflow_definitions_valid_status",
        ),
        Index("ix_workflow_definitions_type_status", "application_type", "status"),
    )

    application_type: Mapped[str] = mapped_column(String(50), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    start_stage_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    activated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    retired_at: Mapped[datetime | None] = mapped_column(nullable=True)

    stages: Mapped[list[WorkflowStageModel]] = relationship(
        "WorkflowStageModel",
        back_populates="definition",
        cascade="all, delete-orphan",
        order_by="WorkflowStageModel.sequence",
        lazy="selectin",
    )
    transitions: Mapped[list[WorkflowTransitionModel]] = relationship(
        "WorkflowTransitionModel",
        back_populates="definition",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<WorkflowDefinition {self.application_type} v{self.version} "
            f"status={self.status}>"
        )

    def to_dto(self) -> WorkflowDefinition:
        """Convert ORM model to frozen domain DTO."""
        return WorkflowDefinition(
            id=self.id,
            application_type=self.application_type,
            version=self.version,
            name=self.name,
            status=DefinitionStatus(self.status),
            stages=tuple(s.to_dto() for s in self.stages),
            transitions=tuple(t.to_dto() for t in self.transitions),
            start_stage_id=self.start_stage_id,
            description=self.description,
            created_at=self.created_at,
            activated_at=self.activated_at,
            retired_at=self.retired_at,
        )


class WorkflowStageModel(Base):
    """Persistent stage (the StageStore)."""

    __tablename__ = "workflow_stages"

    __table_args__ = (
        UniqueConstraint(
            "definition_id", "sequence",
            name="uq_workflow_stages_sequence",
        ),
        UniqueConstraint(
            "definition_id", "name",
            name="uq_workflow_stages_name",
        ),
    )

    definition_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_definitions.id"), nullable=False,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    required_document_types: Mapped[list[str]] = mapped_column(
        JSON, nullable=False, default=list,
    )
    sla_seconds: Mapped[int | None] = mapped_column(nullable=True)
    is_terminal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    outcome: Mapped[str | None] = mapped_column(String(50), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    assigned_role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    entry_notifications: Mapped[list[str]] = mapped_column(
        JSON, nullable=False, default=list,
    )

    definition: Mapped[WorkflowDefinitionModel] = relationship(
        "WorkflowDefinitionModel", back_populates="stages",
    )

    def __repr__(self) -> str:
        return f"<WorkflowStage {self.name} seq={self.sequence}>"

    def to_dto(self) -> Stage:
        return Stage(
            id=self.id,
            workflow_definition_id=self.definition_id,
            name=self.name,
            sequence=self.sequence,
            required_document_types=frozenset(self.required_document_types or ()),
            sla_duration=(
                timedelta(seconds=self.sla_seconds)
                if self.sla_seconds is not None else None
            ),
            is_terminal=self.is_terminal,
            outcome=self.outcome,
            description=self.description,
            assigned_role=self.assigned_role,
            entry_notifications=tuple(self.entry_notifications or ()),
        )

    @classmethod
    def from_dto(cls, dto: Stage) -> WorkflowStageModel:
        model = cls(id=dto.id, definition_id=dto.workflow_definition_id)
        model.assign(dto)
        return model

    def assign(self, dto: Stage) -> None:
        """Copy every field except the ids from ``dto`` onto this row."""
        self.name = dto.name
        self.sequence = dto.sequence
        self.required_document_types = sorted(dto.required_document_types)
        self.sla_seconds = (
            int(dto.sla_duration.total_seconds())
            if dto.sla_duration is not None else None
        )
        self.is_terminal = dto.is_terminal
        self.outcome = dto.outcome
        self.description = dto.description
        self.assigned_role = dto.assigned_role
        self.entry_notifications = list(dto.entry_notifications)


class WorkflowTransitionModel(Base):
    """Persistent transition (the TransitionStore)."""

    __tablename__ = "workflow_transitions"

    __table_args__ = (
        CheckConstraint(
            "source_stage_id <> target_stage_id",
            name="ck_workflow_transitions_no_self_loop",
        ),
        CheckConstraint(
            "trigger_type IN ('manual', 'auto_condition', 'sla_timeout')",
            name="ck_workflow_transitions_trigger_type",
        ),
        Index("ix_workflow_transitions_source", "source_stage_id"),
    )

    definition_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_definitions.id"), nullable=False,
    )
    source_stage_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_stages.id"), nullable=False,
    )
    target_stage_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_stages.id"), nullable=False,
    )
    trigger_type: Mapped[str] = mapped_column(String(20), nullable=False)
    guard: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    required_role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    definition: Mapped[WorkflowDefinitionModel] = relationship(
        "WorkflowDefinitionModel", back_populates="transitions",
    )

    def __repr__(self) -> str:
        return (
            f"<WorkflowTransition {self.name} {self.source_stage_id}->"
            f"{self.target_stage_id} {self.trigger_type}>"
        )

    def to_dto(self) -> Transition:
        return Transition(
            id=self.id,
            workflow_definition_id=self.definition_id,
            source_stage_id=self.source_stage_id,
            target_stage_id=self.target_stage_id,
            trigger_type=TriggerType(self.trigger_type),
            guard=guard_from_dict(self.guard) if self.guard is not None else None,
            required_role=self.required_role,
            name=self.name,
            description=self.description,
        )

    @classmethod
    def from_dto(cls, dto: Transition) -> WorkflowTransitionModel:
        model = cls(id=dto.id, definition_id=dto.workflow_definition_id)
        model.assign(dto)
        return model

    def assign(self, dto: Transition) -> None:
        """Copy every field except the ids from ``dto`` onto this row."""
        self.source_stage_id = dto.source_stage_id
        self.target_stage_id = dto.target_stage_id
        self.trigger_type = dto.trigger_type.value
        self.guard = guard_to_dict(dto.guard) if dto.guard is not None else None
        self.required_role = dto.required_role
        self.name = dto.name
        self.description = dto.description


class ActiveDefinitionModel(Base):
    """
    Single activation record per application type.

    Contract:
        The row names the one active definition for its type.  Swapping it is
        the only way to change which definition new applications bind to.

    Guarantees:
        - UNIQUE(application_type).
        - ``row_version`` is checked on every UPDATE; a concurrent swap that
          committed first makes the loser's flush fail.
    """

    __tablename__ = "active_workflow_definitions"

    application_type: Mapped[str] = mapped_column(
        String(50), nullable=False, unique=True,
    )
    definition_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_definitions.id"), nullable=False,
    )
    activated_at: Mapped[datetime] = mapped_column(nullable=False)
    activated_by: Mapped[str] = mapped_column(String(100), nullable=False)
    row_version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": row_version}

    def __repr__(self) -> str:
        return f"<ActiveDefinition {self.application_type} -> {self.definition_id}>"
