"""
Workflow domain types -- stages, transitions, definitions, application state.

Responsibility:
    Immutable value objects describing an admissions workflow definition
    and the per-application pointer into it.  The ORM models convert to and
    from these types; services and the transition engine only ever hand
    these to callers.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - All types are frozen dataclasses; collections are tuples/frozensets.
    - ``WorkflowDefinition.start_stage_id`` defaults to the lowest-sequence
      stage when not designated explicitly.
    - A terminal stage never has legal outgoing transitions
      (``WorkflowDefinition.outgoing`` returns nothing for it).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from uuid import UUID

from admissions_kernel.domain.guards import GuardExpression

SYSTEM_ACTOR = "system"


class TriggerType(str, Enum):
    """How a transition is fired."""

    MANUAL = "manual"  # Admin/reviewer action
    AUTO_CONDITION = "auto_condition"  # Fires when its guard becomes true
    SLA_TIMEOUT = "sla_timeout"  # Fires once the stage SLA has elapsed


class DefinitionStatus(str, Enum):
    """Definition lifecycle: DRAFT -> ACTIVE -> RETIRED."""

    DRAFT = "draft"
    ACTIVE = "active"
    RETIRED = "retired"


ALLOWED_STATUS_TRANSITIONS: dict[DefinitionStatus, frozenset[DefinitionStatus]] = {
    DefinitionStatus.DRAFT: frozenset({DefinitionStatus.ACTIVE}),
    DefinitionStatus.ACTIVE: frozenset({DefinitionStatus.RETIRED}),
    DefinitionStatus.RETIRED: frozenset(),
}


# =============================================================================
# Definition building blocks
# =============================================================================


@dataclass(frozen=True)
class Stage:
    """A named position an application can occupy within a workflow."""

    id: UUID
    workflow_definition_id: UUID
    name: str
    sequence: int
    required_document_types: frozenset[str] = frozenset()
    sla_duration: timedelta | None = None
    is_terminal: bool = False
    outcome: str | None = None
    description: str | None = None
    assigned_role: str | None = None
    entry_notifications: tuple[str, ...] = ()

    @property
    def outcome_label(self) -> str:
        """Outcome branch a terminal stage represents (defaults to its name)."""
        return self.outcome or self.name


@dataclass(frozen=True)
class Transition:
    """A directed, typed edge between two stages of one definition."""

    id: UUID
    workflow_definition_id: UUID
    source_stage_id: UUID
    target_stage_id: UUID
    trigger_type: TriggerType
    guard: GuardExpression | None = None
    required_role: str | None = None
    name: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class StageSpec:
    """Authoring input for a stage; ids are assigned on creation."""

    name: str
    sequence: int
    required_document_types: frozenset[str] = frozenset()
    sla_duration: timedelta | None = None
    is_terminal: bool = False
    outcome: str | None = None
    description: str | None = None
    assigned_role: str | None = None
    entry_notifications: tuple[str, ...] = ()


@dataclass(frozen=True)
class TransitionSpec:
    """Authoring input for a transition; stages are referenced by name."""

    source: str
    target: str
    trigger_type: TriggerType
    guard: GuardExpression | None = None
    required_role: str | None = None
    name: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class WorkflowDefinition:
    """
    Versioned aggregate of stages and transitions for one application type.

    Contract:
        Immutable once activated; edits produce a new version.
    """

    id: UUID
    application_type: str
    version: int
    name: str
    status: DefinitionStatus
    stages: tuple[Stage, ...] = ()
    transitions: tuple[Transition, ...] = ()
    start_stage_id: UUID | None = None
    description: str | None = None
    created_at: datetime | None = None
    activated_at: datetime | None = None
    retired_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == DefinitionStatus.ACTIVE

    @property
    def start_stage(self) -> Stage | None:
        if self.start_stage_id is not None:
            return self.stage(self.start_stage_id)
        if not self.stages:
            return None
        return min(self.stages, key=lambda s: s.sequence)

    @property
    def terminal_stages(self) -> tuple[Stage, ...]:
        return tuple(s for s in self.stages if s.is_terminal)

    def stage(self, stage_id: UUID) -> Stage | None:
        for s in self.stages:
            if s.id == stage_id:
                return s
        return None

    def stage_by_name(self, name: str) -> Stage | None:
        for s in self.stages:
            if s.name == name:
                return s
        return None

    def transition(self, transition_id: UUID) -> Transition | None:
        for t in self.transitions:
            if t.id == transition_id:
                return t
        return None

    def outgoing(self, stage_id: UUID) -> tuple[Transition, ...]:
        """Transitions leaving a stage, in deterministic order; empty at terminals."""
        stage = self.stage(stage_id)
        if stage is None or stage.is_terminal:
            return ()
        order = {s.id: s.sequence for s in self.stages}
        candidates = [t for t in self.transitions if t.source_stage_id == stage_id]
        return tuple(sorted(
            candidates,
            key=lambda t: (order.get(t.target_stage_id, 0), t.name or "", str(t.id)),
        ))


# =============================================================================
# Application state
# =============================================================================


@dataclass(frozen=True)
class StatusRecord:
    """One committed transition in an application's history. Append-only."""

    id: UUID
    application_id: UUID
    seq: int
    from_stage_id: UUID | None
    to_stage_id: UUID
    transition_id: UUID | None
    triggered_by: str
    trigger_type: TriggerType
    timestamp: datetime
    notes: str | None = None


@dataclass(frozen=True)
class ApplicationWorkflowState:
    """Per-application pointer into its bound workflow definition."""

    application_id: UUID
    application_type: str
    workflow_definition_id: UUID
    current_stage_id: UUID
    entered_stage_at: datetime
    version: int
    created_at: datetime | None = None
    history: tuple[StatusRecord, ...] = ()


@dataclass(frozen=True)
class TransitionCompleted:
    """Outbound event emitted after a transition commits."""

    event_id: UUID
    application_id: UUID
    workflow_definition_id: UUID
    transition_id: UUID
    transition_name: str | None
    from_stage_id: UUID
    from_stage_name: str
    to_stage_id: UUID
    to_stage_name: str
    trigger_type: TriggerType
    triggered_by: str
    occurred_at: datetime
    is_terminal: bool = False
    outcome: str | None = None
    notifications: tuple[str, ...] = ()
    notes: str | None = None


@dataclass(frozen=True)
class StageRequirementReport:
    """Document requirements of the application's current stage."""

    application_id: UUID
    stage_id: UUID
    stage_name: str
    required: frozenset[str] = frozenset()
    verified: frozenset[str] = frozenset()
    missing: frozenset[str] = field(default_factory=frozenset)

    @property
    def requirements_met(self) -> bool:
        return not self.missing
