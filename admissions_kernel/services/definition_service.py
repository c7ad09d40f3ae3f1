"""
DefinitionService -- authoring, validation and activation of workflow definitions.

Responsibility:
    Owns the lifecycle of a WorkflowDefinition: create a draft from stage and
    transition specs, edit it while it is a draft (add, update, reorder or
    remove stages and transitions), validate it, activate it
    (atomically swapping the per-type activation record), retire it, clone it
    into a new version, or delete it while it is still a draft.

Architecture position:
    Kernel > Services -- imperative shell.  Flush-only: the caller owns the
    transaction via ``session_scope``.

Invariants enforced:
    - At most one active definition per application type; the swap runs
      against a single locked, version-checked activation row.
    - Definitions are immutable once activated; edits go into a new version.
    - Invalid definitions are never activated.
    - Retired definitions are never re-activated.
    - Activation never touches ApplicationWorkflowState rows; applications
      stay bound to the version they started on.

Failure modes:
    - DefinitionNotFoundError, StageNotFoundError, TransitionNotFoundError.
    - DefinitionValidationError when activation-time validation fails.
    - DefinitionRetiredError, DefinitionImmutableError, ActivationConflictError.
    - WorkflowStoreError for any other storage failure.

Audit relevance:
    Creation, activation, retirement and deletion each append an AuditEvent
    in the same transaction.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import fields, replace
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from admissions_kernel.domain.clock import Clock, SystemClock
from admissions_kernel.domain.validation import (
    DefinitionValidationResult,
    validate_definition,
)
from admissions_kernel.domain.workflow import (
    DefinitionStatus,
    Stage,
    StageSpec,
    Transition,
    TransitionSpec,
    TriggerType,
    WorkflowDefinition,
)
from admissions_kernel.exceptions import (
    ActivationConflictError,
    ConflictError,
    DefinitionImmutableError,
    DefinitionNotFoundError,
    DefinitionRetiredError,
    DefinitionValidationError,
    StageNotFoundError,
    TransitionNotFoundError,
    WorkflowStoreError,
)
from admissions_kernel.logging_config import get_logger
from admissions_kernel.models.audit_event import AuditAction
from admissions_kernel.models.workflow import (
    ActiveDefinitionModel,
    WorkflowDefinitionModel,
    WorkflowStageModel,
    WorkflowTransitionModel,
)
from admissions_kernel.selectors.definition_selector import DefinitionSelector
from admissions_kernel.services.auditor_service import AuditorService

logger = get_logger("services.definition")

_STAGE_FIELDS = frozenset(f.name for f in fields(StageSpec))
_TRANSITION_FIELDS = frozenset(f.name for f in fields(TransitionSpec))


class DefinitionService:
    """
    Lifecycle operations over workflow definitions.

    Contract:
        Every mutating method flushes and returns frozen DTOs.  Nothing is
        committed here.

    Non-goals:
        - Does NOT move in-flight applications between versions.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        known_predicates: Iterable[str] | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._known_predicates = (
            frozenset(known_predicates) if known_predicates is not None else None
        )
        self._auditor = AuditorService(session, self._clock)
        self._selector = DefinitionSelector(session)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_definition(self, definition_id: UUID) -> WorkflowDefinition:
        return self._selector.get(definition_id)

    def get_active_definition(self, application_type: str) -> WorkflowDefinition:
        """The definition new applications of this type bind to."""
        return self._selector.get_active(application_type)

    def list_definitions(
        self,
        application_type: str | None = None,
        status: DefinitionStatus | None = None,
    ) -> list[WorkflowDefinition]:
        return self._selector.list_definitions(application_type, status)

    def validate(self, definition: WorkflowDefinition | UUID) -> DefinitionValidationResult:
        if isinstance(definition, UUID):
            definition = self._selector.get(definition)
        return validate_definition(definition, self._known_predicates)

    # -------------------------------------------------------------------------
    # Authoring (drafts only)
    # -------------------------------------------------------------------------

    def create_definition(
        self,
        application_type: str,
        name: str,
        stages: Sequence[StageSpec],
        transitions: Sequence[TransitionSpec] = (),
        *,
        actor_id: str,
        start_stage: str | None = None,
        description: str | None = None,
    ) -> WorkflowDefinition:
        """
        Create a new DRAFT definition with the next version for its type.

        Raises:
            StageNotFoundError: A transition or ``start_stage`` names an
                unknown stage.
            DefinitionValidationError: A transition is a self-loop.
        """
        definition_id = uuid4()
        version = self._selector.latest_version(application_type) + 1

        model = WorkflowDefinitionModel(
            id=definition_id,
            application_type=application_type,
            version=version,
            name=name,
            description=description,
            status=DefinitionStatus.DRAFT.value,
            created_by=actor_id,
            created_at=self._clock.now(),
        )
        self._session.add(model)

        by_name: dict[str, UUID] = {}
        for spec in stages:
            stage = self._stage_from_spec(definition_id, spec)
            by_name[spec.name] = stage.id
            model.stages.append(WorkflowStageModel.from_dto(stage))

        for spec in transitions:
            model.transitions.append(
                WorkflowTransitionModel.from_dto(
                    self._transition_from_spec(definition_id, spec, by_name)
                )
            )

        if start_stage is not None:
            if start_stage not in by_name:
                raise StageNotFoundError(start_stage, str(definition_id))
            model.start_stage_id = by_name[start_stage]

        self._flush("create_definition")
        dto = model.to_dto()
        self._auditor.record_definition_event(
            dto, AuditAction.DEFINITION_CREATED, actor_id, name=name,
        )

        logger.info(
            "definition_created",
            extra={
                "definition_id": str(definition_id),
                "application_type": application_type,
                "version": version,
                "stage_count": len(stages),
                "transition_count": len(transitions),
            },
        )
        return dto

    def add_stage(self, definition_id: UUID, spec: StageSpec) -> Stage:
        model = self._load_draft(definition_id)
        stage = self._stage_from_spec(definition_id, spec)
        model.stages.append(WorkflowStageModel.from_dto(stage))
        self._flush("add_stage")
        return stage

    def add_transition(self, definition_id: UUID, spec: TransitionSpec) -> Transition:
        model = self._load_draft(definition_id)
        by_name = {s.name: s.id for s in model.stages}
        transition = self._transition_from_spec(definition_id, spec, by_name)
        model.transitions.append(WorkflowTransitionModel.from_dto(transition))
        self._flush("add_transition")
        return transition

    def remove_stage(self, definition_id: UUID, stage_id: UUID) -> None:
        """Remove a stage and every transition touching it."""
        model = self._load_draft(definition_id)
        stage = self._find_stage(model, stage_id)
        for t in [t for t in model.transitions if stage_id in (t.source_stage_id, t.target_stage_id)]:
            model.transitions.remove(t)
        model.stages.remove(stage)
        if model.start_stage_id == stage_id:
            model.start_stage_id = None
        self._flush("remove_stage")

    def update_stage(self, definition_id: UUID, stage_id: UUID, **changes) -> Stage:
        """
        Edit a draft stage in place, keeping its id and its transitions.

        ``changes`` are StageSpec field names (``sla_duration``,
        ``required_document_types``, ``sequence`` ...).

        Raises:
            DefinitionImmutableError: The definition is not a draft.
            StageNotFoundError: ``stage_id`` is not part of the definition.
            DefinitionValidationError: Unknown field, or the new name or
                sequence is already taken by another stage.
        """
        model = self._load_draft(definition_id)
        row = self._find_stage(model, stage_id)
        self._reject_unknown_fields(definition_id, "stage", changes, _STAGE_FIELDS)

        if "required_document_types" in changes:
            changes["required_document_types"] = frozenset(changes["required_document_types"])
        if "entry_notifications" in changes:
            changes["entry_notifications"] = tuple(changes["entry_notifications"])
        updated = replace(row.to_dto(), **changes)

        errors = []
        for other in model.stages:
            if other.id == stage_id:
                continue
            if other.sequence == updated.sequence:
                errors.append(
                    f"stages '{updated.name}' and '{other.name}' share sequence {updated.sequence}"
                )
            if other.name == updated.name:
                errors.append(f"duplicate stage name '{updated.name}'")
        if errors:
            raise DefinitionValidationError(str(definition_id), errors)

        row.assign(updated)
        self._flush("update_stage")
        logger.info(
            "stage_updated",
            extra={
                "definition_id": str(definition_id),
                "stage_id": str(stage_id),
                "fields": sorted(changes),
            },
        )
        return updated

    def update_transition(
        self, definition_id: UUID, transition_id: UUID, **changes,
    ) -> Transition:
        """
        Edit a draft transition in place, keeping its id.

        ``changes`` are TransitionSpec field names; ``source`` and ``target``
        name stages, as on creation.

        Raises:
            DefinitionImmutableError: The definition is not a draft.
            TransitionNotFoundError: ``transition_id`` is not part of the definition.
            StageNotFoundError: A new source or target names an unknown stage.
            DefinitionValidationError: Unknown field, or the edit makes a self-loop.
        """
        model = self._load_draft(definition_id)
        row = next((t for t in model.transitions if t.id == transition_id), None)
        if row is None:
            raise TransitionNotFoundError(str(transition_id), str(definition_id))
        self._reject_unknown_fields(definition_id, "transition", changes, _TRANSITION_FIELDS)

        if "trigger_type" in changes:
            changes["trigger_type"] = TriggerType(changes["trigger_type"])
        current = row.to_dto()
        names = {s.id: s.name for s in model.stages}
        spec = replace(
            TransitionSpec(
                source=names[current.source_stage_id],
                target=names[current.target_stage_id],
                trigger_type=current.trigger_type,
                guard=current.guard,
                required_role=current.required_role,
                name=current.name,
                description=current.description,
            ),
            **changes,
        )
        by_name = {name: sid for sid, name in names.items()}
        updated = replace(
            self._transition_from_spec(definition_id, spec, by_name),
            id=transition_id,
        )

        row.assign(updated)
        self._flush("update_transition")
        logger.info(
            "transition_updated",
            extra={
                "definition_id": str(definition_id),
                "transition_id": str(transition_id),
                "fields": sorted(changes),
            },
        )
        return updated

    def reorder_stages(self, definition_id: UUID, stage_ids: Sequence[UUID]) -> list[Stage]:
        """
        Renumber a draft's stages 1..n in the order given.

        ``stage_ids`` must name every stage of the definition exactly once.

        Raises:
            DefinitionImmutableError: The definition is not a draft.
            DefinitionValidationError: ``stage_ids`` is not a permutation of
                the definition's stages.
        """
        model = self._load_draft(definition_id)
        rows = {s.id: s for s in model.stages}
        if len(stage_ids) != len(rows) or set(stage_ids) != set(rows):
            raise DefinitionValidationError(
                str(definition_id),
                ["reorder must list every stage of the definition exactly once"],
            )

        # Two passes so no intermediate flush collides on UNIQUE(definition_id, sequence).
        for position, stage_id in enumerate(stage_ids, start=1):
            rows[stage_id].sequence = -position
        self._flush("reorder_stages")
        for position, stage_id in enumerate(stage_ids, start=1):
            rows[stage_id].sequence = position
        self._flush("reorder_stages")

        logger.info(
            "stages_reordered",
            extra={"definition_id": str(definition_id), "stage_count": len(stage_ids)},
        )
        return [rows[stage_id].to_dto() for stage_id in stage_ids]

    def remove_transition(self, definition_id: UUID, transition_id: UUID) -> None:
        model = self._load_draft(definition_id)
        transition = next((t for t in model.transitions if t.id == transition_id), None)
        if transition is None:
            raise TransitionNotFoundError(str(transition_id), str(definition_id))
        model.transitions.remove(transition)
        self._flush("remove_transition")

    def delete_definition(self, definition_id: UUID, actor_id: str) -> None:
        """Delete a draft, cascading its stages and transitions."""
        model = self._load_draft(definition_id)
        dto = model.to_dto()
        self._session.delete(model)
        self._flush("delete_definition")
        self._auditor.record_definition_event(dto, AuditAction.DEFINITION_DELETED, actor_id)
        logger.info("definition_deleted", extra={"definition_id": str(definition_id)})

    def new_version(
        self,
        definition_id: UUID,
        actor_id: str,
        name: str | None = None,
    ) -> WorkflowDefinition:
        """Clone any definition into a new DRAFT carrying the next version."""
        source = self._selector.get(definition_id)
        stage_names = {s.id: s.name for s in source.stages}
        start = source.start_stage

        clone = self.create_definition(
            source.application_type,
            name or source.name,
            [
                StageSpec(
                    name=s.name,
                    sequence=s.sequence,
                    required_document_types=s.required_document_types,
                    sla_duration=s.sla_duration,
                    is_terminal=s.is_terminal,
                    outcome=s.outcome,
                    description=s.description,
                    assigned_role=s.assigned_role,
                    entry_notifications=s.entry_notifications,
                )
                for s in source.stages
            ],
            [
                TransitionSpec(
                    source=stage_names[t.source_stage_id],
                    target=stage_names[t.target_stage_id],
                    trigger_type=t.trigger_type,
                    guard=t.guard,
                    required_role=t.required_role,
                    name=t.name,
                    description=t.description,
                )
                for t in source.transitions
            ],
            actor_id=actor_id,
            start_stage=start.name if source.start_stage_id is not None and start else None,
            description=source.description,
        )
        logger.info(
            "definition_versioned",
            extra={
                "source_definition_id": str(definition_id),
                "definition_id": str(clone.id),
                "version": clone.version,
            },
        )
        return clone

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def activate(self, definition_id: UUID, actor_id: str) -> WorkflowDefinition:
        """
        Make ``definition_id`` the active definition for its type.

        The previously active definition (if any) is retired in the same
        flush.  Activating the already-active definition is a no-op.

        Raises:
            DefinitionRetiredError: Target is retired.
            DefinitionValidationError: Target fails structural validation.
            ActivationConflictError: A concurrent activation won the race.
        """
        model = self._load(definition_id)
        status = DefinitionStatus(model.status)
        if status == DefinitionStatus.RETIRED:
            raise DefinitionRetiredError(str(definition_id))
        if status == DefinitionStatus.ACTIVE:
            return model.to_dto()

        result = self.validate(model.to_dto())
        if not result.is_valid:
            logger.warning(
                "definition_activation_rejected",
                extra={"definition_id": str(definition_id), "errors": result.errors},
            )
            raise DefinitionValidationError(str(definition_id), result.errors)

        now = self._clock.now()
        retired: WorkflowDefinitionModel | None = None
        try:
            pointer = self._session.execute(
                select(ActiveDefinitionModel)
                .where(ActiveDefinitionModel.application_type == model.application_type)
                .with_for_update()
            ).scalar_one_or_none()

            if pointer is None:
                self._session.add(ActiveDefinitionModel(
                    application_type=model.application_type,
                    definition_id=model.id,
                    activated_at=now,
                    activated_by=actor_id,
                ))
            else:
                retired = self._session.get(WorkflowDefinitionModel, pointer.definition_id)
                if retired is not None and retired.status == DefinitionStatus.ACTIVE.value:
                    retired.status = DefinitionStatus.RETIRED.value
                    retired.retired_at = now
                pointer.definition_id = model.id
                pointer.activated_at = now
                pointer.activated_by = actor_id

            model.status = DefinitionStatus.ACTIVE.value
            model.activated_at = now
            self._session.flush()
        except (StaleDataError, IntegrityError) as exc:
            logger.warning(
                "definition_activation_conflict",
                extra={
                    "definition_id": str(definition_id),
                    "application_type": model.application_type,
                },
            )
            raise ActivationConflictError(model.application_type, str(definition_id)) from exc
        except SQLAlchemyError as exc:
            raise WorkflowStoreError("activate", str(exc)) from exc

        dto = model.to_dto()
        self._auditor.record_definition_event(
            dto,
            AuditAction.DEFINITION_ACTIVATED,
            actor_id,
            replaced_definition_id=retired.id if retired is not None else None,
        )
        if retired is not None:
            self._auditor.record_definition_event(
                retired.to_dto(), AuditAction.DEFINITION_RETIRED, actor_id,
                replaced_by=dto.id,
            )

        logger.info(
            "definition_activated",
            extra={
                "definition_id": str(definition_id),
                "application_type": model.application_type,
                "version": model.version,
                "retired_definition_id": str(retired.id) if retired is not None else None,
                "warnings": result.warnings,
            },
        )
        return dto

    def retire(self, definition_id: UUID, actor_id: str) -> WorkflowDefinition:
        """
        Retire the active definition without a replacement.

        New applications of the type cannot be initialized until another
        definition is activated; in-flight applications are unaffected.
        """
        model = self._load(definition_id)
        status = DefinitionStatus(model.status)
        if status == DefinitionStatus.RETIRED:
            return model.to_dto()
        if status == DefinitionStatus.DRAFT:
            raise ConflictError(
                f"Workflow definition {definition_id} is a draft; delete it instead"
            )

        pointer = self._session.execute(
            select(ActiveDefinitionModel)
            .where(ActiveDefinitionModel.application_type == model.application_type)
            .with_for_update()
        ).scalar_one_or_none()
        if pointer is not None and pointer.definition_id == model.id:
            self._session.delete(pointer)

        model.status = DefinitionStatus.RETIRED.value
        model.retired_at = self._clock.now()
        self._flush("retire")

        dto = model.to_dto()
        self._auditor.record_definition_event(dto, AuditAction.DEFINITION_RETIRED, actor_id)
        logger.info(
            "definition_retired",
            extra={"definition_id": str(definition_id), "application_type": model.application_type},
        )
        return dto

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _load(self, definition_id: UUID) -> WorkflowDefinitionModel:
        model = self._session.get(WorkflowDefinitionModel, definition_id)
        if model is None:
            raise DefinitionNotFoundError(str(definition_id))
        return model

    def _load_draft(self, definition_id: UUID) -> WorkflowDefinitionModel:
        model = self._load(definition_id)
        if model.status != DefinitionStatus.DRAFT.value:
            raise DefinitionImmutableError(str(definition_id), model.status)
        return model

    @staticmethod
    def _find_stage(model: WorkflowDefinitionModel, stage_id: UUID) -> WorkflowStageModel:
        stage = next((s for s in model.stages if s.id == stage_id), None)
        if stage is None:
            raise StageNotFoundError(str(stage_id), str(model.id))
        return stage

    @staticmethod
    def _reject_unknown_fields(
        definition_id: UUID, kind: str, changes: dict, allowed: frozenset[str],
    ) -> None:
        unknown = sorted(set(changes) - allowed)
        if unknown:
            raise DefinitionValidationError(
                str(definition_id),
                [f"{kind} has no editable field '{name}'" for name in unknown],
            )

    def _flush(self, operation: str) -> None:
        try:
            self._session.flush()
        except SQLAlchemyError as exc:
            raise WorkflowStoreError(operation, str(exc)) from exc

    @staticmethod
    def _stage_from_spec(definition_id: UUID, spec: StageSpec) -> Stage:
        return Stage(
            id=uuid4(),
            workflow_definition_id=definition_id,
            name=spec.name,
            sequence=spec.sequence,
            required_document_types=frozenset(spec.required_document_types),
            sla_duration=spec.sla_duration,
            is_terminal=spec.is_terminal,
            outcome=spec.outcome,
            description=spec.description,
            assigned_role=spec.assigned_role,
            entry_notifications=tuple(spec.entry_notifications),
        )

    @staticmethod
    def _transition_from_spec(
        definition_id: UUID,
        spec: TransitionSpec,
        stages_by_name: dict[str, UUID],
    ) -> Transition:
        for ref in (spec.source, spec.target):
            if ref not in stages_by_name:
                raise StageNotFoundError(ref, str(definition_id))
        if spec.source == spec.target:
            raise DefinitionValidationError(
                str(definition_id),
                [f"transition '{spec.name or spec.source}' is a self-loop on '{spec.source}'"],
            )
        return Transition(
            id=uuid4(),
            workflow_definition_id=definition_id,
            source_stage_id=stages_by_name[spec.source],
            target_stage_id=stages_by_name[spec.target],
            trigger_type=spec.trigger_type,
            guard=spec.guard,
            required_role=spec.required_role,
            name=spec.name,
            description=spec.description,
        )
