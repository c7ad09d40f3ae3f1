"""
Read-side access to workflow definitions, stages and transitions.

``StageSelector`` and ``TransitionSelector`` are the stage and transition
stores; ``DefinitionSelector`` assembles whole definitions.  All return
frozen domain DTOs.
"""

from uuid import UUID

from sqlalchemy import func, select

from admissions_kernel.domain.workflow import (
    DefinitionStatus,
    Stage,
    Transition,
    WorkflowDefinition,
)
from admissions_kernel.exceptions import (
    ActiveDefinitionNotFoundError,
    DefinitionNotFoundError,
    StageNotFoundError,
    TransitionNotFoundError,
)
from admissions_kernel.models.workflow import (
    ActiveDefinitionModel,
    WorkflowDefinitionModel,
    WorkflowStageModel,
    WorkflowTransitionModel,
)
from admissions_kernel.selectors.base import BaseSelector


class StageSelector(BaseSelector):
    """Ordered stages belonging to a definition."""

    def list_for_definition(self, definition_id: UUID) -> list[Stage]:
        rows = self.session.execute(
            select(WorkflowStageModel)
            .where(WorkflowStageModel.definition_id == definition_id)
            .order_by(WorkflowStageModel.sequence)
        ).scalars().all()
        return [r.to_dto() for r in rows]

    def get(self, stage_id: UUID) -> Stage:
        row = self.session.get(WorkflowStageModel, stage_id)
        if row is None:
            raise StageNotFoundError(str(stage_id))
        return row.to_dto()


class TransitionSelector(BaseSelector):
    """Directed edges between stages."""

    def list_for_definition(self, definition_id: UUID) -> list[Transition]:
        rows = self.session.execute(
            select(WorkflowTransitionModel)
            .where(WorkflowTransitionModel.definition_id == definition_id)
        ).scalars().all()
        return [r.to_dto() for r in rows]

    def outgoing(self, stage_id: UUID) -> list[Transition]:
        rows = self.session.execute(
            select(WorkflowTransitionModel)
            .where(WorkflowTransitionModel.source_stage_id == stage_id)
        ).scalars().all()
        return [r.to_dto() for r in rows]

    def get(self, transition_id: UUID) -> Transition:
        row = self.session.get(WorkflowTransitionModel, transition_id)
        if row is None:
            raise TransitionNotFoundError(str(transition_id))
        return row.to_dto()


class DefinitionSelector(BaseSelector):
    """Whole-definition reads, including the active pointer per type."""

    def get(self, definition_id: UUID) -> WorkflowDefinition:
        row = self.session.get(WorkflowDefinitionModel, definition_id)
        if row is None:
            raise DefinitionNotFoundError(str(definition_id))
        return row.to_dto()

    def get_active(self, application_type: str) -> WorkflowDefinition:
        definition_id = self.session.execute(
            select(ActiveDefinitionModel.definition_id)
            .where(ActiveDefinitionModel.application_type == application_type)
        ).scalar_one_or_none()
        if definition_id is None:
            raise ActiveDefinitionNotFoundError(application_type)
        return self.get(definition_id)

    def list_definitions(
        self,
        application_type: str | None = None,
        status: DefinitionStatus | None = None,
    ) -> list[WorkflowDefinition]:
        stmt = select(WorkflowDefinitionModel).order_by(
            WorkflowDefinitionModel.application_type,
            WorkflowDefinitionModel.version,
        )
        if application_type is not None:
            stmt = stmt.where(WorkflowDefinitionModel.application_type == application_type)
        if status is not None:
            stmt = stmt.where(WorkflowDefinitionModel.status == status.value)
        return [r.to_dto() for r in self.session.execute(stmt).scalars().all()]

    def latest_version(self, application_type: str) -> int:
        latest = self.session.execute(
            select(func.max(WorkflowDefinitionModel.version))
            .where(WorkflowDefinitionModel.application_type == application_type)
        ).scalar_one_or_none()
        return latest or 0
