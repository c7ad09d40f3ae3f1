"""
Read-side access to application workflow state and status history.

Also hosts the scan queries the trigger scheduler uses to find applications
whose current stage has outgoing automatic or SLA-timeout transitions.
"""

from uuid import UUID

from sqlalchemy import func, select

from admissions_kernel.domain.workflow import (
    ApplicationWorkflowState,
    Stage,
    StatusRecord,
    Transition,
    TriggerType,
)
from admissions_kernel.exceptions import ApplicationNotFoundError
from admissions_kernel.models.application_state import (
    ApplicationWorkflowStateModel,
    StatusRecordModel,
)
from admissions_kernel.models.workflow import WorkflowStageModel, WorkflowTransitionModel
from admissions_kernel.selectors.base import BaseSelector


class ApplicationSelector(BaseSelector):

    def find_state(self, application_id: UUID) -> ApplicationWorkflowState | None:
        row = self.session.execute(
            select(ApplicationWorkflowStateModel)
            .where(ApplicationWorkflowStateModel.application_id == application_id)
        ).scalar_one_or_none()
        if row is None:
            return None
        return row.to_dto(history=tuple(self.timeline(application_id)))

    def get_state(self, application_id: UUID) -> ApplicationWorkflowState:
        state = self.find_state(application_id)
        if state is None:
            raise ApplicationNotFoundError(str(application_id))
        return state

    def timeline(self, application_id: UUID) -> list[StatusRecord]:
        """Status history in commit order."""
        rows = self.session.execute(
            select(StatusRecordModel)
            .where(StatusRecordModel.application_id == application_id)
            .order_by(StatusRecordModel.seq)
        ).scalars().all()
        return [r.to_dto() for r in rows]

    def count_bound_to(self, definition_id: UUID) -> int:
        return self.session.execute(
            select(func.count(ApplicationWorkflowStateModel.id))
            .where(ApplicationWorkflowStateModel.workflow_definition_id == definition_id)
        ).scalar_one()

    def states_with_outgoing(
        self, trigger_type: TriggerType,
    ) -> list[tuple[ApplicationWorkflowState, Stage, Transition]]:
        """
        Applications sitting in a non-terminal stage that has an outgoing
        transition of ``trigger_type``, one row per such transition.
        """
        rows = self.session.execute(
            select(
                ApplicationWorkflowStateModel,
                WorkflowStageModel,
                WorkflowTransitionModel,
            )
            .join(
                WorkflowStageModel,
                WorkflowStageModel.id == ApplicationWorkflowStateModel.current_stage_id,
            )
            .join(
                WorkflowTransitionModel,
                WorkflowTransitionModel.source_stage_id == WorkflowStageModel.id,
            )
            .where(
                WorkflowStageModel.is_terminal.is_(False),
                WorkflowTransitionModel.trigger_type == trigger_type.value,
            )
            .order_by(
                ApplicationWorkflowStateModel.entered_stage_at,
                ApplicationWorkflowStateModel.application_id,
            )
        ).all()
        return [
            (state.to_dto(), stage.to_dto(), transition.to_dto())
            for state, stage, transition in rows
        ]
