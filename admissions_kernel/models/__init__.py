"""ORM models for the admissions workflow kernel."""

from admissions_kernel.models.application_state import (
    ApplicationWorkflowStateModel,
    StatusRecordModel,
)
from admissions_kernel.models.audit_event import AuditAction, AuditEvent
from admissions_kernel.models.workflow import (
    ActiveDefinitionModel,
    WorkflowDefinitionModel,
    WorkflowStageModel,
    WorkflowTransitionModel,
)


def import_all_models() -> None:
    """Make sure every table, including the sequence counters, is on Base.metadata."""
    import admissions_kernel.services.sequence_service  # noqa: F401


__all__ = [
    "ActiveDefinitionModel",
    "ApplicationWorkflowStateModel",
    "AuditAction",
    "AuditEvent",
    "StatusRecordModel",
    "WorkflowDefinitionModel",
    "WorkflowStageModel",
    "WorkflowTransitionModel",
    "import_all_models",
]
