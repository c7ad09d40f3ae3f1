"""
admissions_services.workflow_events -- reacts to domain events outside the engine.

Document verification, payment completion and applicant-data edits happen
in other services.  Each one may make an AUTO_CONDITION guard true, so the
handler asks the engine to fire whatever became eligible.  Handlers never
raise workflow errors back into the publishing service; they are logged.
"""

from __future__ import annotations

from uuid import UUID

from admissions_kernel.domain.workflow import ApplicationWorkflowState
from admissions_kernel.exceptions import WorkflowKernelError
from admissions_kernel.logging_config import LogContext, get_logger
from admissions_services.transition_engine import TransitionEngine

logger = get_logger("services.workflow_events")


class WorkflowEventHandler:
    """Routes external events to ``TransitionEngine.fire_automatic_transitions``."""

    def __init__(self, engine: TransitionEngine, max_chain: int = 10) -> None:
        self._engine = engine
        self._max_chain = max_chain

    def on_document_verified(
        self, application_id: UUID, document_type: str,
    ) -> list[ApplicationWorkflowState]:
        return self._fire(application_id, "document_verified", document_type=document_type)

    def on_payment_completed(self, application_id: UUID) -> list[ApplicationWorkflowState]:
        return self._fire(application_id, "payment_completed")

    def on_application_updated(self, application_id: UUID) -> list[ApplicationWorkflowState]:
        return self._fire(application_id, "application_updated")

    def _fire(
        self, application_id: UUID, event_type: str, **details: str,
    ) -> list[ApplicationWorkflowState]:
        with LogContext.bind(application_id=application_id):
            try:
                applied = self._engine.fire_automatic_transitions(
                    application_id, max_chain=self._max_chain,
                )
            except WorkflowKernelError as exc:
                logger.warning(
                    "workflow_event_failed",
                    extra={
                        "event_type": event_type,
                        "error_code": exc.code,
                        "retriable": exc.retriable,
                        "error": str(exc),
                        **details,
                    },
                )
                return []
            logger.info(
                "workflow_event_handled",
                extra={
                    "event_type": event_type,
                    "transitions_applied": len(applied),
                    **details,
                },
            )
            return applied
