"""
admissions_services.transition_engine -- moves applications between stages.

Responsibility:
    The only writer of ``ApplicationWorkflowState``.  Binds new applications
    to the active definition of their type, lists legal transitions, applies
    manual / automatic / SLA-timeout transitions under optimistic
    concurrency, and emits the post-commit notification and audit record.

Architecture position:
    Services layer.  Thin coordinator: structure comes from the bound
    ``WorkflowDefinition`` DTO, guard evaluation from ``GuardExecutor``,
    role checks from the ``RoleProvider``, reads from the kernel selectors.
    Each public operation runs in its own unit of work from
    ``session_factory``.

Invariants enforced:
    - An application's current stage only ever changes through a transition
      whose source is that stage, whose role (MANUAL only) is held by the
      actor, and whose guard holds at execution time.
    - Terminal stages have no legal outgoing transitions.
    - Every committed move appends exactly one StatusRecord in the same
      transaction as the state update.
    - Two concurrent moves from the same loaded version: exactly one
      commits, the other raises StaleStateError (database version column).
    - Applications stay bound to the definition version they started on.

Failure modes:
    - ApplicationNotFoundError / TransitionNotFoundError for unknown ids.
    - IllegalTransitionError (not retriable) for structural violations.
    - GuardFailedError (retriable) when the guard or SLA does not hold.
    - StaleStateError (retriable) on a lost race or a stale expected version.
    - WorkflowStoreError wrapping any other storage failure.
    - Notification and audit sink failures are logged, never raised; the
      transition stays committed.

Audit relevance:
    Every decision emits a ``workflow_transition_trace`` log record with an
    outcome code; committed moves are also recorded on the AuditSink.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any, Callable
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from admissions_kernel.db.engine import session_scope
from admissions_kernel.domain.clock import Clock, SystemClock
from admissions_kernel.domain.guards import GuardContext, describe
from admissions_kernel.domain.workflow import (
    SYSTEM_ACTOR,
    ApplicationWorkflowState,
    Stage,
    StageRequirementReport,
    StatusRecord,
    Transition,
    TransitionCompleted,
    TriggerType,
    WorkflowDefinition,
)
from admissions_kernel.exceptions import (
    ApplicationNotFoundError,
    GuardFailedError,
    IllegalTransitionError,
    StageNotFoundError,
    StaleStateError,
    TransitionNotFoundError,
    WorkflowStoreError,
)
from admissions_kernel.logging_config import LogContext, get_logger
from admissions_kernel.models.application_state import (
    ApplicationWorkflowStateModel,
    StatusRecordModel,
)
from admissions_kernel.selectors.application_selector import ApplicationSelector
from admissions_kernel.selectors.definition_selector import DefinitionSelector
from admissions_kernel.services.auditor_service import AuditorService
from admissions_kernel.services.sequence_service import SequenceService
from admissions_services.collaborators import (
    ApplicationDataProvider,
    AuditSink,
    DocumentVerificationProvider,
    InMemoryDocumentStatusProvider,
    InMemoryPaymentStatusProvider,
    NotificationDispatcher,
    PaymentStatusProvider,
    RoleProvider,
    StaticRoleProvider,
)
from admissions_services.guard_executor import GuardExecutor, default_guard_executor

logger = get_logger("services.transition_engine")

# Trace message and outcome codes for structured logging and traceability
TRACE_TYPE_WORKFLOW_TRANSITION = "WORKFLOW_TRANSITION"
OUTCOME_SUCCESS = "success"
OUTCOME_NO_OP = "no_op"
OUTCOME_GUARD_FAILED = "guard_failed"
OUTCOME_ILLEGAL = "illegal"
OUTCOME_STALE = "stale"


def _emit_transition_trace(
    application_id: UUID,
    transition: Transition,
    actor: str,
    from_stage: str,
    outcome: str,
    reason: str,
    duration_ms: float,
    to_stage: str | None = None,
) -> None:
    """Emit a structured transition decision record for traceability."""
    record: dict[str, Any] = {
        "trace_type": TRACE_TYPE_WORKFLOW_TRANSITION,
        "ts": datetime.now(UTC).isoformat(),
        "entity_id": str(application_id),
        "transition_id": str(transition.id),
        "transition_name": transition.name,
        "trigger_type": transition.trigger_type.value,
        "actor": actor,
        "from_state": from_stage,
        "outcome": outcome,
        "reason": reason,
        "duration_ms": round(duration_ms, 3),
    }
    if to_stage is not None:
        record["to_state"] = to_stage
    record.update(LogContext.get_all())
    logger.info("workflow_transition_trace", extra=record)


@dataclass(frozen=True)
class _AppliedEvent:
    """Transition and its outbound event, handed out of the unit of work."""

    transition: Transition
    completed: TransitionCompleted


class TransitionEngine:
    """
    Applies workflow transitions to applications.

    Contract:
        Every public method opens, commits and closes its own session.
        Returned values are frozen DTOs, safe to use after the call.

    Non-goals:
        - Authoring definitions (DefinitionService).
        - Deciding when SLA / automatic transitions run (TriggerScheduler,
          WorkflowEventHandler).
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        guard_executor: GuardExecutor | None = None,
        role_provider: RoleProvider | None = None,
        documents: DocumentVerificationProvider | None = None,
        payments: PaymentStatusProvider | None = None,
        application_data: ApplicationDataProvider | None = None,
        notifier: NotificationDispatcher | None = None,
        audit_sink: AuditSink | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._guard_executor = guard_executor or default_guard_executor()
        self._role_provider = role_provider or StaticRoleProvider()
        self._documents = documents or InMemoryDocumentStatusProvider()
        self._payments = payments or InMemoryPaymentStatusProvider()
        self._application_data = application_data
        self._notifier = notifier
        self._audit_sink = audit_sink

    @property
    def clock(self) -> Clock:
        return self._clock

    # ------------------------------------------------------------------
    # Binding
    # ------------------------------------------------------------------

    def initialize_application(
        self,
        application_id: UUID,
        application_type: str,
        actor: str = SYSTEM_ACTOR,
    ) -> ApplicationWorkflowState:
        """
        Bind an application to the active definition of its type.

        Re-initializing returns the existing state untouched, whatever
        definition is active now.

        Raises:
            ActiveDefinitionNotFoundError: No active definition for the type.
        """
        with LogContext.bind(application_id=application_id, actor_id=actor):
            try:
                with session_scope(self._session_factory) as session:
                    existing = ApplicationSelector(session).find_state(application_id)
                    if existing is not None:
                        logger.info(
                            "application_already_initialized",
                            extra={"stage_id": str(existing.current_stage_id)},
                        )
                        return existing

                    definition = DefinitionSelector(session).get_active(application_type)
                    start = definition.start_stage
                    if start is None:
                        raise StageNotFoundError("start", str(definition.id))

                    now = self._clock.now()
                    row = ApplicationWorkflowStateModel(
                        application_id=application_id,
                        application_type=application_type,
                        workflow_definition_id=definition.id,
                        current_stage_id=start.id,
                        entered_stage_at=now,
                        created_at=now,
                        created_by=actor,
                    )
                    session.add(row)
                    session.flush()
                    AuditorService(session, self._clock).record_application_initialized(
                        application_id, definition.id, start.id, actor,
                    )
                    state = row.to_dto()
            except IntegrityError:
                # Lost an initialization race; the winner's binding stands.
                with session_scope(self._session_factory) as session:
                    existing = ApplicationSelector(session).find_state(application_id)
                if existing is None:
                    raise WorkflowStoreError(
                        "initialize_application", "binding lost to a concurrent writer",
                    ) from None
                return existing
            except SQLAlchemyError as exc:
                raise WorkflowStoreError("initialize_application", str(exc)) from exc

            logger.info(
                "application_initialized",
                extra={
                    "application_type": application_type,
                    "definition_id": str(state.workflow_definition_id),
                    "stage_id": str(state.current_stage_id),
                    "stage_name": start.name,
                },
            )
            return state

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_state(self, application_id: UUID) -> ApplicationWorkflowState:
        with session_scope(self._session_factory) as session:
            return ApplicationSelector(session).get_state(application_id)

    def get_bound_definition(self, application_id: UUID) -> WorkflowDefinition:
        """The definition version an application is bound to."""
        with session_scope(self._session_factory) as session:
            state = ApplicationSelector(session).get_state(application_id)
            return DefinitionSelector(session).get(state.workflow_definition_id)

    def get_status_timeline(self, application_id: UUID) -> list[StatusRecord]:
        """Status history in commit order."""
        with session_scope(self._session_factory) as session:
            return list(ApplicationSelector(session).get_state(application_id).history)

    def get_legal_transitions(
        self,
        application_id: UUID,
        actor: str = SYSTEM_ACTOR,
    ) -> list[Transition]:
        """
        Outgoing transitions of the current stage that could be applied now.

        Filters by role (MANUAL only), elapsed SLA (SLA_TIMEOUT) and guard.
        Empty for terminal stages.
        """
        with session_scope(self._session_factory) as session:
            state = ApplicationSelector(session).get_state(application_id)
            definition = DefinitionSelector(session).get(state.workflow_definition_id)

        stage = definition.stage(state.current_stage_id)
        if stage is None or stage.is_terminal:
            return []

        now = self._clock.now()
        context = self._guard_context(state, stage, now)
        return [
            t for t in definition.outgoing(stage.id)
            if self._role_satisfied(t, actor)
            and self._guard_failure(t, stage, state, context) is None
        ]

    def get_next_stages(
        self,
        application_id: UUID,
        actor: str = SYSTEM_ACTOR,
    ) -> list[Stage]:
        """Distinct target stages reachable through a legal transition."""
        legal = self.get_legal_transitions(application_id, actor)
        if not legal:
            return []
        with session_scope(self._session_factory) as session:
            definition = DefinitionSelector(session).get(legal[0].workflow_definition_id)
        seen: set[UUID] = set()
        stages: list[Stage] = []
        for t in legal:
            if t.target_stage_id in seen:
                continue
            seen.add(t.target_stage_id)
            target = definition.stage(t.target_stage_id)
            if target is not None:
                stages.append(target)
        return stages

    def evaluate_stage_requirements(self, application_id: UUID) -> StageRequirementReport:
        """Which of the current stage's required documents are verified."""
        with session_scope(self._session_factory) as session:
            state = ApplicationSelector(session).get_state(application_id)
            definition = DefinitionSelector(session).get(state.workflow_definition_id)

        stage = definition.stage(state.current_stage_id)
        if stage is None:
            raise StageNotFoundError(str(state.current_stage_id), str(definition.id))
        required = frozenset(stage.required_document_types)
        verified = frozenset(
            doc for doc in required
            if self._documents.is_document_verified(application_id, doc)
        )
        return StageRequirementReport(
            application_id=application_id,
            stage_id=stage.id,
            stage_name=stage.name,
            required=required,
            verified=verified,
            missing=required - verified,
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def apply_transition(
        self,
        application_id: UUID,
        transition_id: UUID,
        actor: str,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> ApplicationWorkflowState:
        """
        Move an application along one transition.

        Preconditions:
            ``transition_id`` belongs to the definition the application is
            bound to.  If ``expected_version`` is given it must equal the
            stored version.

        Postconditions:
            The state row points at the target stage with a fresh
            ``entered_stage_at`` and an incremented version, and one
            StatusRecord was appended, all in one commit.  Applying a
            transition whose target is already the current stage returns
            the state unchanged.

        Raises:
            ApplicationNotFoundError, TransitionNotFoundError,
            IllegalTransitionError, GuardFailedError, StaleStateError,
            WorkflowStoreError.
        """
        t0 = time.monotonic()
        with LogContext.bind(application_id=application_id, actor_id=actor):
            try:
                with session_scope(self._session_factory) as session:
                    outcome = self._apply_in_session(
                        session, application_id, transition_id, actor, notes,
                        expected_version, t0,
                    )
            except StaleDataError as exc:
                logger.warning("transition_stale", extra={"transition_id": str(transition_id)})
                raise StaleStateError(str(application_id), expected_version) from exc
            except SQLAlchemyError as exc:
                logger.error(
                    "transition_store_error",
                    extra={"transition_id": str(transition_id), "error": str(exc)},
                )
                raise WorkflowStoreError("apply_transition", str(exc)) from exc

            state, event, record = outcome
            if record is None:
                return state

            _emit_transition_trace(
                application_id=application_id,
                transition=event.transition,
                actor=actor,
                from_stage=event.completed.from_stage_name,
                to_stage=event.completed.to_stage_name,
                outcome=OUTCOME_SUCCESS,
                reason=f"Transition {event.completed.from_stage_name} -> "
                       f"{event.completed.to_stage_name} committed",
                duration_ms=(time.monotonic() - t0) * 1000,
            )
            logger.info(
                "transition_applied",
                extra={
                    "transition_id": str(transition_id),
                    "from_stage": event.completed.from_stage_name,
                    "to_stage": event.completed.to_stage_name,
                    "trigger_type": event.completed.trigger_type.value,
                    "seq": record.seq,
                    "version": state.version,
                    "is_terminal": event.completed.is_terminal,
                },
            )
            self._after_commit(event.completed, record)
            return state

    def fire_automatic_transitions(
        self,
        application_id: UUID,
        max_chain: int = 10,
    ) -> list[ApplicationWorkflowState]:
        """
        Apply AUTO_CONDITION transitions whose guards hold, as ``"system"``.

        From the current stage the first eligible transition (in definition
        order) fires; the search repeats from the new stage until nothing
        fires or ``max_chain`` transitions have been applied.

        Returns:
            The state after each applied transition, in order.
        """
        applied: list[ApplicationWorkflowState] = []
        while len(applied) < max_chain:
            with session_scope(self._session_factory) as session:
                state = ApplicationSelector(session).get_state(application_id)
                definition = DefinitionSelector(session).get(state.workflow_definition_id)

            stage = definition.stage(state.current_stage_id)
            if stage is None or stage.is_terminal:
                break
            context = self._guard_context(state, stage, self._clock.now())
            candidate = next(
                (
                    t for t in definition.outgoing(stage.id)
                    if t.trigger_type == TriggerType.AUTO_CONDITION
                    and self._guard_failure(t, stage, state, context) is None
                ),
                None,
            )
            if candidate is None:
                break
            try:
                applied.append(self.apply_transition(
                    application_id,
                    candidate.id,
                    SYSTEM_ACTOR,
                    expected_version=state.version,
                ))
            except GuardFailedError:
                # Data changed between the scan and the apply.
                break

        if len(applied) >= max_chain:
            logger.warning(
                "automatic_chain_limit_reached",
                extra={"application_id": str(application_id), "max_chain": max_chain},
            )
        return applied

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply_in_session(
        self,
        session: Session,
        application_id: UUID,
        transition_id: UUID,
        actor: str,
        notes: str | None,
        expected_version: int | None,
        t0: float,
    ) -> tuple[ApplicationWorkflowState, _AppliedEvent | None, StatusRecord | None]:
        row = session.execute(
            select(ApplicationWorkflowStateModel)
            .where(ApplicationWorkflowStateModel.application_id == application_id)
        ).scalar_one_or_none()
        if row is None:
            raise ApplicationNotFoundError(str(application_id))

        history = tuple(ApplicationSelector(session).timeline(application_id))
        state = row.to_dto(history=history)
        definition = DefinitionSelector(session).get(state.workflow_definition_id)

        transition = definition.transition(transition_id)
        if transition is None:
            raise TransitionNotFoundError(str(transition_id), str(definition.id))

        current = definition.stage(state.current_stage_id)
        target = definition.stage(transition.target_stage_id)
        source = definition.stage(transition.source_stage_id)
        if current is None or target is None or source is None:
            raise StageNotFoundError(str(state.current_stage_id), str(definition.id))

        def trace(outcome: str, reason: str) -> None:
            _emit_transition_trace(
                application_id=application_id,
                transition=transition,
                actor=actor,
                from_stage=current.name,
                to_stage=target.name,
                outcome=outcome,
                reason=reason,
                duration_ms=(time.monotonic() - t0) * 1000,
            )

        if state.current_stage_id == transition.target_stage_id:
            trace(OUTCOME_NO_OP, f"already in stage '{target.name}'")
            return state, None, None

        if expected_version is not None and expected_version != state.version:
            trace(OUTCOME_STALE, f"expected version {expected_version}, found {state.version}")
            raise StaleStateError(str(application_id), expected_version, state.version)

        if transition.source_stage_id != state.current_stage_id:
            if transition.source_stage_id in self._visited_stages(state):
                reason = (
                    f"application already moved past '{source.name}' "
                    f"and is now in '{current.name}'"
                )
                trace(OUTCOME_STALE, reason)
                raise StaleStateError(str(application_id), expected_version, state.version)
            reason = f"transition leaves '{source.name}', application is in '{current.name}'"
            trace(OUTCOME_ILLEGAL, reason)
            raise IllegalTransitionError(str(application_id), str(transition_id), reason)

        if current.is_terminal:
            reason = f"stage '{current.name}' is terminal"
            trace(OUTCOME_ILLEGAL, reason)
            raise IllegalTransitionError(str(application_id), str(transition_id), reason)

        if not self._role_satisfied(transition, actor):
            reason = f"actor '{actor}' lacks role '{transition.required_role}'"
            trace(OUTCOME_ILLEGAL, reason)
            raise IllegalTransitionError(str(application_id), str(transition_id), reason)

        now = self._clock.now()
        failure = self._guard_failure(
            transition, current, state, self._guard_context(state, current, now),
        )
        if failure is not None:
            trace(OUTCOME_GUARD_FAILED, failure)
            logger.info(
                "guard_failed",
                extra={"transition_id": str(transition_id), "guard": failure},
            )
            raise GuardFailedError(str(application_id), str(transition_id), failure)

        seq = SequenceService(session).next_value(SequenceService.STATUS_RECORD)
        record = StatusRecord(
            id=uuid4(),
            application_id=application_id,
            seq=seq,
            from_stage_id=current.id,
            to_stage_id=target.id,
            transition_id=transition.id,
            triggered_by=actor,
            trigger_type=transition.trigger_type,
            timestamp=now,
            notes=notes,
        )
        row.current_stage_id = target.id
        row.entered_stage_at = now
        session.add(StatusRecordModel.from_dto(record))
        session.flush()

        new_state = replace(
            state,
            current_stage_id=target.id,
            entered_stage_at=now,
            version=row.version,
            history=history + (record,),
        )
        completed = TransitionCompleted(
            event_id=uuid4(),
            application_id=application_id,
            workflow_definition_id=definition.id,
            transition_id=transition.id,
            transition_name=transition.name,
            from_stage_id=current.id,
            from_stage_name=current.name,
            to_stage_id=target.id,
            to_stage_name=target.name,
            trigger_type=transition.trigger_type,
            triggered_by=actor,
            occurred_at=now,
            is_terminal=target.is_terminal,
            outcome=target.outcome_label if target.is_terminal else None,
            notifications=target.entry_notifications,
            notes=notes,
        )
        return new_state, _AppliedEvent(transition, completed), record

    def _after_commit(self, event: TransitionCompleted, record: StatusRecord) -> None:
        if self._notifier is not None:
            try:
                self._notifier.notify(event.application_id, event)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "notification_failed",
                    extra={"event_id": str(event.event_id)},
                )
        if self._audit_sink is not None:
            try:
                self._audit_sink.record(record)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "audit_record_failed",
                    extra={"status_record_id": str(record.id), "seq": record.seq},
                )

    @staticmethod
    def _visited_stages(state: ApplicationWorkflowState) -> set[UUID]:
        visited = {state.current_stage_id}
        for r in state.history:
            visited.add(r.to_stage_id)
            if r.from_stage_id is not None:
                visited.add(r.from_stage_id)
        return visited

    def _role_satisfied(self, transition: Transition, actor: str) -> bool:
        if transition.trigger_type != TriggerType.MANUAL or not transition.required_role:
            return True
        return self._role_provider.has_role(actor, transition.required_role)

    def _guard_failure(
        self,
        transition: Transition,
        stage: Stage,
        state: ApplicationWorkflowState,
        context: GuardContext,
    ) -> str | None:
        """Reason the transition may not fire now, or None if it may."""
        if transition.trigger_type == TriggerType.SLA_TIMEOUT:
            if stage.sla_duration is None:
                return f"stage '{stage.name}' has no SLA"
            deadline = state.entered_stage_at + stage.sla_duration
            if context.now < deadline:
                return f"SLA for '{stage.name}' not elapsed until {deadline.isoformat()}"
        if not self._guard_executor.evaluate(transition.guard, context):
            return describe(transition.guard)
        return None

    def _guard_context(
        self,
        state: ApplicationWorkflowState,
        stage: Stage,
        now: datetime,
    ) -> GuardContext:
        data = (
            self._application_data.get_application_data(state.application_id)
            if self._application_data is not None
            else {}
        )
        return GuardContext(
            application_id=state.application_id,
            current_stage=stage,
            now=now,
            documents=self._documents,
            payments=self._payments,
            application_data=data,
        )
