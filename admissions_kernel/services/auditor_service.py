"""
AuditorService -- hash-chained, append-only audit trail.

Responsibility:
    Records every committed transition and every definition lifecycle change
    as an ``AuditEvent`` linked into a SHA-256 hash chain, validates that
    chain, and reads per-entity trails back.

Architecture position:
    Kernel > Services -- imperative shell.  ``AuditorService`` is flush-only
    on a caller-owned session (used inside DefinitionService transactions).
    ``DurableAuditSink`` wraps it in its own unit of work so the transition
    engine can record after its commit without sharing a transaction.

Invariants enforced:
    - Append-only: audit rows are never updated or deleted.
    - seq allocated by SequenceService; hash links to the previous row.

Failure modes:
    - AuditChainBrokenError from ``validate_chain`` on tampering.
    - Storage errors propagate from ``DurableAuditSink.record``; the engine
      treats the sink as best-effort and logs them.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from admissions_kernel.db.engine import session_scope
from admissions_kernel.domain.clock import Clock, SystemClock
from admissions_kernel.domain.workflow import StatusRecord, WorkflowDefinition
from admissions_kernel.exceptions import AuditChainBrokenError
from admissions_kernel.logging_config import get_logger
from admissions_kernel.models.audit_event import AuditAction, AuditEvent
from admissions_kernel.services.sequence_service import SequenceService
from admissions_kernel.utils.hashing import (
    hash_audit_event,
    hash_payload,
    to_json_compatible,
)

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTrailEntry:
    """One audit event as seen by readers."""

    seq: int
    action: AuditAction
    actor_id: str
    occurred_at: datetime
    payload: dict[str, Any]
    hash: str


class AuditorService:
    """
    Writes and validates the audit hash chain.

    Contract:
        Accepts a caller-owned Session.  Every ``record_*`` method flushes one
        AuditEvent; nothing is committed here.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        return self._session.execute(
            select(AuditEvent.hash).order_by(AuditEvent.seq.desc()).limit(1)
        ).scalar_one_or_none()

    def _create_audit_event(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: str,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """
        Create a new audit event with hash chain linkage.

        Postconditions:
            - A new AuditEvent row is flushed with a monotonically
              increasing ``seq`` and ``hash == H(entity_type, entity_id,
              action, payload_hash, prev_hash)``.
        """
        seq = self._sequence_service.next_value(SequenceService.AUDIT_EVENT)
        prev_hash = self._get_last_hash()

        payload_data = to_json_compatible(payload or {})
        computed_payload_hash = hash_payload(payload_data)

        event_hash = hash_audit_event(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = AuditEvent(
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=payload_data,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )

        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )

        return audit_event

    # Domain-specific recording methods

    def record_transition(self, record: StatusRecord) -> AuditEvent:
        return self._create_audit_event(
            entity_type="Application",
            entity_id=record.application_id,
            action=AuditAction.TRANSITION_APPLIED,
            actor_id=record.triggered_by,
            payload={
                "status_record_id": record.id,
                "seq": record.seq,
                "from_stage_id": record.from_stage_id,
                "to_stage_id": record.to_stage_id,
                "transition_id": record.transition_id,
                "trigger_type": record.trigger_type,
                "timestamp": record.timestamp,
                "notes": record.notes,
            },
        )

    def record_application_initialized(
        self,
        application_id: UUID,
        definition_id: UUID,
        stage_id: UUID,
        actor_id: str,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type="Application",
            entity_id=application_id,
            action=AuditAction.APPLICATION_INITIALIZED,
            actor_id=actor_id,
            payload={"workflow_definition_id": definition_id, "stage_id": stage_id},
        )

    def record_definition_event(
        self,
        definition: WorkflowDefinition,
        action: AuditAction,
        actor_id: str,
        **details: Any,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type="WorkflowDefinition",
            entity_id=definition.id,
            action=action,
            actor_id=actor_id,
            payload={
                "application_type": definition.application_type,
                "version": definition.version,
                **details,
            },
        )

    # Validation and query methods

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Raises:
            AuditChainBrokenError: If chain validation fails at any point.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        if not events:
            return True

        if events[0].prev_hash is not None:
            logger.critical("audit_chain_broken", extra={"seq": events[0].seq})
            raise AuditChainBrokenError(str(events[0].id), "None", events[0].prev_hash)

        for i, event in enumerate(events):
            expected_hash = hash_audit_event(
                entity_type=event.entity_type,
                entity_id=str(event.entity_id),
                action=event.action,
                payload_hash=hash_payload(event.payload or {}),
                prev_hash=event.prev_hash,
            )
            if event.hash != expected_hash:
                logger.critical("audit_chain_broken", extra={"seq": event.seq})
                raise AuditChainBrokenError(str(event.id), expected_hash, event.hash)

            if i > 0 and event.prev_hash != events[i - 1].hash:
                logger.critical("audit_chain_broken", extra={"seq": event.seq})
                raise AuditChainBrokenError(
                    str(event.id), events[i - 1].hash, event.prev_hash or "None",
                )

        logger.info("audit_chain_valid", extra={"event_count": len(events)})
        return True

    def get_trail(self, entity_id: UUID) -> list[AuditTrailEntry]:
        events = self._session.execute(
            select(AuditEvent)
            .where(AuditEvent.entity_id == entity_id)
            .order_by(AuditEvent.seq)
        ).scalars().all()
        return [
            AuditTrailEntry(
                seq=e.seq,
                action=AuditAction(e.action),
                actor_id=e.actor_id,
                occurred_at=e.occurred_at,
                payload=e.payload or {},
                hash=e.hash,
            )
            for e in events
        ]


class DurableAuditSink:
    """
    AuditSink that records each status record in its own transaction.

    Contract:
        ``record`` commits before returning; a failure raises and leaves no
        partial audit row behind.
    """

    def __init__(self, session_factory: Callable[[], Session], clock: Clock | None = None):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    def record(self, record: StatusRecord) -> None:
        with session_scope(self._session_factory) as session:
            AuditorService(session, self._clock).record_transition(record)
