"""
Tests for the hash-chained audit trail and append-only history.

Validates:
- Every committed transition lands on the audit chain via DurableAuditSink
- validate_chain detects payload tampering done behind the ORM's back
- Status records and audit events reject ORM updates and deletes
- Sequence numbers are unique and increasing
"""

from concurrent.futures import ThreadPoolExecutor
from uuid import uuid4

import pytest
from sqlalchemy import select, update

from admissions_kernel.db.engine import session_scope
from admissions_kernel.exceptions import AuditChainBrokenError, ImmutabilityViolationError
from admissions_kernel.models.application_state import StatusRecordModel
from admissions_kernel.models.audit_event import AuditAction, AuditEvent
from admissions_kernel.services.auditor_service import AuditorService
from admissions_kernel.services.sequence_service import SequenceService
from tests.factories import REVIEWER, transition_named


@pytest.fixture
def reviewed_app(engine, sla_definition):
    app_id = uuid4()
    engine.initialize_application(app_id, "undergraduate")
    engine.apply_transition(app_id, transition_named(sla_definition, "Start Review").id, REVIEWER)
    return app_id


class TestChain:

    def test_chain_valid_after_activity(self, reviewed_app, session_factory):
        with session_scope(session_factory) as session:
            assert AuditorService(session).validate_chain()

    def test_empty_chain_is_valid(self, session):
        assert AuditorService(session).validate_chain()

    def test_transition_payload(self, reviewed_app, session_factory, sla_definition):
        with session_scope(session_factory) as session:
            trail = AuditorService(session).get_trail(reviewed_app)
        applied = trail[-1]
        assert applied.action == AuditAction.TRANSITION_APPLIED
        assert applied.payload["transition_id"] == str(
            transition_named(sla_definition, "Start Review").id
        )
        assert applied.payload["trigger_type"] == "manual"

    def test_tampered_payload_detected(self, reviewed_app, session_factory):
        with session_scope(session_factory) as session:
            session.execute(
                update(AuditEvent.__table__)
                .where(AuditEvent.__table__.c.entity_id == reviewed_app)
                .values(payload={"forged": True})
            )

        with session_scope(session_factory) as session:
            with pytest.raises(AuditChainBrokenError):
                AuditorService(session).validate_chain()


class TestAppendOnly:

    def test_status_record_update_rejected(self, reviewed_app, session_factory):
        with pytest.raises(ImmutabilityViolationError):
            with session_scope(session_factory) as session:
                record = session.execute(
                    select(StatusRecordModel).where(StatusRecordModel.application_id == reviewed_app)
                ).scalar_one()
                record.notes = "rewritten"
                session.flush()

    def test_status_record_delete_rejected(self, reviewed_app, session_factory):
        with pytest.raises(ImmutabilityViolationError):
            with session_scope(session_factory) as session:
                record = session.execute(
                    select(StatusRecordModel).where(StatusRecordModel.application_id == reviewed_app)
                ).scalar_one()
                session.delete(record)
                session.flush()

    def test_audit_event_update_rejected(self, reviewed_app, session_factory):
        with pytest.raises(ImmutabilityViolationError):
            with session_scope(session_factory) as session:
                event = session.execute(select(AuditEvent).limit(1)).scalar_one()
                event.actor_id = "someone-else"
                session.flush()


class TestSequences:

    def test_values_increase(self, session):
        service = SequenceService(session)
        first = service.next_value(SequenceService.STATUS_RECORD)
        second = service.next_value(SequenceService.STATUS_RECORD)
        assert second == first + 1
        assert service.current_value(SequenceService.STATUS_RECORD) == second

    def test_concurrent_allocation_is_unique(self, session_factory):
        def allocate(_):
            with session_scope(session_factory) as session:
                return SequenceService(session).next_value(SequenceService.AUDIT_EVENT)

        with ThreadPoolExecutor(max_workers=4) as pool:
            values = list(pool.map(allocate, range(40)))

        assert len(set(values)) == 40
