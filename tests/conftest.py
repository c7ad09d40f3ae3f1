"""
Pytest fixtures for the admissions workflow test suite.

Provides:
- Structured-logging configuration and a ``captured_logs`` fixture
- A fresh database per test (file-backed SQLite under tmp_path, or
  DATABASE_URL when set, e.g. a PostgreSQL test database)
- In-memory collaborators, a deterministic clock, a definition factory and
  a ready TransitionEngine

Environment Variables:
- DATABASE_URL: Run against this database instead of SQLite.  Tables are
  dropped and recreated around every test.
"""

import json
import logging
import os
from io import StringIO
from typing import Callable, Sequence
from uuid import UUID

import pytest

from admissions_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from admissions_kernel.domain.clock import DeterministicClock
from admissions_kernel.domain.workflow import (
    StageSpec,
    TransitionCompleted,
    TransitionSpec,
    WorkflowDefinition,
)
from admissions_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from admissions_kernel.services.auditor_service import DurableAuditSink
from admissions_kernel.services.definition_service import DefinitionService
from admissions_services.collaborators import (
    InMemoryDocumentStatusProvider,
    InMemoryPaymentStatusProvider,
    StaticApplicationDataProvider,
    StaticRoleProvider,
)
from admissions_services.guard_executor import GuardExecutor, default_guard_executor
from admissions_services.transition_engine import TransitionEngine
from tests.factories import (
    DIRECTOR,
    GUARD_STAGES,
    GUARD_TRANSITIONS,
    SLA_STAGES,
    SLA_TRANSITIONS,
    REVIEWER,
    TEST_ACTOR,
)

# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture admissions logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, engine):
            engine.apply_transition(...)
            logs = captured_logs()
            assert any(r["message"] == "transition_applied" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("admissions")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def database_url(tmp_path) -> str:
    return os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'admissions.db'}"


@pytest.fixture
def db_engine(database_url):
    """Initialize the engine and a clean schema for one test."""
    engine = init_engine_from_url(database_url, pool_size=10)
    if "DATABASE_URL" in os.environ:
        drop_tables()
    create_tables()
    yield engine
    if "DATABASE_URL" in os.environ:
        drop_tables()
    reset_engine()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory):
    """A caller-owned session for flush-only services; rolled back afterwards."""
    s = session_factory()
    yield s
    s.rollback()
    s.close()


# =============================================================================
# Clock and collaborators
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


@pytest.fixture
def role_provider():
    return StaticRoleProvider({
        REVIEWER: ("reviewer",),
        DIRECTOR: ("director", "reviewer"),
    })


@pytest.fixture
def documents():
    return InMemoryDocumentStatusProvider()


@pytest.fixture
def payments():
    return InMemoryPaymentStatusProvider()


@pytest.fixture
def application_data():
    return StaticApplicationDataProvider()


class RecordingNotifier:
    """NotificationDispatcher that keeps every event for assertions."""

    def __init__(self):
        self.events: list[TransitionCompleted] = []

    def notify(self, application_id: UUID, event: TransitionCompleted) -> None:
        self.events.append(event)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def audit_sink(session_factory, deterministic_clock):
    return DurableAuditSink(session_factory, deterministic_clock)


@pytest.fixture
def guard_executor() -> GuardExecutor:
    return default_guard_executor()


@pytest.fixture
def engine(
    session_factory,
    deterministic_clock,
    guard_executor,
    role_provider,
    documents,
    payments,
    application_data,
    notifier,
    audit_sink,
) -> TransitionEngine:
    return TransitionEngine(
        session_factory,
        deterministic_clock,
        guard_executor,
        role_provider,
        documents,
        payments,
        application_data=application_data,
        notifier=notifier,
        audit_sink=audit_sink,
    )


# =============================================================================
# Definitions
# =============================================================================


@pytest.fixture
def definition_factory(
    session_factory, deterministic_clock, guard_executor,
) -> Callable[..., WorkflowDefinition]:
    """
    Create (and by default activate) a definition in its own transaction.

    Usage::

        definition = definition_factory(stages, transitions, application_type="graduate")
    """

    def _create(
        stages: Sequence[StageSpec],
        transitions: Sequence[TransitionSpec] = (),
        application_type: str = "undergraduate",
        name: str = "Test workflow",
        activate: bool = True,
        start_stage: str | None = None,
    ) -> WorkflowDefinition:
        with session_scope(session_factory) as s:
            service = DefinitionService(
                s, deterministic_clock, known_predicates=guard_executor.names(),
            )
            definition = service.create_definition(
                application_type,
                name,
                stages,
                transitions,
                actor_id=TEST_ACTOR,
                start_stage=start_stage,
            )
            if activate:
                definition = service.activate(definition.id, TEST_ACTOR)
        return definition

    return _create


@pytest.fixture
def sla_definition(definition_factory) -> WorkflowDefinition:
    """Submitted -> Review (manual, reviewer) -> Decided (72h SLA timeout)."""
    return definition_factory(SLA_STAGES, SLA_TRANSITIONS)


@pytest.fixture
def guard_definition(definition_factory) -> WorkflowDefinition:
    """Submitted -auto-> Screened -auto-> Accepted, or -manual-> Rejected."""
    return definition_factory(GUARD_STAGES, GUARD_TRANSITIONS, application_type="graduate")
