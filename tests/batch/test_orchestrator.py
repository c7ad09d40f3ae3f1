"""
Tests for AdmissionsOrchestrator.

Validates:
- from_settings() initializes the database, installs the packaged templates
  and wires an engine that can run an application
- The event handler honours max_automatic_chain from settings
- The scheduler honours auto_process_transitions but still handles SLAs
- The default notifier logs with the configured channels
"""

import os
from uuid import uuid4

import pytest

from admissions_batch.orchestrator import AdmissionsOrchestrator
from admissions_config.settings import EngineSettings
from admissions_kernel.db.engine import drop_tables, reset_engine
from admissions_kernel.domain.workflow import SYSTEM_ACTOR, DefinitionStatus
from tests.factories import APPLICANT, transition_named


@pytest.fixture
def runtime_settings(database_url):
    return EngineSettings(
        database_url=database_url,
        database_pool_size=5,
        auto_process_transitions=False,
        scheduler_interval_seconds=60,
        scheduler_item_timeout_seconds=5,
        scheduler_max_workers=2,
        max_automatic_chain=1,
        notification_channels=("email",),
    )


@pytest.fixture
def runtime(runtime_settings, deterministic_clock, documents, payments, application_data):
    orchestrator = AdmissionsOrchestrator.from_settings(
        runtime_settings,
        create_schema=True,
        install_defaults=True,
        clock=deterministic_clock,
        documents=documents,
        payments=payments,
        application_data=application_data,
    )
    yield orchestrator
    if "DATABASE_URL" in os.environ:
        drop_tables()
    reset_engine()


def _submitted(runtime, application_data):
    app_id = uuid4()
    runtime.engine.initialize_application(app_id, "undergraduate", APPLICANT)
    application_data.update(app_id, is_submitted=True)
    definition = runtime.engine.get_bound_definition(app_id)
    runtime.engine.apply_transition(
        app_id, transition_named(definition, "Submit Application").id, APPLICANT,
    )
    return app_id


def _stage(runtime, app_id):
    state = runtime.engine.get_state(app_id)
    return runtime.engine.get_bound_definition(app_id).stage(state.current_stage_id).name


def test_default_templates_are_installed_once(runtime):
    reinstalled = runtime.install_default_templates()
    assert {d.application_type for d in reinstalled} == {"graduate", "undergraduate"}
    assert all(d.version == 1 for d in reinstalled)
    assert all(d.status == DefinitionStatus.ACTIVE for d in reinstalled)


def test_event_chain_limited_by_settings(runtime, application_data, payments, documents):
    app_id = _submitted(runtime, application_data)
    for doc in ("transcript", "personal_statement", "recommendation_letters"):
        documents.mark_verified(app_id, doc)
    payments.mark_paid(app_id)

    applied = runtime.events.on_payment_completed(app_id)
    assert len(applied) == 1
    assert _stage(runtime, app_id) == "Document Verification"

    runtime.events.on_document_verified(app_id, "transcript")
    assert _stage(runtime, app_id) == "Under Review"


def test_scheduler_skips_automatic_but_handles_sla(
    runtime, application_data, payments, deterministic_clock,
):
    app_id = _submitted(runtime, application_data)
    payments.mark_paid(app_id)
    scheduler = runtime.create_scheduler()

    assert scheduler.scan() == []

    runtime.events.on_payment_completed(app_id)
    deterministic_clock.advance(hours=49)
    sweep = scheduler.tick()
    assert sweep.fired == 1
    assert _stage(runtime, app_id) == "Additional Information"
    assert runtime.engine.get_status_timeline(app_id)[-1].triggered_by == SYSTEM_ACTOR


def test_default_notifier_uses_configured_channels(runtime, application_data, captured_logs):
    _submitted(runtime, application_data)
    dispatched = [r for r in captured_logs() if r["message"] == "notification_dispatched"]
    assert dispatched[-1]["to_stage"] == "Submitted"
    assert dispatched[-1]["templates"] == ["application_received"]
    assert dispatched[-1]["channels"] == ["email"]
