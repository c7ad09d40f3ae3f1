"""
Tests for template loading and installation.

Validates:
- The shipped undergraduate and graduate templates parse, validate and
  activate
- Checksums are stable and change with content
- Malformed YAML and invalid templates raise ConfigurationError
- Installing the same template twice is a no-op; a changed template
  becomes the next active version
- An application can run end to end on the installed undergraduate workflow
"""

from dataclasses import replace
from datetime import timedelta
from uuid import uuid4

import pytest

from admissions_batch.services.trigger_scheduler import TriggerScheduler
from admissions_config.installer import install_template, install_templates
from admissions_config.loader import (
    load_default_templates,
    load_template,
    parse_template,
    template_checksum,
)
from admissions_kernel.db.engine import session_scope
from admissions_kernel.domain.guards import AnyOf, Condition, Predicate
from admissions_kernel.domain.workflow import SYSTEM_ACTOR, DefinitionStatus, TriggerType
from admissions_kernel.exceptions import ConfigurationError, GuardFailedError
from admissions_kernel.services.definition_service import DefinitionService
from tests.factories import APPLICANT, DIRECTOR, transition_named

COMMITTEE = "committee-1"

MINIMAL = {
    "application_type": "certificate",
    "name": "Certificate Admissions",
    "stages": [
        {"name": "Submitted", "sequence": 1},
        {"name": "Admitted", "sequence": 2, "terminal": True, "outcome": "admitted"},
    ],
    "transitions": [
        {
            "name": "Admit", "source": "Submitted", "target": "Admitted",
            "trigger": "manual", "required_role": "registrar",
        },
    ],
}


@pytest.fixture
def templates(guard_executor):
    return {t.application_type: t for t in load_default_templates(guard_executor.names())}


@pytest.fixture
def install(session_factory, deterministic_clock, guard_executor):
    def _install(templates, activate=True):
        with session_scope(session_factory) as session:
            service = DefinitionService(
                session, deterministic_clock, known_predicates=guard_executor.names(),
            )
            return install_templates(service, templates, activate=activate)

    return _install


class TestShippedTemplates:

    def test_load_order_and_types(self, guard_executor):
        loaded = load_default_templates(guard_executor.names())
        assert [t.application_type for t in loaded] == ["graduate", "undergraduate"]
        assert all(t.checksum for t in loaded)

    def test_undergraduate_shape(self, templates):
        undergraduate = templates["undergraduate"]
        assert undergraduate.start_stage == "Draft"
        assert len(undergraduate.stages) == 10
        assert len(undergraduate.transitions) == 13

        stages = {s.name: s for s in undergraduate.stages}
        verification = stages["Document Verification"]
        assert verification.sla_duration == timedelta(hours=48)
        assert verification.required_document_types == frozenset(
            {"transcript", "personal_statement", "recommendation_letters"}
        )
        assert verification.assigned_role == "verification_team"
        assert stages["Enrollment"].is_terminal
        assert stages["Enrollment"].outcome == "enrolled"
        assert stages["Enrollment"].entry_notifications == ("enrollment_confirmation",)

        edges = {t.name: t for t in undergraduate.transitions}
        assert edges["Initial Screening Passed"].guard == AnyOf((
            Predicate("payment_complete"),
            Condition("application_fee_paid", "=", True),
        ))
        assert edges["Verification Timed Out"].trigger_type == TriggerType.SLA_TIMEOUT
        assert edges["Accept"].required_role == "admissions_director"

    def test_graduate_roles(self, templates):
        roles = {t.required_role for t in templates["graduate"].transitions if t.required_role}
        assert {"department_reviewer", "graduate_committee", "graduate_director"} <= roles

    def test_install_and_activate(self, templates, install):
        definitions = install(templates.values())
        assert {d.application_type for d in definitions} == {"graduate", "undergraduate"}
        assert all(d.status == DefinitionStatus.ACTIVE for d in definitions)
        assert all(d.start_stage.name == "Draft" for d in definitions)


class TestChecksum:

    def test_stable(self):
        assert template_checksum(MINIMAL) == template_checksum(dict(MINIMAL))

    def test_changes_with_content(self):
        changed = {**MINIMAL, "name": "Certificate Admissions v2"}
        assert template_checksum(changed) != template_checksum(MINIMAL)


class TestInvalidInput:

    def test_invalid_template_lists_errors(self):
        bad = {**MINIMAL, "stages": [{"name": "Submitted"}]}
        with pytest.raises(ConfigurationError) as exc_info:
            parse_template(bad, source="certificate.yaml")
        assert exc_info.value.source == "certificate.yaml"
        assert any("integer sequence" in e for e in exc_info.value.errors)
        assert any("'Admitted' is not a declared stage" in e for e in exc_info.value.errors)

    def test_unknown_predicate(self, guard_executor):
        data = {**MINIMAL, "transitions": [{
            "name": "Admit", "source": "Submitted", "target": "Admitted",
            "trigger": "auto_condition", "guard": {"predicate": "interview_scheduled"},
        }]}
        with pytest.raises(ConfigurationError):
            parse_template(data, guard_executor.names())
        assert parse_template(data).transitions[0].guard == Predicate("interview_scheduled")

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("stages: [unclosed\n")
        with pytest.raises(ConfigurationError) as exc_info:
            load_template(path)
        assert "invalid YAML" in exc_info.value.errors[0]

    def test_custom_templates_dir(self, tmp_path):
        (tmp_path / "certificate.yaml").write_text(
            "application_type: certificate\n"
            "name: Certificate Admissions\n"
            "stages:\n"
            "  - {name: Submitted, sequence: 1}\n"
            "  - {name: Admitted, sequence: 2, terminal: true, outcome: admitted, sla_minutes: 5}\n"
            "transitions:\n"
            "  - {name: Admit, source: Submitted, target: Admitted, required_role: registrar}\n"
        )
        (loaded,) = load_default_templates(templates_dir=tmp_path)
        assert loaded.application_type == "certificate"
        assert loaded.transitions[0].trigger_type == TriggerType.MANUAL
        assert loaded.stages[1].sla_duration == timedelta(minutes=5)


class TestInstaller:

    def test_reinstall_is_noop(self, templates, install):
        (first,) = install([templates["undergraduate"]])
        (second,) = install([templates["undergraduate"]])
        assert second.id == first.id
        assert second.version == 1

    def test_changed_template_becomes_next_version(
        self, templates, install, session_factory, deterministic_clock,
    ):
        (first,) = install([templates["undergraduate"]])
        revised = replace(templates["undergraduate"], checksum="revised", description="Revised")
        (second,) = install([revised])

        assert second.version == 2
        assert second.status == DefinitionStatus.ACTIVE
        assert "[template:revised]" in second.description
        with session_scope(session_factory) as session:
            service = DefinitionService(session, deterministic_clock)
            assert service.get_definition(first.id).status == DefinitionStatus.RETIRED

    def test_install_as_draft(self, templates, session_factory, deterministic_clock):
        with session_scope(session_factory) as session:
            service = DefinitionService(session, deterministic_clock)
            first = install_template(service, templates["graduate"], activate=False)
            second = install_template(service, templates["graduate"], activate=False)
        assert first.status == second.status == DefinitionStatus.DRAFT
        assert (first.version, second.version) == (1, 2)


class TestUndergraduateJourney:

    @pytest.fixture
    def workflow(self, templates, install, role_provider):
        role_provider.grant(COMMITTEE, "admissions_committee")
        role_provider.grant(DIRECTOR, "admissions_director")
        (definition,) = install([templates["undergraduate"]])
        return definition

    def _stage(self, engine, app_id):
        state = engine.get_state(app_id)
        return engine.get_bound_definition(app_id).stage(state.current_stage_id).name

    def test_submission_to_enrollment(
        self, workflow, engine, application_data, payments, documents, notifier,
    ):
        app_id = uuid4()
        engine.initialize_application(app_id, "undergraduate", APPLICANT)
        submit = transition_named(workflow, "Submit Application").id

        with pytest.raises(GuardFailedError):
            engine.apply_transition(app_id, submit, APPLICANT)
        application_data.update(app_id, is_submitted=True)
        engine.apply_transition(app_id, submit, APPLICANT)
        assert self._stage(engine, app_id) == "Submitted"

        payments.mark_paid(app_id)
        assert len(engine.fire_automatic_transitions(app_id)) == 1
        assert self._stage(engine, app_id) == "Document Verification"
        assert engine.evaluate_stage_requirements(app_id).missing == frozenset(
            {"transcript", "personal_statement", "recommendation_letters"}
        )

        for doc in ("transcript", "personal_statement", "recommendation_letters"):
            documents.mark_verified(app_id, doc)
        engine.fire_automatic_transitions(app_id)
        assert self._stage(engine, app_id) == "Under Review"

        engine.apply_transition(app_id, transition_named(workflow, "Review Complete").id, COMMITTEE)
        engine.apply_transition(app_id, transition_named(workflow, "Accept").id, DIRECTOR)
        assert self._stage(engine, app_id) == "Accepted"

        application_data.update(app_id, enrollment_deposit_paid=True)
        engine.fire_automatic_transitions(app_id)
        assert self._stage(engine, app_id) == "Enrollment"
        assert engine.get_legal_transitions(app_id) == []

        final = notifier.events[-1]
        assert final.is_terminal
        assert final.outcome == "enrolled"
        assert final.notifications == ("enrollment_confirmation",)
        assert len(engine.get_status_timeline(app_id)) == 6

    def test_verification_timeout_requests_information(
        self, workflow, engine, application_data, payments, session_factory, deterministic_clock,
    ):
        app_id = uuid4()
        engine.initialize_application(app_id, "undergraduate", APPLICANT)
        application_data.update(app_id, is_submitted=True)
        engine.apply_transition(app_id, transition_named(workflow, "Submit Application").id, APPLICANT)
        payments.mark_paid(app_id)
        engine.fire_automatic_transitions(app_id)

        deterministic_clock.advance(hours=49)
        sweep = TriggerScheduler(session_factory, engine, deterministic_clock).tick()
        assert sweep.fired == 1
        assert self._stage(engine, app_id) == "Additional Information"
        assert engine.get_status_timeline(app_id)[-1].triggered_by == SYSTEM_ACTOR

        application_data.update(app_id, additional_info_provided=True)
        engine.fire_automatic_transitions(app_id)
        assert self._stage(engine, app_id) == "Under Review"
