"""
Tests for the read-side stage, transition, definition and application selectors.
"""

from uuid import uuid4

import pytest

from admissions_kernel.domain.workflow import DefinitionStatus, TriggerType
from admissions_kernel.exceptions import (
    ActiveDefinitionNotFoundError,
    ApplicationNotFoundError,
    StageNotFoundError,
    TransitionNotFoundError,
)
from admissions_kernel.selectors import (
    ApplicationSelector,
    DefinitionSelector,
    StageSelector,
    TransitionSelector,
)
from tests.factories import GUARD_STAGES, GUARD_TRANSITIONS, stage_named, transition_named


class TestStageAndTransitionStores:

    def test_stages_in_sequence_order(self, session, guard_definition):
        stages = StageSelector(session).list_for_definition(guard_definition.id)
        assert [s.name for s in stages] == ["Submitted", "Screened", "Accepted", "Rejected"]
        assert StageSelector(session).get(stages[1].id).required_document_types == frozenset(
            {"transcript", "personal_statement"}
        )

    def test_unknown_stage(self, session):
        with pytest.raises(StageNotFoundError):
            StageSelector(session).get(uuid4())

    def test_transitions(self, session, guard_definition):
        selector = TransitionSelector(session)
        assert {t.name for t in selector.list_for_definition(guard_definition.id)} == {
            "Transcript Verified", "Fee Paid", "Reject",
        }
        screened = stage_named(guard_definition, "Screened")
        assert {t.name for t in selector.outgoing(screened.id)} == {"Fee Paid", "Reject"}
        reject = selector.get(transition_named(guard_definition, "Reject").id)
        assert reject.trigger_type == TriggerType.MANUAL
        assert reject.required_role == "director"

    def test_unknown_transition(self, session):
        with pytest.raises(TransitionNotFoundError):
            TransitionSelector(session).get(uuid4())


class TestDefinitionSelector:

    def test_active_and_listing(self, session, guard_definition, definition_factory):
        draft = definition_factory(
            GUARD_STAGES, GUARD_TRANSITIONS, application_type="graduate", activate=False,
        )
        selector = DefinitionSelector(session)
        assert selector.get_active("graduate").id == guard_definition.id
        assert selector.latest_version("graduate") == 2
        assert selector.latest_version("doctoral") == 0
        assert [d.id for d in selector.list_definitions("graduate", DefinitionStatus.DRAFT)] == [draft.id]

    def test_no_active(self, session):
        with pytest.raises(ActiveDefinitionNotFoundError):
            DefinitionSelector(session).get_active("doctoral")


class TestApplicationSelector:

    def test_state_and_binding_count(self, session, engine, guard_definition):
        apps = [uuid4(), uuid4()]
        for app_id in apps:
            engine.initialize_application(app_id, "graduate")

        selector = ApplicationSelector(session)
        assert selector.count_bound_to(guard_definition.id) == 2
        assert selector.get_state(apps[0]).version == 1
        assert selector.timeline(apps[0]) == []
        assert selector.find_state(uuid4()) is None
        with pytest.raises(ApplicationNotFoundError):
            selector.get_state(uuid4())

    def test_states_with_outgoing(self, session, engine, guard_definition):
        app_id = uuid4()
        engine.initialize_application(app_id, "graduate")
        rows = ApplicationSelector(session).states_with_outgoing(TriggerType.AUTO_CONDITION)
        assert [(state.application_id, stage.name, t.name) for state, stage, t in rows] == [
            (app_id, "Submitted", "Transcript Verified"),
        ]
        assert ApplicationSelector(session).states_with_outgoing(TriggerType.SLA_TIMEOUT) == []
