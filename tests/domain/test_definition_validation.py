"""
Tests for structural validation of workflow definitions.

Validates:
- Reachability from the start stage
- One terminal per outcome branch; terminals have no exits
- Orphan transitions, self-loops, dead ends
- SLA-timeout transitions need an SLA on their source stage
- Warnings (manual without role, cycles without an SLA escape) do not block
"""

from datetime import timedelta

from admissions_kernel.domain.guards import AllOf, Condition, Predicate
from admissions_kernel.domain.validation import validate_definition
from admissions_kernel.domain.workflow import StageSpec, TransitionSpec, TriggerType
from tests.factories import (
    GUARD_STAGES,
    GUARD_TRANSITIONS,
    SLA_STAGES,
    SLA_TRANSITIONS,
    build_definition,
    manual,
)


def _errors_mentioning(result, text: str) -> list[str]:
    return [e for e in result.errors if text in e]


class TestValidDefinitions:

    def test_sla_workflow_is_valid(self):
        result = validate_definition(build_definition(SLA_STAGES, SLA_TRANSITIONS))
        assert result.is_valid, result.errors

    def test_guarded_workflow_is_valid_with_known_predicates(self):
        result = validate_definition(
            build_definition(GUARD_STAGES, GUARD_TRANSITIONS),
            known_predicates={"documents_verified", "payment_complete"},
        )
        assert result.is_valid, result.errors

    def test_predicates_not_checked_without_registry(self):
        transitions = (
            TransitionSpec(
                source="Submitted", target="Review",
                trigger_type=TriggerType.AUTO_CONDITION,
                guard=Predicate("interview_scheduled"),
            ),
        ) + SLA_TRANSITIONS[1:]
        result = validate_definition(build_definition(SLA_STAGES, transitions))
        assert result.is_valid


class TestStructuralErrors:

    def test_empty_definition(self):
        result = validate_definition(build_definition(()))
        assert result.errors == ["definition has no stages"]

    def test_unreachable_stage(self):
        stages = SLA_STAGES + (StageSpec(name="Orphaned", sequence=9),)
        transitions = SLA_TRANSITIONS + (manual("Orphaned", "Decided"),)
        result = validate_definition(build_definition(stages, transitions))
        assert _errors_mentioning(result, "'Orphaned' is unreachable")

    def test_terminal_with_exit(self):
        stages = SLA_STAGES + (StageSpec(name="Appeal", sequence=4, is_terminal=True, outcome="appealed"),)
        transitions = SLA_TRANSITIONS + (manual("Decided", "Appeal"),)
        result = validate_definition(build_definition(stages, transitions))
        assert _errors_mentioning(result, "terminal stage 'Decided' has outgoing transition")

    def test_no_terminal_stage(self):
        stages = (StageSpec(name="A", sequence=1), StageSpec(name="B", sequence=2))
        result = validate_definition(build_definition(stages, (manual("A", "B"), manual("B", "A"))))
        assert "definition has no terminal stage" in result.errors

    def test_duplicate_outcome_branch(self):
        stages = (
            StageSpec(name="Decision", sequence=1),
            StageSpec(name="Rejected", sequence=2, is_terminal=True, outcome="rejected"),
            StageSpec(name="Withdrawn", sequence=3, is_terminal=True, outcome="rejected"),
        )
        transitions = (manual("Decision", "Rejected"), manual("Decision", "Withdrawn"))
        result = validate_definition(build_definition(stages, transitions))
        assert _errors_mentioning(result, "outcome 'rejected' has more than one terminal stage")

    def test_dead_end_stage(self):
        stages = SLA_STAGES + (StageSpec(name="Limbo", sequence=4),)
        transitions = SLA_TRANSITIONS + (manual("Submitted", "Limbo"),)
        result = validate_definition(build_definition(stages, transitions))
        assert _errors_mentioning(result, "non-terminal stage 'Limbo' has no outgoing")

    def test_self_loop(self):
        transitions = SLA_TRANSITIONS + (manual("Review", "Review", name="again"),)
        result = validate_definition(build_definition(SLA_STAGES, transitions))
        assert _errors_mentioning(result, "'again' is a self-loop")

    def test_sla_transition_needs_stage_sla(self):
        stages = tuple(
            StageSpec(name=s.name, sequence=s.sequence, is_terminal=s.is_terminal)
            for s in SLA_STAGES
        )
        result = validate_definition(build_definition(stages, SLA_TRANSITIONS))
        assert _errors_mentioning(result, "which has no SLA duration")

    def test_duplicate_sequence_and_name(self):
        stages = SLA_STAGES + (
            StageSpec(name="Review", sequence=7),
            StageSpec(name="Other", sequence=1),
        )
        result = validate_definition(build_definition(stages, SLA_TRANSITIONS))
        assert _errors_mentioning(result, "duplicate stage name 'Review'")
        assert _errors_mentioning(result, "share sequence 1")

    def test_unknown_predicate(self):
        transitions = (
            TransitionSpec(
                source="Submitted", target="Review",
                trigger_type=TriggerType.AUTO_CONDITION,
                guard=AllOf((Predicate("payment_complete"), Predicate("interview_scheduled"))),
            ),
        ) + SLA_TRANSITIONS[1:]
        result = validate_definition(
            build_definition(SLA_STAGES, transitions),
            known_predicates={"payment_complete"},
        )
        assert _errors_mentioning(result, "unknown guard predicate 'interview_scheduled'")


class TestWarnings:

    def test_manual_without_role(self):
        transitions = (manual("Submitted", "Review", role=None, name="open"),) + SLA_TRANSITIONS[1:]
        result = validate_definition(build_definition(SLA_STAGES, transitions))
        assert result.is_valid
        assert any("'open' has no required role" in w for w in result.warnings)

    def test_cycle_without_sla_escape(self):
        stages = (
            StageSpec(name="Review", sequence=1),
            StageSpec(name="More Info", sequence=2),
            StageSpec(name="Decided", sequence=3, is_terminal=True),
        )
        transitions = (
            manual("Review", "More Info"),
            TransitionSpec(
                source="More Info", target="Review",
                trigger_type=TriggerType.AUTO_CONDITION,
                guard=Condition("info_provided", "=", True),
            ),
            manual("Review", "Decided"),
        )
        result = validate_definition(build_definition(stages, transitions))
        assert result.is_valid
        assert any("has no SLA-timeout escape" in w for w in result.warnings)

    def test_cycle_with_sla_escape(self):
        stages = (
            StageSpec(name="Review", sequence=1),
            StageSpec(name="More Info", sequence=2, sla_duration=timedelta(days=14)),
            StageSpec(name="Decided", sequence=3, is_terminal=True),
        )
        transitions = (
            manual("Review", "More Info"),
            manual("More Info", "Review"),
            TransitionSpec(
                source="More Info", target="Decided",
                trigger_type=TriggerType.SLA_TIMEOUT,
            ),
        )
        result = validate_definition(build_definition(stages, transitions))
        assert not any("escape" in w for w in result.warnings)

    def test_sla_edge_inside_cycle_is_not_an_escape(self):
        stages = (
            StageSpec(name="Review", sequence=1),
            StageSpec(name="More Info", sequence=2, sla_duration=timedelta(hours=1)),
            StageSpec(name="Decided", sequence=3, is_terminal=True),
        )
        transitions = (
            manual("Review", "More Info"),
            TransitionSpec(
                source="More Info", target="Review",
                trigger_type=TriggerType.SLA_TIMEOUT,
            ),
            manual("Review", "Decided"),
        )
        result = validate_definition(build_definition(stages, transitions))
        assert result.is_valid, result.errors
        assert any("has no SLA-timeout escape" in w for w in result.warnings)
