"""
Tests for GuardExecutor and the built-in guard predicates.

Validates:
- Composite expressions (all / any / not) and field conditions
- Built-in predicates read the document and payment providers
- Unknown predicates and predicates that raise evaluate to False with a
  warning instead of propagating
"""

from datetime import UTC, datetime
from uuid import uuid4

import pytest

from admissions_kernel.domain.guards import (
    AllOf,
    AnyOf,
    Condition,
    GuardContext,
    Not,
    Predicate,
)
from admissions_services.collaborators import (
    InMemoryDocumentStatusProvider,
    InMemoryPaymentStatusProvider,
)
from admissions_services.guard_executor import GuardExecutor, default_guard_executor
from tests.factories import GUARD_STAGES, build_definition, stage_named


@pytest.fixture
def application_id():
    return uuid4()


@pytest.fixture
def make_context(application_id, documents, payments):
    screened = stage_named(build_definition(GUARD_STAGES), "Screened")

    def _make(data=None, stage=screened):
        return GuardContext(
            application_id=application_id,
            current_stage=stage,
            now=datetime(2024, 1, 1, tzinfo=UTC),
            documents=documents,
            payments=payments,
            application_data=data or {},
        )

    return _make


class TestComposition:

    def test_none_passes(self, make_context):
        assert GuardExecutor().evaluate(None, make_context()) is True

    def test_conditions(self, make_context):
        ex = GuardExecutor()
        ctx = make_context({"gpa": 3.6, "program": "MSc Physics"})
        assert ex.evaluate(Condition("gpa", ">=", 3.5), ctx)
        assert not ex.evaluate(Condition("gpa", "<", 3.0), ctx)
        assert ex.evaluate(Condition("program", "starts_with", "MSc"), ctx)
        assert not ex.evaluate(Condition("missing", ">", 1), ctx)

    def test_all_any_not(self, make_context):
        ex = GuardExecutor()
        ctx = make_context({"a": 1, "b": 2})
        yes, no = Condition("a", "=", 1), Condition("b", "=", 3)
        assert ex.evaluate(AllOf((yes, Not(no))), ctx)
        assert not ex.evaluate(AllOf((yes, no)), ctx)
        assert ex.evaluate(AnyOf((no, yes)), ctx)
        assert not ex.evaluate(AnyOf(()), ctx)
        assert ex.evaluate(AllOf(()), ctx)

    def test_registered_predicate_receives_arguments(self, make_context):
        ex = GuardExecutor()
        seen = {}

        def min_score(ctx, score):
            seen["score"] = score
            return ctx.value("test_score") >= score

        ex.register("min_score", min_score)
        assert ex.has("min_score")
        assert ex.evaluate(Predicate("min_score", (("score", 150),)), make_context({"test_score": 160}))
        assert seen == {"score": 150}


class TestFailureHandling:

    def test_unknown_predicate_is_false(self, make_context, captured_logs):
        assert GuardExecutor().evaluate(Predicate("interview_scheduled"), make_context()) is False
        logs = captured_logs()
        assert any(
            r["message"] == "guard_no_evaluator" and r["guard_name"] == "interview_scheduled"
            for r in logs
        )

    def test_raising_predicate_is_false(self, make_context, captured_logs):
        ex = GuardExecutor()

        def broken(ctx):
            raise RuntimeError("registry offline")

        ex.register("broken", broken)
        assert ex.evaluate(Predicate("broken"), make_context()) is False
        errors = [r for r in captured_logs() if r["message"] == "guard_evaluation_error"]
        assert errors and errors[0]["error"] == "registry offline"

    def test_bad_predicate_arguments_are_false(self, make_context):
        ex = default_guard_executor()
        assert ex.evaluate(Predicate("document_verified", (("wrong", "x"),)), make_context()) is False


class TestBuiltins:

    def test_registered_names(self):
        assert default_guard_executor().names() == {
            "document_verified",
            "documents_verified",
            "all_required_documents_verified",
            "payment_complete",
            "field_truthy",
        }

    def test_document_verified(self, make_context, documents, application_id):
        ex = default_guard_executor()
        guard = Predicate("document_verified", (("document_type", "transcript"),))
        assert not ex.evaluate(guard, make_context())
        documents.mark_verified(application_id, "transcript")
        assert ex.evaluate(guard, make_context())

    def test_documents_verified(self, make_context, documents, application_id):
        ex = default_guard_executor()
        guard = Predicate("documents_verified", (("document_types", ("transcript", "essay")),))
        documents.mark_verified(application_id, "transcript")
        assert not ex.evaluate(guard, make_context())
        documents.mark_verified(application_id, "essay")
        assert ex.evaluate(guard, make_context())

    def test_all_required_documents_verified(self, make_context, documents, application_id):
        ex = default_guard_executor()
        guard = Predicate("all_required_documents_verified")
        documents.mark_verified(application_id, "transcript")
        assert not ex.evaluate(guard, make_context())
        documents.mark_verified(application_id, "personal_statement")
        assert ex.evaluate(guard, make_context())
        assert not ex.evaluate(guard, make_context(stage=None))

    def test_documents_are_per_application(self, make_context, documents):
        documents.mark_verified(uuid4(), "transcript")
        guard = Predicate("document_verified", (("document_type", "transcript"),))
        assert not default_guard_executor().evaluate(guard, make_context())

    def test_payment_complete(self, make_context, payments, application_id):
        ex = default_guard_executor()
        assert not ex.evaluate(Predicate("payment_complete"), make_context())
        payments.mark_paid(application_id)
        assert ex.evaluate(Predicate("payment_complete"), make_context())

    def test_field_truthy(self, make_context):
        ex = default_guard_executor()
        guard = Predicate("field_truthy", (("field", "flags.submitted"),))
        assert ex.evaluate(guard, make_context({"flags": {"submitted": True}}))
        assert not ex.evaluate(guard, make_context({"flags": {}}))


def test_providers_are_independent_instances():
    first, second = InMemoryDocumentStatusProvider(), InMemoryDocumentStatusProvider()
    app = uuid4()
    first.mark_verified(app, "transcript")
    assert not second.is_document_verified(app, "transcript")
    assert not InMemoryPaymentStatusProvider().is_payment_complete(app)
