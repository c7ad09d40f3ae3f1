"""
admissions_services.guard_executor -- evaluates transition guards.

Responsibility:
    Walks a guard expression tree against a read-only ``GuardContext``.
    Field conditions are compared directly; named predicates are looked up
    in a registry of plain callables.

Architecture position:
    Services layer.  Depends on the pure guard types in
    ``admissions_kernel.domain.guards``; never touches the database.

Failure modes:
    - An unknown predicate name, or a predicate that raises, evaluates to
      False and logs a warning.  Guard evaluation itself never raises.
"""

from __future__ import annotations

from typing import Any, Callable

from admissions_kernel.domain.guards import (
    AllOf,
    AnyOf,
    Condition,
    GuardContext,
    GuardExpression,
    Not,
    Predicate,
    compare,
)
from admissions_kernel.exceptions import GuardSyntaxError
from admissions_kernel.logging_config import get_logger

logger = get_logger("services.guard_executor")

PredicateFn = Callable[..., bool]


class GuardExecutor:
    """Evaluates workflow guards against context.

    Guards are declared on transitions as data.  This executor holds the
    evaluation logic per predicate name and is called by the transition
    engine before listing or applying a transition.
    """

    def __init__(self) -> None:
        self._evaluators: dict[str, PredicateFn] = {}

    def register(self, name: str, evaluator: PredicateFn) -> None:
        """Register an evaluator ``fn(context, **args) -> bool`` by name."""
        self._evaluators[name] = evaluator

    def has(self, name: str) -> bool:
        return name in self._evaluators

    def names(self) -> frozenset[str]:
        return frozenset(self._evaluators)

    def evaluate(self, expression: GuardExpression | None, context: GuardContext) -> bool:
        """Evaluate a guard against context. A missing guard passes."""
        if expression is None:
            return True
        if isinstance(expression, AllOf):
            return all(self.evaluate(t, context) for t in expression.terms)
        if isinstance(expression, AnyOf):
            return any(self.evaluate(t, context) for t in expression.terms)
        if isinstance(expression, Not):
            return not self.evaluate(expression.term, context)
        if isinstance(expression, Condition):
            return self._evaluate_condition(expression, context)
        return self._evaluate_predicate(expression, context)

    def _evaluate_condition(self, condition: Condition, context: GuardContext) -> bool:
        try:
            return compare(condition.operator, context.value(condition.field), condition.value)
        except GuardSyntaxError as e:
            logger.warning(
                "guard_evaluation_error",
                extra={"guard_field": condition.field, "error": str(e)},
            )
            return False

    def _evaluate_predicate(self, predicate: Predicate, context: GuardContext) -> bool:
        fn = self._evaluators.get(predicate.name)
        if fn is None:
            logger.warning(
                "guard_no_evaluator",
                extra={"guard_name": predicate.name},
            )
            return False
        try:
            return bool(fn(context, **predicate.arguments))
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "guard_evaluation_error",
                extra={"guard_name": predicate.name, "error": str(e)},
            )
            return False


# ---------------------------------------------------------------------------
# Built-in predicates
# ---------------------------------------------------------------------------


def _document_verified(ctx: GuardContext, document_type: str) -> bool:
    return ctx.documents.is_document_verified(ctx.application_id, document_type)


def _documents_verified(ctx: GuardContext, document_types: Any = ()) -> bool:
    return all(_document_verified(ctx, t) for t in document_types)


def _all_required_documents_verified(ctx: GuardContext) -> bool:
    if ctx.current_stage is None:
        return False
    return _documents_verified(ctx, sorted(ctx.current_stage.required_document_types))


def _payment_complete(ctx: GuardContext) -> bool:
    return ctx.payments.is_payment_complete(ctx.application_id)


def _field_truthy(ctx: GuardContext, field: str) -> bool:
    return bool(ctx.value(field))


def default_guard_executor() -> GuardExecutor:
    """Return a GuardExecutor with built-in predicates registered."""
    ex = GuardExecutor()
    ex.register("document_verified", _document_verified)
    ex.register("documents_verified", _documents_verified)
    ex.register("all_required_documents_verified", _all_required_documents_verified)
    ex.register("payment_complete", _payment_complete)
    ex.register("field_truthy", _field_truthy)
    return ex
