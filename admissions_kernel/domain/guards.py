"""
Guard expressions -- tagged-variant predicates for workflow transitions.

Responsibility:
    Defines the data shape of a transition guard and its JSON form.  A guard
    is a small expression tree (all / any / not / named predicate / field
    condition) evaluated against a read-only ``GuardContext``.  Nothing in a
    guard is executable: named predicates are resolved through a registry in
    the services layer.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Imported by models (persistence of
    the JSON form), by validation, and by the guard executor.

Invariants enforced:
    - Guards are immutable frozen dataclasses.
    - ``guard_to_dict(guard_from_dict(d))`` is a normalized form of ``d``.
    - Field conditions only use operators in ``OPERATORS``.

Failure modes:
    - GuardSyntaxError from ``guard_from_dict`` on malformed input.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping, Union
from uuid import UUID

from admissions_kernel.exceptions import GuardSyntaxError

if TYPE_CHECKING:
    from admissions_kernel.domain.workflow import Stage


# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------

OPERATORS: frozenset[str] = frozenset({
    "=", "==", "!=", "<>", ">", ">=", "<", "<=",
    "in", "not_in", "contains", "not_contains", "starts_with", "ends_with",
})


def compare(operator: str, actual: Any, expected: Any) -> bool:
    """Apply a condition operator; type mismatches evaluate to False."""
    try:
        if operator in ("=", "=="):
            return actual == expected
        if operator in ("!=", "<>"):
            return actual != expected
        if actual is None:
            return False
        if operator == ">":
            return actual > expected
        if operator == ">=":
            return actual >= expected
        if operator == "<":
            return actual < expected
        if operator == "<=":
            return actual <= expected
        if operator == "in":
            return actual in expected
        if operator == "not_in":
            return actual not in expected
        if operator == "contains":
            return expected in actual
        if operator == "not_contains":
            return expected not in actual
        if operator == "starts_with":
            return str(actual).startswith(str(expected))
        if operator == "ends_with":
            return str(actual).endswith(str(expected))
    except TypeError:
        return False
    raise GuardSyntaxError(operator, "unknown operator")


def resolve_field(data: Mapping[str, Any], path: str) -> Any:
    """Look up a dotted path (``"scores.gpa"``) in nested mappings."""
    current: Any = data
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return None
    return current


# ---------------------------------------------------------------------------
# Expression types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AllOf:
    """Conjunction. An empty conjunction holds."""

    terms: tuple[GuardExpression, ...] = ()


@dataclass(frozen=True)
class AnyOf:
    """Disjunction. An empty disjunction does not hold."""

    terms: tuple[GuardExpression, ...] = ()


@dataclass(frozen=True)
class Not:
    term: GuardExpression


@dataclass(frozen=True)
class Predicate:
    """Leaf predicate resolved by name (e.g. ``payment_complete``)."""

    name: str
    args: tuple[tuple[str, Any], ...] = ()

    @property
    def arguments(self) -> dict[str, Any]:
        return dict(self.args)


@dataclass(frozen=True)
class Condition:
    """Compares ``application_data[field]`` against a literal value."""

    field: str
    operator: str
    value: Any = None


GuardExpression = Union[AllOf, AnyOf, Not, Predicate, Condition]


def iter_leaves(expression: GuardExpression):
    """Yield every Predicate and Condition in the tree."""
    if isinstance(expression, (AllOf, AnyOf)):
        for term in expression.terms:
            yield from iter_leaves(term)
    elif isinstance(expression, Not):
        yield from iter_leaves(expression.term)
    else:
        yield expression


def describe(expression: GuardExpression | None) -> str | None:
    """Render a compact human-readable form for logs and error messages."""
    if expression is None:
        return None
    if isinstance(expression, AllOf):
        return "(" + " and ".join(describe(t) for t in expression.terms) + ")"
    if isinstance(expression, AnyOf):
        return "(" + " or ".join(describe(t) for t in expression.terms) + ")"
    if isinstance(expression, Not):
        return f"not {describe(expression.term)}"
    if isinstance(expression, Predicate):
        if not expression.args:
            return expression.name
        args = ", ".join(f"{k}={v!r}" for k, v in expression.args)
        return f"{expression.name}({args})"
    return f"{expression.field} {expression.operator} {expression.value!r}"


# ---------------------------------------------------------------------------
# JSON form
# ---------------------------------------------------------------------------


def _freeze(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    if isinstance(value, dict):
        return tuple(sorted((k, _freeze(v)) for k, v in value.items()))
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


def guard_from_dict(data: Any) -> GuardExpression:
    """
    Parse the JSON form of a guard.

    Accepted shapes::

        {"all": [...]}  {"any": [...]}  {"not": {...}}
        {"predicate": "document_verified", "args": {"document_type": "transcript"}}
        {"field": "gpa", "operator": ">=", "value": 3.0}
        [ ... ]                       # shorthand for {"all": [...]}

    Raises:
        GuardSyntaxError: On any unrecognized shape.
    """
    if isinstance(data, list):
        return AllOf(tuple(guard_from_dict(item) for item in data))
    if not isinstance(data, Mapping):
        raise GuardSyntaxError(repr(data), "guard must be a mapping or a list")

    keys = set(data)
    if keys == {"all"} or keys == {"any"}:
        key = next(iter(keys))
        terms = data[key]
        if not isinstance(terms, list):
            raise GuardSyntaxError(repr(data), f"'{key}' expects a list")
        parsed = tuple(guard_from_dict(t) for t in terms)
        return AllOf(parsed) if key == "all" else AnyOf(parsed)
    if keys == {"not"}:
        return Not(guard_from_dict(data["not"]))
    if "predicate" in keys and keys <= {"predicate", "args"}:
        name = data["predicate"]
        if not isinstance(name, str) or not name:
            raise GuardSyntaxError(repr(data), "predicate name must be a string")
        args = data.get("args") or {}
        if not isinstance(args, Mapping):
            raise GuardSyntaxError(repr(data), "predicate args must be a mapping")
        return Predicate(name, tuple(sorted((k, _freeze(v)) for k, v in args.items())))
    if "field" in keys and keys <= {"field", "operator", "value"}:
        operator = data.get("operator", "=")
        if operator not in OPERATORS:
            raise GuardSyntaxError(repr(data), f"unknown operator '{operator}'")
        if not isinstance(data["field"], str) or not data["field"]:
            raise GuardSyntaxError(repr(data), "field must be a non-empty string")
        return Condition(data["field"], operator, _freeze(data.get("value")))
    raise GuardSyntaxError(repr(data), f"unrecognized keys {sorted(keys)}")


def guard_to_dict(expression: GuardExpression) -> Any:
    """Serialize a guard to its JSON form."""
    if isinstance(expression, AllOf):
        return {"all": [guard_to_dict(t) for t in expression.terms]}
    if isinstance(expression, AnyOf):
        return {"any": [guard_to_dict(t) for t in expression.terms]}
    if isinstance(expression, Not):
        return {"not": guard_to_dict(expression.term)}
    if isinstance(expression, Predicate):
        out: dict[str, Any] = {"predicate": expression.name}
        if expression.args:
            out["args"] = {k: _thaw(v) for k, v in expression.args}
        return out
    return {
        "field": expression.field,
        "operator": expression.operator,
        "value": _thaw(expression.value),
    }


# ---------------------------------------------------------------------------
# Evaluation context
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GuardContext:
    """
    Read-only view handed to guard evaluation.

    Contract:
        Guards see application data, the current stage, the evaluation time
        and the document/payment providers.  Nothing here can mutate
        workflow state.
    """

    application_id: UUID
    current_stage: Stage | None
    now: datetime
    documents: Any
    payments: Any
    application_data: Mapping[str, Any] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def __post_init__(self) -> None:
        if not isinstance(self.application_data, MappingProxyType):
            object.__setattr__(
                self, "application_data", MappingProxyType(dict(self.application_data))
            )

    def value(self, path: str) -> Any:
        return resolve_field(self.application_data, path)
