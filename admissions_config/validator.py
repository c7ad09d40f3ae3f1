"""
Template Validator (``admissions_config.validator``).

Responsibility
--------------
Validates the raw YAML form of a workflow template before it is parsed,
so authors get every problem in one report instead of the first
``KeyError``.  Graph-level rules (reachability, terminal outcomes, cycles)
are left to ``admissions_kernel.domain.validation`` at activation time.

Architecture position
---------------------
**Config layer** -- build-time validation.  Called by
``admissions_config.loader`` after reading YAML and before parsing.

Invariants enforced
-------------------
* Required keys present; stage names and sequences unique.
* Transitions reference declared stages and use a known trigger type.
* Guards parse, use only allow-listed operators and known predicate names.
* SLA-timeout transitions leave a stage that declares an SLA.

Failure modes
-------------
* Validation errors (``TemplateValidationResult.errors``) -> the template
  MUST NOT be installed.
* Validation warnings -> template may be installed but should be reviewed.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from admissions_kernel.domain.guards import Predicate, guard_from_dict, iter_leaves
from admissions_kernel.domain.workflow import TriggerType
from admissions_kernel.exceptions import GuardSyntaxError

_TRIGGERS = frozenset(t.value for t in TriggerType)
_SLA_KEYS = ("sla_hours", "sla_minutes")


@dataclass
class TemplateValidationResult:
    """
    Result of template validation.

    Contract
    --------
    * ``is_valid`` returns ``True`` only when ``errors`` is empty.
    """

    source: str = "<template>"
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_template(
    data: Any,
    known_predicates: Iterable[str] | None = None,
    source: str = "<template>",
) -> TemplateValidationResult:
    """
    Validate a raw template mapping.

    Postconditions:
        - Returns a ``TemplateValidationResult``; never raises for bad input.
    """
    result = TemplateValidationResult(source=source)
    if not isinstance(data, dict):
        result.add_error("template must be a mapping")
        return result

    for key in ("application_type", "name", "stages"):
        if not data.get(key):
            result.add_error(f"missing required key '{key}'")

    stages = data.get("stages") or []
    if not isinstance(stages, list):
        result.add_error("'stages' must be a list")
        stages = []
    sla_stages = _validate_stages(stages, result)
    stage_names = {s.get("name") for s in stages if isinstance(s, dict)}

    start = data.get("start_stage")
    if start is not None and start not in stage_names:
        result.add_error(f"start_stage '{start}' is not a declared stage")

    transitions = data.get("transitions") or []
    if not isinstance(transitions, list):
        result.add_error("'transitions' must be a list")
        transitions = []
    known = set(known_predicates) if known_predicates is not None else None
    for i, t in enumerate(transitions):
        _validate_transition(i, t, stage_names, sla_stages, known, result)

    return result


def _validate_stages(stages: list[Any], result: TemplateValidationResult) -> set[str]:
    """Check each stage entry; return names of stages that declare an SLA."""
    names: set[str] = set()
    sequences: set[int] = set()
    with_sla: set[str] = set()
    for i, s in enumerate(stages):
        if not isinstance(s, dict):
            result.add_error(f"stage #{i} must be a mapping")
            continue
        name = s.get("name")
        if not name:
            result.add_error(f"stage #{i} has no name")
            continue
        if name in names:
            result.add_error(f"duplicate stage name '{name}'")
        names.add(name)

        seq = s.get("sequence")
        if not isinstance(seq, int) or isinstance(seq, bool):
            result.add_error(f"stage '{name}' needs an integer sequence")
        elif seq in sequences:
            result.add_error(f"duplicate stage sequence {seq} at '{name}'")
        else:
            sequences.add(seq)

        for key in _SLA_KEYS:
            if key in s:
                value = s[key]
                if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
                    result.add_error(f"stage '{name}' {key} must be a positive number")
                else:
                    with_sla.add(name)

        docs = s.get("required_documents", [])
        if not isinstance(docs, list) or not all(isinstance(d, str) for d in docs):
            result.add_error(f"stage '{name}' required_documents must be a list of strings")

        if s.get("terminal") and s.get("sla_hours"):
            result.add_warning(f"terminal stage '{name}' declares an SLA that can never fire")
    return with_sla


def _validate_transition(
    index: int,
    t: Any,
    stage_names: set[str],
    sla_stages: set[str],
    known: set[str] | None,
    result: TemplateValidationResult,
) -> None:
    if not isinstance(t, dict):
        result.add_error(f"transition #{index} must be a mapping")
        return
    label = t.get("name") or f"#{index}"

    for end in ("source", "target"):
        if t.get(end) not in stage_names:
            result.add_error(f"transition '{label}' {end} '{t.get(end)}' is not a declared stage")
    if t.get("source") is not None and t.get("source") == t.get("target"):
        result.add_error(f"transition '{label}' is a self-loop")

    trigger = t.get("trigger", TriggerType.MANUAL.value)
    if trigger not in _TRIGGERS:
        result.add_error(f"transition '{label}' has unknown trigger '{trigger}'")
    if trigger == TriggerType.SLA_TIMEOUT.value and t.get("source") not in sla_stages:
        result.add_error(
            f"sla_timeout transition '{label}' leaves a stage without an SLA"
        )
    if trigger == TriggerType.MANUAL.value and not t.get("required_role"):
        result.add_warning(f"manual transition '{label}' has no required_role")

    if "guard" in t and t["guard"] is not None:
        try:
            guard = guard_from_dict(t["guard"])
        except GuardSyntaxError as e:
            result.add_error(f"transition '{label}' guard: {e.reason}")
            return
        if known is not None:
            for leaf in iter_leaves(guard):
                if isinstance(leaf, Predicate) and leaf.name not in known:
                    result.add_error(
                        f"transition '{label}' uses unknown predicate '{leaf.name}'"
                    )
