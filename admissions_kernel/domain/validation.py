"""
Structural validation of workflow definitions.

Responsibility:
    Pure checks run before a definition can be activated.  Errors block
    activation; warnings are surfaced to administrators but do not.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Called by DefinitionService.validate
    and by the template validator in admissions_config.

Invariants enforced:
    - Every stage is reachable from the designated start stage.
    - Exactly one terminal stage per outcome branch; terminals have no exits.
    - No orphan transitions and no self-loops.
    - Non-terminal stages have at least one exit.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from uuid import UUID

from admissions_kernel.domain.guards import Predicate, iter_leaves
from admissions_kernel.domain.workflow import TriggerType, WorkflowDefinition


@dataclass
class DefinitionValidationResult:
    """Errors and warnings produced by ``validate_definition``."""

    definition_id: UUID | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add_error(self, message: str) -> None:
        self.errors.append(message)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)


def validate_definition(
    definition: WorkflowDefinition,
    known_predicates: Iterable[str] | None = None,
) -> DefinitionValidationResult:
    result = DefinitionValidationResult(definition_id=definition.id)

    if not definition.stages:
        result.add_error("definition has no stages")
        return result

    stages = {s.id: s for s in definition.stages}
    names = {s.id: s.name for s in definition.stages}

    _check_uniqueness(definition, result)

    start = definition.start_stage
    if start is None:
        result.add_error(f"start stage {definition.start_stage_id} is not in the definition")

    known = set(known_predicates) if known_predicates is not None else None

    # Orphans and self-loops; only sound edges feed the graph checks
    edges: dict[UUID, set[UUID]] = defaultdict(set)
    for t in definition.transitions:
        label = t.name or str(t.id)
        if t.workflow_definition_id != definition.id:
            result.add_error(f"transition '{label}' belongs to another definition")
            continue
        if t.source_stage_id not in stages or t.target_stage_id not in stages:
            result.add_error(f"transition '{label}' has a dangling source or target stage")
            continue
        if t.source_stage_id == t.target_stage_id:
            result.add_error(f"transition '{label}' is a self-loop on '{names[t.source_stage_id]}'")
            continue
        edges[t.source_stage_id].add(t.target_stage_id)

        source = stages[t.source_stage_id]
        if source.is_terminal:
            result.add_error(
                f"terminal stage '{source.name}' has outgoing transition '{label}'"
            )
        if t.trigger_type == TriggerType.SLA_TIMEOUT and source.sla_duration is None:
            result.add_error(
                f"SLA-timeout transition '{label}' leaves '{source.name}', "
                "which has no SLA duration"
            )
        if t.trigger_type == TriggerType.MANUAL and not t.required_role:
            result.add_warning(f"manual transition '{label}' has no required role")
        if t.guard is not None and known is not None:
            for leaf in iter_leaves(t.guard):
                if isinstance(leaf, Predicate) and leaf.name not in known:
                    result.add_error(
                        f"transition '{label}' uses unknown guard predicate '{leaf.name}'"
                    )

    _check_terminals(definition, edges, result)

    if start is not None:
        reachable = _reachable_from(start.id, edges)
        for s in definition.stages:
            if s.id not in reachable:
                result.add_error(f"stage '{s.name}' is unreachable from start stage '{start.name}'")

    _check_escape_less_cycles(definition, edges, result)

    return result


def _check_uniqueness(definition: WorkflowDefinition, result: DefinitionValidationResult) -> None:
    seen_seq: dict[int, str] = {}
    seen_names: set[str] = set()
    for s in definition.stages:
        if s.sequence in seen_seq:
            result.add_error(
                f"stages '{seen_seq[s.sequence]}' and '{s.name}' share sequence {s.sequence}"
            )
        else:
            seen_seq[s.sequence] = s.name
        if s.name in seen_names:
            result.add_error(f"duplicate stage name '{s.name}'")
        seen_names.add(s.name)


def _check_terminals(
    definition: WorkflowDefinition,
    edges: dict[UUID, set[UUID]],
    result: DefinitionValidationResult,
) -> None:
    terminals = definition.terminal_stages
    if not terminals:
        result.add_error("definition has no terminal stage")
    by_outcome: dict[str, list[str]] = defaultdict(list)
    for s in terminals:
        by_outcome[s.outcome_label].append(s.name)
    for outcome, stage_names in sorted(by_outcome.items()):
        if len(stage_names) > 1:
            result.add_error(
                f"outcome '{outcome}' has more than one terminal stage: {sorted(stage_names)}"
            )
    for s in definition.stages:
        if not s.is_terminal and not edges.get(s.id):
            result.add_error(f"non-terminal stage '{s.name}' has no outgoing transitions")


def _reachable_from(start: UUID, edges: dict[UUID, set[UUID]]) -> set[UUID]:
    seen = {start}
    stack = [start]
    while stack:
        node = stack.pop()
        for nxt in edges.get(node, ()):
            if nxt not in seen:
                seen.add(nxt)
                stack.append(nxt)
    return seen


def _check_escape_less_cycles(
    definition: WorkflowDefinition,
    edges: dict[UUID, set[UUID]],
    result: DefinitionValidationResult,
) -> None:
    """Warn on non-terminal cycles none of whose stages has an SLA-timeout exit."""
    non_terminal = {s.id for s in definition.stages if not s.is_terminal}
    sla_edges = [
        t for t in definition.transitions if t.trigger_type == TriggerType.SLA_TIMEOUT
    ]
    names = {s.id: s.name for s in definition.stages}

    for component in _strongly_connected(non_terminal, edges):
        if len(component) < 2:
            continue
        if any(
            t.source_stage_id in component and t.target_stage_id not in component
            for t in sla_edges
        ):
            continue
        members = sorted(names[n] for n in component)
        result.add_warning(f"cycle {members} has no SLA-timeout escape transition")


def _strongly_connected(nodes: set[UUID], edges: dict[UUID, set[UUID]]) -> list[set[UUID]]:
    """Tarjan's algorithm restricted to ``nodes``."""
    index: dict[UUID, int] = {}
    low: dict[UUID, int] = {}
    on_stack: set[UUID] = set()
    stack: list[UUID] = []
    components: list[set[UUID]] = []
    counter = 0

    def visit(node: UUID) -> None:
        nonlocal counter
        index[node] = low[node] = counter
        counter += 1
        stack.append(node)
        on_stack.add(node)
        for nxt in edges.get(node, ()):
            if nxt not in nodes:
                continue
            if nxt not in index:
                visit(nxt)
                low[node] = min(low[node], low[nxt])
            elif nxt in on_stack:
                low[node] = min(low[node], index[nxt])
        if low[node] == index[node]:
            component: set[UUID] = set()
            while True:
                member = stack.pop()
                on_stack.discard(member)
                component.add(member)
                if member == node:
                    break
            components.append(component)

    for node in sorted(nodes, key=str):
        if node not in index:
            visit(node)
    return components
