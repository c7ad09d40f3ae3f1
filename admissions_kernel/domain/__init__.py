"""
Pure domain layer.

Data transfer objects and domain logic with NO dependencies on
the ORM, the database, the wall clock or any other I/O.

All domain objects are immutable and deterministic.
"""

from admissions_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from admissions_kernel.domain.guards import (
    AllOf,
    AnyOf,
    Condition,
    GuardContext,
    GuardExpression,
    Not,
    Predicate,
    guard_from_dict,
    guard_to_dict,
)
from admissions_kernel.domain.validation import (
    DefinitionValidationResult,
    validate_definition,
)
from admissions_kernel.domain.workflow import (
    SYSTEM_ACTOR,
    ApplicationWorkflowState,
    DefinitionStatus,
    Stage,
    StageRequirementReport,
    StageSpec,
    StatusRecord,
    Transition,
    TransitionCompleted,
    TransitionSpec,
    TriggerType,
    WorkflowDefinition,
)

__all__ = [
    "AllOf",
    "AnyOf",
    "ApplicationWorkflowState",
    "Clock",
    "Condition",
    "DefinitionStatus",
    "DefinitionValidationResult",
    "DeterministicClock",
    "GuardContext",
    "GuardExpression",
    "Not",
    "Predicate",
    "SYSTEM_ACTOR",
    "Stage",
    "StageRequirementReport",
    "StageSpec",
    "StatusRecord",
    "SystemClock",
    "Transition",
    "TransitionCompleted",
    "TransitionSpec",
    "TriggerType",
    "WorkflowDefinition",
    "guard_from_dict",
    "guard_to_dict",
    "validate_definition",
]
