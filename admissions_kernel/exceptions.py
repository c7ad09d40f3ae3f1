"""
Typed Exception Hierarchy for the Admissions Workflow Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

A thin REST layer sits in front of this kernel and has to decide, per error,
whether to refresh-and-retry silently or show the applicant/admin a hard
error.  It must be able to make that decision without parsing messages:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Every exception has a RETRIABLE flag (retry after refreshing state?)
  4. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        engine.apply_transition(app_id, transition_id, actor)
    except StaleStateError as e:        # someone else moved the application
        state = engine.get_state(e.application_id)   # refresh, maybe retry
    except IllegalTransitionError as e:  # that move is not allowed
        api_response(status=409, code=e.code, reason=e.reason)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    WorkflowKernelError (base)
    |
    +-- NotFoundError
    |   +-- ApplicationNotFoundError
    |   +-- DefinitionNotFoundError
    |   +-- ActiveDefinitionNotFoundError
    |   +-- StageNotFoundError
    |   +-- TransitionNotFoundError
    |
    +-- ConflictError
    |   +-- ActivationConflictError
    |   +-- DefinitionRetiredError
    |   +-- DefinitionImmutableError
    |
    +-- StaleStateError                 (retriable)
    +-- IllegalTransitionError
    +-- GuardFailedError                (retriable)
    |
    +-- ValidationError
    |   +-- DefinitionValidationError
    |   +-- GuardSyntaxError
    |   +-- ConfigurationError
    |
    +-- ImmutabilityViolationError
    +-- AuditChainBrokenError
    +-- WorkflowStoreError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                        | When Raised
-------------|-----------------------------|-----------------------------------
Not found    | APPLICATION_NOT_FOUND       | No workflow state for application
             | DEFINITION_NOT_FOUND        | Definition ID doesn't exist
             | ACTIVE_DEFINITION_NOT_FOUND | No active definition for the type
             | STAGE_NOT_FOUND             | Stage ID/name doesn't exist
             | TRANSITION_NOT_FOUND        | Transition ID not in definition
-------------|-----------------------------|-----------------------------------
Conflict     | ACTIVATION_CONFLICT         | Concurrent activation won the race
             | DEFINITION_RETIRED          | Activating a retired definition
             | DEFINITION_IMMUTABLE        | Editing an activated definition
-------------|-----------------------------|-----------------------------------
Transition   | STALE_STATE                 | Application moved concurrently
             | ILLEGAL_TRANSITION          | Move not allowed from this state
             | GUARD_FAILED                | Guard no longer holds
-------------|-----------------------------|-----------------------------------
Validation   | DEFINITION_INVALID          | Structural checks failed
             | GUARD_SYNTAX                | Malformed guard expression
             | CONFIGURATION_ERROR         | Bad template / settings file
-------------|-----------------------------|-----------------------------------
Integrity    | IMMUTABILITY_VIOLATION      | Modifying an append-only record
             | AUDIT_CHAIN_BROKEN          | Audit hash chain validation failed
             | WORKFLOW_STORE_ERROR        | Wrapped storage failure

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Raw SQLAlchemy exceptions never cross the service boundary.  Services
   wrap them into the nearest kind above (WorkflowStoreError by default).

2. ``retriable`` is a class attribute, like ``code``: whether a caller may
   retry is a property of the error kind, not of the instance.

===============================================================================
"""


class WorkflowKernelError(Exception):
    """
    Base exception for all admissions workflow errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification and a `retriable` flag.
    """

    code: str = "WORKFLOW_KERNEL_ERROR"
    retriable: bool = False


# Not-found exceptions


class NotFoundError(WorkflowKernelError):
    """Base exception for unknown application/definition/transition IDs."""

    code: str = "NOT_FOUND"


class ApplicationNotFoundError(NotFoundError):
    """No workflow state exists for the application."""

    code: str = "APPLICATION_NOT_FOUND"

    def __init__(self, application_id: str):
        self.application_id = application_id
        super().__init__(f"Application workflow state not found: {application_id}")


class DefinitionNotFoundError(NotFoundError):
    """Workflow definition with given ID was not found."""

    code: str = "DEFINITION_NOT_FOUND"

    def __init__(self, definition_id: str):
        self.definition_id = definition_id
        super().__init__(f"Workflow definition not found: {definition_id}")


class ActiveDefinitionNotFoundError(NotFoundError):
    """No definition is active for the application type."""

    code: str = "ACTIVE_DEFINITION_NOT_FOUND"

    def __init__(self, application_type: str):
        self.application_type = application_type
        super().__init__(
            f"No active workflow definition for application type: {application_type}"
        )


class StageNotFoundError(NotFoundError):
    """Stage does not exist in the definition."""

    code: str = "STAGE_NOT_FOUND"

    def __init__(self, stage_ref: str, definition_id: str | None = None):
        self.stage_ref = stage_ref
        self.definition_id = definition_id
        super().__init__(f"Stage not found: {stage_ref}")


class TransitionNotFoundError(NotFoundError):
    """Transition does not exist in the application's bound definition."""

    code: str = "TRANSITION_NOT_FOUND"

    def __init__(self, transition_id: str, definition_id: str | None = None):
        self.transition_id = transition_id
        self.definition_id = definition_id
        super().__init__(f"Transition not found: {transition_id}")


# Conflict exceptions


class ConflictError(WorkflowKernelError):
    """Base exception for definition lifecycle conflicts."""

    code: str = "CONFLICT"


class ActivationConflictError(ConflictError):
    """A concurrent activation for the same application type won the race."""

    code: str = "ACTIVATION_CONFLICT"

    def __init__(self, application_type: str, definition_id: str):
        self.application_type = application_type
        self.definition_id = definition_id
        super().__init__(
            f"Concurrent activation for {application_type} while activating "
            f"{definition_id}"
        )


class DefinitionRetiredError(ConflictError):
    """Retired definitions can never be re-activated."""

    code: str = "DEFINITION_RETIRED"

    def __init__(self, definition_id: str):
        self.definition_id = definition_id
        super().__init__(f"Workflow definition {definition_id} is retired")


class DefinitionImmutableError(ConflictError):
    """Definitions are immutable once activated; edit a new version instead."""

    code: str = "DEFINITION_IMMUTABLE"

    def __init__(self, definition_id: str, status: str):
        self.definition_id = definition_id
        self.status = status
        super().__init__(
            f"Workflow definition {definition_id} is {status}; "
            "create a new version to edit it"
        )


# Transition exceptions


class StaleStateError(WorkflowKernelError):
    """
    Optimistic-concurrency loss: the application was moved by someone else.

    Retriable after re-fetching the application state.
    """

    code: str = "STALE_STATE"
    retriable: bool = True

    def __init__(
        self,
        application_id: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        self.application_id = application_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Application {application_id} was moved by another transition "
            f"(expected version {expected_version}, found {actual_version})"
        )


class IllegalTransitionError(WorkflowKernelError):
    """The requested move is not allowed from the application's current state."""

    code: str = "ILLEGAL_TRANSITION"

    def __init__(self, application_id: str, transition_id: str, reason: str):
        self.application_id = application_id
        self.transition_id = transition_id
        self.reason = reason
        super().__init__(
            f"Transition {transition_id} is not legal for application "
            f"{application_id}: {reason}"
        )


class GuardFailedError(WorkflowKernelError):
    """
    The transition's guard did not hold at execution time.

    Retriable once the underlying data (documents, payment, SLA clock) changes.
    """

    code: str = "GUARD_FAILED"
    retriable: bool = True

    def __init__(self, application_id: str, transition_id: str, guard: str | None):
        self.application_id = application_id
        self.transition_id = transition_id
        self.guard = guard
        super().__init__(
            f"Guard failed for transition {transition_id} on application "
            f"{application_id}: {guard}"
        )


# Validation exceptions


class ValidationError(WorkflowKernelError):
    """Base exception for structural validation failures."""

    code: str = "VALIDATION_ERROR"


class DefinitionValidationError(ValidationError):
    """Definition failed structural checks; activation is blocked."""

    code: str = "DEFINITION_INVALID"

    def __init__(self, definition_id: str, errors: list[str]):
        self.definition_id = definition_id
        self.errors = list(errors)
        super().__init__(
            f"Workflow definition {definition_id} is invalid: " + "; ".join(errors)
        )


class GuardSyntaxError(ValidationError):
    """Guard expression could not be parsed."""

    code: str = "GUARD_SYNTAX"

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f"Invalid guard expression {expression}: {reason}")


class ConfigurationError(ValidationError):
    """Template or settings file is malformed."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, source: str, errors: list[str]):
        self.source = source
        self.errors = list(errors)
        super().__init__(f"Invalid configuration in {source}: " + "; ".join(errors))


# Integrity exceptions


class ImmutabilityViolationError(WorkflowKernelError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class AuditChainBrokenError(WorkflowKernelError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_event_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


class WorkflowStoreError(WorkflowKernelError):
    """A storage failure, wrapped so raw driver errors never reach callers."""

    code: str = "WORKFLOW_STORE_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Workflow store failure during {operation}: {detail}")
