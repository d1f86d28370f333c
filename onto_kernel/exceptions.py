"""
Typed Exception Hierarchy for the Ontology FSM Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Transition outcomes are consumed by an API layer that must tell apart
"fix your input", "no such edge", "a guard said no" and "someone else moved
the entity first".  Parsing message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - RIGHT way:
    try:
        resolver.resolve(type_key, scope)
    except CyclicTemplateError as e:
        log.warning("cycle", extra={"chain": e.chain})
        return api_response(code=e.code)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    OntoKernelError (base)
    |
    +-- RequestError
    |   +-- TransitionValidationError
    |   +-- EntityNotFoundError
    |
    +-- TemplateError
    |   +-- TemplateNotFoundError
    |   +-- CyclicTemplateError
    |   +-- TemplateDepthExceededError
    |   +-- InvalidFsmDefinitionError
    |
    +-- TransitionError
    |   +-- TransitionNotFoundError
    |   +-- GuardRejectedError
    |
    +-- GuardError
    |   +-- GuardParseError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ActionError
    |   +-- UnknownActionError
    |   +-- ActionFailure
    |   +-- ActionTimeoutError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                     | Pre-commit? | When Raised
-------------|--------------------------|-------------|-----------------------------
Request      | VALIDATION_ERROR         | yes         | Malformed transition request
             | ENTITY_NOT_FOUND         | yes         | No entity row for id/type
-------------|--------------------------|-------------|-----------------------------
Template     | TEMPLATE_NOT_FOUND       | yes         | No template for type_key/scope
             | CYCLIC_TEMPLATE          | yes         | Parent chain revisits an id
             | TEMPLATE_DEPTH_EXCEEDED  | yes         | Parent chain too deep
             | INVALID_FSM_DEFINITION   | yes         | Edge references unknown state
-------------|--------------------------|-------------|-----------------------------
Transition   | TRANSITION_NOT_FOUND     | yes         | No edge for (state, event)
             | GUARD_REJECTED           | yes         | Every candidate guard failed
-------------|--------------------------|-------------|-----------------------------
Guard        | GUARD_PARSE_ERROR        | n/a         | Guard expression unparsable
-------------|--------------------------|-------------|-----------------------------
Concurrency  | CONFLICT                 | yes         | Compare-and-swap lost a race
-------------|--------------------------|-------------|-----------------------------
Action       | UNKNOWN_ACTION           | no          | Action name not registered
             | ACTION_FAILED            | no          | Handler raised
             | TIMEOUT                  | no          | Pipeline budget exhausted

Action errors never escape the engine: they are captured as ActionRecords in
``actions_run``.  Everything marked "pre-commit" guarantees the entity's
state_key was not written.

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Inherit from Exception, not ValueError: domain errors must be catchable
   as a group without catching programming errors.

2. ``code`` is a class attribute: usable without instantiation, e.g. in
   ``TransitionResult.failure(TransitionNotFoundError.code)``.

3. Categories let callers react coarsely:
   - RequestError     -> 400-style "fix your input"
   - TransitionError  -> 409/422-style business rejection
   - ConcurrencyError -> refetch and resubmit

===============================================================================
"""

from __future__ import annotations

from typing import Any


class OntoKernelError(Exception):
    """
    Base exception for all ontology FSM kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "ONTO_KERNEL_ERROR"


# Request-related exceptions


class RequestError(OntoKernelError):
    """Base exception for malformed or unresolvable requests."""

    code: str = "REQUEST_ERROR"


class TransitionValidationError(RequestError):
    """Transition request failed schema validation."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field_errors: list[dict[str, str]]):
        self.field_errors = field_errors
        summary = "; ".join(
            f"{err['field']}: {err['message']}" for err in field_errors
        )
        super().__init__(f"Invalid transition request: {summary}")


class EntityNotFoundError(RequestError):
    """Entity with given type and ID was not found."""

    code: str = "ENTITY_NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"Entity not found: {entity_type}/{entity_id}")


# Template-related exceptions


class TemplateError(OntoKernelError):
    """Base exception for template resolution errors."""

    code: str = "TEMPLATE_ERROR"


class TemplateNotFoundError(TemplateError):
    """No template exists for the given type_key/scope (or parent id)."""

    code: str = "TEMPLATE_NOT_FOUND"

    def __init__(self, identifier: str, scope: str | None = None):
        self.identifier = identifier
        self.scope = scope
        suffix = f" (scope: {scope})" if scope else ""
        super().__init__(f"Template not found: {identifier}{suffix}")


class CyclicTemplateError(TemplateError):
    """Template ancestry revisits an already-visited template id."""

    code: str = "CYCLIC_TEMPLATE"

    def __init__(self, type_key: str, chain: list[str]):
        self.type_key = type_key
        self.chain = chain
        super().__init__(
            f"Circular template inheritance detected for {type_key}: "
            f"{' -> '.join(chain)}"
        )


class TemplateDepthExceededError(TemplateError):
    """Template ancestry is deeper than the configured maximum."""

    code: str = "TEMPLATE_DEPTH_EXCEEDED"

    def __init__(self, type_key: str, max_depth: int):
        self.type_key = type_key
        self.max_depth = max_depth
        super().__init__(
            f"Maximum inheritance depth {max_depth} exceeded for {type_key}"
        )


class InvalidFsmDefinitionError(TemplateError):
    """A (merged) FSM definition violates its structural invariants."""

    code: str = "INVALID_FSM_DEFINITION"

    def __init__(self, type_key: str, problems: list[str]):
        self.type_key = type_key
        self.problems = problems
        super().__init__(
            f"Invalid FSM definition for {type_key}: {'; '.join(problems)}"
        )


# Transition-related exceptions


class TransitionError(OntoKernelError):
    """Base exception for business rejections of a transition."""

    code: str = "TRANSITION_ERROR"


class TransitionNotFoundError(TransitionError):
    """No transition leaves the current state on the requested event."""

    code: str = "TRANSITION_NOT_FOUND"

    def __init__(self, current_state: str, on: str):
        self.current_state = current_state
        self.on = on
        super().__init__(
            f'No valid transition from "{current_state}" on event "{on}"'
        )


class GuardRejectedError(TransitionError):
    """Every candidate transition's guard evaluated to false."""

    code: str = "GUARD_REJECTED"

    def __init__(self, current_state: str, on: str, failures: tuple[Any, ...]):
        self.current_state = current_state
        self.on = on
        self.failures = failures
        super().__init__(
            f'Guard check failed for "{on}" from "{current_state}": '
            f"{len(failures)} candidate(s) rejected"
        )


# Guard-related exceptions


class GuardError(OntoKernelError):
    """Base exception for guard expression errors."""

    code: str = "GUARD_ERROR"


class GuardParseError(GuardError):
    """Guard expression could not be tokenized or parsed."""

    code: str = "GUARD_PARSE_ERROR"

    def __init__(self, expression: str, message: str, position: int = 0):
        self.expression = expression
        self.message = message
        self.position = position
        super().__init__(
            f"Cannot parse guard {expression!r} at position {position}: {message}"
        )


# Concurrency-related exceptions


class ConcurrencyError(OntoKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Compare-and-swap on state_key lost to a concurrent writer."""

    code: str = "CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, expected_state: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_state = expected_state
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            f"state is no longer '{expected_state}'"
        )


# Action-related exceptions (captured into ActionRecords, never thrown to callers)


class ActionError(OntoKernelError):
    """Base exception for action pipeline errors."""

    code: str = "ACTION_ERROR"


class UnknownActionError(ActionError):
    """Action name has no registered handler."""

    code: str = "UNKNOWN_ACTION"

    def __init__(self, action_name: str):
        self.action_name = action_name
        super().__init__(f"No handler registered for action '{action_name}'")


class ActionFailure(ActionError):
    """A handler could not complete its side effect."""

    code: str = "ACTION_FAILED"

    def __init__(self, action_name: str, reason: str):
        self.action_name = action_name
        self.reason = reason
        super().__init__(f"Action '{action_name}' failed: {reason}")


class ActionTimeoutError(ActionError):
    """Action exceeded the remaining wall-clock budget of the pipeline."""

    code: str = "TIMEOUT"

    def __init__(self, action_name: str, budget_seconds: float):
        self.action_name = action_name
        self.budget_seconds = budget_seconds
        super().__init__(
            f"Action '{action_name}' exceeded the {budget_seconds}s pipeline budget"
        )


# Persistence-related exceptions


class ImmutabilityViolationError(OntoKernelError):
    """Attempted to modify or delete an append-only record (transition log)."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
