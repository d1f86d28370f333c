"""
Pure domain layer.

Value objects and pure logic with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable; guard evaluation and matching are
deterministic functions of their inputs.
"""

from onto_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from onto_kernel.domain.fsm import (
    FsmAction,
    FsmDefinition,
    FsmState,
    FsmTransition,
    definition_from_dict,
    validate_definition,
)
from onto_kernel.domain.guards import GuardEvaluator, GuardOutcome, parse_guard
from onto_kernel.domain.matching import MatchOutcome, find_candidates, match_transition
from onto_kernel.domain.request_validation import validate_transition_request
from onto_kernel.domain.template import (
    ResolvedTemplate,
    TemplateRecord,
    merge_chain,
    merge_definitions,
)
from onto_kernel.domain.transition import (
    ActionContext,
    ActionRecord,
    ActionStatus,
    EntitySnapshot,
    GuardFailure,
    TransitionAuditEntry,
    TransitionContext,
    TransitionRequest,
    TransitionResult,
)

__all__ = [
    "ActionContext",
    "ActionRecord",
    "ActionStatus",
    "Clock",
    "DeterministicClock",
    "EntitySnapshot",
    "FsmAction",
    "FsmDefinition",
    "FsmState",
    "FsmTransition",
    "GuardEvaluator",
    "GuardFailure",
    "GuardOutcome",
    "MatchOutcome",
    "ResolvedTemplate",
    "SystemClock",
    "TemplateRecord",
    "TransitionAuditEntry",
    "TransitionContext",
    "TransitionRequest",
    "TransitionResult",
    "definition_from_dict",
    "find_candidates",
    "match_transition",
    "merge_chain",
    "merge_definitions",
    "parse_guard",
    "validate_definition",
    "validate_transition_request",
]
