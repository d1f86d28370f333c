"""
Transition matching (``onto_kernel.domain.matching``).

Selects the edge to fire for ``(current_state, event)``.  Candidates are
the definition's transitions leaving ``current_state`` on that event, in
declaration order; the first whose guard passes wins.

Pure: all state comes in as arguments.
"""

from __future__ import annotations

from dataclasses import dataclass

from onto_kernel.domain.fsm import FsmDefinition, FsmTransition
from onto_kernel.domain.guards import GuardEvaluator
from onto_kernel.domain.transition import EntitySnapshot, GuardFailure, TransitionContext
from onto_kernel.exceptions import GuardRejectedError, TransitionNotFoundError


@dataclass(frozen=True)
class MatchOutcome:
    """Result of matching: either a transition, or why there is none.

    ``candidate_count == 0`` means no edge exists (TRANSITION_NOT_FOUND);
    otherwise ``guard_failures`` has one entry per rejected candidate.
    """

    current_state: str
    on: str
    transition: FsmTransition | None = None
    candidate_count: int = 0
    guard_failures: tuple[GuardFailure, ...] = ()

    @property
    def matched(self) -> bool:
        return self.transition is not None

    @property
    def error_code(self) -> str | None:
        if self.matched:
            return None
        if self.candidate_count == 0:
            return TransitionNotFoundError.code
        return GuardRejectedError.code

    def require(self) -> FsmTransition:
        """Return the matched transition or raise the matching kernel error."""
        if self.transition is not None:
            return self.transition
        if self.candidate_count == 0:
            raise TransitionNotFoundError(self.current_state, self.on)
        raise GuardRejectedError(self.current_state, self.on, self.guard_failures)


def find_candidates(
    definition: FsmDefinition,
    current_state: str,
    on: str,
) -> tuple[FsmTransition, ...]:
    """Transitions leaving ``current_state`` on event ``on``, declaration order."""
    return tuple(
        t for t in definition.transitions
        if t.from_state == current_state and t.on == on
    )


def match_transition(
    definition: FsmDefinition,
    current_state: str,
    on: str,
    snapshot: EntitySnapshot,
    context: TransitionContext | None,
    evaluator: GuardEvaluator,
) -> MatchOutcome:
    """Pick the first eligible candidate.

    Unguarded candidates are always eligible.  Guards are only evaluated
    until one passes; no guard runs when there are no candidates.
    """
    candidates = find_candidates(definition, current_state, on)
    failures: list[GuardFailure] = []

    for candidate in candidates:
        outcome = evaluator.evaluate(candidate.guard, snapshot, context)
        if outcome.passed:
            return MatchOutcome(
                current_state=current_state,
                on=on,
                transition=candidate,
                candidate_count=len(candidates),
                guard_failures=tuple(failures),
            )
        failures.append(GuardFailure(
            expression=candidate.guard or "",
            reason=outcome.reason or "GUARD_FALSE",
            transition_id=candidate.id,
        ))

    return MatchOutcome(
        current_state=current_state,
        on=on,
        candidate_count=len(candidates),
        guard_failures=tuple(failures),
    )
