"""
StateCommitter -- the optimistic, atomic state write.

Responsibility
--------------
Moves an entity from the state the matcher saw to the transition's target
state, and records the move in the activity log.

Architecture position
---------------------
**Kernel services layer**.  Depends on the ``EntityStore`` port and the
injected ``Clock``; never touches the action pipeline.

Invariants enforced
-------------------
* The write is ``EntityStore.commit_transition``: a compare-and-swap from
  ``snapshot.state_key`` plus the audit append, in one unit.  A lost race
  raises ``OptimisticLockError`` and writes nothing.
* A failed audit append leaves the state unmoved; the error propagates.
* Both land before any action runs (the engine calls the action executor
  after ``commit``).
* Dry run writes nothing and returns a simulated outcome.
* Self-transitions still go through the swap (``from == to``), so a
  concurrent move away from the state is still detected.
"""

from __future__ import annotations

from dataclasses import dataclass

from onto_kernel.domain.clock import Clock, SystemClock
from onto_kernel.domain.fsm import FsmTransition
from onto_kernel.domain.transition import (
    EntitySnapshot,
    TransitionAuditEntry,
    TransitionContext,
)
from onto_kernel.exceptions import OptimisticLockError
from onto_kernel.logging_config import get_logger
from onto_kernel.services.entity_store import EntityStore

logger = get_logger("services.state_committer")


@dataclass(frozen=True)
class CommitOutcome:
    """What ``commit`` did.

    ``simulated`` is True for dry runs: ``audit_entry`` is then None and the
    store was not touched.
    """

    from_state: str
    to_state: str
    simulated: bool = False
    audit_entry: TransitionAuditEntry | None = None


class StateCommitter:
    """Compare-and-swap committer.

    Contract:
        ``commit`` either returns (state written, audit appended; or dry
        run) or raises ``OptimisticLockError`` with nothing written.

    Non-goals:
        No retry: a CONFLICT goes back to the caller, who refetches.
    """

    def __init__(self, entity_store: EntityStore, clock: Clock | None = None) -> None:
        self._entity_store = entity_store
        self._clock = clock or SystemClock()

    def commit(
        self,
        snapshot: EntitySnapshot,
        transition: FsmTransition,
        context: TransitionContext,
        *,
        dry_run: bool = False,
        idempotency_key: str | None = None,
    ) -> CommitOutcome:
        from_state = snapshot.state_key
        to_state = transition.to_state

        if dry_run:
            return CommitOutcome(from_state=from_state, to_state=to_state, simulated=True)

        entry = TransitionAuditEntry(
            entity_type=snapshot.entity_type,
            entity_id=snapshot.id,
            type_key=snapshot.type_key,
            from_state=from_state,
            to_state=to_state,
            event=transition.on,
            transition_id=transition.id,
            actor_id=context.actor_id,
            occurred_at=self._clock.now(),
            user_id=context.user_id,
            idempotency_key=idempotency_key,
        )
        if not self._entity_store.commit_transition(entry):
            logger.warning(
                "state_commit_conflict",
                extra={
                    "entity_type": snapshot.entity_type,
                    "entity_id": snapshot.id,
                    "expected_state": from_state,
                    "target_state": to_state,
                    "transition_id": transition.id,
                },
            )
            raise OptimisticLockError(snapshot.entity_type, snapshot.id, from_state)

        logger.info(
            "state_committed",
            extra={
                "entity_type": snapshot.entity_type,
                "entity_id": snapshot.id,
                "from_state": from_state,
                "to_state": to_state,
                "transition_id": transition.id,
            },
        )
        return CommitOutcome(from_state=from_state, to_state=to_state, audit_entry=entry)
