"""
onto_services.transition_engine -- FSM transition orchestration.

Responsibility:
    Runs one transition request end to end: validate the request, load the
    entity snapshot, resolve the entity's template, match the edge (guards
    included), commit the state with compare-and-swap, run the action
    pipeline, and aggregate the result.  Thin coordinator -- every step is
    delegated to a kernel component.

Architecture position:
    Services layer.  May import from onto_kernel (domain, services).  Must
    not import from onto_config; ``onto_services.wiring`` builds the engine
    from a pack.

Invariants enforced:
    - Pre-commit failures (validation, missing entity, template errors,
      no edge, guard rejection) never write state.
    - The state write precedes every action; action failures never roll it
      back and never turn the result into a failure.
    - A lost compare-and-swap returns CONFLICT and runs no action.
    - Dry run: no state write, no audit entry, no collaborator side
      effect, yet ``actions_run`` is populated.
    - Every outcome emits one ``fsm_transition`` trace record.

Failure modes:
    - Kernel errors become ``TransitionResult(ok=False, error=<code>)``.
    - Anything else (database outage, programming error) propagates.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Collection, Mapping
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from onto_kernel.domain.guards import GuardEvaluator
from onto_kernel.domain.matching import match_transition
from onto_kernel.domain.request_validation import validate_transition_request
from onto_kernel.domain.transition import (
    TransitionContext,
    TransitionRequest,
    TransitionResult,
)
from onto_kernel.exceptions import EntityNotFoundError, OntoKernelError
from onto_kernel.logging_config import LogContext, get_logger
from onto_kernel.services.action_executor import ActionExecutor
from onto_kernel.services.entity_store import EntityStore
from onto_kernel.services.result_aggregator import aggregate_failure, aggregate_success
from onto_kernel.services.state_committer import StateCommitter
from onto_kernel.services.template_resolver import TemplateResolver

logger = get_logger("services.transition_engine")

TRACE_TYPE_FSM_TRANSITION = "FSM_TRANSITION"
OUTCOME_SUCCESS = "success"
OUTCOME_SIMULATED = "simulated"
OUTCOME_REJECTED = "rejected"


def _emit_transition_trace(
    trace: dict[str, Any],
    result: TransitionResult,
    duration_ms: float,
    outcome_sink: Callable[[dict], None] | None = None,
) -> None:
    """Emit a structured transition record for traceability and lookback."""
    if not result.ok:
        outcome = OUTCOME_REJECTED
    elif result.dry_run:
        outcome = OUTCOME_SIMULATED
    else:
        outcome = OUTCOME_SUCCESS

    record: dict[str, Any] = {
        "trace_type": TRACE_TYPE_FSM_TRANSITION,
        "ts": datetime.now(UTC).isoformat(),
        **trace,
        "outcome": outcome,
        "duration_ms": round(duration_ms, 3),
        "dry_run": result.dry_run,
    }
    if result.ok:
        record["to_state"] = result.state_after
        record["actions_run"] = [r.to_dict() for r in result.actions_run]
    else:
        record["error"] = result.error
        if result.guard_failures:
            record["guard_failures"] = [f.to_dict() for f in result.guard_failures]
    record.update(LogContext.get_all())
    logger.info("fsm_transition", extra=record)
    if outcome_sink is not None:
        outcome_sink({**record, "message": "fsm_transition"})


class TransitionEngine:
    """Executes FSM transitions for ontology entities.

    Contract:
        ``run_transition`` accepts a raw payload (validated here) or an
        already-validated ``TransitionRequest`` plus the caller's identity,
        and always returns a ``TransitionResult`` for kernel-level outcomes.

    Guarantees:
        - At most one of two concurrent requests for the same entity and
          source state succeeds; the other gets CONFLICT.
        - ``actions_run`` has one record per declared action, in order.

    Non-goals:
        - Deciding which event fires, retrying conflicts, or replaying
          whole requests by idempotency key (side effects dedup per action).
    """

    def __init__(
        self,
        resolver: TemplateResolver,
        entity_store: EntityStore,
        executor: ActionExecutor,
        committer: StateCommitter | None = None,
        evaluator: GuardEvaluator | None = None,
        allowed_entity_types: Collection[str] | None = None,
        outcome_sink: Callable[[dict], None] | None = None,
    ) -> None:
        self._resolver = resolver
        self._entity_store = entity_store
        self._executor = executor
        self._committer = committer or StateCommitter(entity_store)
        self._evaluator = evaluator or GuardEvaluator()
        self._allowed_entity_types = (
            frozenset(allowed_entity_types) if allowed_entity_types is not None else None
        )
        self._outcome_sink = outcome_sink

    @property
    def resolver(self) -> TemplateResolver:
        return self._resolver

    @property
    def entity_store(self) -> EntityStore:
        return self._entity_store

    @property
    def executor(self) -> ActionExecutor:
        return self._executor

    def run_transition(
        self,
        request: TransitionRequest | Mapping[str, Any],
        actor_id: str,
        user_id: str | None = None,
        *,
        correlation_id: str | None = None,
        outcome_sink: Callable[[dict], None] | None = None,
    ) -> TransitionResult:
        """Run one transition.

        When ``outcome_sink`` (or the engine-level sink) is set, the
        structured trace record is passed to it for every outcome.
        """
        t0 = time.monotonic()
        sink = outcome_sink or self._outcome_sink
        trace: dict[str, Any] = {"actor_id": actor_id}

        with LogContext.bind(
            correlation_id=correlation_id or str(uuid4()),
            actor_id=actor_id,
        ):
            try:
                request = self._coerce_request(request)
            except OntoKernelError as exc:
                result = aggregate_failure(exc)
                _emit_transition_trace(trace, result, (time.monotonic() - t0) * 1000, sink)
                return result

            trace.update(
                entity_type=request.entity_type,
                entity_id=request.entity_id,
                event=request.on,
            )
            with LogContext.bind(
                entity_type=request.entity_type,
                entity_id=request.entity_id,
                idempotency_key=request.idempotency_key,
            ):
                try:
                    result = self._run(request, actor_id, user_id, trace)
                except OntoKernelError as exc:
                    result = aggregate_failure(exc, dry_run=request.dry_run)

                _emit_transition_trace(trace, result, (time.monotonic() - t0) * 1000, sink)
        return result

    def _coerce_request(self, request: TransitionRequest | Mapping[str, Any]) -> TransitionRequest:
        if isinstance(request, TransitionRequest):
            payload: Mapping[str, Any] = {
                "entity_type": request.entity_type,
                "entity_id": request.entity_id,
                "on": request.on,
                "dry_run": request.dry_run,
                "idempotency_key": request.idempotency_key,
            }
        else:
            payload = request
        return validate_transition_request(payload, self._allowed_entity_types)

    def _run(
        self,
        request: TransitionRequest,
        actor_id: str,
        user_id: str | None,
        trace: dict[str, Any],
    ) -> TransitionResult:
        # 1. Snapshot the entity
        snapshot = self._entity_store.get_snapshot(request.entity_type, request.entity_id)
        if snapshot is None:
            raise EntityNotFoundError(request.entity_type, request.entity_id)
        trace.update(type_key=snapshot.type_key, from_state=snapshot.state_key)

        # 2. Resolve the merged FSM for the entity's template
        resolved = self._resolver.resolve(snapshot.type_key, request.entity_type)
        trace["template_id"] = resolved.template_id

        # 3. Match the edge; guards run here
        context = TransitionContext(actor_id=actor_id, snapshot=snapshot, user_id=user_id)
        outcome = match_transition(
            resolved.definition,
            snapshot.state_key,
            request.on,
            snapshot,
            context,
            self._evaluator,
        )
        if not outcome.matched and outcome.guard_failures:
            logger.warning(
                "fsm_guard_rejected",
                extra={
                    "type_key": snapshot.type_key,
                    "from_state": snapshot.state_key,
                    "event": request.on,
                    "guard_failures": [f.to_dict() for f in outcome.guard_failures],
                },
            )
        transition = outcome.require()
        trace["transition_id"] = transition.id

        with LogContext.bind(transition_id=transition.id):
            # 4. Commit first; a lost race raises CONFLICT before any action
            self._committer.commit(
                snapshot,
                transition,
                context,
                dry_run=request.dry_run,
                idempotency_key=request.idempotency_key,
            )

            # 5. Best-effort actions against the post-transition view
            records = self._executor.run(
                transition.actions,
                snapshot.with_state(transition.to_state),
                context,
                transition_id=transition.id,
                from_state=snapshot.state_key,
                to_state=transition.to_state,
                dry_run=request.dry_run,
                idempotency_key=request.idempotency_key,
            )

        return aggregate_success(transition.to_state, records, dry_run=request.dry_run)
