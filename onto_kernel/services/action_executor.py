"""
ActionExecutor -- runs a transition's ordered action pipeline.

Responsibility
--------------
Invokes one registered handler per declared action, strictly in declared
order, and turns every outcome (success, failure, unknown name, timeout,
skip) into an ``ActionRecord``.

Architecture position
---------------------
**Kernel services layer**.  Handlers are registered by name in an explicit
``ActionRegistry``; concrete handlers live in ``onto_services.actions``.

Invariants enforced
-------------------
* ``len(records) == len(actions)`` and records follow declaration order.
* Registration key must equal ``handler.name``.
* No handler exception escapes ``run``; failures are data.
* The pipeline as a whole gets ``budget_seconds`` of wall-clock time.  The
  action running when it runs out is recorded as TIMEOUT and every later
  action as SKIPPED_AFTER_TIMEOUT.  The overrunning handler is not
  cancelled; its thread finishes in the background and its result is
  discarded.
* With a request idempotency key, each handler receives the derived key
  ``"{key}:{transition_id}:{index}:{action_name}"``.

Failure modes
-------------
* Unknown action name  -> failed / ``UNKNOWN_ACTION``.
* Handler raises  -> failed / ``"<ExcType>: <message>"``.
* Handler returns something other than an ``ActionRecord``  -> failed.
"""

from __future__ import annotations

import contextvars
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import replace
from typing import Protocol, runtime_checkable

from onto_kernel.domain.fsm import FsmAction
from onto_kernel.domain.transition import (
    ActionContext,
    ActionRecord,
    ActionStatus,
    EntitySnapshot,
    TransitionContext,
)
from onto_kernel.exceptions import ActionTimeoutError, UnknownActionError
from onto_kernel.logging_config import get_logger
from onto_kernel.utils.idempotency import generate_action_idempotency_key

logger = get_logger("services.action_executor")

DEFAULT_ACTION_BUDGET_SECONDS = 30.0

DETAIL_DRY_RUN = "DRY_RUN"
DETAIL_DUPLICATE_SUPPRESSED = "DUPLICATE_SUPPRESSED"
DETAIL_SKIPPED_AFTER_TIMEOUT = "SKIPPED_AFTER_TIMEOUT"


@runtime_checkable
class ActionHandler(Protocol):
    """A named side-effect step.

    ``invoke`` must not touch any collaborator when ``dry_run`` is True; it
    should describe the planned effect instead.  When ``idempotency_key`` is
    given the handler passes it to its collaborator as a dedup key.
    """

    name: str

    def invoke(
        self,
        snapshot: EntitySnapshot,
        context: ActionContext,
        *,
        dry_run: bool,
        idempotency_key: str | None,
    ) -> ActionRecord:
        ...


class ActionRegistry:
    """Explicit name -> handler table."""

    def __init__(self) -> None:
        self._handlers: dict[str, ActionHandler] = {}

    def register(self, name: str, handler: ActionHandler) -> None:
        """Register a handler, replacing any previous one under ``name``.

        Raises:
            ValueError: If ``handler.name`` does not match ``name``.
        """
        if handler.name != name:
            raise ValueError(
                f"Handler name '{handler.name}' does not match registration key '{name}'"
            )
        self._handlers[name] = handler

    def get(self, name: str) -> ActionHandler | None:
        return self._handlers.get(name)

    def names(self) -> frozenset[str]:
        return frozenset(self._handlers)

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)


class ActionExecutor:
    """Sequential, budgeted action pipeline.

    Contract:
        ``run`` never raises for handler-level problems and always returns
        exactly one record per declared action.

    Non-goals:
        No retries and no rollback of the committed state.
    """

    def __init__(
        self,
        registry: ActionRegistry,
        budget_seconds: float = DEFAULT_ACTION_BUDGET_SECONDS,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        if budget_seconds <= 0:
            raise ValueError("budget_seconds must be positive")
        self._registry = registry
        self._budget_seconds = budget_seconds
        self._monotonic = monotonic

    @property
    def registry(self) -> ActionRegistry:
        return self._registry

    def run(
        self,
        actions: Sequence[FsmAction],
        snapshot: EntitySnapshot,
        context: TransitionContext,
        *,
        transition_id: str,
        from_state: str,
        to_state: str,
        dry_run: bool = False,
        idempotency_key: str | None = None,
    ) -> tuple[ActionRecord, ...]:
        if not actions:
            return ()

        records: list[ActionRecord] = []
        deadline = self._monotonic() + self._budget_seconds
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="fsm-action")
        timed_out = False

        try:
            for index, action in enumerate(actions):
                if timed_out:
                    records.append(ActionRecord.skipped(action.name, DETAIL_SKIPPED_AFTER_TIMEOUT))
                    continue

                handler = self._registry.get(action.name)
                if handler is None:
                    record = ActionRecord.failed(action.name, UnknownActionError.code)
                    self._log(record, index, 0.0, dry_run)
                    records.append(record)
                    continue

                action_context = ActionContext(
                    transition=context,
                    transition_id=transition_id,
                    from_state=from_state,
                    to_state=to_state,
                    index=index,
                    params=action.params,
                    prior_records=tuple(records),
                )
                derived_key = (
                    generate_action_idempotency_key(
                        idempotency_key, transition_id, index, action.name,
                    )
                    if idempotency_key else None
                )

                remaining = deadline - self._monotonic()
                started = self._monotonic()
                if remaining <= 0:
                    record = ActionRecord.failed(action.name, ActionTimeoutError.code)
                    timed_out = True
                else:
                    # copy_context carries LogContext fields into the worker thread
                    future = pool.submit(
                        contextvars.copy_context().run,
                        handler.invoke,
                        snapshot,
                        action_context,
                        dry_run=dry_run,
                        idempotency_key=derived_key,
                    )
                    try:
                        record = self._normalize(action.name, future.result(timeout=remaining))
                    except FutureTimeoutError:
                        record = ActionRecord.failed(action.name, ActionTimeoutError.code)
                        timed_out = True
                    except Exception as exc:
                        record = ActionRecord.failed(action.name, f"{type(exc).__name__}: {exc}")

                self._log(record, index, (self._monotonic() - started) * 1000, dry_run)
                records.append(record)
        finally:
            pool.shutdown(wait=False)

        return tuple(records)

    @staticmethod
    def _normalize(name: str, result: object) -> ActionRecord:
        if not isinstance(result, ActionRecord):
            return ActionRecord.failed(
                name,
                f"TypeError: handler returned {type(result).__name__}, expected ActionRecord",
            )
        if result.name != name:
            return replace(result, name=name)
        return result

    def _log(self, record: ActionRecord, index: int, duration_ms: float, dry_run: bool) -> None:
        extra = {
            "action_name": record.name,
            "action_index": index,
            "action_status": record.status.value,
            "detail": record.detail,
            "duration_ms": round(duration_ms, 3),
            "dry_run": dry_run,
        }
        if record.status == ActionStatus.FAILED:
            logger.warning("fsm_action_failed", extra=extra)
        else:
            logger.info("fsm_action_executed", extra=extra)
