"""
Transition request/response value objects (``onto_kernel.domain.transition``).

Responsibility
--------------
The ephemeral types that live for exactly one transition call: the
validated request, the read-only entity snapshot and actor context, the
per-action records, guard failures, the audit entry handed to the entity
store, and the final ``TransitionResult`` union.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Snapshots are deep-frozen; guards and handlers cannot mutate entity props.
* ``ActionRecord`` is immutable once emitted.
* A successful ``TransitionResult`` has ``state_after`` and no ``error``;
  a failed one has ``error`` and no ``state_after``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

from onto_kernel.utils.freezing import freeze_mapping, thaw


@dataclass(frozen=True)
class TransitionRequest:
    """A validated inbound transition call."""

    entity_type: str
    entity_id: str
    on: str
    dry_run: bool = False
    idempotency_key: str | None = None


@dataclass(frozen=True)
class EntitySnapshot:
    """Read-only copy of an entity's persisted fields at request time."""

    id: str
    entity_type: str
    type_key: str
    state_key: str
    props: Mapping[str, Any] = field(default_factory=dict)
    project_id: str | None = None
    fields: Mapping[str, Any] = field(default_factory=dict)
    version: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "props", freeze_mapping(self.props))
        object.__setattr__(self, "fields", freeze_mapping(self.fields))
        # A project owns itself: entities without a parent project use their own id.
        if not self.project_id:
            object.__setattr__(self, "project_id", self.id)

    @property
    def facets(self) -> Mapping[str, str]:
        raw = self.props.get("facets")
        if not isinstance(raw, Mapping):
            return {}
        return {k: v for k, v in raw.items() if isinstance(v, str)}

    @property
    def display_name(self) -> str | None:
        return self.fields.get("name") or self.fields.get("title")

    def as_guard_scope(self) -> dict[str, Any]:
        """Nested mapping guard paths resolve against (without ``actor``)."""
        scope: dict[str, Any] = dict(self.fields)
        scope.update({
            "id": self.id,
            "entity_type": self.entity_type,
            "type_key": self.type_key,
            "state_key": self.state_key,
            "project_id": self.project_id,
            "version": self.version,
            "props": self.props,
            "facets": dict(self.facets),
        })
        return scope

    def with_state(self, state_key: str) -> EntitySnapshot:
        """Copy of this snapshot as it looks after a committed transition."""
        return replace(self, state_key=state_key)

    def to_dict(self) -> dict[str, Any]:
        return {
            **thaw(self.fields),
            "id": self.id,
            "entity_type": self.entity_type,
            "type_key": self.type_key,
            "state_key": self.state_key,
            "project_id": self.project_id,
            "props": thaw(self.props),
            "version": self.version,
        }


@dataclass(frozen=True)
class TransitionContext:
    """Actor identity plus the entity snapshot guards read from.

    Constructed fresh per request; the engine never mutates it.
    """

    actor_id: str
    snapshot: EntitySnapshot
    user_id: str | None = None


class ActionStatus(str, Enum):
    """Outcome of one action in the pipeline."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ActionRecord:
    """Outcome of one declared action.

    ``output`` lets later actions in the same pipeline reference what an
    earlier one produced (e.g. a created document id).
    """

    name: str
    status: ActionStatus
    detail: str | None = None
    output: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "status", ActionStatus(self.status))
        object.__setattr__(self, "output", freeze_mapping(self.output))

    @classmethod
    def success(
        cls,
        name: str,
        detail: str | None = None,
        output: Mapping[str, Any] | None = None,
    ) -> ActionRecord:
        return cls(name=name, status=ActionStatus.SUCCESS, detail=detail, output=output or {})

    @classmethod
    def failed(cls, name: str, detail: str) -> ActionRecord:
        return cls(name=name, status=ActionStatus.FAILED, detail=detail)

    @classmethod
    def skipped(
        cls,
        name: str,
        detail: str,
        output: Mapping[str, Any] | None = None,
    ) -> ActionRecord:
        return cls(name=name, status=ActionStatus.SKIPPED, detail=detail, output=output or {})

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "status": self.status.value}
        if self.detail is not None:
            data["detail"] = self.detail
        if self.output:
            data["output"] = thaw(self.output)
        return data


@dataclass(frozen=True)
class ActionContext:
    """What a handler sees besides the snapshot.

    ``prior_records`` holds the records already emitted by this pipeline,
    in order.
    """

    transition: TransitionContext
    transition_id: str
    from_state: str
    to_state: str
    index: int = 0
    params: Mapping[str, Any] = field(default_factory=dict)
    prior_records: tuple[ActionRecord, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", freeze_mapping(self.params))

    @property
    def actor_id(self) -> str:
        return self.transition.actor_id

    @property
    def user_id(self) -> str | None:
        return self.transition.user_id

    def output_of(self, action_name: str) -> Mapping[str, Any] | None:
        """Output of the most recent successful earlier action with this name."""
        for record in reversed(self.prior_records):
            if record.name == action_name and record.status == ActionStatus.SUCCESS:
                return record.output
        return None


@dataclass(frozen=True)
class GuardFailure:
    """One rejected candidate transition."""

    expression: str
    reason: str
    transition_id: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "transition_id": self.transition_id,
            "expression": self.expression,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class TransitionAuditEntry:
    """Activity-log row appended after a successful state commit."""

    entity_type: str
    entity_id: str
    type_key: str
    from_state: str
    to_state: str
    event: str
    transition_id: str
    actor_id: str
    occurred_at: datetime
    user_id: str | None = None
    idempotency_key: str | None = None


@dataclass(frozen=True)
class TransitionResult:
    """Final outcome of a transition call.

    Discriminated on ``ok``:
      * ``ok=True``  -> ``state_after``, ``actions_run``
      * ``ok=False`` -> ``error`` (a kernel error code), ``guard_failures``
    """

    ok: bool
    state_after: str | None = None
    actions_run: tuple[ActionRecord, ...] = ()
    error: str | None = None
    guard_failures: tuple[GuardFailure, ...] = ()
    message: str = ""
    dry_run: bool = False

    def __post_init__(self) -> None:
        if self.ok and self.state_after is None:
            raise ValueError("Successful transition must include state_after")
        if not self.ok and self.error is None:
            raise ValueError("Failed transition must include error")

    @classmethod
    def success(
        cls,
        state_after: str,
        actions_run: tuple[ActionRecord, ...] = (),
        dry_run: bool = False,
    ) -> TransitionResult:
        return cls(ok=True, state_after=state_after, actions_run=tuple(actions_run), dry_run=dry_run)

    @classmethod
    def failure(
        cls,
        error: str,
        message: str = "",
        guard_failures: tuple[GuardFailure, ...] = (),
        dry_run: bool = False,
    ) -> TransitionResult:
        return cls(
            ok=False,
            error=error,
            message=message,
            guard_failures=tuple(guard_failures),
            dry_run=dry_run,
        )

    @property
    def failed_actions(self) -> tuple[ActionRecord, ...]:
        """Actions that need manual follow-up even though the state moved."""
        return tuple(r for r in self.actions_run if r.status == ActionStatus.FAILED)

    def to_dict(self) -> dict[str, Any]:
        if self.ok:
            data: dict[str, Any] = {
                "ok": True,
                "state_after": self.state_after,
                "actions_run": [r.to_dict() for r in self.actions_run],
            }
        else:
            data = {"ok": False, "error": self.error}
            if self.message:
                data["message"] = self.message
            if self.guard_failures:
                data["guard_failures"] = [f.to_dict() for f in self.guard_failures]
        if self.dry_run:
            data["dry_run"] = True
        return data
