"""
Canonical FSM types (``onto_kernel.domain.fsm``).

Responsibility
--------------
Pure value objects for template-defined state machines.  Every entity
scope (task, document, output, goal, plan, milestone, risk, project)
shares these types; a template's FSM fragment is parsed into them once
and merged by the template resolver.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``models/``, or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``FsmDefinition.states``
  (``validate_definition``).
* Transition ids are unique within a definition.
* ``final`` on a state is advisory: final states may still declare
  outgoing transitions.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from onto_kernel.utils.freezing import freeze_mapping, thaw


@dataclass(frozen=True)
class FsmState:
    """A named lifecycle state.

    Contract: frozen.  ``metadata`` may carry ``initial``, ``final`` and
    ``description``; none of them change engine behaviour.
    """

    key: str
    label: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", freeze_mapping(self.metadata))
        if not self.label:
            object.__setattr__(self, "label", self.key)

    @property
    def is_initial(self) -> bool:
        return bool(self.metadata.get("initial", False))

    @property
    def is_final(self) -> bool:
        return bool(self.metadata.get("final", False))


@dataclass(frozen=True)
class FsmAction:
    """A named side-effect step attached to a transition, with its params."""

    name: str
    params: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", freeze_mapping(self.params))


@dataclass(frozen=True)
class FsmTransition:
    """A directed edge fired by an event.

    Contract: frozen.  ``guard`` is an expression string evaluated by
    ``onto_kernel.domain.guards``; ``actions`` run in declared order after
    the state is committed.
    """

    id: str
    from_state: str
    to_state: str
    on: str
    label: str = ""
    guard: str | None = None
    actions: tuple[FsmAction, ...] = ()

    @property
    def is_self_transition(self) -> bool:
        return self.from_state == self.to_state

    @property
    def action_names(self) -> tuple[str, ...]:
        return tuple(action.name for action in self.actions)


@dataclass(frozen=True)
class FsmDefinition:
    """A state machine definition for one entity type.

    Contract: frozen; ``states`` is a read-only mapping keyed by state key,
    ``transitions`` keeps declaration order (ties between candidates for
    the same ``(from, on)`` are broken by it).
    """

    states: Mapping[str, FsmState]
    transitions: tuple[FsmTransition, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.states, MappingProxyType):
            object.__setattr__(self, "states", MappingProxyType(dict(self.states)))
        object.__setattr__(self, "transitions", tuple(self.transitions))
        object.__setattr__(self, "metadata", freeze_mapping(self.metadata))

    @property
    def initial_states(self) -> tuple[str, ...]:
        return tuple(key for key, state in self.states.items() if state.is_initial)

    def outgoing(self, state_key: str) -> tuple[FsmTransition, ...]:
        """All transitions leaving ``state_key`` in declaration order."""
        return tuple(t for t in self.transitions if t.from_state == state_key)

    def to_dict(self) -> dict[str, Any]:
        """Plain-data rendering (JSON/YAML friendly)."""
        return {
            "states": {
                key: {"label": state.label, "metadata": thaw(state.metadata)}
                for key, state in self.states.items()
            },
            "transitions": [
                {
                    "id": t.id,
                    "from": t.from_state,
                    "to": t.to_state,
                    "on": t.on,
                    "label": t.label,
                    "guard": t.guard,
                    "actions": [
                        {"name": a.name, **thaw(a.params)} for a in t.actions
                    ],
                }
                for t in self.transitions
            ],
            "metadata": thaw(self.metadata),
        }


_STATE_FLAGS = ("initial", "final", "description")


def _parse_state(key: str, raw: Any) -> FsmState:
    if raw is None:
        return FsmState(key=key)
    if not isinstance(raw, Mapping):
        raise ValueError(f"state '{key}' must be a mapping, got {type(raw).__name__}")
    metadata = dict(raw.get("metadata") or {})
    for flag in _STATE_FLAGS:
        if flag in raw:
            metadata[flag] = raw[flag]
    return FsmState(key=key, label=raw.get("label") or "", metadata=metadata)


def _parse_action(raw: Any) -> FsmAction:
    if isinstance(raw, str):
        return FsmAction(name=raw)
    if isinstance(raw, Mapping) and isinstance(raw.get("name"), str):
        params = {k: v for k, v in raw.items() if k != "name"}
        return FsmAction(name=raw["name"], params=params)
    raise ValueError(f"action must be a name or a mapping with 'name', got {raw!r}")


def _parse_transition(raw: Mapping[str, Any]) -> FsmTransition:
    from_state = raw.get("from", raw.get("from_state"))
    to_state = raw.get("to", raw.get("to_state"))
    on = raw.get("on", raw.get("event"))
    if not isinstance(from_state, str) or not isinstance(to_state, str):
        raise ValueError(f"transition needs string 'from' and 'to': {dict(raw)!r}")
    if not isinstance(on, str):
        raise ValueError(f"transition needs a string 'on': {dict(raw)!r}")
    guard = raw.get("guard")
    if guard is not None and not isinstance(guard, str):
        raise ValueError(f"guard must be a string expression, got {guard!r}")
    return FsmTransition(
        id=raw.get("id") or f"{from_state}:{on}:{to_state}",
        from_state=from_state,
        to_state=to_state,
        on=on,
        label=raw.get("label") or "",
        guard=guard or None,
        actions=tuple(_parse_action(a) for a in raw.get("actions") or ()),
    )


def definition_from_dict(data: Mapping[str, Any]) -> FsmDefinition:
    """Build a definition from its plain-data form.

    ``states`` may be a mapping keyed by state key (the ``to_dict`` form) or
    a list of ``{key: ..., label: ..., initial: ...}`` entries (the authored
    form).  A transition without ``id`` gets ``"{from}:{on}:{to}"``.

    Raises:
        ValueError: on a structurally malformed fragment.  Reference errors
            (unknown states) are left to ``validate_definition``.
    """
    raw_states = data.get("states") or {}
    states: dict[str, FsmState] = {}
    if isinstance(raw_states, Mapping):
        for key, raw in raw_states.items():
            states[str(key)] = _parse_state(str(key), raw)
    elif isinstance(raw_states, (list, tuple)):
        for raw in raw_states:
            if isinstance(raw, str):
                states[raw] = FsmState(key=raw)
            elif isinstance(raw, Mapping) and isinstance(raw.get("key"), str):
                states[raw["key"]] = _parse_state(raw["key"], raw)
            else:
                raise ValueError(f"state entry needs a string 'key': {raw!r}")
    else:
        raise ValueError("'states' must be a mapping or a list")

    raw_transitions = data.get("transitions") or ()
    if not isinstance(raw_transitions, (list, tuple)):
        raise ValueError("'transitions' must be a list")
    transitions = []
    for raw in raw_transitions:
        if not isinstance(raw, Mapping):
            raise ValueError(f"transition must be a mapping, got {raw!r}")
        transitions.append(_parse_transition(raw))

    return FsmDefinition(
        states=states,
        transitions=tuple(transitions),
        metadata=data.get("metadata") or {},
    )


def validate_definition(definition: FsmDefinition) -> list[str]:
    """Check structural invariants of a definition.

    Returns a list of problems.  Empty list means the definition is valid.
    """
    problems: list[str] = []
    seen_ids: set[str] = set()

    for transition in definition.transitions:
        if transition.id in seen_ids:
            problems.append(f"duplicate transition id '{transition.id}'")
        seen_ids.add(transition.id)

        if transition.from_state not in definition.states:
            problems.append(
                f"transition '{transition.id}' starts at unknown state "
                f"'{transition.from_state}'"
            )
        if transition.to_state not in definition.states:
            problems.append(
                f"transition '{transition.id}' targets unknown state "
                f"'{transition.to_state}'"
            )
        if not transition.on:
            problems.append(f"transition '{transition.id}' has no event")

    return problems
