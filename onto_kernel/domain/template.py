"""
Template records and inheritance merging (``onto_kernel.domain.template``).

Responsibility
--------------
Templates form a parent-pointer tree stored as an arena indexed by template
id: each ``TemplateRecord`` names its parent by id rather than holding a
live reference.  ``merge_chain`` folds a root-to-leaf chain into a single
``FsmDefinition``.

Architecture position
---------------------
**Kernel domain layer** -- pure.  Walking the chain (which needs a store)
lives in ``onto_kernel.services.template_resolver``.

Merge rules
-----------
* States merge by key; a child's state replaces the parent's.
* Transitions merge by id; a replaced transition keeps the parent's
  position, new transitions append in the child's declaration order.
* Definition metadata and template metadata merge, child wins.
* A template without an FSM fragment inherits its parent's unchanged.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from onto_kernel.domain.fsm import FsmDefinition, FsmState, FsmTransition
from onto_kernel.utils.freezing import freeze_mapping, thaw


@dataclass(frozen=True)
class TemplateRecord:
    """One node of the template arena, as stored.

    ``fsm`` is a fragment: its transitions may reference states that only
    an ancestor declares, so it is validated after merging, never alone.
    """

    id: str
    type_key: str
    scope: str
    parent_id: str | None = None
    fsm: FsmDefinition | None = None
    name: str = ""
    is_abstract: bool = False
    status: str = "active"
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", freeze_mapping(self.metadata))


@dataclass(frozen=True)
class ResolvedTemplate:
    """A leaf template with its inheritance chain folded in."""

    template_id: str
    type_key: str
    scope: str
    definition: FsmDefinition
    inheritance_chain: tuple[str, ...]
    is_abstract: bool = False
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", freeze_mapping(self.metadata))


def merge_definitions(
    parent: FsmDefinition | None,
    child: FsmDefinition | None,
) -> FsmDefinition | None:
    """Overlay ``child`` onto ``parent``."""
    if child is None:
        return parent
    if parent is None:
        return child

    states: dict[str, FsmState] = dict(parent.states)
    states.update(child.states)

    transitions: list[FsmTransition] = list(parent.transitions)
    position = {t.id: index for index, t in enumerate(transitions)}
    for transition in child.transitions:
        if transition.id in position:
            transitions[position[transition.id]] = transition
        else:
            position[transition.id] = len(transitions)
            transitions.append(transition)

    metadata = {**thaw(parent.metadata), **thaw(child.metadata)}
    return FsmDefinition(states=states, transitions=tuple(transitions), metadata=metadata)


def merge_chain(chain: Sequence[TemplateRecord]) -> FsmDefinition | None:
    """Fold a root-to-leaf chain into one definition (``None`` if no FSM anywhere)."""
    merged: FsmDefinition | None = None
    for record in chain:
        merged = merge_definitions(merged, record.fsm)
    return merged


def merge_metadata(chain: Sequence[TemplateRecord]) -> dict[str, Any]:
    merged: dict[str, Any] = {}
    for record in chain:
        merged.update(thaw(record.metadata))
    return merged
