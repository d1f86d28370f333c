"""
TemplateResolver -- loads a template, walks its ancestry, merges the FSM.

Responsibility
--------------
Turns ``(type_key, scope)`` into a ``ResolvedTemplate`` whose
``definition`` is the root-to-leaf merge of every FSM fragment in the
inheritance chain.

Architecture position
---------------------
**Kernel services layer**.  Reads through the ``TemplateStore`` port;
merging itself is the pure ``onto_kernel.domain.template.merge_chain``.

Invariants enforced
-------------------
* The parent walk is iterative with a visited-id set: a revisited id is a
  cycle (CYCLIC_TEMPLATE), never infinite recursion.
* A chain may hold at most ``max_depth`` templates, leaf included;
  longer chains are rejected (TEMPLATE_DEPTH_EXCEEDED).
* The merged definition satisfies ``validate_definition``; otherwise
  INVALID_FSM_DEFINITION.  Fragments are never validated alone.
* Resolved templates are cached per ``(type_key, scope)``.  Failures are
  not cached.

Failure modes
-------------
* Leaf or parent missing  -> ``TemplateNotFoundError``.
* Cycle in parent chain  -> ``CyclicTemplateError``.
* Chain too deep  -> ``TemplateDepthExceededError``.
* Merged FSM invalid or absent  -> ``InvalidFsmDefinitionError``.
"""

from __future__ import annotations

import threading

from onto_kernel.domain.fsm import validate_definition
from onto_kernel.domain.template import (
    ResolvedTemplate,
    TemplateRecord,
    merge_chain,
    merge_metadata,
)
from onto_kernel.exceptions import (
    CyclicTemplateError,
    InvalidFsmDefinitionError,
    TemplateDepthExceededError,
    TemplateNotFoundError,
)
from onto_kernel.logging_config import get_logger
from onto_kernel.services.template_store import TemplateStore

logger = get_logger("services.template_resolver")

DEFAULT_MAX_INHERITANCE_DEPTH = 10


class TemplateCache:
    """Thread-safe cache of resolved templates keyed by ``(type_key, scope)``."""

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], ResolvedTemplate] = {}
        self._lock = threading.Lock()

    def get(self, type_key: str, scope: str) -> ResolvedTemplate | None:
        with self._lock:
            return self._entries.get((type_key, scope))

    def put(self, resolved: ResolvedTemplate) -> None:
        with self._lock:
            self._entries[(resolved.type_key, resolved.scope)] = resolved

    def invalidate(self, type_key: str | None = None, scope: str | None = None) -> int:
        """Drop matching entries; both None clears everything.

        A ``type_key`` also drops every cached descendant whose inheritance
        chain includes it, since their merged FSM embeds the ancestor.

        Returns the number of entries removed.
        """
        with self._lock:
            doomed = [
                key for key, resolved in self._entries.items()
                if (type_key is None or type_key in resolved.inheritance_chain)
                and (scope is None or key[1] == scope)
            ]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class TemplateResolver:
    """Resolves templates through a store with an injectable cache.

    Contract:
        ``resolve`` returns a merged, validated definition or raises a
        ``TemplateError`` subclass.  Safe to share across threads.

    Non-goals:
        Does not block abstract templates; callers that care can check
        ``ResolvedTemplate.is_abstract``.
    """

    def __init__(
        self,
        store: TemplateStore,
        cache: TemplateCache | None = None,
        max_depth: int = DEFAULT_MAX_INHERITANCE_DEPTH,
    ) -> None:
        self._store = store
        self._cache = cache if cache is not None else TemplateCache()
        self._max_depth = max_depth

    @property
    def cache(self) -> TemplateCache:
        return self._cache

    def resolve(self, type_key: str, scope: str) -> ResolvedTemplate:
        cached = self._cache.get(type_key, scope)
        if cached is not None:
            return cached

        leaf = self._store.get_template(type_key, scope)
        if leaf is None:
            raise TemplateNotFoundError(type_key, scope)

        chain = self._walk_ancestry(leaf)
        definition = merge_chain(chain)
        if definition is None:
            raise InvalidFsmDefinitionError(
                type_key, ["no FSM defined anywhere in the inheritance chain"]
            )
        problems = validate_definition(definition)
        if problems:
            raise InvalidFsmDefinitionError(type_key, problems)

        resolved = ResolvedTemplate(
            template_id=leaf.id,
            type_key=leaf.type_key,
            scope=leaf.scope,
            definition=definition,
            inheritance_chain=tuple(record.type_key for record in chain),
            is_abstract=leaf.is_abstract,
            metadata=merge_metadata(chain),
        )
        self._cache.put(resolved)

        logger.info(
            "template_resolved",
            extra={
                "type_key": type_key,
                "scope": scope,
                "template_id": leaf.id,
                "inheritance_chain": list(resolved.inheritance_chain),
                "state_count": len(definition.states),
                "transition_count": len(definition.transitions),
            },
        )
        return resolved

    def invalidate(self, type_key: str | None = None, scope: str | None = None) -> int:
        """Cache-bust hook for template edits.  No arguments clears all."""
        removed = self._cache.invalidate(type_key, scope)
        logger.info(
            "template_cache_invalidated",
            extra={"type_key": type_key, "scope": scope, "removed": removed},
        )
        return removed

    def _walk_ancestry(self, leaf: TemplateRecord) -> list[TemplateRecord]:
        """Return the chain root-first.  Iterative: no recursion depth risk."""
        chain = [leaf]
        visited = {leaf.id}
        current = leaf

        while current.parent_id is not None:
            if current.parent_id in visited:
                ids = [record.id for record in chain]
                raise CyclicTemplateError(leaf.type_key, [*ids, current.parent_id])
            if len(chain) >= self._max_depth:
                raise TemplateDepthExceededError(leaf.type_key, self._max_depth)

            parent = self._store.get_template_by_id(current.parent_id)
            if parent is None:
                raise TemplateNotFoundError(current.parent_id)

            visited.add(parent.id)
            chain.append(parent)
            current = parent

        chain.reverse()
        return chain
