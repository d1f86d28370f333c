"""
Tests for TemplateResolver: ancestry walk, merge, cache, and the
template error codes.
"""

import pytest

from onto_kernel.domain.fsm import definition_from_dict
from onto_kernel.domain.template import TemplateRecord
from onto_kernel.exceptions import (
    CyclicTemplateError,
    InvalidFsmDefinitionError,
    TemplateDepthExceededError,
    TemplateNotFoundError,
)
from onto_kernel.services.template_resolver import TemplateResolver
from onto_kernel.services.template_store import InMemoryTemplateStore

BASE_FSM = definition_from_dict({
    "states": [{"key": "todo", "initial": True}, "in_progress", {"key": "done", "final": True}],
    "transitions": [
        {"id": "start", "from": "todo", "to": "in_progress", "on": "start"},
        {"id": "complete", "from": "in_progress", "to": "done", "on": "complete",
         "actions": ["notify"]},
    ],
})


def _record(template_id, type_key, parent_id=None, fsm=None, **kwargs):
    return TemplateRecord(
        id=template_id, type_key=type_key, scope="task", parent_id=parent_id, fsm=fsm, **kwargs
    )


class CountingStore(InMemoryTemplateStore):
    def __init__(self, templates=()):
        super().__init__(templates)
        self.lookups = 0

    def get_template(self, type_key, scope):
        self.lookups += 1
        return super().get_template(type_key, scope)


@pytest.fixture
def store():
    return CountingStore([
        _record("tpl-base", "task.base", fsm=BASE_FSM, is_abstract=True,
                metadata={"realm": "core"}),
        _record("tpl-default", "task.default", parent_id="tpl-base"),
        _record("tpl-writer", "task.writer", parent_id="tpl-default", fsm=definition_from_dict({
            "transitions": [
                {"id": "complete", "from": "in_progress", "to": "done", "on": "complete",
                 "guard": "props.draft_url != null", "actions": ["email_user"]},
            ],
        }), metadata={"realm": "writing"}),
    ])


class TestResolve:

    def test_leaf_inherits_parent_fsm(self, store):
        resolved = TemplateResolver(store).resolve("task.default", "task")
        assert resolved.template_id == "tpl-default"
        assert resolved.inheritance_chain == ("task.base", "task.default")
        assert [t.id for t in resolved.definition.transitions] == ["start", "complete"]
        assert not resolved.is_abstract

    def test_override_replaces_transition(self, store):
        resolved = TemplateResolver(store).resolve("task.writer", "task")
        complete = resolved.definition.transitions[1]
        assert complete.guard == "props.draft_url != null"
        assert complete.action_names == ("email_user",)
        assert resolved.metadata["realm"] == "writing"
        assert resolved.inheritance_chain == ("task.base", "task.default", "task.writer")

    def test_abstract_template_still_resolves(self, store):
        resolved = TemplateResolver(store).resolve("task.base", "task")
        assert resolved.is_abstract

    def test_unknown_type_key(self, store):
        with pytest.raises(TemplateNotFoundError) as exc_info:
            TemplateResolver(store).resolve("task.missing", "task")
        assert exc_info.value.code == "TEMPLATE_NOT_FOUND"

    def test_scope_is_part_of_the_key(self, store):
        with pytest.raises(TemplateNotFoundError):
            TemplateResolver(store).resolve("task.default", "document")

    def test_missing_parent(self):
        store = InMemoryTemplateStore([_record("tpl-orphan", "task.orphan", parent_id="tpl-gone")])
        with pytest.raises(TemplateNotFoundError, match="tpl-gone"):
            TemplateResolver(store).resolve("task.orphan", "task")

    def test_cycle_detected(self):
        store = InMemoryTemplateStore([
            _record("tpl-a", "task.a", parent_id="tpl-b", fsm=BASE_FSM),
            _record("tpl-b", "task.b", parent_id="tpl-a"),
        ])
        with pytest.raises(CyclicTemplateError) as exc_info:
            TemplateResolver(store).resolve("task.a", "task")
        assert exc_info.value.chain == ["tpl-a", "tpl-b", "tpl-a"]
        assert exc_info.value.code == "CYCLIC_TEMPLATE"

    def test_self_parent_is_a_cycle(self):
        store = InMemoryTemplateStore([_record("tpl-a", "task.a", parent_id="tpl-a", fsm=BASE_FSM)])
        with pytest.raises(CyclicTemplateError):
            TemplateResolver(store).resolve("task.a", "task")

    def test_depth_limit_counts_the_leaf(self):
        records = [_record("tpl-0", "task.level0", fsm=BASE_FSM)]
        for level in range(1, 4):
            records.append(_record(f"tpl-{level}", f"task.level{level}", parent_id=f"tpl-{level - 1}"))
        store = InMemoryTemplateStore(records)

        resolver = TemplateResolver(store, max_depth=3)
        assert len(resolver.resolve("task.level2", "task").inheritance_chain) == 3
        with pytest.raises(TemplateDepthExceededError) as exc_info:
            resolver.resolve("task.level3", "task")
        assert exc_info.value.max_depth == 3

    def test_chain_without_fsm(self):
        store = InMemoryTemplateStore([_record("tpl-empty", "task.empty")])
        with pytest.raises(InvalidFsmDefinitionError, match="no FSM"):
            TemplateResolver(store).resolve("task.empty", "task")

    def test_merged_definition_validated(self):
        broken = definition_from_dict({
            "transitions": [{"id": "park", "from": "todo", "to": "parked", "on": "park"}],
        })
        store = InMemoryTemplateStore([
            _record("tpl-base", "task.base", fsm=BASE_FSM),
            _record("tpl-broken", "task.broken", parent_id="tpl-base", fsm=broken),
        ])
        with pytest.raises(InvalidFsmDefinitionError) as exc_info:
            TemplateResolver(store).resolve("task.broken", "task")
        assert exc_info.value.problems == ["transition 'park' targets unknown state 'parked'"]


class TestCache:

    def test_second_resolve_hits_cache(self, store):
        resolver = TemplateResolver(store)
        first = resolver.resolve("task.writer", "task")
        assert resolver.resolve("task.writer", "task") is first
        assert store.lookups == 1

    def test_failures_are_not_cached(self):
        store = InMemoryTemplateStore([_record("tpl-x", "task.x", parent_id="tpl-base")])
        resolver = TemplateResolver(store)
        with pytest.raises(TemplateNotFoundError):
            resolver.resolve("task.x", "task")
        store.add(_record("tpl-base", "task.base", fsm=BASE_FSM))
        assert resolver.resolve("task.x", "task").inheritance_chain == ("task.base", "task.x")

    def test_invalidating_an_ancestor_drops_descendants(self, store):
        resolver = TemplateResolver(store)
        resolver.resolve("task.default", "task")
        resolver.resolve("task.writer", "task")
        assert resolver.invalidate("task.default") == 2
        assert len(resolver.cache) == 0

    def test_invalidate_everything(self, store, captured_logs):
        resolver = TemplateResolver(store)
        resolver.resolve("task.base", "task")
        assert resolver.invalidate() == 1
        assert any(r["message"] == "template_cache_invalidated" for r in captured_logs())

    def test_resolution_logged(self, store, captured_logs):
        TemplateResolver(store).resolve("task.writer", "task")
        record = next(r for r in captured_logs() if r["message"] == "template_resolved")
        assert record["inheritance_chain"] == ["task.base", "task.default", "task.writer"]
        assert record["transition_count"] == 2
