"""
Tests for ActionExecutor: ordering, failure capture, timeouts, dry run,
and derived idempotency keys.
"""

import itertools
import threading

import pytest

from onto_kernel.domain.fsm import FsmAction
from onto_kernel.domain.transition import (
    ActionRecord,
    ActionStatus,
    EntitySnapshot,
    TransitionContext,
)
from onto_kernel.logging_config import LogContext
from onto_kernel.services.action_executor import (
    DETAIL_SKIPPED_AFTER_TIMEOUT,
    ActionExecutor,
    ActionHandler,
    ActionRegistry,
)
from onto_kernel.utils.idempotency import generate_action_idempotency_key

SNAPSHOT = EntitySnapshot(
    id="doc-1", entity_type="document", type_key="document.base", state_key="in_review",
)
CONTEXT = TransitionContext(actor_id="actor-1", snapshot=SNAPSHOT, user_id="user-1")


class RecordingHandler:
    """Succeeds and remembers what it was called with."""

    def __init__(self, name, output=None):
        self.name = name
        self.output = output or {}
        self.calls = []

    def invoke(self, snapshot, context, *, dry_run, idempotency_key):
        self.calls.append({
            "context": context,
            "dry_run": dry_run,
            "idempotency_key": idempotency_key,
            "log_context": LogContext.get_all(),
        })
        return ActionRecord.success(self.name, output=self.output)


class RaisingHandler:
    def __init__(self, name):
        self.name = name

    def invoke(self, snapshot, context, *, dry_run, idempotency_key):
        raise RuntimeError("smtp relay refused")


class BlockingHandler:
    def __init__(self, name, release):
        self.name = name
        self.release = release

    def invoke(self, snapshot, context, *, dry_run, idempotency_key):
        self.release.wait(5)
        return ActionRecord.success(self.name)


def _run(executor, names, **kwargs):
    kwargs.setdefault("transition_id", "submit_for_review")
    return executor.run(
        [FsmAction(name=n) for n in names],
        SNAPSHOT,
        CONTEXT,
        from_state="draft",
        to_state="in_review",
        **kwargs,
    )


@pytest.fixture
def registry():
    return ActionRegistry()


class TestRegistry:

    def test_key_must_match_handler_name(self, registry):
        with pytest.raises(ValueError, match="does not match"):
            registry.register("notify", RecordingHandler("email_user"))

    def test_register_and_lookup(self, registry):
        handler = RecordingHandler("notify")
        registry.register("notify", handler)
        assert registry.get("notify") is handler
        assert "notify" in registry
        assert registry.names() == frozenset({"notify"})
        assert isinstance(handler, ActionHandler)


class TestRun:

    def test_records_follow_declaration_order(self, registry):
        for name in ("notify", "email_user", "email_admin"):
            registry.register(name, RecordingHandler(name))
        records = _run(ActionExecutor(registry), ["email_admin", "notify", "email_user"])
        assert [r.name for r in records] == ["email_admin", "notify", "email_user"]
        assert all(r.status == ActionStatus.SUCCESS for r in records)

    def test_no_actions(self, registry):
        assert _run(ActionExecutor(registry), []) == ()

    def test_unknown_action_does_not_stop_pipeline(self, registry):
        registry.register("notify", RecordingHandler("notify"))
        records = _run(ActionExecutor(registry), ["send_carrier_pigeon", "notify"])
        assert records[0].status == ActionStatus.FAILED
        assert records[0].detail == "UNKNOWN_ACTION"
        assert records[1].status == ActionStatus.SUCCESS

    def test_handler_exception_captured(self, registry, captured_logs):
        registry.register("email_user", RaisingHandler("email_user"))
        registry.register("notify", RecordingHandler("notify"))
        records = _run(ActionExecutor(registry), ["email_user", "notify"])
        assert records[0].to_dict() == {
            "name": "email_user",
            "status": "failed",
            "detail": "RuntimeError: smtp relay refused",
        }
        assert records[1].status == ActionStatus.SUCCESS
        failed = [r for r in captured_logs() if r["message"] == "fsm_action_failed"]
        assert failed[0]["action_name"] == "email_user"

    def test_non_record_return_is_a_failure(self, registry):
        class Sloppy:
            name = "notify"

            def invoke(self, snapshot, context, *, dry_run, idempotency_key):
                return {"ok": True}

        registry.register("notify", Sloppy())
        (record,) = _run(ActionExecutor(registry), ["notify"])
        assert record.status == ActionStatus.FAILED
        assert "expected ActionRecord" in record.detail

    def test_later_actions_see_earlier_outputs(self, registry):
        registry.register("create_doc_from_template",
                          RecordingHandler("create_doc_from_template", {"document_id": "d-1"}))
        critique = RecordingHandler("run_llm_critique")
        registry.register("run_llm_critique", critique)
        _run(ActionExecutor(registry), ["create_doc_from_template", "run_llm_critique"])

        context = critique.calls[0]["context"]
        assert context.index == 1
        assert context.output_of("create_doc_from_template")["document_id"] == "d-1"
        assert context.from_state == "draft"
        assert context.to_state == "in_review"

    def test_dry_run_passed_through(self, registry):
        handler = RecordingHandler("notify")
        registry.register("notify", handler)
        _run(ActionExecutor(registry), ["notify"], dry_run=True)
        assert handler.calls[0]["dry_run"] is True

    def test_log_context_reaches_handler_thread(self, registry):
        handler = RecordingHandler("notify")
        registry.register("notify", handler)
        with LogContext.bind(correlation_id="corr-9"):
            _run(ActionExecutor(registry), ["notify"])
        assert handler.calls[0]["log_context"]["correlation_id"] == "corr-9"


class TestIdempotencyKeys:

    def test_derived_key_per_action(self, registry):
        handler = RecordingHandler("notify")
        registry.register("notify", handler)
        _run(ActionExecutor(registry), ["notify", "notify"], idempotency_key="req-1")
        assert [c["idempotency_key"] for c in handler.calls] == [
            "req-1:submit_for_review:0:notify",
            "req-1:submit_for_review:1:notify",
        ]

    def test_derived_key_keeps_transition_id_whole(self):
        key = generate_action_idempotency_key("req-1", "draft:submit:review", 2, "notify")
        assert key == "req-1:draft:submit:review:2:notify"
        assert key.partition(":")[0] == "req-1"

    def test_no_request_key_no_derived_key(self, registry):
        handler = RecordingHandler("notify")
        registry.register("notify", handler)
        _run(ActionExecutor(registry), ["notify"])
        assert handler.calls[0]["idempotency_key"] is None


class TestBudget:

    def test_budget_must_be_positive(self, registry):
        with pytest.raises(ValueError):
            ActionExecutor(registry, budget_seconds=0)

    def test_overrunning_handler_times_out_and_rest_skipped(self, registry):
        release = threading.Event()
        registry.register("run_llm_critique", BlockingHandler("run_llm_critique", release))
        notify = RecordingHandler("notify")
        registry.register("notify", notify)
        try:
            records = _run(
                ActionExecutor(registry, budget_seconds=0.2),
                ["run_llm_critique", "notify", "send_carrier_pigeon"],
            )
        finally:
            release.set()

        assert [(r.status, r.detail) for r in records] == [
            (ActionStatus.FAILED, "TIMEOUT"),
            (ActionStatus.SKIPPED, DETAIL_SKIPPED_AFTER_TIMEOUT),
            (ActionStatus.SKIPPED, DETAIL_SKIPPED_AFTER_TIMEOUT),
        ]
        assert notify.calls == []

    def test_exhausted_budget_before_an_action(self, registry):
        # Each monotonic() read advances 10s against a 15s budget.
        ticks = itertools.count(0, 10)
        for name in ("notify", "email_user", "email_admin"):
            registry.register(name, RecordingHandler(name))
        executor = ActionExecutor(registry, budget_seconds=15, monotonic=lambda: next(ticks))

        records = _run(executor, ["notify", "email_user", "email_admin"])
        assert [r.status for r in records] == [
            ActionStatus.SUCCESS, ActionStatus.FAILED, ActionStatus.SKIPPED,
        ]
        assert records[1].detail == "TIMEOUT"
