"""
End-to-end tests for TransitionEngine wired from the default pack.

Covers the commit-first contract: pre-commit rejections write nothing,
the state write precedes every action, and action failures never undo it.
"""

import pytest

from onto_config.schema import EngineSettings, TemplateDef, TemplatePack
from onto_kernel.domain.transition import ActionStatus, TransitionRequest
from onto_kernel.logging_config import LogContext
from onto_kernel.services.action_executor import DETAIL_DRY_RUN, DETAIL_DUPLICATE_SUPPRESSED
from onto_kernel.services.entity_store import InMemoryEntityStore
from onto_services.actions.queued import JOB_LLM_CRITIQUE, JOB_NOTIFICATION, JOB_SCHEDULE_RRULE
from onto_services.transition_engine import OUTCOME_REJECTED, OUTCOME_SIMULATED, OUTCOME_SUCCESS
from onto_services.wiring import build_engine


def _request(entity_type, entity_id, on, **extra):
    return {"entity_type": entity_type, "entity_id": entity_id, "on": on, **extra}


@pytest.fixture
def draft_document(entity_store):
    def _add(word_count, entity_id="doc-1"):
        return entity_store.add_entity(
            "document", entity_id, "document.base", "draft",
            props={"word_count": word_count}, project_id="proj-1",
        )
    return _add


class TestSubmitForReview:

    def test_empty_draft_rejected_by_guard(self, engine, entity_store, job_queue, draft_document, actor_id):
        draft_document(0)
        result = engine.run_transition(_request("document", "doc-1", "submit_for_review"), actor_id)

        assert not result.ok
        assert result.error == "GUARD_REJECTED"
        assert [f.expression for f in result.guard_failures] == ["props.word_count > 0"]
        assert entity_store.get_snapshot("document", "doc-1").state_key == "draft"
        assert entity_store.audit_log == ()
        assert len(job_queue) == 0

    def test_draft_with_words_moves_to_review(self, engine, entity_store, job_queue, draft_document, actor_id):
        draft_document(120)
        result = engine.run_transition(_request("document", "doc-1", "submit_for_review"), actor_id)

        assert result.ok
        assert result.state_after == "in_review"
        assert [(r.name, r.status) for r in result.actions_run] == [
            ("run_llm_critique", ActionStatus.SUCCESS),
        ]
        assert entity_store.get_snapshot("document", "doc-1").state_key == "in_review"
        (job,) = job_queue.jobs_of_type(JOB_LLM_CRITIQUE)
        assert job.payload["from_state"] == "draft"
        (entry,) = entity_store.audit_log
        assert entry.actor_id == actor_id
        assert entry.transition_id == "submit_for_review"

    def test_dry_run_simulates_everything(self, engine, entity_store, job_queue, draft_document, actor_id):
        draft_document(120)
        result = engine.run_transition(
            _request("document", "doc-1", "submit_for_review", dry_run=True), actor_id,
        )

        assert result.ok
        assert result.dry_run
        assert result.state_after == "in_review"
        (record,) = result.actions_run
        assert record.status == ActionStatus.SKIPPED
        assert record.detail == DETAIL_DRY_RUN
        assert entity_store.get_snapshot("document", "doc-1").state_key == "draft"
        assert entity_store.audit_log == ()
        assert len(job_queue) == 0
        assert result.to_dict()["dry_run"] is True

    def test_accepts_validated_request_object(self, engine, draft_document, actor_id):
        draft_document(5)
        request = TransitionRequest(entity_type="document", entity_id="doc-1", on="submit_for_review")
        assert engine.run_transition(request, actor_id).state_after == "in_review"


class TestRejections:

    def test_no_edge_for_event(self, engine, entity_store, actor_id):
        entity_store.add_entity("task", "task-1", "task.default", "done")
        result = engine.run_transition(_request("task", "task-1", "start"), actor_id)
        assert result.error == "TRANSITION_NOT_FOUND"
        assert result.message == 'No valid transition from "done" on event "start"'

    def test_malformed_request(self, engine, actor_id):
        result = engine.run_transition({"entity_type": "task", "entity_id": "task-1"}, actor_id)
        assert result.error == "VALIDATION_ERROR"
        assert "on: is required" in result.message

    def test_entity_type_outside_pack(self, engine, actor_id):
        result = engine.run_transition(_request("invoice", "inv-1", "approve"), actor_id)
        assert result.error == "VALIDATION_ERROR"

    def test_missing_entity(self, engine, actor_id):
        result = engine.run_transition(_request("task", "task-404", "start"), actor_id)
        assert result.error == "ENTITY_NOT_FOUND"

    def test_unknown_template(self, engine, entity_store, actor_id):
        entity_store.add_entity("goal", "goal-1", "goal.base", "open")
        result = engine.run_transition(_request("goal", "goal-1", "achieve"), actor_id)
        assert result.error == "TEMPLATE_NOT_FOUND"

    def test_publish_needs_a_user(self, engine, entity_store, actor_id, user_id):
        entity_store.add_entity("document", "doc-1", "document.base", "in_review")
        result = engine.run_transition(_request("document", "doc-1", "publish"), actor_id)
        assert result.error == "GUARD_REJECTED"

        result = engine.run_transition(_request("document", "doc-1", "publish"), actor_id, user_id)
        assert result.state_after == "published"
        assert result.actions_run[0].name == "notify"

    def test_non_kernel_errors_propagate(self, default_pack, actor_id):
        class BrokenStore(InMemoryEntityStore):
            def get_snapshot(self, entity_type, entity_id):
                raise RuntimeError("database unavailable")

        engine = build_engine(default_pack, entity_store=BrokenStore()).engine
        with pytest.raises(RuntimeError, match="database unavailable"):
            engine.run_transition(_request("task", "task-1", "start"), actor_id)

    def test_audit_failure_leaves_state_unmoved(self, default_pack, actor_id):
        class AuditDownStore(InMemoryEntityStore):
            def append_audit_log(self, entry):
                raise RuntimeError("audit store down")

        store = AuditDownStore()
        store.add_entity("task", "task-1", "task.default", "todo")
        components = build_engine(default_pack, entity_store=store)

        with pytest.raises(RuntimeError, match="audit store down"):
            components.engine.run_transition(_request("task", "task-1", "start"), actor_id)
        snapshot = store.get_snapshot("task", "task-1")
        assert snapshot.state_key == "todo"
        assert snapshot.version == 0
        assert len(components.job_queue) == 0



class TestConcurrentMove:

    def test_lost_race_returns_conflict_and_runs_no_action(self, default_pack, actor_id):
        class RacingStore(InMemoryEntityStore):
            """Another writer moves the entity right after our snapshot is taken."""

            interfere = False

            def get_snapshot(self, entity_type, entity_id):
                snapshot = super().get_snapshot(entity_type, entity_id)
                if self.interfere and snapshot is not None:
                    self.interfere = False
                    self.compare_and_swap_state(entity_type, entity_id, "todo", "in_progress")
                return snapshot

        store = RacingStore()
        store.add_entity("task", "task-1", "task.default", "todo")
        store.interfere = True
        components = build_engine(default_pack, entity_store=store)

        result = components.engine.run_transition(_request("task", "task-1", "start"), actor_id)

        assert result.error == "CONFLICT"
        assert result.actions_run == ()
        assert len(components.job_queue) == 0
        assert store.audit_log == ()
        assert store.get_snapshot("task", "task-1").state_key == "in_progress"


class TestActionPipeline:

    @pytest.fixture
    def pigeon_components(self, deterministic_clock):
        template = TemplateDef(
            id="tpl-task-pigeon",
            type_key="task.pigeon",
            scope="task",
            fsm={
                "states": [{"key": "todo", "initial": True}, "in_progress"],
                "transitions": [
                    {"id": "start", "from": "todo", "to": "in_progress", "on": "start",
                     "actions": ["send_carrier_pigeon", "notify"]},
                    {"id": "ping", "from": "todo", "to": "todo", "on": "ping",
                     "actions": ["notify"]},
                ],
            },
        )
        pack = TemplatePack(
            config_id="pigeon",
            version=1,
            checksum="0" * 64,
            settings=EngineSettings(allowed_entity_types=("task",)),
            templates=(template,),
        )
        components = build_engine(pack, clock=deterministic_clock)
        components.entity_store.add_entity("task", "task-1", "task.pigeon", "todo")
        return components

    def test_unknown_action_is_recorded_and_state_kept(self, pigeon_components, actor_id):
        result = pigeon_components.engine.run_transition(_request("task", "task-1", "start"), actor_id)

        assert result.ok
        assert result.state_after == "in_progress"
        assert [r.to_dict() for r in result.actions_run] == [
            {"name": "send_carrier_pigeon", "status": "failed", "detail": "UNKNOWN_ACTION"},
            {"name": "notify", "status": "success", "output": {"job_type": JOB_NOTIFICATION}},
        ]
        assert [r.name for r in result.failed_actions] == ["send_carrier_pigeon"]

    def test_replayed_key_suppresses_side_effects(self, pigeon_components, actor_id):
        engine = pigeon_components.engine
        first = engine.run_transition(_request("task", "task-1", "ping", idempotency_key="req-7"), actor_id)
        second = engine.run_transition(_request("task", "task-1", "ping", idempotency_key="req-7"), actor_id)

        assert first.actions_run[0].detail is None
        assert second.ok
        assert second.actions_run[0].detail == DETAIL_DUPLICATE_SUPPRESSED
        (job,) = pigeon_components.job_queue.jobs
        assert job.dedup_key == "req-7:ping:0:notify"
        assert len(pigeon_components.entity_store.audit_log) == 2

    def test_without_key_every_call_has_effects(self, pigeon_components, actor_id):
        engine = pigeon_components.engine
        engine.run_transition(_request("task", "task-1", "ping"), actor_id)
        engine.run_transition(_request("task", "task-1", "ping"), actor_id)
        assert len(pigeon_components.job_queue) == 2

    def test_failed_action_does_not_undo_commit(self, engine, entity_store, job_queue, actor_id):
        # email_user has no recipient without a user_id on the request.
        entity_store.add_entity("output", "out-1", "output.project_brief", "ready")
        result = engine.run_transition(_request("output", "out-1", "deliver"), actor_id)

        assert result.ok
        assert result.state_after == "delivered"
        assert [r.name for r in result.failed_actions] == ["email_user"]
        assert "user_id" in result.failed_actions[0].detail
        assert result.actions_run[1].status == ActionStatus.SUCCESS
        assert entity_store.get_snapshot("output", "out-1").state_key == "delivered"
        assert len(job_queue) == 1

    def test_project_level_output_generates_brief(self, engine, entity_store, document_store, actor_id):
        entity_store.add_entity("output", "out-1", "output.project_brief", "planned")
        result = engine.run_transition(_request("output", "out-1", "generate"), actor_id)

        assert result.failed_actions == ()
        document = document_store.get(result.actions_run[0].output["document_id"])
        assert document.project_id == "out-1"

    def test_writer_task_completion(self, engine, entity_store, job_queue, actor_id, user_id):
        entity_store.add_entity("task", "task-1", "task.writer", "in_progress",
                                props={"facets": {"audience": "public"}})
        rejected = engine.run_transition(_request("task", "task-1", "complete"), actor_id, user_id)
        assert rejected.error == "GUARD_REJECTED"

        entity_store.update_props("task", "task-1", {"draft_url": "https://docs.example.com/d/1"})
        result = engine.run_transition(_request("task", "task-1", "complete"), actor_id, user_id)
        assert result.state_after == "done"
        assert [r.name for r in result.actions_run] == ["update_facets", "email_user"]
        assert entity_store.get_snapshot("task", "task-1").facets == {
            "audience": "public", "stage": "complete",
        }

    def test_plan_activation_spawns_tasks(self, engine, entity_store, job_queue, actor_id):
        entity_store.add_entity("plan", "plan-1", "plan.base", "draft", name="Launch plan")
        result = engine.run_transition(
            _request("plan", "plan-1", "activate", idempotency_key="req-plan"), actor_id,
        )
        assert result.state_after == "active"
        tasks = entity_store.entities_of_type("task")
        assert sorted(t.display_name for t in tasks) == ["Define scope", "Draft milestones"]
        assert all(t.project_id == "plan-1" for t in tasks)
        assert len(job_queue.jobs_of_type(JOB_SCHEDULE_RRULE)) == 1

    def test_campaign_report_generation(self, engine, entity_store, document_store, job_queue, actor_id):
        entity_store.add_entity(
            "output", "out-2", "output.campaign_report", "planned",
            props={"facets": {"channel": "email"}}, project_id="proj-1", name="Spring launch",
        )
        result = engine.run_transition(_request("output", "out-2", "generate"), actor_id)

        assert [r.status for r in result.actions_run] == [ActionStatus.SUCCESS, ActionStatus.SUCCESS]
        document_id = result.actions_run[0].output["document_id"]
        assert document_store.get(document_id).body_markdown.startswith("# Campaign Performance Report")
        assert len(job_queue.jobs_of_type(JOB_LLM_CRITIQUE)) == 1


class TestTrace:

    def test_success_trace(self, engine, draft_document, actor_id, captured_logs):
        draft_document(50)
        engine.run_transition(
            _request("document", "doc-1", "submit_for_review"), actor_id, correlation_id="corr-1",
        )
        record = next(r for r in captured_logs() if r["message"] == "fsm_transition")
        assert record["trace_type"] == "FSM_TRANSITION"
        assert record["outcome"] == OUTCOME_SUCCESS
        assert record["correlation_id"] == "corr-1"
        assert record["entity_id"] == "doc-1"
        assert record["template_id"] == "tpl-document-base"
        assert record["from_state"] == "draft"
        assert record["to_state"] == "in_review"
        assert record["transition_id"] == "submit_for_review"
        assert record["actions_run"][0]["name"] == "run_llm_critique"

    def test_rejected_trace_and_guard_warning(self, engine, draft_document, actor_id, captured_logs):
        draft_document(0)
        engine.run_transition(_request("document", "doc-1", "submit_for_review"), actor_id)
        logs = captured_logs()
        assert any(r["message"] == "fsm_guard_rejected" for r in logs)
        record = next(r for r in logs if r["message"] == "fsm_transition")
        assert record["outcome"] == OUTCOME_REJECTED
        assert record["error"] == "GUARD_REJECTED"
        assert record["guard_failures"][0]["transition_id"] == "submit_for_review"

    def test_outcome_sink(self, engine, draft_document, actor_id):
        draft_document(50)
        seen = []
        engine.run_transition(
            _request("document", "doc-1", "submit_for_review", dry_run=True),
            actor_id,
            outcome_sink=seen.append,
        )
        (record,) = seen
        assert record["message"] == "fsm_transition"
        assert record["outcome"] == OUTCOME_SIMULATED
        assert record["dry_run"] is True

    def test_engine_level_sink_sees_validation_failures(self, default_pack, actor_id):
        seen = []
        engine = build_engine(default_pack, outcome_sink=seen.append).engine
        engine.run_transition({"entity_type": "task"}, actor_id)
        assert seen[0]["error"] == "VALIDATION_ERROR"
        assert seen[0]["actor_id"] == actor_id

    def test_log_context_cleared_after_call(self, engine, draft_document, actor_id):
        draft_document(50)
        engine.run_transition(_request("document", "doc-1", "submit_for_review"), actor_id)
        assert LogContext.get_all() == {}
