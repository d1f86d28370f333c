import pytest

from onto_kernel.domain.fsm import FsmTransition
from onto_kernel.domain.transition import TransitionContext
from onto_kernel.exceptions import OptimisticLockError
from onto_kernel.services.entity_store import InMemoryEntityStore
from onto_kernel.services.state_committer import StateCommitter

START = FsmTransition(id="start", from_state="todo", to_state="in_progress", on="start")


@pytest.fixture
def store():
    store = InMemoryEntityStore()
    store.add_entity("task", "task-1", "task.default", "todo", project_id="proj-1")
    return store


@pytest.fixture
def committer(store, deterministic_clock):
    return StateCommitter(store, deterministic_clock)


def _context(snapshot):
    return TransitionContext(actor_id="actor-1", snapshot=snapshot, user_id="user-1")


def test_commit_swaps_state_and_appends_audit(store, committer, deterministic_clock):
    snapshot = store.get_snapshot("task", "task-1")
    outcome = committer.commit(snapshot, START, _context(snapshot), idempotency_key="req-1")

    assert outcome.to_state == "in_progress"
    assert not outcome.simulated
    after = store.get_snapshot("task", "task-1")
    assert after.state_key == "in_progress"
    assert after.version == 1

    (entry,) = store.audit_log
    assert entry == outcome.audit_entry
    assert entry.from_state == "todo"
    assert entry.event == "start"
    assert entry.user_id == "user-1"
    assert entry.idempotency_key == "req-1"
    assert entry.occurred_at == deterministic_clock.now()


def test_stale_snapshot_conflicts_without_writing(store, committer):
    snapshot = store.get_snapshot("task", "task-1")
    committer.commit(snapshot, START, _context(snapshot))

    with pytest.raises(OptimisticLockError) as exc_info:
        committer.commit(snapshot, START, _context(snapshot))
    assert exc_info.value.code == "CONFLICT"
    assert exc_info.value.expected_state == "todo"
    assert len(store.audit_log) == 1
    assert store.get_snapshot("task", "task-1").version == 1


def test_dry_run_touches_nothing(store, committer):
    snapshot = store.get_snapshot("task", "task-1")
    outcome = committer.commit(snapshot, START, _context(snapshot), dry_run=True)

    assert outcome.simulated
    assert outcome.audit_entry is None
    assert store.get_snapshot("task", "task-1").state_key == "todo"
    assert store.audit_log == ()


def test_self_transition_still_checks_state(store, committer):
    snapshot = store.get_snapshot("task", "task-1")
    touch = FsmTransition(id="touch", from_state="todo", to_state="todo", on="save")
    committer.commit(snapshot, touch, _context(snapshot))
    assert store.get_snapshot("task", "task-1").version == 1

    committer.commit(snapshot, START, _context(snapshot))
    with pytest.raises(OptimisticLockError):
        committer.commit(snapshot, touch, _context(snapshot))


def test_conflict_is_logged(store, committer, captured_logs):
    snapshot = store.get_snapshot("task", "task-1")
    committer.commit(snapshot, START, _context(snapshot))
    with pytest.raises(OptimisticLockError):
        committer.commit(snapshot, START, _context(snapshot))
    record = next(r for r in captured_logs() if r["message"] == "state_commit_conflict")
    assert record["expected_state"] == "todo"
    assert record["target_state"] == "in_progress"


def test_audit_timestamps_follow_the_clock(store, committer, deterministic_clock):
    snapshot = store.get_snapshot("task", "task-1")
    first = committer.commit(snapshot, START, _context(snapshot))
    deterministic_clock.advance(90)

    moved = store.get_snapshot("task", "task-1")
    block = FsmTransition(id="block", from_state="in_progress", to_state="blocked", on="block")
    second = committer.commit(moved, block, _context(moved))

    delta = second.audit_entry.occurred_at - first.audit_entry.occurred_at
    assert delta.total_seconds() == 90


def test_failed_audit_write_keeps_state(deterministic_clock):
    class AuditDownStore(InMemoryEntityStore):
        def append_audit_log(self, entry):
            raise RuntimeError("audit store down")

    store = AuditDownStore()
    store.add_entity("task", "task-1", "task.default", "todo")
    snapshot = store.get_snapshot("task", "task-1")

    with pytest.raises(RuntimeError, match="audit store down"):
        StateCommitter(store, deterministic_clock).commit(snapshot, START, _context(snapshot))
    after = store.get_snapshot("task", "task-1")
    assert after.state_key == "todo"
    assert after.version == 0
