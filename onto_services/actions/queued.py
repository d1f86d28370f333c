"""
Actions that defer their work to the job queue.

Notification delivery, email sending, LLM critiques and recurrence
scheduling run outside the transition call; these handlers only enqueue a
job describing the work.  The derived idempotency key becomes the job's
dedup key, so a replayed request does not enqueue the same job twice.
"""

from __future__ import annotations

from typing import Any

from onto_kernel.domain.transition import ActionContext, ActionRecord, EntitySnapshot
from onto_kernel.exceptions import ActionFailure
from onto_kernel.utils.freezing import thaw
from onto_services.actions.base import StandardActionHandler, entity_payload, require_str_param
from onto_services.job_queue import JobQueue

JOB_NOTIFICATION = "notification"
JOB_EMAIL_USER = "email_user"
JOB_EMAIL_ADMIN = "email_admin"
JOB_LLM_CRITIQUE = "llm_critique"
JOB_SCHEDULE_RRULE = "schedule_rrule"


class QueuedJobAction(StandardActionHandler):
    """Enqueue one job of ``job_type`` carrying the entity and the params."""

    def __init__(self, name: str, job_type: str, job_queue: JobQueue) -> None:
        self.name = name
        self.job_type = job_type
        self._job_queue = job_queue

    def build_payload(self, snapshot: EntitySnapshot, context: ActionContext) -> dict[str, Any]:
        payload = entity_payload(snapshot, context)
        payload["params"] = thaw(context.params)
        return payload

    def describe(self, snapshot: EntitySnapshot, context: ActionContext) -> str:
        return f"enqueue {self.job_type} job for {snapshot.entity_type} {snapshot.id}"

    def execute(
        self,
        snapshot: EntitySnapshot,
        context: ActionContext,
        idempotency_key: str | None,
    ) -> ActionRecord:
        output = {"job_type": self.job_type}
        enqueued = self._job_queue.enqueue(
            self.job_type,
            self.build_payload(snapshot, context),
            dedup_key=idempotency_key,
        )
        if not enqueued:
            return self.duplicate(output)
        return ActionRecord.success(self.name, output=output)


class EmailUserAction(QueuedJobAction):
    """Email the acting user, or the ``to`` param when given."""

    def __init__(self, job_queue: JobQueue) -> None:
        super().__init__("email_user", JOB_EMAIL_USER, job_queue)

    def check_params(self, snapshot: EntitySnapshot, context: ActionContext) -> None:
        if not context.params.get("to") and not context.user_id:
            raise ActionFailure(self.name, "needs a user_id on the request or a 'to' param")

    def build_payload(self, snapshot: EntitySnapshot, context: ActionContext) -> dict[str, Any]:
        payload = super().build_payload(snapshot, context)
        payload["recipient"] = context.params.get("to") or context.user_id
        return payload


class ScheduleRruleAction(QueuedJobAction):
    """Hand an RFC 5545 recurrence rule to the scheduler."""

    def __init__(self, job_queue: JobQueue) -> None:
        super().__init__("schedule_rrule", JOB_SCHEDULE_RRULE, job_queue)

    def check_params(self, snapshot: EntitySnapshot, context: ActionContext) -> None:
        rrule = require_str_param(context, self.name, "rrule")
        if "FREQ=" not in rrule.upper():
            raise ActionFailure(self.name, f"'rrule' has no FREQ part: {rrule!r}")

    def describe(self, snapshot: EntitySnapshot, context: ActionContext) -> str:
        return f"schedule {context.params['rrule']} for {snapshot.entity_type} {snapshot.id}"


def queued_actions(job_queue: JobQueue) -> list[QueuedJobAction]:
    return [
        QueuedJobAction("notify", JOB_NOTIFICATION, job_queue),
        EmailUserAction(job_queue),
        QueuedJobAction("email_admin", JOB_EMAIL_ADMIN, job_queue),
        QueuedJobAction("run_llm_critique", JOB_LLM_CRITIQUE, job_queue),
        ScheduleRruleAction(job_queue),
    ]
