"""
Job queue collaborator for deferred action work.

Responsibility:
    Accepts jobs (notifications, emails, LLM critiques, recurrence
    scheduling) enqueued by transition actions.  Delivery belongs to an
    external worker; the engine only records that the work is due.

Architecture position:
    Services -- collaborator behind the ``JobQueue`` port.  Action handlers
    in ``onto_services.actions`` are the only callers.

Invariants enforced:
    - A ``dedup_key`` is accepted at most once.  ``enqueue`` reports a
      duplicate by returning False instead of raising.

Failure modes:
    - Database errors other than the dedup-key unique violation propagate;
      the action executor records them as a failed action.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from onto_kernel.db.engine import session_scope
from onto_kernel.logging_config import get_logger
from onto_kernel.models.job import QueuedJob
from onto_kernel.utils.freezing import freeze_mapping, thaw

logger = get_logger("services.job_queue")


@runtime_checkable
class JobQueue(Protocol):
    """Port for deferred work."""

    def enqueue(
        self,
        job_type: str,
        payload: Mapping[str, Any],
        dedup_key: str | None = None,
    ) -> bool:
        """Queue a job; False when ``dedup_key`` was already used."""
        ...


@dataclass(frozen=True)
class EnqueuedJob:
    """A job held by ``InMemoryJobQueue``."""

    id: str
    job_type: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    dedup_key: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "payload", freeze_mapping(self.payload))


class InMemoryJobQueue:
    """List-backed queue for tests, the CLI simulator and embedding."""

    def __init__(self) -> None:
        self._jobs: list[EnqueuedJob] = []
        self._dedup_keys: set[str] = set()
        self._lock = threading.Lock()

    def enqueue(
        self,
        job_type: str,
        payload: Mapping[str, Any],
        dedup_key: str | None = None,
    ) -> bool:
        with self._lock:
            if dedup_key is not None:
                if dedup_key in self._dedup_keys:
                    return False
                self._dedup_keys.add(dedup_key)
            self._jobs.append(EnqueuedJob(
                id=str(uuid4()),
                job_type=job_type,
                payload=payload,
                dedup_key=dedup_key,
            ))
        return True

    @property
    def jobs(self) -> tuple[EnqueuedJob, ...]:
        with self._lock:
            return tuple(self._jobs)

    def jobs_of_type(self, job_type: str) -> list[EnqueuedJob]:
        return [job for job in self.jobs if job.job_type == job_type]

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)


class SqlJobQueue:
    """``onto_queued_jobs``-backed queue.

    The unique ``dedup_key`` column settles races between two workers
    replaying the same action: the loser's insert fails and is reported as
    a duplicate.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def enqueue(
        self,
        job_type: str,
        payload: Mapping[str, Any],
        dedup_key: str | None = None,
    ) -> bool:
        try:
            with session_scope(self._session_factory) as session:
                if dedup_key is not None:
                    existing = session.scalars(
                        select(QueuedJob.id).where(QueuedJob.dedup_key == dedup_key)
                    ).first()
                    if existing is not None:
                        return False
                session.add(QueuedJob(
                    job_type=job_type,
                    payload=thaw(payload),
                    dedup_key=dedup_key,
                ))
        except IntegrityError:
            if dedup_key is None:
                raise
            logger.info(
                "job_dedup_race_lost",
                extra={"job_type": job_type, "dedup_key": dedup_key},
            )
            return False
        return True

    def pending_jobs(self, job_type: str | None = None) -> list[QueuedJob]:
        with self._session_factory() as session:
            stmt = select(QueuedJob).where(QueuedJob.status == "pending")
            if job_type is not None:
                stmt = stmt.where(QueuedJob.job_type == job_type)
            return list(session.scalars(stmt.order_by(QueuedJob.enqueued_at)))
