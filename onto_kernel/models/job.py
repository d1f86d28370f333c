"""
Module: onto_kernel.models.job
Responsibility: Durable queue of deferred work (notifications, emails, LLM
    critiques, recurrence scheduling) enqueued by transition actions.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - ``dedup_key`` is unique when present; a second enqueue with the same
      key is a no-op reported as a duplicate.
    - Delivery, retries and backoff belong to the consumer, not this table.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from onto_kernel.db.base import Base


class QueuedJob(Base):
    """One queued job."""

    __tablename__ = "onto_queued_jobs"

    __table_args__ = (
        Index("idx_queued_job_type_status", "job_type", "status"),
    )

    job_type: Mapped[str] = mapped_column(String(100), nullable=False)

    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    dedup_key: Mapped[str | None] = mapped_column(String(600), nullable=True, unique=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    enqueued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<QueuedJob {self.job_type} [{self.status}]>"
