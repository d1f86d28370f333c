"""
Module: onto_kernel.models.transition_log
Responsibility: Append-only activity log of committed state transitions.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Rows are append-only; UPDATE and DELETE through the ORM raise
      ImmutabilityViolationError (see db/immutability.py).
    - A row exists only for transitions whose compare-and-swap succeeded;
      dry runs and conflicts never write here.
"""

from datetime import datetime

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from onto_kernel.db.base import Base


class TransitionLogEntry(Base):
    """
    One committed transition.

    Non-goals:
        Does not record action outcomes; those live in the returned
        ``TransitionResult`` and the structured ``fsm_transition`` trace.
    """

    __tablename__ = "onto_transition_log"

    __table_args__ = (
        Index("idx_transition_log_entity", "entity_type", "entity_id"),
        Index("idx_transition_log_occurred", "occurred_at"),
    )

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)

    type_key: Mapped[str] = mapped_column(String(200), nullable=False)

    from_state: Mapped[str] = mapped_column(String(100), nullable=False)

    to_state: Mapped[str] = mapped_column(String(100), nullable=False)

    event: Mapped[str] = mapped_column(String(100), nullable=False)

    transition_id: Mapped[str] = mapped_column(String(200), nullable=False)

    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)

    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<TransitionLogEntry {self.entity_type}:{self.entity_id} "
            f"{self.from_state}->{self.to_state} on {self.event}>"
        )
