"""
EntityStore -- entity snapshots, the state compare-and-swap, and the
transition activity log.

Responsibility
--------------
The only component that writes ``state_key``.  The write is a
compare-and-swap: it succeeds iff the stored state still equals the state
the engine matched against, so two racing requests from the same state
produce exactly one winner.

Architecture position
---------------------
**Kernel services layer** -- port plus two adapters:

* ``SqlEntityStore``: one conditional ``UPDATE ... WHERE state_key = :expected``;
  success iff ``rowcount == 1``.  ``commit_transition`` issues it and the
  activity-log INSERT in the same transaction.
* ``InMemoryEntityStore``: the same check under a ``threading.RLock``.

Failure modes
-------------
* CAS lost  -> ``compare_and_swap_state`` / ``commit_transition`` return
  ``False``; callers map it to ``OptimisticLockError`` (CONFLICT).
* Activity-log write fails inside ``commit_transition``  -> the state move
  is rolled back with it and the error propagates.
* Unknown entity on ``update_props`` / ``merge_facets``  -> ``EntityNotFoundError``.
* Database errors propagate unchanged.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable
from uuid import uuid4

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, sessionmaker

from onto_kernel.db.engine import session_scope
from onto_kernel.domain.transition import EntitySnapshot, TransitionAuditEntry
from onto_kernel.exceptions import EntityNotFoundError
from onto_kernel.logging_config import get_logger
from onto_kernel.models.entity import OntoEntity
from onto_kernel.models.transition_log import TransitionLogEntry
from onto_kernel.utils.freezing import thaw

logger = get_logger("services.entity_store")


@runtime_checkable
class EntityStore(Protocol):
    """Port for entity reads, the state CAS, and entity-mutating actions."""

    def get_snapshot(self, entity_type: str, entity_id: str) -> EntitySnapshot | None:
        ...

    def compare_and_swap_state(
        self,
        entity_type: str,
        entity_id: str,
        expected_from: str,
        new_to: str,
    ) -> bool:
        """Set ``state_key`` to ``new_to`` iff it currently equals ``expected_from``."""
        ...

    def append_audit_log(self, entry: TransitionAuditEntry) -> None:
        ...

    def commit_transition(self, entry: TransitionAuditEntry) -> bool:
        """Swap ``entry.from_state`` to ``entry.to_state`` and log ``entry``, atomically.

        Returns False (and writes nothing) when the stored state no longer
        equals ``entry.from_state``.
        """
        ...

    def update_props(
        self,
        entity_type: str,
        entity_id: str,
        patch: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Shallow-merge ``patch`` into the entity's props; return the new props."""
        ...

    def merge_facets(
        self,
        entity_type: str,
        entity_id: str,
        facets: Mapping[str, str],
    ) -> dict[str, str]:
        """Merge ``facets`` into ``props.facets`` in one write; return the result."""
        ...

    def create_entities(
        self,
        entity_type: str,
        rows: Sequence[Mapping[str, Any]],
    ) -> list[str]:
        """Insert entities, skipping rows whose ``id`` already exists.

        Returns the ids actually created, in input order.
        """
        ...


def _new_entity_fields(row: Mapping[str, Any]) -> dict[str, Any]:
    for required in ("type_key", "state_key"):
        if not row.get(required):
            raise ValueError(f"new entity needs '{required}'")
    return {
        "id": str(row.get("id") or uuid4()),
        "type_key": row["type_key"],
        "state_key": row["state_key"],
        "project_id": row.get("project_id"),
        "name": row.get("name"),
        "props": thaw(row.get("props") or {}),
    }


def _merged_facets(props: Mapping[str, Any], facets: Mapping[str, str]) -> dict[str, str]:
    # Non-string values already stored are dropped on merge.
    stored = props.get("facets")
    merged = {
        k: v for k, v in (stored.items() if isinstance(stored, Mapping) else ())
        if isinstance(v, str)
    }
    merged.update(facets)
    return merged


class InMemoryEntityStore:
    """Dict-backed store for tests, the CLI simulator and embedding."""

    def __init__(self) -> None:
        self._entities: dict[tuple[str, str], dict[str, Any]] = {}
        self._audit_log: list[TransitionAuditEntry] = []
        self._lock = threading.RLock()

    def add_entity(
        self,
        entity_type: str,
        entity_id: str,
        type_key: str,
        state_key: str,
        props: Mapping[str, Any] | None = None,
        project_id: str | None = None,
        name: str | None = None,
    ) -> EntitySnapshot:
        with self._lock:
            self._entities[(entity_type, entity_id)] = {
                "id": entity_id,
                "type_key": type_key,
                "state_key": state_key,
                "project_id": project_id,
                "name": name,
                "props": thaw(props or {}),
                "version": 0,
            }
        return self.get_snapshot(entity_type, entity_id)

    def get_snapshot(self, entity_type: str, entity_id: str) -> EntitySnapshot | None:
        with self._lock:
            row = self._entities.get((entity_type, entity_id))
            if row is None:
                return None
            return EntitySnapshot(
                id=row["id"],
                entity_type=entity_type,
                type_key=row["type_key"],
                state_key=row["state_key"],
                props=row["props"],
                project_id=row["project_id"],
                fields={"name": row["name"]} if row["name"] else {},
                version=row["version"],
            )

    def compare_and_swap_state(
        self,
        entity_type: str,
        entity_id: str,
        expected_from: str,
        new_to: str,
    ) -> bool:
        with self._lock:
            row = self._entities.get((entity_type, entity_id))
            if row is None or row["state_key"] != expected_from:
                return False
            row["state_key"] = new_to
            row["version"] += 1
            return True

    def append_audit_log(self, entry: TransitionAuditEntry) -> None:
        with self._lock:
            self._audit_log.append(entry)

    def commit_transition(self, entry: TransitionAuditEntry) -> bool:
        with self._lock:
            row = self._entities.get((entry.entity_type, entry.entity_id))
            if row is None or row["state_key"] != entry.from_state:
                return False
            # Log first: if the append raises, the state has not moved.
            self.append_audit_log(entry)
            row["state_key"] = entry.to_state
            row["version"] += 1
            return True

    def update_props(
        self,
        entity_type: str,
        entity_id: str,
        patch: Mapping[str, Any],
    ) -> dict[str, Any]:
        with self._lock:
            row = self._entities.get((entity_type, entity_id))
            if row is None:
                raise EntityNotFoundError(entity_type, entity_id)
            row["props"] = {**row["props"], **thaw(patch)}
            return dict(row["props"])

    def merge_facets(
        self,
        entity_type: str,
        entity_id: str,
        facets: Mapping[str, str],
    ) -> dict[str, str]:
        with self._lock:
            row = self._entities.get((entity_type, entity_id))
            if row is None:
                raise EntityNotFoundError(entity_type, entity_id)
            merged = _merged_facets(row["props"], facets)
            row["props"] = {**row["props"], "facets": merged}
            return dict(merged)

    def create_entities(
        self,
        entity_type: str,
        rows: Sequence[Mapping[str, Any]],
    ) -> list[str]:
        created: list[str] = []
        prepared = [_new_entity_fields(row) for row in rows]
        with self._lock:
            for fields in prepared:
                key = (entity_type, fields["id"])
                if key in self._entities:
                    continue
                self._entities[key] = {**fields, "version": 0}
                created.append(fields["id"])
        return created

    @property
    def audit_log(self) -> tuple[TransitionAuditEntry, ...]:
        with self._lock:
            return tuple(self._audit_log)

    def entities_of_type(self, entity_type: str) -> list[EntitySnapshot]:
        with self._lock:
            ids = [eid for (etype, eid) in self._entities if etype == entity_type]
        return [self.get_snapshot(entity_type, eid) for eid in ids]


def snapshot_from_row(row: OntoEntity) -> EntitySnapshot:
    fields: dict[str, Any] = {}
    if row.name:
        fields["name"] = row.name
    return EntitySnapshot(
        id=row.id,
        entity_type=row.entity_type,
        type_key=row.type_key,
        state_key=row.state_key,
        props=row.props or {},
        project_id=row.project_id,
        fields=fields,
        version=row.version,
    )


def _log_row(entry: TransitionAuditEntry) -> TransitionLogEntry:
    return TransitionLogEntry(
        entity_type=entry.entity_type,
        entity_id=entry.entity_id,
        type_key=entry.type_key,
        from_state=entry.from_state,
        to_state=entry.to_state,
        event=entry.event,
        transition_id=entry.transition_id,
        actor_id=entry.actor_id,
        user_id=entry.user_id,
        idempotency_key=entry.idempotency_key,
        occurred_at=entry.occurred_at,
    )


class SqlEntityStore:
    """EntityStore over ``onto_entities`` / ``onto_transition_log``.

    Every operation runs in its own short transaction from the factory, so
    the state CAS commits (or not) independently of anything the action
    pipeline does afterwards.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def get_snapshot(self, entity_type: str, entity_id: str) -> EntitySnapshot | None:
        with self._session_factory() as session:
            row = session.scalars(
                select(OntoEntity).where(
                    OntoEntity.id == entity_id,
                    OntoEntity.entity_type == entity_type,
                )
            ).first()
            return snapshot_from_row(row) if row is not None else None

    def _swap(
        self,
        session: Session,
        entity_type: str,
        entity_id: str,
        expected_from: str,
        new_to: str,
    ) -> bool:
        stmt = (
            update(OntoEntity)
            .where(
                OntoEntity.id == entity_id,
                OntoEntity.entity_type == entity_type,
                OntoEntity.state_key == expected_from,
            )
            .values(
                state_key=new_to,
                version=OntoEntity.version + 1,
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        swapped = session.execute(stmt).rowcount == 1
        logger.debug(
            "state_cas_executed",
            extra={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "expected_from": expected_from,
                "new_to": new_to,
                "swapped": swapped,
            },
        )
        return swapped

    def compare_and_swap_state(
        self,
        entity_type: str,
        entity_id: str,
        expected_from: str,
        new_to: str,
    ) -> bool:
        with session_scope(self._session_factory) as session:
            return self._swap(session, entity_type, entity_id, expected_from, new_to)

    def append_audit_log(self, entry: TransitionAuditEntry) -> None:
        with session_scope(self._session_factory) as session:
            session.add(_log_row(entry))

    def commit_transition(self, entry: TransitionAuditEntry) -> bool:
        with session_scope(self._session_factory) as session:
            swapped = self._swap(
                session, entry.entity_type, entry.entity_id, entry.from_state, entry.to_state,
            )
            if swapped:
                session.add(_log_row(entry))
            return swapped

    def _locked_row(self, session: Session, entity_type: str, entity_id: str) -> OntoEntity:
        row = session.scalars(
            select(OntoEntity)
            .where(OntoEntity.id == entity_id, OntoEntity.entity_type == entity_type)
            .with_for_update()
        ).first()
        if row is None:
            raise EntityNotFoundError(entity_type, entity_id)
        return row

    def update_props(
        self,
        entity_type: str,
        entity_id: str,
        patch: Mapping[str, Any],
    ) -> dict[str, Any]:
        with session_scope(self._session_factory) as session:
            row = self._locked_row(session, entity_type, entity_id)
            # Reassign so the JSON column is flagged dirty.
            row.props = {**(row.props or {}), **thaw(patch)}
            return dict(row.props)

    def merge_facets(
        self,
        entity_type: str,
        entity_id: str,
        facets: Mapping[str, str],
    ) -> dict[str, str]:
        with session_scope(self._session_factory) as session:
            row = self._locked_row(session, entity_type, entity_id)
            merged = _merged_facets(row.props or {}, facets)
            row.props = {**(row.props or {}), "facets": merged}
            return dict(merged)

    def create_entities(
        self,
        entity_type: str,
        rows: Sequence[Mapping[str, Any]],
    ) -> list[str]:
        prepared = [_new_entity_fields(row) for row in rows]
        if not prepared:
            return []
        with session_scope(self._session_factory) as session:
            existing = set(session.scalars(
                select(OntoEntity.id).where(OntoEntity.id.in_([f["id"] for f in prepared]))
            ))
            created: list[str] = []
            for fields in prepared:
                if fields["id"] in existing:
                    continue
                session.add(OntoEntity(entity_type=entity_type, version=0, **fields))
                existing.add(fields["id"])
                created.append(fields["id"])
        return created

    def add_entity(
        self,
        entity_type: str,
        entity_id: str,
        type_key: str,
        state_key: str,
        props: Mapping[str, Any] | None = None,
        project_id: str | None = None,
        name: str | None = None,
    ) -> EntitySnapshot:
        with session_scope(self._session_factory) as session:
            session.add(OntoEntity(
                id=entity_id,
                entity_type=entity_type,
                type_key=type_key,
                state_key=state_key,
                project_id=project_id,
                name=name,
                props=thaw(props or {}),
                version=0,
            ))
        return self.get_snapshot(entity_type, entity_id)

    def audit_entries(self, entity_type: str, entity_id: str) -> list[TransitionLogEntry]:
        with self._session_factory() as session:
            return list(session.scalars(
                select(TransitionLogEntry)
                .where(
                    TransitionLogEntry.entity_type == entity_type,
                    TransitionLogEntry.entity_id == entity_id,
                )
                .order_by(TransitionLogEntry.occurred_at)
            ))
