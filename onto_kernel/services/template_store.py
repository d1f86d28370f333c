"""TemplateStore -- read access to the template arena.

Templates are looked up two ways: the leaf by ``(type_key, scope)`` and
ancestors by id while the resolver walks ``parent_id`` pointers.

Implementations: InMemoryTemplateStore (arena dict, built from config),
SqlTemplateStore (``onto_templates`` table).
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from typing import Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from onto_kernel.domain.fsm import definition_from_dict
from onto_kernel.domain.template import TemplateRecord
from onto_kernel.logging_config import get_logger
from onto_kernel.models.template import OntoTemplate

logger = get_logger("services.template_store")


@runtime_checkable
class TemplateStore(Protocol):
    """Port for template lookup."""

    def get_template(self, type_key: str, scope: str) -> TemplateRecord | None:
        """Return the active template for ``(type_key, scope)`` or None."""
        ...

    def get_template_by_id(self, template_id: str) -> TemplateRecord | None:
        """Return the template with this id or None."""
        ...


class InMemoryTemplateStore:
    """Arena of templates indexed by id, with a ``(type_key, scope)`` index."""

    def __init__(self, templates: Iterable[TemplateRecord] = ()) -> None:
        self._by_id: dict[str, TemplateRecord] = {}
        self._by_key: dict[tuple[str, str], str] = {}
        self._lock = threading.Lock()
        for record in templates:
            self.add(record)

    def add(self, record: TemplateRecord) -> None:
        """Insert or replace a template.

        Callers replacing a template must also invalidate the resolver cache.
        """
        with self._lock:
            previous = self._by_id.get(record.id)
            if previous is not None:
                self._by_key.pop((previous.type_key, previous.scope), None)
            self._by_id[record.id] = record
            if record.status == "active":
                self._by_key[(record.type_key, record.scope)] = record.id

    def get_template(self, type_key: str, scope: str) -> TemplateRecord | None:
        with self._lock:
            template_id = self._by_key.get((type_key, scope))
            return self._by_id.get(template_id) if template_id else None

    def get_template_by_id(self, template_id: str) -> TemplateRecord | None:
        with self._lock:
            return self._by_id.get(template_id)

    def all_templates(self) -> tuple[TemplateRecord, ...]:
        with self._lock:
            return tuple(self._by_id.values())

    def __len__(self) -> int:
        return len(self._by_id)


def record_from_row(row: OntoTemplate) -> TemplateRecord:
    """Convert an ORM row into a domain ``TemplateRecord``."""
    return TemplateRecord(
        id=row.id,
        type_key=row.type_key,
        scope=row.scope,
        parent_id=row.parent_id,
        fsm=definition_from_dict(row.fsm) if row.fsm else None,
        name=row.name,
        is_abstract=row.is_abstract,
        status=row.status,
        metadata=row.template_metadata or {},
    )


class SqlTemplateStore:
    """TemplateStore over the ``onto_templates`` table.

    Each lookup opens a short read-only session from the factory.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def get_template(self, type_key: str, scope: str) -> TemplateRecord | None:
        with self._session_factory() as session:
            row = session.scalars(
                select(OntoTemplate).where(
                    OntoTemplate.type_key == type_key,
                    OntoTemplate.scope == scope,
                    OntoTemplate.status == "active",
                )
            ).first()
            return record_from_row(row) if row is not None else None

    def get_template_by_id(self, template_id: str) -> TemplateRecord | None:
        with self._session_factory() as session:
            row = session.get(OntoTemplate, template_id)
            return record_from_row(row) if row is not None else None
