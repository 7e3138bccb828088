"""
In-Memory Storage Implementation

Process-local document and audit storage used by the test-suite and by
local runs without Google credentials.

No method awaits anything before it finishes mutating state, so under
asyncio every call is atomic, which matches the per-document guarantee
the interface promises.
"""

import copy
from typing import Any, Optional
from uuid import UUID, uuid4

from debtbook.models.audit import AuditEvent
from debtbook.services.storage.interface import (
    DELETE,
    AuditStorageInterface,
    DocumentStoreInterface,
    NotFoundError,
    WriteConflictError,
)


def split_path(field_path: str) -> list[str]:
    parts = field_path.split(".")
    if not all(parts):
        raise ValueError(f"Invalid field path: {field_path!r}")
    return parts


def resolve_path(document: dict[str, Any], field_path: str) -> Any:
    """Value at a dotted path, or None if any segment is missing."""
    node: Any = document
    for part in split_path(field_path):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def apply_updates(document: dict[str, Any], updates: dict[str, Any]) -> None:
    """Apply {path: value | DELETE} to a document in place."""
    for field_path, value in updates.items():
        *parents, leaf = split_path(field_path)
        node = document
        for part in parents:
            child = node.get(part)
            if not isinstance(child, dict):
                if value is DELETE:
                    node = None
                    break
                child = {}
                node[part] = child
            node = child
        if node is None:
            continue
        if value is DELETE:
            node.pop(leaf, None)
        else:
            node[leaf] = copy.deepcopy(value)


def check_preconditions(document: dict[str, Any], preconditions: Optional[dict[str, Any]]) -> None:
    for field_path, expected in (preconditions or {}).items():
        actual = resolve_path(document, field_path)
        if actual != expected:
            raise WriteConflictError(
                f"{field_path} changed: expected {expected!r}, found {actual!r}"
            )


class InMemoryDocumentStore(DocumentStoreInterface):
    """Dictionary-backed document store."""

    def __init__(self):
        self._documents: dict[tuple[str, str], dict[str, Any]] = {}
        self._records: dict[str, dict[str, dict[str, Any]]] = {}

    async def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        document = self._documents.get((collection, doc_id))
        return copy.deepcopy(document) if document is not None else None

    async def set_if_absent(
        self,
        collection: str,
        doc_id: str,
        document: dict[str, Any],
    ) -> bool:
        key = (collection, doc_id)
        if key in self._documents:
            return False
        self._documents[key] = copy.deepcopy(document)
        return True

    async def update_fields(
        self,
        collection: str,
        doc_id: str,
        updates: dict[str, Any],
        preconditions: Optional[dict[str, Any]] = None,
    ) -> None:
        document = self._documents.get((collection, doc_id))
        if document is None:
            raise NotFoundError(f"{collection}/{doc_id} does not exist")
        check_preconditions(document, preconditions)
        apply_updates(document, updates)

    async def append_record(
        self,
        path: str,
        record: dict[str, Any],
        record_id: Optional[str] = None,
    ) -> str:
        records = self._records.setdefault(path, {})
        record_id = record_id or uuid4().hex
        if record_id not in records:
            records[record_id] = copy.deepcopy(record)
        return record_id

    async def list_records(self, path: str) -> list[tuple[str, dict[str, Any]]]:
        return [
            (record_id, copy.deepcopy(record))
            for record_id, record in self._records.get(path, {}).items()
        ]

    async def delete_record(self, path: str, record_id: str) -> bool:
        return self._records.get(path, {}).pop(record_id, None) is not None

    async def query_by_field(
        self,
        collection: str,
        field: str,
        value: Any,
    ) -> list[tuple[str, dict[str, Any]]]:
        return [
            (doc_id, copy.deepcopy(document))
            for (coll, doc_id), document in self._documents.items()
            if coll == collection and document.get(field) == value
        ]


class InMemoryAuditStorage(AuditStorageInterface):
    """List-backed audit log."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        events = [e for e in self.events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(self, entity_type: str, entity_id: str) -> list[AuditEvent]:
        events = [
            e for e in self.events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return sorted(self.events, key=lambda e: e.timestamp, reverse=True)[:limit]
