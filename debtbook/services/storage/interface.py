"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for the document store.
This allows us to:
1. Swap Google Sheets for a hosted document database later
2. Use in-memory storage for testing
3. Keep ledger logic decoupled from storage implementation

The contract is a key-value document store:
- Each document is a JSON object addressed by (collection, id)
- A single call on one document is atomic; nothing spans documents
- Documents have append-only sub-collections of records, addressed by a
  slash-separated path such as `contacts/{uid}/staged/{cid}/transactions`

Field paths inside a document are dot-separated (`contacts.{cid}.netDebt`).
"""

from abc import ABC, abstractmethod
from typing import Any, Optional
from uuid import UUID

from debtbook.models.audit import AuditEvent


class _DeleteField:
    """Sentinel value that removes a field path in `update_fields`."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DELETE"


DELETE = _DeleteField()


class DocumentStoreInterface(ABC):
    """
    Abstract interface for document store operations.

    Any storage implementation (Google Sheets, Firestore, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        """
        Retrieve a document.

        Returns:
            A copy of the document, or None if it does not exist
        """
        pass

    @abstractmethod
    async def set_if_absent(
        self,
        collection: str,
        doc_id: str,
        document: dict[str, Any],
    ) -> bool:
        """
        Create a document only if it does not already exist.

        Returns:
            True if the document was created, False if it already existed
        """
        pass

    @abstractmethod
    async def update_fields(
        self,
        collection: str,
        doc_id: str,
        updates: dict[str, Any],
        preconditions: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Atomically apply field-path updates to one document.

        Args:
            collection: Collection name
            doc_id: Document id
            updates: {field_path: value | DELETE}
            preconditions: {field_path: expected value}; a missing field
                           compares equal to None

        Raises:
            NotFoundError: If the document does not exist
            WriteConflictError: If any precondition does not hold
        """
        pass

    @abstractmethod
    async def append_record(
        self,
        path: str,
        record: dict[str, Any],
        record_id: Optional[str] = None,
    ) -> str:
        """
        Append a record to a sub-collection.

        When record_id is given the write is put-if-absent, so repeating
        it is harmless.

        Returns:
            The record id (generated if not given)
        """
        pass

    @abstractmethod
    async def list_records(self, path: str) -> list[tuple[str, dict[str, Any]]]:
        """
        List records of a sub-collection in insertion order.

        Returns:
            List of (record_id, record) pairs
        """
        pass

    @abstractmethod
    async def delete_record(self, path: str, record_id: str) -> bool:
        """
        Delete one record.

        Returns:
            True if a record was deleted
        """
        pass

    @abstractmethod
    async def query_by_field(
        self,
        collection: str,
        field: str,
        value: Any,
    ) -> list[tuple[str, dict[str, Any]]]:
        """
        Find documents whose top-level field equals value.

        Returns:
            List of (doc_id, document) pairs, unordered
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one acceptance).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Document not found in storage."""
    pass


class WriteConflictError(StorageError):
    """A compare-and-set precondition did not hold."""
    pass


class StoreUnavailableError(StorageError):
    """Could not reach the storage backend. Safe to retry."""
    pass
