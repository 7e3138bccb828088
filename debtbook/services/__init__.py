"""Services package."""

from debtbook.services.storage import (
    DELETE,
    AuditStorageInterface,
    DocumentStoreInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
    InMemoryAuditStorage,
    InMemoryDocumentStore,
    NotFoundError,
    StorageError,
    StoreUnavailableError,
    WriteConflictError,
)

__all__ = [
    "DELETE",
    "AuditStorageInterface",
    "DocumentStoreInterface",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStore",
    "InMemoryAuditStorage",
    "InMemoryDocumentStore",
    "NotFoundError",
    "StorageError",
    "StoreUnavailableError",
    "WriteConflictError",
]
