"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Google Sheets is the hosted backend; the in-memory backend serves tests and
local runs. Both follow the same interface.
"""

from debtbook.services.storage.interface import (
    DELETE,
    AuditStorageInterface,
    DocumentStoreInterface,
    NotFoundError,
    StorageError,
    StoreUnavailableError,
    WriteConflictError,
)
from debtbook.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryDocumentStore,
)
from debtbook.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "DocumentStoreInterface",
    "DELETE",
    # Exceptions
    "NotFoundError",
    "StorageError",
    "StoreUnavailableError",
    "WriteConflictError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryDocumentStore",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStore",
]
