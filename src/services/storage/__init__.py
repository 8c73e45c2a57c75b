"""
Storage Services Package

Provides abstract interfaces and concrete implementations for the record store.
Google Sheets is the persistent backend; an in-memory store backs tests and
unconfigured runs. Both follow the same interface, so they are swappable.
"""

from src.services.storage.interface import (
    AuditStorageInterface,
    CategoryStoreInterface,
    ConnectionError,
    DuplicateError,
    LedgerStoreInterface,
    NotFoundError,
    StorageError,
)
from src.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStore,
)
from src.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsCategoryStore,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "CategoryStoreInterface",
    "LedgerStoreInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStore",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsCategoryStore",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStore",
]
