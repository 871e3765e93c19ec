"""
Storage Services Package

Provides the abstract document store interface and its implementations.
The in-memory store is the default; Google Sheets is the durable backend.
"""

from securefin.services.storage.interface import (
    AuditStorageInterface,
    DocumentStoreInterface,
    NotFoundError,
    SnapshotCallback,
    StorageConnectionError,
    StorageError,
    StoredDocument,
    WriteKind,
    WriteOperation,
)
from securefin.services.storage.subscriptions import SubscriberRegistry, Subscription
from securefin.services.storage.memory import InMemoryDocumentStore
from securefin.services.storage.audit_store import DocumentStoreAuditStorage
from securefin.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "DocumentStoreInterface",
    "SnapshotCallback",
    "StoredDocument",
    "WriteKind",
    "WriteOperation",
    # Subscriptions
    "SubscriberRegistry",
    "Subscription",
    # Exceptions
    "NotFoundError",
    "StorageConnectionError",
    "StorageError",
    # Implementations
    "DocumentStoreAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStore",
    "InMemoryDocumentStore",
]
