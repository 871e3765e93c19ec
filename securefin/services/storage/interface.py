"""
Abstract Document Store Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a managed document database later
2. Use in-memory storage for testing and local development
3. Keep ledger logic decoupled from storage implementation

The store is a plain collection -> key -> JSON document map with change
notification. It knows nothing about accounts or money.

commit_batch() is the one addition over a bare key-value API: every
ledger operation hands the store all of its writes at once, so a failure
can never leave a debit committed without its credit.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from securefin.models.audit import AuditEvent
from securefin.services.storage.subscriptions import Subscription


class StoredDocument(BaseModel):
    """A document as returned by the store: its key plus its body."""
    model_config = ConfigDict(frozen=True)

    id: str
    data: dict[str, Any] = Field(default_factory=dict)


class WriteKind(str, Enum):
    PUT = "put"
    UPDATE = "update"
    APPEND = "append"


class WriteOperation(BaseModel):
    """
    One write inside an atomic batch.

    PUT replaces (or creates) the document at key.
    UPDATE merges data into an existing document at key.
    APPEND inserts a new document under a store-generated key.
    """
    model_config = ConfigDict(frozen=True)

    kind: WriteKind
    collection: str
    key: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def put(cls, collection: str, key: str, data: dict[str, Any]) -> "WriteOperation":
        return cls(kind=WriteKind.PUT, collection=collection, key=key, data=data)

    @classmethod
    def update(cls, collection: str, key: str, data: dict[str, Any]) -> "WriteOperation":
        return cls(kind=WriteKind.UPDATE, collection=collection, key=key, data=data)

    @classmethod
    def append(cls, collection: str, data: dict[str, Any]) -> "WriteOperation":
        return cls(kind=WriteKind.APPEND, collection=collection, data=data)


# Receives the full current snapshot of the watched collection
SnapshotCallback = Callable[[list[StoredDocument]], None]


class DocumentStoreInterface(ABC):
    """
    Abstract interface for the durable document store.

    Any storage implementation (Google Sheets, a managed document
    database, memory) must implement these methods.
    """

    @abstractmethod
    async def get(self, collection: str, key: str) -> Optional[dict[str, Any]]:
        """
        Read one document.

        Returns:
            The document body, or None if absent

        Raises:
            StorageError: If the backend cannot be read
        """
        pass

    @abstractmethod
    async def put(self, collection: str, key: str, record: dict[str, Any]) -> None:
        """Create or replace the document at key."""
        pass

    @abstractmethod
    async def update(
        self,
        collection: str,
        key: str,
        partial_record: dict[str, Any],
    ) -> None:
        """
        Merge fields into an existing document.

        Raises:
            NotFoundError: If no document exists at key
        """
        pass

    @abstractmethod
    async def append(self, collection: str, record: dict[str, Any]) -> str:
        """
        Insert a new document under a generated key.

        Returns:
            The generated key
        """
        pass

    @abstractmethod
    async def list_all(self, collection: str) -> list[StoredDocument]:
        """
        List every document in a collection, in insertion order.
        """
        pass

    @abstractmethod
    async def subscribe(
        self,
        collection: str,
        on_change: SnapshotCallback,
    ) -> Subscription:
        """
        Watch a collection.

        on_change is called once with the current snapshot, then again
        with the full snapshot after every mutation of the collection.

        Returns:
            A handle whose unsubscribe() stops further notifications
        """
        pass

    @abstractmethod
    async def commit_batch(
        self,
        operations: list[WriteOperation],
    ) -> list[Optional[str]]:
        """
        Apply several writes as one unit.

        Either every operation is applied or none is observable.

        Returns:
            One entry per operation: the generated key for APPEND,
            the key for PUT/UPDATE

        Raises:
            NotFoundError: If an UPDATE targets a missing document
                           (nothing is applied)
            StorageError: If the backend fails (nothing is applied)
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
        Get all events for a correlation ID (e.g., one button press).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
        actor: Optional[str] = None,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events, optionally only one user's.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class StorageConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
