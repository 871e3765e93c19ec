"""
Audit log persistence on top of any document store.

Audit events are appended to the auditLog collection of the same store
that holds the ledger, so the Google Sheets backend gets an AuditLog
worksheet for free.
"""

from typing import Optional
from uuid import UUID

import structlog

from securefin.models.audit import AuditEvent
from securefin.models.ledger import AUDIT_COLLECTION
from securefin.services.storage.interface import (
    AuditStorageInterface,
    DocumentStoreInterface,
    StorageError,
)


logger = structlog.get_logger(__name__)


class DocumentStoreAuditStorage(AuditStorageInterface):
    """
    Audit storage backed by a DocumentStoreInterface.

    Audit events are append-only.
    """

    def __init__(
        self,
        store: DocumentStoreInterface,
        collection: str = AUDIT_COLLECTION,
    ):
        self._store = store
        self._collection = collection

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            await self._store.append(self._collection, event.to_record())
            return True
        except StorageError as e:
            # Audit logging must not break the main flow
            logger.warning(
                "audit_event_write_failed",
                event_id=str(event.event_id),
                error=str(e),
            )
            return False

    async def _all_events(self) -> list[AuditEvent]:
        events = []
        for doc in await self._store.list_all(self._collection):
            try:
                events.append(AuditEvent.model_validate(doc.data))
            except ValueError:
                logger.warning("malformed_audit_event", document_id=doc.id)
        return events

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID, oldest first."""
        events = [
            e for e in await self._all_events()
            if e.correlation_id == correlation_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
        actor: Optional[str] = None,
    ) -> list[AuditEvent]:
        """Get recent events, newest first."""
        events = [
            e for e in await self._all_events()
            if actor is None or e.actor == actor
        ]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
