"""
Tests for the audit logger and audit storage.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from securefin.audit import AuditLogger, create_correlation_id
from securefin.models.audit import AuditEventBuilder, AuditEventType
from securefin.models.ledger import AUDIT_COLLECTION
from securefin.services.storage import (
    AuditStorageInterface,
    DocumentStoreAuditStorage,
    InMemoryDocumentStore,
    StorageError,
)


class BrokenStore(InMemoryDocumentStore):
    async def commit_batch(self, operations):
        raise StorageError("disk full")


class ExplodingAuditStorage(AuditStorageInterface):
    """Audit storage that fails in an unexpected way."""

    async def append_event(self, event):
        raise RuntimeError("unexpected")

    async def get_events_by_correlation_id(self, correlation_id):
        return []

    async def get_recent_events(self, limit=100, actor=None):
        return []


class TestAuditLogger:
    """Tests for AuditLogger."""

    @pytest.mark.asyncio
    async def test_local_only(self):
        """Test that logging without storage still succeeds."""
        logger = AuditLogger()
        assert logger.storage is None
        assert await logger.log(AuditEventBuilder.collaborator_error("storage", "x")) is True

    @pytest.mark.asyncio
    async def test_persists_to_store(self, audit_logger, store):
        correlation_id = create_correlation_id()

        await audit_logger.log_money_sent("t1", "a", "b", "10", correlation_id)

        docs = await store.list_all(AUDIT_COLLECTION)
        assert len(docs) == 1
        assert docs[0].data["event_type"] == "money_sent"
        assert docs[0].data["correlation_id"] == str(correlation_id)

    @pytest.mark.asyncio
    async def test_storage_failure_does_not_raise(self):
        logger = AuditLogger(DocumentStoreAuditStorage(BrokenStore()))
        assert await logger.log(AuditEventBuilder.user_signed_in("a", uuid4())) is False

    @pytest.mark.asyncio
    async def test_unexpected_storage_error_does_not_raise(self):
        logger = AuditLogger(ExplodingAuditStorage())
        assert await logger.log(AuditEventBuilder.user_signed_out("a", uuid4())) is False

    @pytest.mark.asyncio
    async def test_helpers_record_event_types(self, audit_logger, audit_storage):
        cid = create_correlation_id()
        await audit_logger.log_signed_in("a", cid)
        await audit_logger.log_account_created("a", "1000", cid)
        await audit_logger.log_bill_split("a", "100", "33.33", ["b", "c"], cid)
        await audit_logger.log_money_requested("r1", "a", "b", "75", "2025-01-01", cid)
        await audit_logger.log_request_settled("r1", "b", "a", "75", "t1", cid)
        await audit_logger.log_request_declined("r2", "b", cid)
        await audit_logger.log_rejected("transfer", "invalid_amount", "bad", "a", cid)
        await audit_logger.log_error("Boom", "it broke", {"k": "v"}, cid)
        await audit_logger.log_signed_out("a", cid)

        events = await audit_storage.get_events_by_correlation_id(cid)

        assert [e.event_type for e in events] == [
            AuditEventType.USER_SIGNED_IN,
            AuditEventType.ACCOUNT_CREATED,
            AuditEventType.BILL_SPLIT,
            AuditEventType.MONEY_REQUESTED,
            AuditEventType.REQUEST_SETTLED,
            AuditEventType.REQUEST_DECLINED,
            AuditEventType.OPERATION_REJECTED,
            AuditEventType.SYSTEM_ERROR,
            AuditEventType.USER_SIGNED_OUT,
        ]


class TestAuditStorage:
    """Tests for the document-store-backed audit storage."""

    @pytest.mark.asyncio
    async def test_recent_events_newest_first_and_filtered(self, audit_storage):
        start = datetime(2025, 1, 1, tzinfo=timezone.utc)
        events = [
            AuditEventBuilder.user_signed_in("a", uuid4()),
            AuditEventBuilder.user_signed_in("b", uuid4()),
            AuditEventBuilder.user_signed_out("a", uuid4()),
        ]
        for minutes, event in enumerate(events):
            stamped = event.model_copy(update={"timestamp": start + timedelta(minutes=minutes)})
            await audit_storage.append_event(stamped)

        events = await audit_storage.get_recent_events(actor="a")

        assert [e.event_type for e in events] == [
            AuditEventType.USER_SIGNED_OUT,
            AuditEventType.USER_SIGNED_IN,
        ]
        assert len(await audit_storage.get_recent_events(limit=1)) == 1

    @pytest.mark.asyncio
    async def test_malformed_events_are_skipped(self, audit_logger, audit_storage, store):
        await audit_logger.log_signed_in("a", uuid4())
        await store.append(AUDIT_COLLECTION, {"event_type": "not-a-type"})

        assert len(await audit_storage.get_recent_events()) == 1

    @pytest.mark.asyncio
    async def test_write_failure_returns_false(self):
        storage = DocumentStoreAuditStorage(BrokenStore())
        assert await storage.append_event(AuditEventBuilder.user_signed_in("a", uuid4())) is False
