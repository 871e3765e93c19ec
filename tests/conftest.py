"""
Shared test fixtures.

Every test runs against a fresh InMemoryDocumentStore. No real Google
Sheets or identity provider calls are made.
"""

from decimal import Decimal

import pytest
import pytest_asyncio

from securefin.audit import AuditLogger
from securefin.feed import FeedProjection
from securefin.ledger import AccountStore, LedgerService
from securefin.services.storage import DocumentStoreAuditStorage, InMemoryDocumentStore


ALICE = "alice@example.com"
BOB = "bob@example.com"
CAROL = "carol@example.com"


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def audit_storage(store) -> DocumentStoreAuditStorage:
    return DocumentStoreAuditStorage(store)


@pytest.fixture
def audit_logger(audit_storage) -> AuditLogger:
    return AuditLogger(audit_storage)


@pytest.fixture
def accounts(store, audit_logger) -> AccountStore:
    return AccountStore(store, audit_logger=audit_logger)


@pytest.fixture
def ledger(accounts, store, audit_logger) -> LedgerService:
    return LedgerService(accounts, store, audit_logger=audit_logger)


@pytest.fixture
def projection(store) -> FeedProjection:
    return FeedProjection(store)


@pytest_asyncio.fixture
async def people(accounts) -> tuple[str, str, str]:
    """Alice, Bob and Carol, each with the 1000 opening balance."""
    await accounts.get_or_create(ALICE, "Alice")
    await accounts.get_or_create(BOB, "Bob")
    await accounts.get_or_create(CAROL, "Carol")
    return ALICE, BOB, CAROL


@pytest.fixture
def balances(accounts):
    """Read several balances at once: await balances(a, b)."""
    async def read(*identities: str) -> list[Decimal]:
        return [await accounts.get_balance(identity) for identity in identities]
    return read
