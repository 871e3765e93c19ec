"""
Tests for the account store, per-account locks and the ledger clock.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from securefin.errors import (
    AccountNotFoundError,
    CollaboratorUnavailableError,
    InsufficientFundsError,
    NotAuthenticatedError,
)
from securefin.ledger import AccountLocks, AccountStore, LedgerClock
from securefin.models.audit import AuditEventType
from securefin.models.ledger import USERS_COLLECTION, Account
from securefin.services.storage import InMemoryDocumentStore, StorageError, WriteKind


class UnreachableStore(InMemoryDocumentStore):
    """Store whose reads fail like a dropped connection."""

    async def get(self, collection, key):
        raise StorageError("network unreachable")


class TestGetOrCreate:
    """Tests for first sign-in account creation."""

    @pytest.mark.asyncio
    async def test_creates_with_opening_balance(self, accounts, store):
        account = await accounts.get_or_create("alice@example.com", "Alice")

        assert account.identity == "alice@example.com"
        assert account.display_name == "Alice"
        assert account.balance == Decimal("1000")
        assert await store.get(USERS_COLLECTION, "alice@example.com") is not None

    @pytest.mark.asyncio
    async def test_existing_account_is_returned_unchanged(self, accounts):
        await accounts.get_or_create("alice@example.com", "Alice")
        await accounts.adjust_balance("alice@example.com", Decimal("-100"))

        again = await accounts.get_or_create("alice@example.com", "Someone Else")

        assert again.balance == Decimal("900")
        assert again.display_name == "Alice"

    @pytest.mark.asyncio
    async def test_display_name_defaults_to_identity(self, accounts):
        account = await accounts.get_or_create("alice@example.com")
        assert account.display_name == "alice@example.com"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("identity", [None, "", "   "])
    async def test_requires_identity(self, accounts, identity):
        with pytest.raises(NotAuthenticatedError):
            await accounts.get_or_create(identity, "Nobody")

    @pytest.mark.asyncio
    async def test_concurrent_first_sign_ins_create_once(self, accounts, audit_storage):
        results = await asyncio.gather(
            *(accounts.get_or_create("alice@example.com", "Alice") for _ in range(5))
        )

        assert all(a.balance == Decimal("1000") for a in results)
        events = await audit_storage.get_recent_events()
        created = [e for e in events if e.event_type == AuditEventType.ACCOUNT_CREATED]
        assert len(created) == 1

    @pytest.mark.asyncio
    async def test_custom_opening_balance(self, store):
        accounts = AccountStore(store, opening_balance=Decimal("50"))
        account = await accounts.get_or_create("alice@example.com")
        assert account.balance == Decimal("50")

    @pytest.mark.asyncio
    async def test_storage_failure_is_wrapped(self):
        accounts = AccountStore(UnreachableStore())

        with pytest.raises(CollaboratorUnavailableError) as exc_info:
            await accounts.get_or_create("alice@example.com")

        assert exc_info.value.service == "storage"
        assert isinstance(exc_info.value.__cause__, StorageError)


class TestBalances:
    """Tests for reading and adjusting balances."""

    @pytest.mark.asyncio
    async def test_unknown_account(self, accounts):
        with pytest.raises(AccountNotFoundError):
            await accounts.get_balance("ghost@example.com")
        with pytest.raises(AccountNotFoundError):
            await accounts.adjust_balance("ghost@example.com", Decimal("1"))

    @pytest.mark.asyncio
    async def test_credit_and_debit(self, accounts, people):
        alice, _, _ = people

        assert await accounts.adjust_balance(alice, Decimal("250.50")) == Decimal("1250.50")
        assert await accounts.adjust_balance(alice, Decimal("-1250.50")) == Decimal("0.00")
        assert await accounts.get_balance(alice) == Decimal("0")

    @pytest.mark.asyncio
    async def test_debit_below_zero_rejected(self, accounts, people):
        alice, _, _ = people

        with pytest.raises(InsufficientFundsError):
            await accounts.adjust_balance(alice, Decimal("-1000.01"))
        assert await accounts.get_balance(alice) == Decimal("1000")

    @pytest.mark.asyncio
    async def test_credit_on_negative_balance_allowed(self, accounts, store, people):
        """Only debits are checked: a credit always goes through."""
        alice, _, _ = people
        await store.update(USERS_COLLECTION, alice, {"balance": "-5"})

        assert await accounts.adjust_balance(alice, Decimal("2")) == Decimal("-3")

    @pytest.mark.asyncio
    async def test_concurrent_adjustments_serialize(self, accounts, people):
        alice, _, _ = people

        await asyncio.gather(*(accounts.adjust_balance(alice, Decimal("-10")) for _ in range(50)))

        assert await accounts.get_balance(alice) == Decimal("500")

    def test_plan_adjustment_builds_update(self):
        account = Account(identity="alice@example.com", balance=Decimal("10"))

        new_balance, operation = AccountStore.plan_adjustment(account, Decimal("-4"))

        assert new_balance == Decimal("6")
        assert operation.kind == WriteKind.UPDATE
        assert operation.collection == USERS_COLLECTION
        assert operation.key == "alice@example.com"
        assert operation.data == {"balance": "6"}

    def test_plan_adjustment_checks_debits(self):
        account = Account(identity="alice@example.com", balance=Decimal("10"))

        with pytest.raises(InsufficientFundsError) as exc_info:
            AccountStore.plan_adjustment(account, Decimal("-10.01"))

        assert exc_info.value.identity == "alice@example.com"


class TestListAccounts:
    """Tests for listing accounts."""

    @pytest.mark.asyncio
    async def test_lists_everyone(self, accounts, people):
        listed = await accounts.list_accounts()
        assert {a.identity for a in listed} == set(people)

    @pytest.mark.asyncio
    async def test_skips_malformed_documents(self, accounts, store, people):
        await store.put(USERS_COLLECTION, "broken@example.com", {"balance": "lots"})

        listed = await accounts.list_accounts()

        assert {a.identity for a in listed} == set(people)


class TestAccountLocks:
    """Tests for per-account lock ordering."""

    @pytest.mark.asyncio
    async def test_hold_takes_every_lock(self):
        locks = AccountLocks()

        async with locks.hold("b", "a", "a"):
            assert locks.is_locked("a")
            assert locks.is_locked("b")
            assert not locks.is_locked("c")

        assert not locks.is_locked("a")
        assert not locks.is_locked("b")

    @pytest.mark.asyncio
    async def test_opposite_orders_do_not_deadlock(self):
        locks = AccountLocks()
        order = []

        async def worker(name, *identities):
            async with locks.hold(*identities):
                order.append(name)
                await asyncio.sleep(0)

        await asyncio.wait_for(
            asyncio.gather(
                *(worker(f"ab{i}", "a", "b") for i in range(5)),
                *(worker(f"ba{i}", "b", "a") for i in range(5)),
            ),
            timeout=1,
        )
        assert len(order) == 10

    @pytest.mark.asyncio
    async def test_released_on_error(self):
        locks = AccountLocks()

        with pytest.raises(RuntimeError):
            async with locks.hold("a"):
                raise RuntimeError("boom")

        assert not locks.is_locked("a")


class TestLedgerClock:
    """Tests for monotonic commit timestamps."""

    def test_follows_time_source(self):
        t0 = datetime(2025, 1, 1, tzinfo=timezone.utc)
        ticks = iter([t0, t0 + timedelta(seconds=1)])
        clock = LedgerClock(lambda: next(ticks))

        assert clock.now() == t0
        assert clock.now() == t0 + timedelta(seconds=1)

    def test_never_goes_backwards(self):
        t0 = datetime(2025, 1, 1, tzinfo=timezone.utc)
        ticks = iter([t0, t0 - timedelta(hours=1), t0 + timedelta(seconds=1)])
        clock = LedgerClock(lambda: next(ticks))

        stamps = [clock.now() for _ in range(3)]

        assert stamps == sorted(stamps)
        assert stamps[1] == t0
