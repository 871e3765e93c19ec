"""
Tests for the Google Sheets document store.

A fake worksheet client stands in for gspread, so no network calls are
made. The fake can be told to fail on the Nth write to exercise the
compensating rollback.
"""

import asyncio
import json
import time
from decimal import Decimal
from typing import Optional

import pytest

from securefin.errors import CollaboratorUnavailableError
from securefin.ledger import AccountStore, LedgerService
from securefin.models.ledger import TRANSACTIONS_COLLECTION, USERS_COLLECTION
from securefin.services.storage import (
    GoogleSheetsDocumentStore,
    NotFoundError,
    StorageError,
    WriteOperation,
)


class FakeWorksheet:
    """In-memory rows with the gspread calls the store uses."""

    def __init__(self, owner: "FakeSheetsClient"):
        self._owner = owner
        self.rows: list[list[str]] = [["id", "data_json"]]

    def get_all_values(self) -> list[list[str]]:
        return [list(row) for row in self.rows]

    def append_row(self, row, value_input_option=None) -> None:
        self._owner.before_write()
        self.rows.append(list(row))

    def update_cell(self, row: int, col: int, value: str) -> None:
        self._owner.before_write()
        self.rows[row - 1][col - 1] = value

    def delete_rows(self, row: int) -> None:
        del self.rows[row - 1]


class FakeSheetsClient:
    """Stands in for GoogleSheetsClient."""

    def __init__(self):
        self.worksheets: dict[str, FakeWorksheet] = {}
        self.writes = 0
        self.fail_on_write: Optional[int] = None

    def before_write(self) -> None:
        self.writes += 1
        if self.fail_on_write is not None and self.writes == self.fail_on_write:
            raise RuntimeError("quota exceeded")

    def get_worksheet(self, collection: str) -> FakeWorksheet:
        if collection not in self.worksheets:
            self.worksheets[collection] = FakeWorksheet(self)
        return self.worksheets[collection]

    def bodies(self, collection: str) -> dict[str, dict]:
        return {
            row[0]: json.loads(row[1])
            for row in self.get_worksheet(collection).rows[1:]
        }


@pytest.fixture
def sheets() -> FakeSheetsClient:
    return FakeSheetsClient()


@pytest.fixture
def sheets_store(sheets) -> GoogleSheetsDocumentStore:
    return GoogleSheetsDocumentStore(client=sheets)


class TestSheetsDocuments:
    """Tests for basic reads and writes against worksheet rows."""

    @pytest.mark.asyncio
    async def test_put_writes_json_row(self, sheets_store, sheets):
        await sheets_store.put("users", "a", {"balance": "10"})

        assert sheets.get_worksheet("users").rows[1] == ["a", json.dumps({"balance": "10"})]
        assert await sheets_store.get("users", "a") == {"balance": "10"}

    @pytest.mark.asyncio
    async def test_put_existing_replaces_in_place(self, sheets_store, sheets):
        await sheets_store.put("users", "a", {"balance": "10", "x": 1})
        await sheets_store.put("users", "a", {"balance": "20"})

        assert len(sheets.get_worksheet("users").rows) == 2
        assert await sheets_store.get("users", "a") == {"balance": "20"}

    @pytest.mark.asyncio
    async def test_update_merges(self, sheets_store):
        await sheets_store.put("users", "a", {"balance": "10", "display_name": "A"})
        await sheets_store.update("users", "a", {"balance": "5"})

        assert await sheets_store.get("users", "a") == {"balance": "5", "display_name": "A"}

    @pytest.mark.asyncio
    async def test_update_missing(self, sheets_store):
        with pytest.raises(NotFoundError):
            await sheets_store.update("users", "nobody", {"balance": "5"})

    @pytest.mark.asyncio
    async def test_append_and_list_in_sheet_order(self, sheets_store):
        first = await sheets_store.append("transactions", {"n": 1})
        second = await sheets_store.append("transactions", {"n": 2})

        docs = await sheets_store.list_all("transactions")

        assert [d.id for d in docs] == [first, second]

    @pytest.mark.asyncio
    async def test_malformed_rows_are_skipped(self, sheets_store, sheets):
        await sheets_store.append("transactions", {"n": 1})
        sheets.get_worksheet("transactions").rows.append(["bad", "{not json"])
        sheets.get_worksheet("transactions").rows.append(["", ""])

        docs = await sheets_store.list_all("transactions")

        assert len(docs) == 1

    @pytest.mark.asyncio
    async def test_read_failure_is_storage_error(self, sheets_store, sheets):
        def broken(collection):
            raise RuntimeError("network down")

        sheets.get_worksheet = broken

        with pytest.raises(StorageError):
            await sheets_store.get("users", "a")
        with pytest.raises(StorageError):
            await sheets_store.list_all("users")


class TestSheetsBatches:
    """Tests for ordered writes with compensating rollback."""

    @pytest.mark.asyncio
    async def test_failed_batch_is_rolled_back(self, sheets_store, sheets):
        await sheets_store.put("users", "a", {"balance": "10"})
        await sheets_store.put("users", "b", {"balance": "10"})
        sheets.fail_on_write = sheets.writes + 3

        with pytest.raises(StorageError, match="rolled back"):
            await sheets_store.commit_batch([
                WriteOperation.update("users", "a", {"balance": "5"}),
                WriteOperation.update("users", "b", {"balance": "15"}),
                WriteOperation.append("transactions", {"amount": "5"}),
            ])

        assert sheets.bodies("users") == {"a": {"balance": "10"}, "b": {"balance": "10"}}
        assert sheets.bodies("transactions") == {}

    @pytest.mark.asyncio
    async def test_appended_rows_removed_on_rollback(self, sheets_store, sheets):
        await sheets_store.put("users", "a", {"balance": "10"})
        sheets.fail_on_write = sheets.writes + 3

        with pytest.raises(StorageError):
            await sheets_store.commit_batch([
                WriteOperation.append("transactions", {"n": 1}),
                WriteOperation.append("transactions", {"n": 2}),
                WriteOperation.update("users", "a", {"balance": "0"}),
            ])

        assert sheets.bodies("transactions") == {}
        assert sheets.bodies("users") == {"a": {"balance": "10"}}

    @pytest.mark.asyncio
    async def test_missing_update_target_fails_before_writing(self, sheets_store, sheets):
        writes_before = sheets.writes

        with pytest.raises(NotFoundError):
            await sheets_store.commit_batch([
                WriteOperation.append("transactions", {"n": 1}),
                WriteOperation.update("users", "missing", {"balance": "0"}),
            ])

        assert sheets.writes == writes_before

    @pytest.mark.asyncio
    async def test_update_after_put_in_same_batch(self, sheets_store, sheets):
        await sheets_store.commit_batch([
            WriteOperation.put("users", "a", {"balance": "1"}),
            WriteOperation.update("users", "a", {"balance": "2"}),
        ])

        assert sheets.bodies("users") == {"a": {"balance": "2"}}

    @pytest.mark.asyncio
    async def test_ledger_transfer_over_sheets(self, sheets_store, sheets):
        accounts = AccountStore(sheets_store)
        ledger = LedgerService(accounts, sheets_store)
        await accounts.get_or_create("a@example.com")
        await accounts.get_or_create("b@example.com")

        await ledger.transfer("a@example.com", "b@example.com", Decimal("40"))

        assert await accounts.get_balance("a@example.com") == Decimal("960")
        assert await accounts.get_balance("b@example.com") == Decimal("1040")
        assert len(sheets.bodies(TRANSACTIONS_COLLECTION)) == 1

    @pytest.mark.asyncio
    async def test_ledger_transfer_failure_leaves_sheet_untouched(self, sheets_store, sheets):
        accounts = AccountStore(sheets_store)
        ledger = LedgerService(accounts, sheets_store)
        await accounts.get_or_create("a@example.com")
        await accounts.get_or_create("b@example.com")
        users_before = sheets.bodies(USERS_COLLECTION)
        # Fail on the transaction append, after both balances were written
        sheets.fail_on_write = sheets.writes + 3

        with pytest.raises(CollaboratorUnavailableError):
            await ledger.transfer("a@example.com", "b@example.com", Decimal("40"))

        assert sheets.bodies(USERS_COLLECTION) == users_before
        assert sheets.bodies(TRANSACTIONS_COLLECTION) == {}


class TestSheetsSubscriptions:
    """Tests for notifications without server push."""

    @pytest.mark.asyncio
    async def test_writes_through_store_notify(self, sheets_store):
        received = []
        await sheets_store.subscribe("transactions", received.append)

        await sheets_store.append("transactions", {"n": 1})

        assert len(received) == 2
        assert len(received[-1]) == 1

    @pytest.mark.asyncio
    async def test_refresh_picks_up_outside_changes(self, sheets_store, sheets):
        received = []
        await sheets_store.subscribe("transactions", received.append)

        sheets.get_worksheet("transactions").rows.append(["x1", json.dumps({"n": 9})])
        await sheets_store.refresh()

        assert len(received) == 2
        assert received[-1][0].id == "x1"

    @pytest.mark.asyncio
    async def test_refresh_without_changes_is_silent(self, sheets_store):
        received = []
        await sheets_store.subscribe("transactions", received.append)

        await sheets_store.refresh()
        await sheets_store.refresh("transactions")

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_unsubscribed_collections_are_not_refreshed(self, sheets_store, sheets):
        received = []
        subscription = await sheets_store.subscribe("transactions", received.append)
        subscription.unsubscribe()

        sheets.get_worksheet("transactions").rows.append(["x1", json.dumps({"n": 9})])
        await sheets_store.refresh()

        assert len(received) == 1


class SlowSheetsClient(FakeSheetsClient):
    """Every worksheet lookup takes as long as a slow API round trip."""

    delay = 0.3

    def get_worksheet(self, collection: str) -> FakeWorksheet:
        time.sleep(self.delay)
        return super().get_worksheet(collection)


async def longest_stall(work) -> float:
    """Run work alongside a 50 ms ticker; return the longest tick gap."""
    gaps = []
    done = asyncio.Event()

    async def ticker():
        last = time.monotonic()
        while not done.is_set():
            await asyncio.sleep(0.05)
            now = time.monotonic()
            gaps.append(now - last)
            last = now

    async def run():
        try:
            await work
        finally:
            done.set()

    await asyncio.gather(run(), ticker())
    return max(gaps)


class TestSlowSheets:
    """Slow sheet calls must not hold up the event loop."""

    @pytest.mark.asyncio
    async def test_read_keeps_loop_responsive(self):
        store = GoogleSheetsDocumentStore(client=SlowSheetsClient())

        assert await longest_stall(store.list_all("users")) < SlowSheetsClient.delay

    @pytest.mark.asyncio
    async def test_batch_keeps_loop_responsive(self):
        store = GoogleSheetsDocumentStore(client=SlowSheetsClient())

        stall = await longest_stall(store.commit_batch([
            WriteOperation.put("users", "a", {"balance": "10"}),
            WriteOperation.append("transactions", {"amount": "5"}),
        ]))

        assert stall < SlowSheetsClient.delay
        assert await store.get("users", "a") == {"balance": "10"}
