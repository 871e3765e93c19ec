"""
Google Sheets Document Store

DESIGN DECISION: Google Sheets can back the ledger because:
1. Non-technical users can inspect balances and history directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

Each collection is one worksheet with two columns: the document key and
the document body as JSON.

TRADEOFFS:
- No transactions. commit_batch() writes in order and, if a write fails,
  undoes the writes already made (restoring old bodies, deleting appended
  rows) before raising.
- No push notifications. Subscribers are notified after writes made
  through this store, and refresh() re-reads watched collections to pick
  up changes made elsewhere.
- Not suitable for high volume (we're fine for a personal demo)
"""

import asyncio
import json
from typing import Any, Callable, Optional
from uuid import uuid4

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from securefin.config import get_settings
from securefin.services.storage.interface import (
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


logger = structlog.get_logger(__name__)

# Column layout of every collection worksheet
DOCUMENT_COLUMNS = ["id", "data_json"]
DATA_COLUMN = 2

# Transient Sheets API errors (quota, 5xx) are worth retrying
sheets_retry = retry(
    retry=retry_if_exception_type(gspread.exceptions.APIError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and worksheet lookup.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._worksheets: dict[str, gspread.Worksheet] = {}
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise StorageConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise StorageConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise StorageConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, collection: str) -> gspread.Worksheet:
        """Get or create the worksheet holding a collection."""
        if collection in self._worksheets:
            return self._worksheets[collection]

        title = f"{self._settings.worksheet_prefix}{collection}"
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=1000,
                cols=len(DOCUMENT_COLUMNS),
            )
            sheet.append_row(DOCUMENT_COLUMNS)
        self._worksheets[collection] = sheet
        return sheet


class GoogleSheetsDocumentStore(DocumentStoreInterface):
    """
    Google Sheets implementation of the document store.

    Documents are rows; the body is JSON-serialized in one cell.
    All access goes through one asyncio lock, so batches from this
    process never interleave. Blocking gspread calls, retry
    back-off included, run in worker threads.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._lock = asyncio.Lock()
        self._subscribers = SubscriberRegistry()
        self._last_delivered: dict[str, list[StoredDocument]] = {}

    # -------------------------------------------------------------------------
    # Raw sheet access (sync, retried)
    # -------------------------------------------------------------------------

    @sheets_retry
    def _get_all_values(self, collection: str) -> list[list[str]]:
        return self._client.get_worksheet(collection).get_all_values()

    @sheets_retry
    def _append_row(self, collection: str, row: list[str]) -> None:
        self._client.get_worksheet(collection).append_row(
            row, value_input_option="RAW"
        )

    @sheets_retry
    def _write_body(self, collection: str, row_number: int, data: dict[str, Any]) -> None:
        self._client.get_worksheet(collection).update_cell(
            row_number, DATA_COLUMN, json.dumps(data)
        )

    @sheets_retry
    def _delete_row(self, collection: str, row_number: int) -> None:
        self._client.get_worksheet(collection).delete_rows(row_number)

    def _read_rows(self, collection: str) -> dict[str, tuple[int, dict[str, Any]]]:
        """key -> (sheet row number, body), in sheet order."""
        rows: dict[str, tuple[int, dict[str, Any]]] = {}
        # Row 1 is the header
        for row_number, row in enumerate(self._get_all_values(collection)[1:], start=2):
            if not row or not row[0]:
                continue
            try:
                body = json.loads(row[1]) if len(row) > 1 and row[1] else {}
            except json.JSONDecodeError:
                logger.warning(
                    "malformed_document_row",
                    collection=collection,
                    row=row_number,
                )
                continue
            rows[row[0]] = (row_number, body)
        return rows

    def _snapshot(self, collection: str) -> list[StoredDocument]:
        return [
            StoredDocument(id=key, data=body)
            for key, (_, body) in self._read_rows(collection).items()
        ]

    def _find_row(self, collection: str, key: str) -> Optional[int]:
        entry = self._read_rows(collection).get(key)
        return entry[0] if entry else None

    # -------------------------------------------------------------------------
    # Interface
    # -------------------------------------------------------------------------

    async def get(self, collection: str, key: str) -> Optional[dict[str, Any]]:
        async with self._lock:
            try:
                rows = await asyncio.to_thread(self._read_rows, collection)
            except StorageError:
                raise
            except Exception as e:
                raise StorageError(f"Failed to read {collection}/{key}: {e}")
            entry = rows.get(key)
            return entry[1] if entry else None

    async def put(self, collection: str, key: str, record: dict[str, Any]) -> None:
        await self.commit_batch([WriteOperation.put(collection, key, record)])

    async def update(
        self,
        collection: str,
        key: str,
        partial_record: dict[str, Any],
    ) -> None:
        await self.commit_batch([WriteOperation.update(collection, key, partial_record)])

    async def append(self, collection: str, record: dict[str, Any]) -> str:
        keys = await self.commit_batch([WriteOperation.append(collection, record)])
        return keys[0]

    async def list_all(self, collection: str) -> list[StoredDocument]:
        async with self._lock:
            try:
                return await asyncio.to_thread(self._snapshot, collection)
            except StorageError:
                raise
            except Exception as e:
                raise StorageError(f"Failed to list {collection}: {e}")

    async def subscribe(
        self,
        collection: str,
        on_change: SnapshotCallback,
    ) -> Subscription:
        async with self._lock:
            try:
                snapshot = await asyncio.to_thread(self._snapshot, collection)
            except StorageError:
                raise
            except Exception as e:
                raise StorageError(f"Failed to list {collection}: {e}")
            subscription = self._subscribers.add(collection, on_change)
            self._last_delivered[collection] = snapshot
        on_change(snapshot)
        return subscription

    async def commit_batch(
        self,
        operations: list[WriteOperation],
    ) -> list[Optional[str]]:
        if not operations:
            return []

        async with self._lock:
            keys = await asyncio.to_thread(self._apply_with_undo, operations)
            snapshots = await asyncio.to_thread(
                self._fresh_snapshots, {op.collection for op in operations}
            )

        self._deliver(snapshots)
        return keys

    async def refresh(self, collection: Optional[str] = None) -> None:
        """
        Re-read watched collections and notify subscribers of any that
        changed outside this store (another process, manual sheet edits).
        """
        async with self._lock:
            watched = {
                c for c in self._last_delivered
                if self._subscribers.has_subscribers(c)
            }
            if collection is not None:
                watched &= {collection}
            snapshots = await asyncio.to_thread(self._fresh_snapshots, watched)

        self._deliver(snapshots)

    # -------------------------------------------------------------------------
    # Batch application
    # -------------------------------------------------------------------------

    def _apply_with_undo(self, operations: list[WriteOperation]) -> list[Optional[str]]:
        # Read everything first so a bad UPDATE fails before any write
        try:
            current = {
                collection: self._read_rows(collection)
                for collection in {op.collection for op in operations}
            }
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read before batch: {e}")

        for position, op in enumerate(operations):
            if op.kind == WriteKind.UPDATE and op.key not in current[op.collection]:
                staged_put = any(
                    prior.kind == WriteKind.PUT
                    and prior.collection == op.collection
                    and prior.key == op.key
                    for prior in operations[:position]
                )
                if not staged_put:
                    raise NotFoundError(f"Document not found: {op.collection}/{op.key}")

        undo: list[Callable[[], None]] = []
        keys: list[Optional[str]] = []

        try:
            for op in operations:
                keys.append(self._apply_one(op, current[op.collection], undo))
        except Exception as e:
            self._rollback(undo)
            raise StorageError(f"Batch write failed and was rolled back: {e}") from e

        return keys

    def _apply_one(
        self,
        op: WriteOperation,
        docs: dict[str, tuple[int, dict[str, Any]]],
        undo: list[Callable[[], None]],
    ) -> str:
        collection = op.collection

        if op.kind == WriteKind.APPEND or op.key not in docs:
            key = uuid4().hex if op.kind == WriteKind.APPEND else op.key
            self._append_row(collection, [key, json.dumps(op.data)])
            undo.append(lambda: self._delete_by_key(collection, key))
            docs[key] = (-1, dict(op.data))
            return key

        row_number, old_body = docs[op.key]
        new_body = dict(op.data) if op.kind == WriteKind.PUT else {**old_body, **op.data}
        if row_number < 0:
            # Appended earlier in this batch; locate its row now
            row_number = self._find_row(collection, op.key)
        self._write_body(collection, row_number, new_body)
        undo.append(lambda: self._write_body(collection, row_number, old_body))
        docs[op.key] = (row_number, new_body)
        return op.key

    def _delete_by_key(self, collection: str, key: str) -> None:
        row_number = self._find_row(collection, key)
        if row_number is not None:
            self._delete_row(collection, row_number)

    def _rollback(self, undo: list[Callable[[], None]]) -> None:
        for step in reversed(undo):
            try:
                step()
            except Exception as e:
                # Keep undoing the rest; the sheet needs manual repair
                logger.error(
                    "batch_rollback_step_failed",
                    error=str(e),
                    exc_info=True,
                )

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    def _fresh_snapshots(self, collections: set[str]) -> dict[str, list[StoredDocument]]:
        snapshots = {}
        for collection in collections:
            if not self._subscribers.has_subscribers(collection):
                continue
            try:
                snapshot = self._snapshot(collection)
            except Exception as e:
                # The write already happened; subscribers catch up on refresh()
                logger.warning(
                    "snapshot_read_failed",
                    collection=collection,
                    error=str(e),
                )
                continue
            if snapshot != self._last_delivered.get(collection):
                self._last_delivered[collection] = snapshot
                snapshots[collection] = snapshot
        return snapshots

    def _deliver(self, snapshots: dict[str, list[StoredDocument]]) -> None:
        for collection, snapshot in snapshots.items():
            self._subscribers.notify(collection, snapshot)
