"""
In-Memory Document Store

The default backend for local development and the store every test runs
against. It honours the full interface contract, including atomic
batches and push notifications, so ledger behaviour is identical to a
real backend.

Batches are staged on copies of the touched collections and swapped in
only once every operation has been applied, so a failing operation
leaves nothing behind.
"""

import asyncio
import copy
from typing import Any, Optional
from uuid import uuid4

from securefin.services.storage.interface import (
    DocumentStoreInterface,
    NotFoundError,
    SnapshotCallback,
    StoredDocument,
    WriteKind,
    WriteOperation,
)
from securefin.services.storage.subscriptions import SubscriberRegistry, Subscription


class InMemoryDocumentStore(DocumentStoreInterface):
    """
    Dict-backed document store.

    Collections keep insertion order (plain dicts), which gives
    list_all() the natural order the feed relies on.
    """

    def __init__(self):
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()
        self._subscribers = SubscriberRegistry()

    @staticmethod
    def _new_key() -> str:
        return uuid4().hex

    def _snapshot(self, collection: str) -> list[StoredDocument]:
        docs = self._collections.get(collection, {})
        return [
            StoredDocument(id=key, data=copy.deepcopy(data))
            for key, data in docs.items()
        ]

    def _notify(self, snapshots: dict[str, list[StoredDocument]]) -> None:
        for collection, snapshot in snapshots.items():
            self._subscribers.notify(collection, snapshot)

    async def get(self, collection: str, key: str) -> Optional[dict[str, Any]]:
        async with self._lock:
            data = self._collections.get(collection, {}).get(key)
            return copy.deepcopy(data) if data is not None else None

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
            return self._snapshot(collection)

    async def subscribe(
        self,
        collection: str,
        on_change: SnapshotCallback,
    ) -> Subscription:
        async with self._lock:
            subscription = self._subscribers.add(collection, on_change)
            snapshot = self._snapshot(collection)
        # Initial snapshot, like a live query's first result
        on_change(snapshot)
        return subscription

    async def commit_batch(
        self,
        operations: list[WriteOperation],
    ) -> list[Optional[str]]:
        if not operations:
            return []

        async with self._lock:
            staged: dict[str, dict[str, dict[str, Any]]] = {}
            keys: list[Optional[str]] = []

            for op in operations:
                if op.collection not in staged:
                    staged[op.collection] = copy.deepcopy(
                        self._collections.get(op.collection, {})
                    )
                docs = staged[op.collection]

                if op.kind == WriteKind.PUT:
                    docs[op.key] = copy.deepcopy(op.data)
                    keys.append(op.key)
                elif op.kind == WriteKind.UPDATE:
                    if op.key not in docs:
                        raise NotFoundError(
                            f"Document not found: {op.collection}/{op.key}"
                        )
                    docs[op.key].update(copy.deepcopy(op.data))
                    keys.append(op.key)
                else:
                    key = self._new_key()
                    docs[key] = copy.deepcopy(op.data)
                    keys.append(key)

            self._collections.update(staged)
            snapshots = {
                collection: self._snapshot(collection)
                for collection in staged
                if self._subscribers.has_subscribers(collection)
            }

        self._notify(snapshots)
        return keys
