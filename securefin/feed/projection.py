"""
Feed Projection

Per-user views of the transaction log and money requests.

The feed is always derived, never stored: it can be recomputed from the
two log collections at any time. The pure functions below do the
filtering; FeedProjection wires them to the store's live subscriptions
and pushes each observer a fresh FeedSnapshot whenever its own view
changes.
"""

import inspect
import weakref
from typing import Callable, Iterable, Optional, Type, TypeVar

import structlog
from pydantic import ValidationError

from securefin.errors import collaborator_guard
from securefin.models.ledger import (
    MONEY_REQUESTS_COLLECTION,
    TRANSACTIONS_COLLECTION,
    FeedSnapshot,
    MoneyRequest,
    Transaction,
)
from securefin.services.storage import (
    DocumentStoreInterface,
    StoredDocument,
    SubscriberRegistry,
    Subscription,
)


logger = structlog.get_logger(__name__)

RecordT = TypeVar("RecordT", Transaction, MoneyRequest)
FeedCallback = Callable[[FeedSnapshot], None]


def transactions_for(transactions: Iterable[Transaction], identity: str) -> list[Transaction]:
    """Transactions where identity is sender or recipient, in log order."""
    return [txn for txn in transactions if txn.involves(identity)]


def pending_requests_for(requests: Iterable[MoneyRequest], identity: str) -> list[MoneyRequest]:
    """
    Money requests where identity is requester or payer, in log order.

    Every status is included; callers wanting only open requests use
    FeedSnapshot.pending_requests.
    """
    return [request for request in requests if request.involves(identity)]


def parse_records(documents: Iterable[StoredDocument], model: Type[RecordT]) -> list[RecordT]:
    """Turn stored documents into records, skipping any that don't parse."""
    records = []
    for doc in documents:
        try:
            records.append(model.from_document(doc.id, doc.data))
        except (ValidationError, TypeError) as e:
            logger.warning(
                "malformed_record",
                model=model.__name__,
                doc_id=doc.id,
                error=str(e),
            )
    return records


def _strong_ref(callback: FeedCallback) -> Callable[[], FeedCallback]:
    return lambda: callback


class FeedProjection:
    """
    Live feed views over the store.

    Reads (transactions_for, pending_requests_for, snapshot_for) always
    go to the store. Observers registered with watch() are fed from the
    projection's own subscriptions, active between start() and stop().
    """

    def __init__(self, store: DocumentStoreInterface):
        self._store = store
        self._transactions: Optional[list[Transaction]] = None
        self._requests: Optional[list[MoneyRequest]] = None
        self._store_subscriptions: list[Subscription] = []
        self._observers = SubscriberRegistry()

    @property
    def running(self) -> bool:
        return bool(self._store_subscriptions)

    # -------------------------------------------------------------------------
    # On-demand reads
    # -------------------------------------------------------------------------

    async def _load(self, collection: str, model: Type[RecordT]) -> list[RecordT]:
        with collaborator_guard():
            documents = await self._store.list_all(collection)
        return parse_records(documents, model)

    async def transactions_for(self, identity: str) -> list[Transaction]:
        transactions = await self._load(TRANSACTIONS_COLLECTION, Transaction)
        return transactions_for(transactions, identity)

    async def pending_requests_for(self, identity: str) -> list[MoneyRequest]:
        requests = await self._load(MONEY_REQUESTS_COLLECTION, MoneyRequest)
        return pending_requests_for(requests, identity)

    async def snapshot_for(self, identity: str) -> FeedSnapshot:
        return FeedSnapshot(
            identity=identity,
            transactions=await self.transactions_for(identity),
            money_requests=await self.pending_requests_for(identity),
        )

    # -------------------------------------------------------------------------
    # Live views
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Subscribe to both log collections. Safe to call twice."""
        if self.running:
            return
        with collaborator_guard():
            self._store_subscriptions.append(
                await self._store.subscribe(TRANSACTIONS_COLLECTION, self._on_transactions)
            )
            self._store_subscriptions.append(
                await self._store.subscribe(MONEY_REQUESTS_COLLECTION, self._on_requests)
            )
        logger.info("feed_projection_started", observers=self._observers.count())

    async def stop(self) -> None:
        for subscription in self._store_subscriptions:
            subscription.unsubscribe()
        self._store_subscriptions = []
        self._transactions = None
        self._requests = None
        logger.info("feed_projection_stopped")

    def _on_transactions(self, documents: list[StoredDocument]) -> None:
        self._transactions = parse_records(documents, Transaction)
        self._publish()

    def _on_requests(self, documents: list[StoredDocument]) -> None:
        self._requests = parse_records(documents, MoneyRequest)
        self._publish()

    def _view(self, identity: str) -> Optional[FeedSnapshot]:
        if self._transactions is None or self._requests is None:
            return None
        return FeedSnapshot(
            identity=identity,
            transactions=transactions_for(self._transactions, identity),
            money_requests=pending_requests_for(self._requests, identity),
        )

    def _publish(self) -> None:
        for identity in self._observers.topics():
            view = self._view(identity)
            if view is not None:
                self._observers.notify(identity, view)

    @property
    def observer_count(self) -> int:
        return self._observers.count()

    def watch(
        self,
        identity: str,
        on_update: FeedCallback,
        weak: bool = False,
    ) -> Subscription:
        """
        Push identity's FeedSnapshot to on_update whenever it changes.

        If the projection is running, the current view is delivered
        straight away.

        With weak=True only a weak reference to on_update is held. Once
        its owner is garbage collected the observer unsubscribes itself
        on the next publish.
        """
        if not weak:
            callback_ref = _strong_ref(on_update)
        elif inspect.ismethod(on_update):
            callback_ref = weakref.WeakMethod(on_update)
        else:
            callback_ref = weakref.ref(on_update)
        last: list[Optional[FeedSnapshot]] = [None]

        def deliver(view: FeedSnapshot) -> None:
            callback = callback_ref()
            if callback is None:
                subscription.unsubscribe()
                logger.debug("feed_observer_released", identity=identity)
                return
            if view == last[0]:
                return
            last[0] = view
            callback(view)

        subscription = self._observers.add(identity, deliver)
        view = self._view(identity)
        if view is not None:
            deliver(view)
        return subscription
