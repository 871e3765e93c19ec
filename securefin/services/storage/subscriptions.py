"""
Subscription handles and the per-collection subscriber registry.

Shared by every store implementation and by the feed projection, so
"unsubscribe" means the same thing everywhere: no further callbacks,
and the callback reference is dropped immediately.
"""

import itertools
from typing import Any, Callable, Optional

import structlog


logger = structlog.get_logger(__name__)


class Subscription:
    """
    Cancellation handle for a live subscription.

    unsubscribe() is idempotent.
    """

    def __init__(self, cancel: Callable[[], None]):
        self._cancel: Optional[Callable[[], None]] = cancel

    @property
    def active(self) -> bool:
        return self._cancel is not None

    def unsubscribe(self) -> None:
        cancel, self._cancel = self._cancel, None
        if cancel is not None:
            cancel()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.unsubscribe()


class SubscriberRegistry:
    """
    Callbacks grouped by topic (a collection name, or an identity).

    Callbacks are invoked in subscription order. A callback that raises
    is logged and skipped; it never prevents delivery to the others or
    fails the write that triggered the notification.
    """

    def __init__(self):
        self._callbacks: dict[str, dict[int, Callable[[Any], None]]] = {}
        self._ids = itertools.count(1)

    def add(self, topic: str, callback: Callable[[Any], None]) -> Subscription:
        sub_id = next(self._ids)
        self._callbacks.setdefault(topic, {})[sub_id] = callback

        def cancel() -> None:
            callbacks = self._callbacks.get(topic)
            if callbacks is not None:
                callbacks.pop(sub_id, None)
                if not callbacks:
                    del self._callbacks[topic]

        return Subscription(cancel)

    def has_subscribers(self, topic: str) -> bool:
        return bool(self._callbacks.get(topic))

    def topics(self) -> list[str]:
        return list(self._callbacks)

    def count(self, topic: Optional[str] = None) -> int:
        if topic is not None:
            return len(self._callbacks.get(topic, {}))
        return sum(len(c) for c in self._callbacks.values())

    def notify(self, topic: str, payload: Any) -> None:
        # Copy: a callback may unsubscribe itself (or others) while we iterate
        for sub_id, callback in list(self._callbacks.get(topic, {}).items()):
            if sub_id not in self._callbacks.get(topic, {}):
                continue
            try:
                callback(payload)
            except Exception as e:
                logger.error(
                    "subscriber_callback_failed",
                    topic=topic,
                    subscription_id=sub_id,
                    error=str(e),
                    exc_info=True,
                )
