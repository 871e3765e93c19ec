"""Per-user feed views derived from the transaction and request logs."""

from securefin.feed.projection import (
    FeedCallback,
    FeedProjection,
    parse_records,
    pending_requests_for,
    transactions_for,
)

__all__ = [
    "FeedCallback",
    "FeedProjection",
    "parse_records",
    "pending_requests_for",
    "transactions_for",
]
