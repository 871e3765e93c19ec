"""Accounts and the operations that move money between them."""

from securefin.ledger.accounts import AccountStore, DEFAULT_OPENING_BALANCE
from securefin.ledger.clock import LedgerClock
from securefin.ledger.locks import AccountLocks
from securefin.ledger.operations import (
    DEFAULT_PAYMENT_LINK_BASE_URL,
    LedgerService,
    build_payment_link,
    split_share,
)

__all__ = [
    "AccountStore",
    "DEFAULT_OPENING_BALANCE",
    "LedgerClock",
    "AccountLocks",
    "LedgerService",
    "DEFAULT_PAYMENT_LINK_BASE_URL",
    "build_payment_link",
    "split_share",
]
