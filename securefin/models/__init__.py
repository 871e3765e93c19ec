"""
Data Models Package

This package contains all Pydantic models used by the Secure Finance ledger.
All data flowing through the system must conform to these schemas.
"""

from securefin.models.ledger import (
    AUDIT_COLLECTION,
    MONEY_REQUESTS_COLLECTION,
    TRANSACTIONS_COLLECTION,
    USERS_COLLECTION,
    Account,
    BillSplitResult,
    FeedSnapshot,
    MoneyRequest,
    RequestStatus,
    Transaction,
    TransactionKind,
    UserIdentity,
)
from securefin.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Collections
    "AUDIT_COLLECTION",
    "MONEY_REQUESTS_COLLECTION",
    "TRANSACTIONS_COLLECTION",
    "USERS_COLLECTION",
    # Ledger models
    "Account",
    "BillSplitResult",
    "FeedSnapshot",
    "MoneyRequest",
    "RequestStatus",
    "Transaction",
    "TransactionKind",
    "UserIdentity",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
