"""
Core Data Models for the Ledger

These models define the strict schemas for everything the ledger stores
or hands back to callers. They are designed to:
1. Enforce type safety at runtime
2. Keep money as Decimal end to end (never float)
3. Be serializable for the document store and the audit log

DESIGN DECISION: The storage layer only ever sees JSON-compatible dicts.
Models convert themselves with to_record() / from_document(), so a
storage backend never needs to know about Decimal or datetime.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Collection names in the document store
USERS_COLLECTION = "users"
TRANSACTIONS_COLLECTION = "transactions"
MONEY_REQUESTS_COLLECTION = "moneyRequests"
AUDIT_COLLECTION = "auditLog"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class TransactionKind(str, Enum):
    """
    Kinds of balance movement recorded in the transaction log.

    The values are what the feed shows, so they read as labels.
    """
    SENT = "Sent"
    BILL_SPLIT = "Bill Split"
    REQUEST_PAYMENT = "Request Payment"


class RequestStatus(str, Enum):
    """
    Money request lifecycle.

    PENDING is the only non-terminal state.
    """
    PENDING = "Pending"
    PAID = "Paid"
    DECLINED = "Declined"


# =============================================================================
# IDENTITY & ACCOUNTS
# =============================================================================

class UserIdentity(BaseModel):
    """Verified user identity as issued by the identity provider."""
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(
        ...,
        min_length=1,
        max_length=320,
        description="Unique identity of the user (their email)"
    )
    display_name: str = Field(
        default="",
        max_length=200,
        description="Name shown next to the account"
    )
    avatar_url: Optional[str] = Field(
        default=None,
        description="Profile picture URL"
    )


class Account(BaseModel):
    """
    A user account holding a balance.

    The identity is the document key; it never changes once created.
    Balance is only mutated by ledger operations.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    identity: str = Field(
        ...,
        min_length=1,
        description="Account key (the user's email)"
    )
    display_name: str = Field(
        default="",
        max_length=200,
    )
    avatar_url: Optional[str] = None
    balance: Decimal = Field(
        default=Decimal("0"),
        description="Current balance"
    )
    created_at: datetime = Field(default_factory=utc_now)

    def to_record(self) -> dict[str, Any]:
        """Document body for the users collection (identity is the key)."""
        return self.model_dump(mode="json", exclude={"identity"})

    @classmethod
    def from_document(cls, identity: str, data: dict[str, Any]) -> "Account":
        return cls(identity=identity, **data)


# =============================================================================
# LEDGER RECORDS
# =============================================================================

class Transaction(BaseModel):
    """
    One balance movement between two accounts.

    Immutable once created. A bill split produces one of these per
    participant, never one aggregate record.
    """
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = Field(
        default=None,
        description="Store-generated document id"
    )
    kind: TransactionKind
    amount: Decimal = Field(..., gt=0)
    sender_identity: str = Field(..., min_length=1)
    recipient_identity: str = Field(..., min_length=1)
    timestamp: datetime = Field(default_factory=utc_now)

    def involves(self, identity: str) -> bool:
        return identity in (self.sender_identity, self.recipient_identity)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude={"id"})

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> "Transaction":
        return cls(id=doc_id, **data)


class MoneyRequest(BaseModel):
    """
    A request from one user (the sender) asking another (the recipient)
    to pay them.

    No money moves when a request is created; settling it performs the
    actual transfer from recipient to sender.
    """

    id: Optional[str] = None
    sender_identity: str = Field(
        ...,
        min_length=1,
        description="Who is asking for money (the requester)"
    )
    recipient_identity: str = Field(
        ...,
        min_length=1,
        description="Who is asked to pay (the payer)"
    )
    amount: Decimal = Field(..., gt=0)
    due_date: date
    status: RequestStatus = RequestStatus.PENDING
    timestamp: datetime = Field(default_factory=utc_now)
    settled_at: Optional[datetime] = None

    @property
    def requester(self) -> str:
        return self.sender_identity

    @property
    def payer(self) -> str:
        return self.recipient_identity

    @property
    def is_pending(self) -> bool:
        return self.status == RequestStatus.PENDING

    def involves(self, identity: str) -> bool:
        return identity in (self.sender_identity, self.recipient_identity)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude={"id"})

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> "MoneyRequest":
        return cls(id=doc_id, **data)


# =============================================================================
# OPERATION RESULTS & VIEWS
# =============================================================================

class BillSplitResult(BaseModel):
    """What a bill split did, for showing back to the payer."""

    payer_identity: str
    total_amount: Decimal
    share: Decimal = Field(..., description="Amount each person pays")
    participant_identities: list[str]
    transactions: list[Transaction] = Field(default_factory=list)
    payment_link: str = Field(
        ...,
        description="Opaque descriptive link embedding share and participants"
    )
    payer_balance: Decimal

    @property
    def people_count(self) -> int:
        """Participants plus the payer."""
        return len(self.participant_identities) + 1


class FeedSnapshot(BaseModel):
    """Per-user view of the transaction log and money requests."""
    model_config = ConfigDict(frozen=True)

    identity: str
    transactions: tuple[Transaction, ...] = ()
    money_requests: tuple[MoneyRequest, ...] = ()

    @field_validator("transactions", "money_requests", mode="before")
    @classmethod
    def _as_tuple(cls, v):
        return tuple(v)

    @property
    def pending_requests(self) -> list[MoneyRequest]:
        return [r for r in self.money_requests if r.is_pending]
