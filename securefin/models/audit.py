"""
Audit Models for Secure Finance

Every significant action in the system is logged for audit purposes.
This provides:
1. Complete traceability of every money movement
2. Debugging information when a collaborator fails
3. Ability to reconstruct history alongside the transaction log

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from securefin.models.ledger import utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Session
    USER_SIGNED_IN = "user_signed_in"
    USER_SIGNED_OUT = "user_signed_out"
    ACCOUNT_CREATED = "account_created"

    # Ledger operations
    MONEY_SENT = "money_sent"
    BILL_SPLIT = "bill_split"
    MONEY_REQUESTED = "money_requested"
    REQUEST_SETTLED = "request_settled"
    REQUEST_DECLINED = "request_declined"
    OPERATION_REJECTED = "operation_rejected"

    # System events
    SYSTEM_ERROR = "system_error"
    COLLABORATOR_ERROR = "collaborator_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Who did it
    actor: Optional[str] = Field(
        default=None,
        description="Identity of the signed-in user, if any"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'account', 'transaction', 'money_request')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., everything one button press did)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "actor": self.actor,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_record(self) -> dict[str, Any]:
        """Document body for the audit collection."""
        return self.model_dump(mode="json")


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.money_sent(txn, correlation_id)
        event = AuditEventBuilder.operation_rejected("transfer", "insufficient_funds", ...)
    """

    @staticmethod
    def user_signed_in(identity: str, correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_SIGNED_IN,
            actor=identity,
            entity_type="account",
            entity_id=identity,
            correlation_id=correlation_id,
            description=f"User signed in: {identity}",
            is_user_action=True,
        )

    @staticmethod
    def user_signed_out(identity: str, correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_SIGNED_OUT,
            actor=identity,
            entity_type="account",
            entity_id=identity,
            correlation_id=correlation_id,
            description=f"User signed out: {identity}",
            is_user_action=True,
        )

    @staticmethod
    def account_created(
        identity: str,
        opening_balance: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_CREATED,
            actor=identity,
            entity_type="account",
            entity_id=identity,
            correlation_id=correlation_id,
            description=f"Account created with opening balance {opening_balance}",
            details={
                "opening_balance": opening_balance,
            },
        )

    @staticmethod
    def money_sent(
        transaction_id: Optional[str],
        sender: str,
        recipient: str,
        amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MONEY_SENT,
            actor=sender,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"{sender} sent {amount} to {recipient}",
            details={
                "sender": sender,
                "recipient": recipient,
                "amount": amount,
            },
            is_user_action=True,
        )

    @staticmethod
    def bill_split(
        payer: str,
        total_amount: str,
        share: str,
        participants: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BILL_SPLIT,
            actor=payer,
            entity_type="account",
            entity_id=payer,
            correlation_id=correlation_id,
            description=(
                f"Bill of {total_amount} split among {len(participants) + 1} people, "
                f"{share} each"
            ),
            details={
                "total_amount": total_amount,
                "share": share,
                "participants": participants,
            },
            is_user_action=True,
        )

    @staticmethod
    def money_requested(
        request_id: Optional[str],
        requester: str,
        payer: str,
        amount: str,
        due_date: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MONEY_REQUESTED,
            actor=requester,
            entity_type="money_request",
            entity_id=request_id,
            correlation_id=correlation_id,
            description=f"{requester} requested {amount} from {payer} (due {due_date})",
            details={
                "payer": payer,
                "amount": amount,
                "due_date": due_date,
            },
            is_user_action=True,
        )

    @staticmethod
    def request_settled(
        request_id: str,
        payer: str,
        requester: str,
        amount: str,
        transaction_id: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REQUEST_SETTLED,
            actor=payer,
            entity_type="money_request",
            entity_id=request_id,
            correlation_id=correlation_id,
            description=f"{payer} paid {amount} to {requester}",
            details={
                "requester": requester,
                "amount": amount,
                "transaction_id": transaction_id,
            },
            is_user_action=True,
        )

    @staticmethod
    def request_declined(
        request_id: str,
        payer: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REQUEST_DECLINED,
            actor=payer,
            entity_type="money_request",
            entity_id=request_id,
            correlation_id=correlation_id,
            description=f"{payer} declined money request {request_id}",
            is_user_action=True,
        )

    @staticmethod
    def operation_rejected(
        operation: str,
        error_code: str,
        error_message: str,
        actor: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_REJECTED,
            severity=AuditSeverity.WARNING,
            actor=actor,
            correlation_id=correlation_id,
            description=f"{operation} rejected: {error_code}",
            details={
                "operation": operation,
            },
            error_code=error_code,
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def collaborator_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COLLABORATOR_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_code="collaborator_unavailable",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
