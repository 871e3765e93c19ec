"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Complete traceability of money movements
2. Debugging capability when a collaborator fails
3. Users can see the history of their own actions

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from securefin.models.audit import AuditEvent, AuditEventBuilder
from securefin.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit collection of the document store (for persistence)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("securefin.audit")

    @property
    def storage(self) -> Optional[AuditStorageInterface]:
        return self._storage

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_signed_in(self, identity: str, correlation_id: UUID) -> None:
        await self.log(AuditEventBuilder.user_signed_in(identity, correlation_id))

    async def log_signed_out(self, identity: str, correlation_id: UUID) -> None:
        await self.log(AuditEventBuilder.user_signed_out(identity, correlation_id))

    async def log_account_created(
        self,
        identity: str,
        opening_balance: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log first-time account creation."""
        await self.log(AuditEventBuilder.account_created(
            identity=identity,
            opening_balance=opening_balance,
            correlation_id=correlation_id,
        ))

    async def log_money_sent(
        self,
        transaction_id: Optional[str],
        sender: str,
        recipient: str,
        amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a completed transfer."""
        await self.log(AuditEventBuilder.money_sent(
            transaction_id=transaction_id,
            sender=sender,
            recipient=recipient,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_bill_split(
        self,
        payer: str,
        total_amount: str,
        share: str,
        participants: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a completed bill split."""
        await self.log(AuditEventBuilder.bill_split(
            payer=payer,
            total_amount=total_amount,
            share=share,
            participants=participants,
            correlation_id=correlation_id,
        ))

    async def log_money_requested(
        self,
        request_id: Optional[str],
        requester: str,
        payer: str,
        amount: str,
        due_date: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a new money request."""
        await self.log(AuditEventBuilder.money_requested(
            request_id=request_id,
            requester=requester,
            payer=payer,
            amount=amount,
            due_date=due_date,
            correlation_id=correlation_id,
        ))

    async def log_request_settled(
        self,
        request_id: str,
        payer: str,
        requester: str,
        amount: str,
        transaction_id: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.request_settled(
            request_id=request_id,
            payer=payer,
            requester=requester,
            amount=amount,
            transaction_id=transaction_id,
            correlation_id=correlation_id,
        ))

    async def log_request_declined(
        self,
        request_id: str,
        payer: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.request_declined(
            request_id=request_id,
            payer=payer,
            correlation_id=correlation_id,
        ))

    async def log_rejected(
        self,
        operation: str,
        error_code: str,
        error_message: str,
        actor: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an operation that failed validation."""
        await self.log(AuditEventBuilder.operation_rejected(
            operation=operation,
            error_code=error_code,
            error_message=error_message,
            actor=actor,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_collaborator_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a storage or identity provider failure."""
        await self.log(AuditEventBuilder.collaborator_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., a button press).
    Pass it through all subsequent operations.
    """
    return uuid4()
