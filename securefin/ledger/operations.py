"""
Ledger Operations

The money-movement operations: transfer, split_bill, request_money, and
the settle/decline steps that close a money request.

Every operation follows the same shape:
1. Validate all input (no account is read or locked yet)
2. Lock every account involved, read them, check balances
3. Build every write (balance updates + record appends) as one batch
4. Stamp and commit the batch in a single commit_batch() call

Step 4 runs under one short commit section so timestamps are handed out
in commit order. If anything fails, nothing is observable.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import AsyncIterator, Iterable, Optional
from urllib.parse import urlencode
from uuid import UUID

from pydantic import ValidationError

from securefin.audit import AuditLogger
from securefin.errors import (
    CollaboratorUnavailableError,
    InvalidAmountError,
    InvalidRecipientError,
    LedgerError,
    NotAuthenticatedError,
    RequestNotFoundError,
    RequestNotPendingError,
    collaborator_guard,
)
from securefin.ledger.accounts import AccountStore
from securefin.ledger.clock import LedgerClock
from securefin.models.ledger import (
    MONEY_REQUESTS_COLLECTION,
    TRANSACTIONS_COLLECTION,
    BillSplitResult,
    MoneyRequest,
    RequestStatus,
    Transaction,
    TransactionKind,
)
from securefin.services.storage import DocumentStoreInterface, WriteOperation
from securefin.validation import LedgerValidator
from securefin.validation.validator import AmountInput, DateInput


DEFAULT_PAYMENT_LINK_BASE_URL = "https://secure-pay.com/pay"


def split_share(total: Decimal, people: int, decimal_places: int = 2) -> Decimal:
    """
    Each person's share of a bill, truncated (never rounded up).

    The shares may add up to slightly less than the total; the payer
    absorbs the difference.

    Raises:
        InvalidAmountError: The share has more digits than Decimal can hold
    """
    quantum = Decimal(1).scaleb(-decimal_places)
    try:
        return (total / people).quantize(quantum, rounding=ROUND_DOWN)
    except InvalidOperation as e:
        raise InvalidAmountError("The bill amount is too large to split.") from e


def build_payment_link(
    share: Decimal,
    participants: Iterable[str],
    base_url: str = DEFAULT_PAYMENT_LINK_BASE_URL,
) -> str:
    """Descriptive link for a bill split. Not tied to any payment gateway."""
    query = urlencode(
        {"amount": str(share), "users": ",".join(participants)},
        safe=",@",
    )
    return f"{base_url}?{query}"


class LedgerService:
    """
    Validated, atomic money movements between accounts.
    """

    def __init__(
        self,
        accounts: AccountStore,
        store: DocumentStoreInterface,
        clock: Optional[LedgerClock] = None,
        audit_logger: Optional[AuditLogger] = None,
        share_decimal_places: int = 2,
        payment_link_base_url: str = DEFAULT_PAYMENT_LINK_BASE_URL,
    ):
        self._accounts = accounts
        self._store = store
        self._clock = clock or LedgerClock()
        self._audit_logger = audit_logger
        self._share_decimal_places = share_decimal_places
        self._payment_link_base_url = payment_link_base_url
        self._commit_lock = asyncio.Lock()

    @property
    def accounts(self) -> AccountStore:
        return self._accounts

    # -------------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def _stamped_commit(self) -> AsyncIterator[datetime]:
        """Timestamp for records committed inside this block."""
        async with self._commit_lock:
            yield self._clock.now()

    async def _commit(self, operations: list[WriteOperation]) -> list[Optional[str]]:
        with collaborator_guard():
            return await self._store.commit_batch(operations)

    @asynccontextmanager
    async def _audit_failures(
        self,
        operation: str,
        actor: Optional[str],
        correlation_id: Optional[UUID],
    ) -> AsyncIterator[None]:
        """Audit any failure raised in the block, then re-raise it."""
        try:
            yield
        except CollaboratorUnavailableError as e:
            if self._audit_logger:
                await self._audit_logger.log_collaborator_error(
                    service=e.service,
                    error_message=e.detail,
                    correlation_id=correlation_id,
                )
            raise
        except LedgerError as e:
            if self._audit_logger:
                await self._audit_logger.log_rejected(
                    operation=operation,
                    error_code=e.code,
                    error_message=e.user_message,
                    actor=actor,
                    correlation_id=correlation_id,
                )
            raise
        except Exception as e:
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type=type(e).__name__,
                    error_message=str(e),
                    details={"operation": operation, "actor": actor},
                    correlation_id=correlation_id,
                )
            raise

    async def get_request(self, request_id: str) -> MoneyRequest:
        """
        Raises:
            RequestNotFoundError: If no request has this id
        """
        with collaborator_guard():
            data = await self._store.get(MONEY_REQUESTS_COLLECTION, request_id)
        if data is None:
            raise RequestNotFoundError(request_id)
        try:
            return MoneyRequest.from_document(request_id, data)
        except ValidationError as e:
            raise CollaboratorUnavailableError(
                "storage", f"Malformed money request {request_id}: {e}"
            ) from e

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def transfer(
        self,
        sender_identity: Optional[str],
        recipient_identity: Optional[str],
        amount: AmountInput,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Move amount from sender to recipient.

        Raises:
            NotAuthenticatedError: No sender identity
            MissingFieldError: No recipient
            InvalidAmountError: Amount not a positive number
            InvalidRecipientError: Sender and recipient are the same
            AccountNotFoundError: Either account does not exist
            InsufficientFundsError: Sender balance too low
            CollaboratorUnavailableError: Storage failed (nothing applied)
        """
        async with self._audit_failures("transfer", sender_identity, correlation_id):
            sender = LedgerValidator.require_identity(sender_identity)
            recipient = LedgerValidator.require_field(recipient_identity, "recipient")
            value = LedgerValidator.parse_amount(amount)
            if recipient == sender:
                raise InvalidRecipientError()

            async with self._accounts.locks.hold(sender, recipient):
                sender_account = await self._accounts.get_account(sender)
                recipient_account = await self._accounts.get_account(recipient)
                _, debit = self._accounts.plan_adjustment(sender_account, -value)
                _, credit = self._accounts.plan_adjustment(recipient_account, value)

                async with self._stamped_commit() as timestamp:
                    txn = Transaction(
                        kind=TransactionKind.SENT,
                        amount=value,
                        sender_identity=sender,
                        recipient_identity=recipient,
                        timestamp=timestamp,
                    )
                    keys = await self._commit([
                        debit,
                        credit,
                        WriteOperation.append(TRANSACTIONS_COLLECTION, txn.to_record()),
                    ])

        txn = txn.model_copy(update={"id": keys[-1]})
        if self._audit_logger:
            await self._audit_logger.log_money_sent(
                transaction_id=txn.id,
                sender=sender,
                recipient=recipient,
                amount=str(value),
                correlation_id=correlation_id,
            )
        return txn

    async def split_bill(
        self,
        payer_identity: Optional[str],
        amount: AmountInput,
        participant_identities: Optional[Iterable[str]],
        correlation_id: Optional[UUID] = None,
    ) -> BillSplitResult:
        """
        Split a bill evenly between the payer and the participants.

        The payer is debited one share; each participant is credited one
        share and gets their own Bill Split record.

        Raises:
            NotAuthenticatedError, InvalidAmountError,
            EmptyParticipantSetError, InvalidRecipientError (payer listed
            as a participant), AccountNotFoundError,
            InsufficientFundsError, CollaboratorUnavailableError
        """
        async with self._audit_failures("split_bill", payer_identity, correlation_id):
            payer = LedgerValidator.require_identity(payer_identity)
            total = LedgerValidator.parse_amount(amount)
            participants = LedgerValidator.normalize_participants(participant_identities)
            if payer in participants:
                raise InvalidRecipientError(
                    "You are already part of the split; select only the other people."
                )

            people = len(participants) + 1
            share = split_share(total, people, self._share_decimal_places)
            if share <= 0:
                raise InvalidAmountError(
                    f"The bill is too small to split between {people} people."
                )

            async with self._accounts.locks.hold(payer, *participants):
                payer_account = await self._accounts.get_account(payer)
                participant_accounts = [
                    await self._accounts.get_account(identity)
                    for identity in participants
                ]

                payer_balance, debit = self._accounts.plan_adjustment(payer_account, -share)
                balance_writes = [debit] + [
                    self._accounts.plan_adjustment(account, share)[1]
                    for account in participant_accounts
                ]

                async with self._stamped_commit() as timestamp:
                    transactions = [
                        Transaction(
                            kind=TransactionKind.BILL_SPLIT,
                            amount=share,
                            sender_identity=payer,
                            recipient_identity=identity,
                            timestamp=timestamp,
                        )
                        for identity in participants
                    ]
                    keys = await self._commit(balance_writes + [
                        WriteOperation.append(TRANSACTIONS_COLLECTION, txn.to_record())
                        for txn in transactions
                    ])

        transactions = [
            txn.model_copy(update={"id": key})
            for txn, key in zip(transactions, keys[len(balance_writes):])
        ]
        result = BillSplitResult(
            payer_identity=payer,
            total_amount=total,
            share=share,
            participant_identities=participants,
            transactions=transactions,
            payment_link=build_payment_link(share, participants, self._payment_link_base_url),
            payer_balance=payer_balance,
        )

        if self._audit_logger:
            await self._audit_logger.log_bill_split(
                payer=payer,
                total_amount=str(total),
                share=str(share),
                participants=participants,
                correlation_id=correlation_id,
            )
        return result

    async def request_money(
        self,
        requester_identity: Optional[str],
        payer_identity: Optional[str],
        amount: AmountInput,
        due_date: DateInput,
        correlation_id: Optional[UUID] = None,
    ) -> MoneyRequest:
        """
        Record a Pending request for payer to pay requester.

        No balance changes until the request is settled.
        """
        async with self._audit_failures("request_money", requester_identity, correlation_id):
            requester = LedgerValidator.require_identity(requester_identity)
            payer = LedgerValidator.require_field(payer_identity, "recipient")
            value = LedgerValidator.parse_amount(amount)
            due: date = LedgerValidator.parse_due_date(due_date)
            if payer == requester:
                raise InvalidRecipientError("You cannot request money from yourself.")

            await self._accounts.get_account(payer)

            async with self._stamped_commit() as timestamp:
                request = MoneyRequest(
                    sender_identity=requester,
                    recipient_identity=payer,
                    amount=value,
                    due_date=due,
                    status=RequestStatus.PENDING,
                    timestamp=timestamp,
                )
                keys = await self._commit([
                    WriteOperation.append(MONEY_REQUESTS_COLLECTION, request.to_record()),
                ])

        request = request.model_copy(update={"id": keys[0]})
        if self._audit_logger:
            await self._audit_logger.log_money_requested(
                request_id=request.id,
                requester=requester,
                payer=payer,
                amount=str(value),
                due_date=due.isoformat(),
                correlation_id=correlation_id,
            )
        return request

    async def _pending_request_for_payer(self, request_id: str, payer: str) -> MoneyRequest:
        request = await self.get_request(request_id)
        if request.payer != payer:
            raise NotAuthenticatedError(
                f"Only {request.payer} can respond to this money request."
            )
        if not request.is_pending:
            raise RequestNotPendingError(request_id, request.status.value)
        return request

    async def settle_request(
        self,
        request_id: Optional[str],
        payer_identity: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> tuple[MoneyRequest, Transaction]:
        """
        Pay a Pending request: transfer its amount from payer to
        requester and mark it Paid, in one batch.

        Raises:
            NotAuthenticatedError: Caller is not the request's payer
            RequestNotFoundError, RequestNotPendingError,
            AccountNotFoundError, InsufficientFundsError,
            CollaboratorUnavailableError
        """
        async with self._audit_failures("settle_request", payer_identity, correlation_id):
            payer = LedgerValidator.require_identity(payer_identity)
            request_id = LedgerValidator.require_field(request_id, "request")
            request = await self._pending_request_for_payer(request_id, payer)

            async with self._accounts.locks.hold(payer, request.requester):
                # Re-check under the payer's lock: a concurrent settle may have won
                request = await self._pending_request_for_payer(request_id, payer)
                payer_account = await self._accounts.get_account(payer)
                requester_account = await self._accounts.get_account(request.requester)
                _, debit = self._accounts.plan_adjustment(payer_account, -request.amount)
                _, credit = self._accounts.plan_adjustment(requester_account, request.amount)

                async with self._stamped_commit() as timestamp:
                    txn = Transaction(
                        kind=TransactionKind.REQUEST_PAYMENT,
                        amount=request.amount,
                        sender_identity=payer,
                        recipient_identity=request.requester,
                        timestamp=timestamp,
                    )
                    settled = request.model_copy(
                        update={"status": RequestStatus.PAID, "settled_at": timestamp}
                    )
                    keys = await self._commit([
                        debit,
                        credit,
                        WriteOperation.append(TRANSACTIONS_COLLECTION, txn.to_record()),
                        WriteOperation.update(
                            MONEY_REQUESTS_COLLECTION,
                            request_id,
                            settled.model_dump(mode="json", include={"status", "settled_at"}),
                        ),
                    ])

        txn = txn.model_copy(update={"id": keys[2]})
        if self._audit_logger:
            await self._audit_logger.log_request_settled(
                request_id=request_id,
                payer=payer,
                requester=settled.requester,
                amount=str(settled.amount),
                transaction_id=txn.id,
                correlation_id=correlation_id,
            )
        return settled, txn

    async def decline_request(
        self,
        request_id: Optional[str],
        payer_identity: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> MoneyRequest:
        """Mark a Pending request Declined. No money moves."""
        async with self._audit_failures("decline_request", payer_identity, correlation_id):
            payer = LedgerValidator.require_identity(payer_identity)
            request_id = LedgerValidator.require_field(request_id, "request")

            async with self._accounts.locks.hold(payer):
                request = await self._pending_request_for_payer(request_id, payer)
                async with self._stamped_commit() as timestamp:
                    declined = request.model_copy(
                        update={"status": RequestStatus.DECLINED, "settled_at": timestamp}
                    )
                    await self._commit([
                        WriteOperation.update(
                            MONEY_REQUESTS_COLLECTION,
                            request_id,
                            declined.model_dump(mode="json", include={"status", "settled_at"}),
                        ),
                    ])

        if self._audit_logger:
            await self._audit_logger.log_request_declined(
                request_id=request_id,
                payer=payer,
                correlation_id=correlation_id,
            )
        return declined
