"""
Account Store

Accounts live in the users collection, keyed by identity (email).
An account is created the first time its owner signs in and is never
deleted. Its balance is changed only through adjust_balance() or by a
ledger operation committing a plan_adjustment() write.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog
from pydantic import ValidationError

from securefin.audit import AuditLogger
from securefin.errors import (
    AccountNotFoundError,
    InsufficientFundsError,
    collaborator_guard,
)
from securefin.ledger.locks import AccountLocks
from securefin.models.ledger import USERS_COLLECTION, Account
from securefin.services.storage import DocumentStoreInterface, WriteOperation
from securefin.validation import LedgerValidator


logger = structlog.get_logger(__name__)

DEFAULT_OPENING_BALANCE = Decimal("1000")


class AccountStore:
    """
    CRUD and balance mutation for user accounts.

    Debits are checked against the balance; credits never are.
    """

    def __init__(
        self,
        store: DocumentStoreInterface,
        locks: Optional[AccountLocks] = None,
        opening_balance: Decimal = DEFAULT_OPENING_BALANCE,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._locks = locks or AccountLocks()
        self._opening_balance = opening_balance
        self._audit_logger = audit_logger

    @property
    def locks(self) -> AccountLocks:
        return self._locks

    @property
    def opening_balance(self) -> Decimal:
        return self._opening_balance

    async def _find(self, identity: str) -> Optional[Account]:
        with collaborator_guard():
            data = await self._store.get(USERS_COLLECTION, identity)
        return Account.from_document(identity, data) if data is not None else None

    async def get_or_create(
        self,
        identity: Optional[str],
        display_name: str = "",
        avatar_url: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Account:
        """
        Return the account for identity, creating it on first sign-in.

        Existing accounts are returned as stored; display name and
        avatar are only taken at creation.
        """
        identity = LedgerValidator.require_identity(identity)

        async with self._locks.hold(identity):
            existing = await self._find(identity)
            if existing is not None:
                return existing

            account = Account(
                identity=identity,
                display_name=display_name or identity,
                avatar_url=avatar_url,
                balance=self._opening_balance,
            )
            with collaborator_guard():
                await self._store.put(USERS_COLLECTION, identity, account.to_record())

        if self._audit_logger:
            await self._audit_logger.log_account_created(
                identity=identity,
                opening_balance=str(account.balance),
                correlation_id=correlation_id,
            )
        return account

    async def get_account(self, identity: str) -> Account:
        """
        Raises:
            AccountNotFoundError: If identity has no account
        """
        account = await self._find(identity)
        if account is None:
            raise AccountNotFoundError(identity)
        return account

    async def get_balance(self, identity: str) -> Decimal:
        return (await self.get_account(identity)).balance

    @staticmethod
    def plan_adjustment(account: Account, delta: Decimal) -> tuple[Decimal, WriteOperation]:
        """
        Check a balance change and build the write that applies it.

        Nothing is written here; the caller commits the returned
        operation (usually inside a larger batch).

        Raises:
            InsufficientFundsError: If delta is a debit and the result
                                    would be negative
        """
        new_balance = account.balance + delta
        if delta < 0 and new_balance < 0:
            raise InsufficientFundsError(account.identity, account.balance, -delta)
        operation = WriteOperation.update(
            USERS_COLLECTION,
            account.identity,
            {"balance": str(new_balance)},
        )
        return new_balance, operation

    async def adjust_balance(self, identity: str, delta: Decimal) -> Decimal:
        """
        Apply balance += delta atomically for one account.

        Returns:
            The new balance
        """
        async with self._locks.hold(identity):
            account = await self.get_account(identity)
            new_balance, operation = self.plan_adjustment(account, Decimal(delta))
            with collaborator_guard():
                await self._store.commit_batch([operation])
        return new_balance

    async def list_accounts(self) -> list[Account]:
        """Every account, used to populate recipient pickers."""
        with collaborator_guard():
            documents = await self._store.list_all(USERS_COLLECTION)

        accounts = []
        for doc in documents:
            try:
                accounts.append(Account.from_document(doc.id, doc.data))
            except ValidationError as e:
                logger.warning("malformed_account", identity=doc.id, error=str(e))
        return accounts
