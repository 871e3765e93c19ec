"""
Main Orchestrator for Secure Finance

This module ties the ledger core to a signed-in user:
1. Sign in (identity provider → account created on first visit)
2. Money movements (send, split, request, settle, decline)
3. The user's feed (on demand or pushed live)

DESIGN DECISION: The orchestrator owns the "who is acting" question.
Every ledger call is made on behalf of the session's signed-in identity,
so a UI can never act as somebody else. Each user action gets its own
correlation id, which ties together every audit event it produced.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

import structlog

from securefin.audit import AuditLogger, create_correlation_id
from securefin.config import Settings, get_settings
from securefin.errors import (
    CollaboratorUnavailableError,
    NotAuthenticatedError,
    collaborator_guard,
)
from securefin.feed import FeedCallback, FeedProjection
from securefin.ledger import AccountLocks, AccountStore, LedgerClock, LedgerService
from securefin.models.audit import AuditEvent
from securefin.models.ledger import (
    Account,
    BillSplitResult,
    FeedSnapshot,
    MoneyRequest,
    Transaction,
)
from securefin.services.identity import (
    IdentityProviderError,
    IdentityProviderInterface,
    SignInCancelledError,
)
from securefin.services.storage import (
    DocumentStoreAuditStorage,
    DocumentStoreInterface,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
    InMemoryDocumentStore,
    Subscription,
)
from securefin.validation import LedgerValidator
from securefin.validation.validator import AmountInput, DateInput


logger = structlog.get_logger(__name__)


class FinanceSession:
    """
    One user's session with the ledger.

    Flow:
    1. sign_in() → identity resolved, account fetched or created
    2. Any number of money operations, all as the signed-in user
    3. sign_out() → identity cleared

    Calls made while signed out raise NotAuthenticatedError.
    """

    def __init__(
        self,
        identity_provider: IdentityProviderInterface,
        accounts: AccountStore,
        ledger: LedgerService,
        projection: FeedProjection,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._identity_provider = identity_provider
        self._accounts = accounts
        self._ledger = ledger
        self._projection = projection
        self._audit_logger = audit_logger or AuditLogger()
        self._account: Optional[Account] = None

    @property
    def current_identity(self) -> Optional[str]:
        return self._account.identity if self._account else None

    @property
    def account(self) -> Optional[Account]:
        """The account as it was at sign-in (use balance() for the live figure)."""
        return self._account

    @property
    def is_signed_in(self) -> bool:
        return self._account is not None

    def _require_identity(self) -> str:
        return LedgerValidator.require_identity(self.current_identity)

    async def sign_in(self, correlation_id: Optional[UUID] = None) -> Account:
        """
        Resolve the user's identity and load (or create) their account.

        Raises:
            NotAuthenticatedError: The user cancelled sign-in
            CollaboratorUnavailableError: The identity provider or the
                                          store failed
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            identity = await self._identity_provider.sign_in()
        except SignInCancelledError as e:
            await self._audit_logger.log_rejected(
                operation="sign_in",
                error_code=NotAuthenticatedError.code,
                error_message=str(e),
                correlation_id=correlation_id,
            )
            raise NotAuthenticatedError("Sign-in was cancelled.") from e
        except IdentityProviderError as e:
            await self._audit_logger.log_collaborator_error(
                service="identity",
                error_message=str(e),
                correlation_id=correlation_id,
            )
            raise CollaboratorUnavailableError("identity", str(e)) from e

        try:
            account = await self._accounts.get_or_create(
                identity.email,
                display_name=identity.display_name,
                avatar_url=identity.avatar_url,
                correlation_id=correlation_id,
            )
        except CollaboratorUnavailableError as e:
            await self._audit_logger.log_collaborator_error(
                service=e.service,
                error_message=e.detail,
                correlation_id=correlation_id,
            )
            raise

        self._account = account
        await self._audit_logger.log_signed_in(account.identity, correlation_id)
        return account

    async def sign_out(self, correlation_id: Optional[UUID] = None) -> None:
        """Forget the signed-in user, then sign out with the provider."""
        identity = self.current_identity
        self._account = None
        if identity is not None:
            await self._audit_logger.log_signed_out(
                identity, correlation_id or create_correlation_id()
            )
        with collaborator_guard("identity"):
            await self._identity_provider.sign_out()

    async def balance(self) -> Decimal:
        return await self._accounts.get_balance(self._require_identity())

    async def recipients(self) -> list[Account]:
        """Everyone the user can pay or split with (everyone but themself)."""
        identity = self._require_identity()
        accounts = await self._accounts.list_accounts()
        others = [a for a in accounts if a.identity != identity]
        others.sort(key=lambda a: (a.display_name.lower(), a.identity))
        return others

    async def send_money(self, recipient: Optional[str], amount: AmountInput) -> Transaction:
        return await self._ledger.transfer(
            self.current_identity,
            recipient,
            amount,
            correlation_id=create_correlation_id(),
        )

    async def split_bill(
        self,
        amount: AmountInput,
        participants: Optional[Iterable[str]],
    ) -> BillSplitResult:
        return await self._ledger.split_bill(
            self.current_identity,
            amount,
            participants,
            correlation_id=create_correlation_id(),
        )

    async def request_money(
        self,
        payer: Optional[str],
        amount: AmountInput,
        due_date: DateInput,
    ) -> MoneyRequest:
        return await self._ledger.request_money(
            self.current_identity,
            payer,
            amount,
            due_date,
            correlation_id=create_correlation_id(),
        )

    async def settle_request(self, request_id: str) -> tuple[MoneyRequest, Transaction]:
        return await self._ledger.settle_request(
            request_id,
            self.current_identity,
            correlation_id=create_correlation_id(),
        )

    async def decline_request(self, request_id: str) -> MoneyRequest:
        return await self._ledger.decline_request(
            request_id,
            self.current_identity,
            correlation_id=create_correlation_id(),
        )

    async def feed(self) -> FeedSnapshot:
        return await self._projection.snapshot_for(self._require_identity())

    def watch_feed(self, on_update: FeedCallback, weak: bool = False) -> Subscription:
        """Live feed for the signed-in user; needs the projection started."""
        return self._projection.watch(self._require_identity(), on_update, weak=weak)

    async def recent_activity(self, limit: int = 20) -> list[AuditEvent]:
        """The user's own audit trail, newest first."""
        identity = self._require_identity()
        storage = self._audit_logger.storage
        if storage is None:
            return []
        return await storage.get_recent_events(limit=limit, actor=identity)


@dataclass
class AppComponents:
    """Everything shared between sessions of one running app."""

    store: DocumentStoreInterface
    audit_logger: AuditLogger
    accounts: AccountStore
    ledger: LedgerService
    projection: FeedProjection

    def new_session(self, identity_provider: IdentityProviderInterface) -> FinanceSession:
        return FinanceSession(
            identity_provider=identity_provider,
            accounts=self.accounts,
            ledger=self.ledger,
            projection=self.projection,
            audit_logger=self.audit_logger,
        )


def create_store(settings: Settings) -> DocumentStoreInterface:
    """
    Build the configured document store.

    Raises:
        pydantic.ValidationError: If Google Sheets is selected but not
                                  configured
    """
    backend = settings.storage.backend
    if backend == "google_sheets":
        store = GoogleSheetsDocumentStore(GoogleSheetsClient())
    else:
        store = InMemoryDocumentStore()
    logger.info("document_store_created", backend=backend)
    return store


def create_app_components(
    settings: Optional[Settings] = None,
    store: Optional[DocumentStoreInterface] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to build from (defaults to get_settings())
        store: Use this store instead of the configured backend
               (tests pass an InMemoryDocumentStore)
    """
    settings = settings or get_settings()
    ledger_settings = settings.ledger
    store = store or create_store(settings)

    audit_logger = AuditLogger(DocumentStoreAuditStorage(store))
    accounts = AccountStore(
        store,
        locks=AccountLocks(),
        opening_balance=ledger_settings.opening_balance,
        audit_logger=audit_logger,
    )
    ledger = LedgerService(
        accounts,
        store,
        clock=LedgerClock(),
        audit_logger=audit_logger,
        share_decimal_places=ledger_settings.share_decimal_places,
        payment_link_base_url=ledger_settings.payment_link_base_url,
    )
    projection = FeedProjection(store)

    return AppComponents(
        store=store,
        audit_logger=audit_logger,
        accounts=accounts,
        ledger=ledger,
        projection=projection,
    )
