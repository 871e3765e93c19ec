"""
Ledger error taxonomy.

Every failure the ledger reports carries:
- code: a stable machine-readable kind (used in audit events)
- user_message: a short sentence saying which precondition failed,
  safe to show as-is in the UI

Validation errors are raised before any mutation is attempted.
Storage and identity failures are wrapped in CollaboratorUnavailableError
with the original exception chained.
"""

from contextlib import contextmanager
from decimal import Decimal
from typing import Iterator, Optional

from securefin.services.identity.interface import IdentityProviderError
from securefin.services.storage.interface import StorageError


class LedgerError(Exception):
    """Base exception for ledger operations."""

    code = "ledger_error"

    def __init__(self, user_message: str):
        self.user_message = user_message
        super().__init__(user_message)


class NotAuthenticatedError(LedgerError):
    """Operation invoked without a resolved (or the right) identity."""

    code = "not_authenticated"

    def __init__(self, user_message: str = "Please sign in first."):
        super().__init__(user_message)


class AccountNotFoundError(LedgerError):
    """Referenced identity has no account."""

    code = "account_not_found"

    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(f"No account found for {identity}.")


class InvalidAmountError(LedgerError):
    """Amount missing, non-numeric, zero, or negative."""

    code = "invalid_amount"

    def __init__(self, user_message: str = "Please enter a valid amount greater than zero."):
        super().__init__(user_message)


class InsufficientFundsError(LedgerError):
    """A debit would drive the payer's balance negative."""

    code = "insufficient_funds"

    def __init__(self, identity: str, balance: Decimal, required: Decimal):
        self.identity = identity
        self.balance = balance
        self.required = required
        super().__init__(
            f"Insufficient balance: {required} needed but only {balance} available."
        )


class EmptyParticipantSetError(LedgerError):
    """Split requested with no participants."""

    code = "empty_participant_set"

    def __init__(self):
        super().__init__("Please select at least one person to split the bill with.")


class MissingFieldError(LedgerError):
    """A required field (recipient, amount, due date) is absent or unusable."""

    code = "missing_field"

    def __init__(self, field: str, user_message: Optional[str] = None):
        self.field = field
        super().__init__(user_message or f"Please fill in the {field.replace('_', ' ')}.")


class InvalidRecipientError(LedgerError):
    """The counterparty is the acting user themself."""

    code = "invalid_recipient"

    def __init__(self, user_message: str = "You cannot send money to yourself."):
        super().__init__(user_message)


class RequestNotFoundError(LedgerError):
    """Referenced money request does not exist."""

    code = "request_not_found"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Money request {request_id} was not found.")


class RequestNotPendingError(LedgerError):
    """Money request has already been paid or declined."""

    code = "request_not_pending"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(f"This money request is already {status.lower()}.")


class CollaboratorUnavailableError(LedgerError):
    """Storage or identity provider failed (network, permission, quota)."""

    code = "collaborator_unavailable"

    def __init__(self, service: str, detail: str):
        self.service = service
        self.detail = detail
        super().__init__(
            f"The {service} service is unavailable right now. Nothing was changed; please try again."
        )


@contextmanager
def collaborator_guard(service: str = "storage") -> Iterator[None]:
    """
    Translate storage/identity failures into CollaboratorUnavailableError.

    Ledger errors raised inside the block pass through untouched.
    """
    try:
        yield
    except LedgerError:
        raise
    except (StorageError, IdentityProviderError) as e:
        raise CollaboratorUnavailableError(service, str(e)) from e
