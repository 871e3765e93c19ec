"""
Input Validation for Ledger Operations

DESIGN DECISION: Everything a caller hands the ledger is checked and
normalized here, before any account is read or locked:
- identities must be present
- amounts must be positive, finite numbers
- due dates must be real calendar dates
- participant lists must be non-empty and free of duplicates

IMPORTANT: Validation NEVER silently fixes bad input beyond trimming
whitespace. It raises a LedgerError naming the failed precondition.
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional, Union

from securefin.errors import (
    EmptyParticipantSetError,
    InvalidAmountError,
    MissingFieldError,
    NotAuthenticatedError,
)


AmountInput = Union[Decimal, int, float, str, None]
DateInput = Union[date, str, None]


class LedgerValidator:
    """Fail-fast checks shared by every ledger operation."""

    @staticmethod
    def require_identity(identity: Optional[str]) -> str:
        """The acting user must be signed in."""
        if identity is None or not str(identity).strip():
            raise NotAuthenticatedError()
        return str(identity).strip()

    @staticmethod
    def require_field(value: Any, field: str) -> str:
        """A required text field (e.g. recipient) must be non-blank."""
        if value is None or not str(value).strip():
            raise MissingFieldError(field)
        return str(value).strip()

    @staticmethod
    def parse_amount(value: AmountInput, field: str = "amount") -> Decimal:
        """
        Parse a user-supplied amount.

        Accepts Decimal, int, float or numeric strings. Floats go through
        str() so 0.1 stays 0.1.
        """
        if value is None or (isinstance(value, str) and not value.strip()):
            raise MissingFieldError(field, "Please enter an amount.")
        if isinstance(value, bool):
            raise InvalidAmountError()

        try:
            amount = Decimal(value.strip() if isinstance(value, str) else str(value))
        except (InvalidOperation, ValueError):
            raise InvalidAmountError(f"'{value}' is not a valid amount.")

        if not amount.is_finite():
            raise InvalidAmountError(f"'{value}' is not a valid amount.")
        if amount <= 0:
            raise InvalidAmountError()
        return amount

    @staticmethod
    def parse_due_date(value: DateInput) -> date:
        """Due dates arrive as date objects or ISO strings (YYYY-MM-DD)."""
        if value is None or (isinstance(value, str) and not value.strip()):
            raise MissingFieldError("due_date")
        if isinstance(value, date):
            return value
        try:
            return date.fromisoformat(value.strip())
        except (ValueError, AttributeError):
            raise MissingFieldError(
                "due_date",
                f"'{value}' is not a valid due date (use YYYY-MM-DD).",
            )

    @staticmethod
    def normalize_participants(participants: Optional[Iterable[str]]) -> list[str]:
        """Strip, drop blanks, de-duplicate keeping first-seen order."""
        seen: dict[str, None] = {}
        for identity in participants or ():
            if identity is None:
                continue
            identity = str(identity).strip()
            if identity:
                seen.setdefault(identity, None)
        if not seen:
            raise EmptyParticipantSetError()
        return list(seen)
