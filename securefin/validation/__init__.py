"""Input validation package."""

from securefin.validation.validator import LedgerValidator

__all__ = ["LedgerValidator"]
