"""
Identity Services Package

The Streamlit provider is imported from its own module by the app, so
the ledger core never needs Streamlit installed to run.
"""

from securefin.services.identity.interface import (
    IdentityProviderError,
    IdentityProviderInterface,
    SignInCancelledError,
)
from securefin.services.identity.static import StaticIdentityProvider

__all__ = [
    "IdentityProviderError",
    "IdentityProviderInterface",
    "SignInCancelledError",
    "StaticIdentityProvider",
]
