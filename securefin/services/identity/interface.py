"""
Identity Provider Interface

Sign-in is delegated to an external provider (Google via OIDC in the
app). The ledger only ever needs the verified identity it hands back.
"""

from abc import ABC, abstractmethod

from securefin.models.ledger import UserIdentity


class IdentityProviderInterface(ABC):
    """
    Abstract interface for the identity provider.
    """

    @abstractmethod
    async def sign_in(self) -> UserIdentity:
        """
        Sign the user in (may be interactive).

        Returns:
            The verified identity

        Raises:
            SignInCancelledError: If the user did not complete sign-in
            IdentityProviderError: If the provider failed
        """
        pass

    @abstractmethod
    async def sign_out(self) -> None:
        """
        Sign the current user out.

        Raises:
            IdentityProviderError: If the provider failed
        """
        pass


class IdentityProviderError(Exception):
    """Base exception for identity provider failures."""
    pass


class SignInCancelledError(IdentityProviderError):
    """The user closed or abandoned the sign-in flow."""
    pass
