"""Fixed-identity provider for local development and tests."""

from typing import Optional

from securefin.models.ledger import UserIdentity
from securefin.services.identity.interface import (
    IdentityProviderInterface,
    SignInCancelledError,
)


class StaticIdentityProvider(IdentityProviderInterface):
    """
    Signs in as whatever identity it was given.

    With no identity configured, sign_in() behaves like a user closing
    the sign-in dialog.
    """

    def __init__(self, identity: Optional[UserIdentity] = None):
        self._identity = identity
        self.signed_in = False

    def set_identity(self, identity: Optional[UserIdentity]) -> None:
        self._identity = identity

    async def sign_in(self) -> UserIdentity:
        if self._identity is None:
            raise SignInCancelledError("No identity was provided")
        self.signed_in = True
        return self._identity

    async def sign_out(self) -> None:
        self.signed_in = False
