"""
Streamlit OIDC identity provider.

Uses Streamlit's built-in authentication (st.login / st.user /
st.logout). The provider itself (Google in production) is configured in
.streamlit/secrets.toml under [auth.<name>]; AppSettings.auth_provider
selects which one to use.

st.user and st.login/st.logout only work on the script thread, while the
ledger runs on a background event loop. So the page copies the user
with capture() on every run and triggers redirects with start_login() /
start_logout(); sign_in() and sign_out() only touch that copy.
"""

from typing import Any, Optional

import streamlit as st

from securefin.models.ledger import UserIdentity
from securefin.services.identity.interface import (
    IdentityProviderError,
    IdentityProviderInterface,
    SignInCancelledError,
)


class StreamlitIdentityProvider(IdentityProviderInterface):
    """
    Identity Streamlit holds for the current browser session.

    Sign-in is a redirect: start_login() sends the browser to the
    provider, and the next script run finds st.user populated.
    """

    def __init__(self, provider: Optional[str] = None):
        self._provider = provider
        self._user: Optional[dict[str, Any]] = None

    def capture(self) -> None:
        """Copy st.user for this script run (script thread only)."""
        self._user = st.user.to_dict() if st.user.is_logged_in else None

    def start_login(self) -> None:
        """Redirect the browser to the provider's sign-in page."""
        if self._provider:
            st.login(self._provider)
        else:
            st.login()

    def start_logout(self) -> None:
        st.logout()

    async def sign_in(self) -> UserIdentity:
        if self._user is None:
            raise SignInCancelledError("Not signed in with the identity provider")

        email = self._user.get("email")
        if not email:
            raise IdentityProviderError(
                "Identity provider did not return an email address"
            )
        return UserIdentity(
            email=email,
            display_name=self._user.get("name") or email,
            avatar_url=self._user.get("picture"),
        )

    async def sign_out(self) -> None:
        self._user = None
