"""
Streamlit Frontend for Secure Finance

Sign in, see your balance, send money, split bills and request money
from the people you share expenses with.

DESIGN PRINCIPLES:
1. Simple, clear interface
2. Every failure is shown as the one-line reason the ledger gives
3. The feed refreshes itself; no manual reloading
4. No hidden actions: every money movement is a button press

All ledger work runs on one background event loop shared by every
browser session, so per-account locks serialize across users.
"""

import asyncio
import threading
from datetime import date, timedelta
from functools import partial
from typing import Any, Callable, Optional

import streamlit as st
from pydantic import ValidationError

from securefin.config import get_settings, validate_all_settings
from securefin.errors import LedgerError
from securefin.models.ledger import Account, FeedSnapshot, UserIdentity
from securefin.orchestrator import AppComponents, FinanceSession, create_app_components
from securefin.services.identity import StaticIdentityProvider
from securefin.services.identity.streamlit_auth import StreamlitIdentityProvider
from securefin.services.storage import GoogleSheetsDocumentStore


# Page configuration
st.set_page_config(
    page_title="Secure Finance",
    page_icon="💳",
    layout="wide",
    initial_sidebar_state="expanded",
)

# Custom CSS for better UX
st.markdown("""
<style>
    .stButton>button {
        width: 100%;
        margin-top: 10px;
    }
    .balance-box {
        padding: 20px;
        background-color: #cce5ff;
        border-radius: 10px;
        border-left: 5px solid #004085;
        margin: 10px 0;
    }
    .big-number {
        font-size: 2.5em;
        font-weight: bold;
        color: #2c3e50;
    }
</style>
""", unsafe_allow_html=True)


@st.cache_resource
def get_event_loop() -> asyncio.AbstractEventLoop:
    """The one event loop all ledger work runs on (cached)."""
    loop = asyncio.new_event_loop()
    threading.Thread(target=loop.run_forever, name="ledger-loop", daemon=True).start()
    return loop


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    return asyncio.run_coroutine_threadsafe(coro, get_event_loop()).result()


async def _call(fn: Callable[..., Any], *args):
    return fn(*args)


def run_on_loop(fn: Callable[..., Any], *args):
    """Run a plain function on the ledger loop (for subscription bookkeeping)."""
    return run_async(_call(fn, *args))


@st.cache_resource
def get_components() -> AppComponents:
    """Get or create application components (cached)."""
    components = create_app_components()
    run_async(components.projection.start())
    return components


class FeedInbox:
    """Latest feed snapshot pushed for one browser session."""

    def __init__(self):
        self.latest: Optional[FeedSnapshot] = None

    def update(self, snapshot: FeedSnapshot) -> None:
        self.latest = snapshot


def get_session(components: AppComponents) -> FinanceSession:
    if "finance_session" not in st.session_state:
        app_settings = get_settings().app
        if app_settings.uses_oidc:
            provider = StreamlitIdentityProvider(app_settings.auth_provider)
        else:
            provider = StaticIdentityProvider()
        st.session_state.identity_provider = provider
        st.session_state.finance_session = components.new_session(provider)
    return st.session_state.finance_session


def show_error(error: LedgerError) -> None:
    st.error(f"❌ {error.user_message}")


def money(amount) -> str:
    symbol = get_settings().ledger.currency_symbol
    return f"{symbol}{amount:,.2f}"


def account_label(accounts: list[Account]) -> Callable[[str], str]:
    names = {a.identity: a.display_name or a.identity for a in accounts}
    return lambda identity: f"{names.get(identity, identity)} ({identity})"


# =============================================================================
# SIGN IN / OUT
# =============================================================================

def complete_sign_in(session: FinanceSession) -> None:
    run_async(session.sign_in())
    inbox = FeedInbox()
    st.session_state.feed_inbox = inbox
    # Weak: an abandoned browser session drops its observer with its state
    st.session_state.feed_subscription = run_on_loop(
        partial(session.watch_feed, weak=True), inbox.update
    )


def sign_out(session: FinanceSession) -> None:
    subscription = st.session_state.pop("feed_subscription", None)
    if subscription is not None:
        run_on_loop(subscription.unsubscribe)
    st.session_state.pop("feed_inbox", None)
    try:
        run_async(session.sign_out())
    except LedgerError as e:
        show_error(e)
        return

    provider = st.session_state.identity_provider
    if isinstance(provider, StreamlitIdentityProvider):
        provider.start_logout()
    else:
        st.rerun()


def render_sign_in_page(session: FinanceSession) -> None:
    st.title("💳 Secure Finance")
    st.markdown("Send money, split bills and request payments with your friends.")

    provider = st.session_state.identity_provider

    if isinstance(provider, StreamlitIdentityProvider):
        provider.capture()
        if st.user.is_logged_in:
            try:
                complete_sign_in(session)
                st.rerun()
            except LedgerError as e:
                show_error(e)
        if st.button("🔐 Sign in with Google", type="primary"):
            provider.start_login()
        return

    st.info("Development sign-in: no identity provider is configured.")
    with st.form("dev_sign_in"):
        email = st.text_input("Email", placeholder="you@example.com")
        name = st.text_input("Display name")
        submitted = st.form_submit_button("Sign in", type="primary")

    if submitted:
        try:
            provider.set_identity(UserIdentity(email=email, display_name=name))
        except ValidationError:
            st.error("❌ Please enter your email address.")
            return
        try:
            complete_sign_in(session)
            st.rerun()
        except LedgerError as e:
            show_error(e)


# =============================================================================
# PAGES
# =============================================================================

def render_balance_card(session: FinanceSession) -> None:
    try:
        balance = run_async(session.balance())
    except LedgerError as e:
        show_error(e)
        return
    st.markdown(f"""
    <div class="balance-box">
        <p>Available balance</p>
        <p class="big-number">{money(balance)}</p>
    </div>
    """, unsafe_allow_html=True)


@st.fragment(run_every="10s")
def render_history(session: FinanceSession, components: AppComponents) -> None:
    """Transaction history, refreshed on its own."""
    if isinstance(components.store, GoogleSheetsDocumentStore):
        # Sheets can't push changes made by other processes
        try:
            run_async(components.store.refresh())
        except LedgerError as e:
            show_error(e)

    inbox: Optional[FeedInbox] = st.session_state.get("feed_inbox")
    snapshot = inbox.latest if inbox else None
    if snapshot is None:
        try:
            snapshot = run_async(session.feed())
        except LedgerError as e:
            show_error(e)
            return

    me = session.current_identity
    if not snapshot.transactions:
        st.info("No transactions yet.")
        return

    rows = []
    for txn in reversed(snapshot.transactions):
        outgoing = txn.sender_identity == me
        rows.append({
            "When": txn.timestamp.strftime("%d %b %Y %H:%M"),
            "Type": txn.kind.value,
            "With": txn.recipient_identity if outgoing else txn.sender_identity,
            "Amount": f"-{money(txn.amount)}" if outgoing else f"+{money(txn.amount)}",
        })
    st.dataframe(rows, use_container_width=True, hide_index=True)


def render_home_page(session: FinanceSession, components: AppComponents) -> None:
    account = session.account
    st.title(f"👋 Hello, {account.display_name}")
    render_balance_card(session)
    st.markdown("### 📜 History")
    render_history(session, components)


def load_recipients(session: FinanceSession) -> Optional[list[Account]]:
    try:
        recipients = run_async(session.recipients())
    except LedgerError as e:
        show_error(e)
        return None
    if not recipients:
        st.info("Nobody else has signed up yet.")
        return None
    return recipients


def render_send_page(session: FinanceSession) -> None:
    st.title("💸 Send Money")
    render_balance_card(session)

    recipients = load_recipients(session)
    if recipients is None:
        return

    with st.form("send_money", clear_on_submit=True):
        recipient = st.selectbox(
            "To",
            options=[a.identity for a in recipients],
            format_func=account_label(recipients),
            index=None,
            placeholder="Choose a person",
        )
        amount = st.number_input("Amount", min_value=0.0, step=1.0, format="%.2f")
        submitted = st.form_submit_button("Send", type="primary")

    if submitted:
        try:
            txn = run_async(session.send_money(recipient, amount))
        except LedgerError as e:
            show_error(e)
            return
        st.success(f"✅ Sent {money(txn.amount)} to {txn.recipient_identity}")


def render_split_page(session: FinanceSession) -> None:
    st.title("🧾 Split a Bill")
    st.markdown("You paid; everyone including you pays an equal share.")

    recipients = load_recipients(session)
    if recipients is None:
        return

    with st.form("split_bill"):
        participants = st.multiselect(
            "Split with",
            options=[a.identity for a in recipients],
            format_func=account_label(recipients),
        )
        amount = st.number_input("Bill total", min_value=0.0, step=1.0, format="%.2f")
        submitted = st.form_submit_button("Split", type="primary")

    if submitted:
        try:
            result = run_async(session.split_bill(amount, participants))
        except LedgerError as e:
            show_error(e)
            return

        st.success(
            f"✅ Split {money(result.total_amount)} between {result.people_count} people: "
            f"{money(result.share)} each"
        )
        st.markdown("**Payment link**")
        st.code(result.payment_link, language=None)
        st.markdown(f"Your balance is now **{money(result.payer_balance)}**")


def render_request_page(session: FinanceSession) -> None:
    st.title("📨 Request Money")

    recipients = load_recipients(session)
    if recipients is None:
        return

    with st.form("request_money", clear_on_submit=True):
        payer = st.selectbox(
            "From",
            options=[a.identity for a in recipients],
            format_func=account_label(recipients),
            index=None,
            placeholder="Choose a person",
        )
        amount = st.number_input("Amount", min_value=0.0, step=1.0, format="%.2f")
        due_date = st.date_input("Due date", value=date.today() + timedelta(days=7))
        submitted = st.form_submit_button("Send request", type="primary")

    if submitted:
        try:
            request = run_async(session.request_money(payer, amount, due_date))
        except LedgerError as e:
            show_error(e)
            return
        st.success(
            f"✅ Asked {request.payer} for {money(request.amount)} "
            f"by {request.due_date.strftime('%d %b %Y')}"
        )


def render_requests_page(session: FinanceSession) -> None:
    st.title("📬 Money Requests")

    try:
        snapshot = run_async(session.feed())
    except LedgerError as e:
        show_error(e)
        return

    me = session.current_identity
    to_pay = [r for r in snapshot.pending_requests if r.payer == me]
    others = [r for r in snapshot.money_requests if r not in to_pay]

    st.markdown("### Waiting for you")
    if not to_pay:
        st.info("Nothing to pay. 🎉")

    for request in to_pay:
        col1, col2, col3 = st.columns([3, 1, 1])
        with col1:
            st.markdown(
                f"**{request.requester}** asks for **{money(request.amount)}** "
                f"(due {request.due_date.strftime('%d %b %Y')})"
            )
        with col2:
            if st.button("✅ Pay", key=f"pay_{request.id}", type="primary"):
                try:
                    run_async(session.settle_request(request.id))
                    st.rerun()
                except LedgerError as e:
                    show_error(e)
        with col3:
            if st.button("✖️ Decline", key=f"decline_{request.id}"):
                try:
                    run_async(session.decline_request(request.id))
                    st.rerun()
                except LedgerError as e:
                    show_error(e)

    st.markdown("### All requests")
    if not others:
        st.info("No other requests.")
        return

    rows = [{
        "Requested": r.timestamp.strftime("%d %b %Y"),
        "From": r.requester,
        "To": r.payer,
        "Amount": money(r.amount),
        "Due": r.due_date.strftime("%d %b %Y"),
        "Status": r.status.value,
    } for r in reversed(others)]
    st.dataframe(rows, use_container_width=True, hide_index=True)


def render_settings_page(session: Optional[FinanceSession] = None) -> None:
    """Render the settings page."""
    st.title("⚙️ Settings")

    st.markdown("### Configuration Status")

    status = validate_all_settings()

    sections = [
        ("Ledger", "ledger"),
        ("Storage backend", "storage"),
        ("Application", "app"),
    ]
    if "google_sheets" in status:
        sections.append(("Google Sheets (Storage)", "google_sheets"))

    for name, key in sections:
        if status.get(key, False):
            st.success(f"✅ {name} - OK")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    if status.get("storage"):
        st.markdown(f"Storage backend: `{get_settings().storage.backend}`")

    if session is not None and session.is_signed_in:
        st.markdown("---")
        st.markdown("### Your recent activity")
        events = run_async(session.recent_activity(limit=20))
        if events:
            st.dataframe([{
                "When": e.timestamp.strftime("%d %b %Y %H:%M"),
                "Event": e.event_type.value,
                "Details": e.description,
            } for e in events], use_container_width=True, hide_index=True)
        else:
            st.info("No recorded activity.")

    st.markdown("---")
    st.markdown("### Configuration")
    st.markdown(
        "Configuration comes from environment variables or a `.env` file "
        "(`LEDGER_*`, `STORAGE_BACKEND`, `GOOGLE_SHEETS_*`, `AUTH_PROVIDER`). "
        "Google sign-in is configured in `.streamlit/secrets.toml` under `[auth]`."
    )


def main():
    """Main application entry point."""
    try:
        components = get_components()
    except (ValidationError, LedgerError) as e:
        st.error(f"Failed to initialize: {e}")
        render_settings_page()
        st.stop()

    session = get_session(components)

    if not session.is_signed_in:
        render_sign_in_page(session)
        return

    account = session.account
    st.sidebar.title("💳 Secure Finance")
    if account.avatar_url:
        st.sidebar.image(account.avatar_url, width=64)
    st.sidebar.markdown(f"**{account.display_name}**  \n{account.identity}")
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navigate to:",
        [
            "🏠 Home",
            "💸 Send Money",
            "🧾 Split Bill",
            "📨 Request Money",
            "📬 Requests",
            "⚙️ Settings",
        ],
        index=0,
    )

    st.sidebar.markdown("---")
    if st.sidebar.button("Sign out"):
        sign_out(session)

    if page == "🏠 Home":
        render_home_page(session, components)
    elif page == "💸 Send Money":
        render_send_page(session)
    elif page == "🧾 Split Bill":
        render_split_page(session)
    elif page == "📨 Request Money":
        render_request_page(session)
    elif page == "📬 Requests":
        render_requests_page(session)
    elif page == "⚙️ Settings":
        render_settings_page(session)


if __name__ == "__main__":
    main()
