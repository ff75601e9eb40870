"""
Identity gateway on Supabase Auth.
"""
import asyncio
from typing import Any, Optional

from supabase import Client

from waxradio.config import Settings, get_settings
from waxradio.crud import get_supabase_client, run_in_thread
from waxradio.exceptions import AuthenticationError, classify_error
from waxradio.logger import get_logger
from waxradio.models import Principal, Role
from waxradio.ports import IdentityGateway, PrincipalCallback, Subscription

logger = get_logger("auth")


def principal_from_user(user: Any) -> Optional[Principal]:
    """Build a Principal from a Supabase auth user (or None)."""
    if user is None:
        return None
    metadata = getattr(user, "user_metadata", None) or {}
    role = metadata.get("role")
    return Principal(
        id=user.id,
        email=user.email or "",
        display_name=metadata.get("display_name") or metadata.get("full_name"),
        avatar_url=metadata.get("avatar_url"),
        role_hint=Role(role) if role in (Role.ARTIST.value, Role.FAN.value) else None,
    )


class SupabaseSubscription(Subscription):
    def __init__(self, subscription: Any, session_read: Optional[asyncio.Future] = None):
        self._subscription = subscription
        self._session_read = session_read

    def unsubscribe(self) -> None:
        if self._session_read is not None:
            self._session_read.cancel()
            self._session_read = None
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None


class SupabaseIdentityGateway(IdentityGateway):
    """
    Adapts Supabase Auth to the identity gateway port.

    Auth events may be emitted from worker threads (the client is blocking and
    runs in the thread pool), so callbacks are marshalled onto the event loop
    that registered them, in arrival order.
    """

    def __init__(self, client: Optional[Client] = None, settings: Optional[Settings] = None):
        self._settings = settings or get_settings()
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase_client(self._settings)
        return self._client

    def on_principal_change(self, callback: PrincipalCallback) -> Subscription:
        loop = asyncio.get_running_loop()

        def handle(event, session) -> None:
            user = session.user if session is not None else None
            logger.debug(f"Auth event {event}: {'user ' + user.id if user else 'no user'}")
            loop.call_soon_threadsafe(callback, principal_from_user(user))

        subscription = self.client.auth.on_auth_state_change(handle)

        def push_current_session() -> None:
            try:
                session = self.client.auth.get_session()
            except Exception as e:
                logger.error(f"Failed to read current auth session: {e}")
                session = None
            loop.call_soon_threadsafe(callback, principal_from_user(session.user if session else None))

        # get_session may refresh the token over the network
        session_read = asyncio.ensure_future(run_in_thread(push_current_session)())
        return SupabaseSubscription(subscription, session_read)

    async def sign_in(self, email: str, password: str) -> Principal:
        try:
            logger.info(f"Login attempt for email: {email}")
            response = await run_in_thread(self.client.auth.sign_in_with_password)(
                {"email": email, "password": password}
            )
        except Exception as e:
            logger.warning(f"Login failed for {email}: {e}")
            raise AuthenticationError("Invalid email or password", str(e), kind=classify_error(e)) from e
        principal = principal_from_user(response.user)
        if principal is None:
            raise AuthenticationError("Login failed", "No user returned")
        logger.info(f"User logged in successfully: {email}")
        return principal

    async def sign_up(self, email: str, password: str, display_name: str, role: Role) -> Principal:
        try:
            logger.info(f"Registration attempt for email: {email}")
            response = await run_in_thread(self.client.auth.sign_up)({
                "email": email,
                "password": password,
                "options": {"data": {"display_name": display_name, "role": Role(role).value}},
            })
        except Exception as e:
            logger.warning(f"Registration failed for {email}: {e}")
            raise AuthenticationError("Failed to create user account", str(e), kind=classify_error(e)) from e
        principal = principal_from_user(response.user)
        if principal is None:
            raise AuthenticationError("Failed to create user account", "No user returned")
        logger.info(f"User registered successfully: {email}")
        return principal

    async def sign_out(self) -> None:
        try:
            await run_in_thread(self.client.auth.sign_out)()
        except Exception as e:
            logger.error(f"Sign-out failed: {e}")
            raise AuthenticationError("Sign-out failed", str(e), kind=classify_error(e)) from e
