"""
Authorization Code + PKCE flow.

``AuthorizationFlow`` owns the login redirect, the callback (state check,
code exchange, phase transition pending -> authenticated), the
check-session probe and logout. It works on plain values; the routes in
``auth.routes`` translate them to HTTP responses.
"""

import logging
import secrets
from typing import NamedTuple, Optional
from urllib.parse import urlencode, urlparse

import httpx
from jose import JWTError

from ..config import GatewayConfig
from ..errors import (
    LoginError,
    MissingParameterError,
    SessionNotFoundError,
    StateMismatchError,
    TokenExchangeError,
)
from ..models import Session, SessionStatus
from .pkce import SESSION_ID_BYTES, STATE_BYTES, generate_code, generate_pkce_pair
from .store import SessionStore, short_id
from .tokens import TokenEndpointClient
from .utils import IdTokenVerifier, decode_id_token

logger = logging.getLogger(__name__)


class LoginRedirect(NamedTuple):
    session_id: str
    authorization_url: str


class CallbackRedirect(NamedTuple):
    location: str
    # Set when the session cookie should be (re)asserted
    session_id: Optional[str] = None


def _append_query(url: str, **params: str) -> str:
    separator = "&" if urlparse(url).query else "?"
    return f"{url}{separator}{urlencode(params)}"


def _states_match(expected: Optional[str], received: str) -> bool:
    if not expected:
        return False
    return secrets.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))


class AuthorizationFlow:
    """
    Drives the OAuth 2.0 authorization code flow with PKCE.

    Args:
        config: Immutable gateway configuration
        store: Session store shared with the proxy
        token_client: Client for the provider's token/revoke endpoints
        id_token_verifier: Used instead of plain decoding when signature
            verification is enabled
    """

    def __init__(
        self,
        config: GatewayConfig,
        store: SessionStore,
        token_client: TokenEndpointClient,
        id_token_verifier: Optional[IdTokenVerifier] = None,
    ):
        self.config = config
        self.store = store
        self.tokens = token_client
        self.id_token_verifier = id_token_verifier

    # =========================================================================
    # Login
    # =========================================================================

    def build_authorization_url(self, state: str, code_challenge: str) -> str:
        params = {
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "scope": self.config.scope,
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
            "response_type": "code",
        }
        return f"{self.config.authorize_endpoint}?{urlencode(params)}"

    async def login(self, previous_session_id: Optional[str] = None) -> LoginRedirect:
        """
        Start a login: create a pending session and build the authorize URL.

        Each login issues a fresh session id; a session stored under the
        previous cookie is discarded.

        Raises:
            LoginError: On any internal failure (details are logged only)
        """
        try:
            code_verifier, code_challenge = generate_pkce_pair()
            state = generate_code(STATE_BYTES)
            session_id = generate_code(SESSION_ID_BYTES)

            if previous_session_id:
                await self.store.delete(previous_session_id)

            await self.store.put(Session.pending(
                session_id=session_id,
                code_verifier=code_verifier,
                state=state,
                ttl_seconds=self.config.pending_session_ttl_seconds,
            ))
        except Exception as e:
            logger.error(f"Login initiation failed: {e}", exc_info=True)
            raise LoginError() from e

        logger.info("Login initiated", extra={"session": short_id(session_id)})
        return LoginRedirect(session_id, self.build_authorization_url(state, code_challenge))

    # =========================================================================
    # Callback
    # =========================================================================

    async def callback(
        self,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str],
        session_id: Optional[str],
    ) -> CallbackRedirect:
        """
        Complete the flow after the provider redirects back.

        Raises:
            MissingParameterError: code/state missing, or no code verifier
            SessionNotFoundError: No session cookie or unknown session
            StateMismatchError: Supplied state differs from the stored one
            TokenExchangeError: The code exchange or ID token handling failed
        """
        if error:
            logger.info(f"Provider reported authorization error: {error}")
            return CallbackRedirect(_append_query(self.config.redirect_uri, error=error))

        if not code or not state:
            raise MissingParameterError()

        if not session_id:
            raise SessionNotFoundError()

        async with self.store.lock(session_id):
            session = await self.store.get(session_id)
            if session is None:
                raise SessionNotFoundError()

            # CSRF check happens before any network call
            if not _states_match(session.state, state):
                logger.warning("State mismatch on callback", extra={"session": short_id(session_id)})
                raise StateMismatchError()

            if not session.code_verifier:
                raise MissingParameterError("Missing code verifier")

            tokens = await self.tokens.exchange_code(code, session.code_verifier)
            user_info = await self._read_id_token(tokens.id_token)

            session.promote(tokens, user_info, self.config.session_grace_seconds)
            await self.store.put(session)

        logger.info("Callback completed, session authenticated", extra={"session": short_id(session_id)})
        return CallbackRedirect(self.config.success_uri, session_id)

    async def _read_id_token(self, id_token: Optional[str]):
        if not id_token:
            return None

        try:
            if self.config.verify_id_token_signature and self.id_token_verifier:
                return await self.id_token_verifier.verify(id_token)
            return decode_id_token(id_token)
        except (JWTError, httpx.HTTPError, ValueError) as e:
            logger.error(f"ID token rejected: {e}")
            raise TokenExchangeError() from e

    # =========================================================================
    # Check Session / Logout
    # =========================================================================

    async def check_session(self, session_id: Optional[str]) -> SessionStatus:
        """Cheap liveness probe. Never refreshes and never mutates the session."""
        session = await self.store.get(session_id) if session_id else None

        if session is not None and session.access_token and not session.access_token_expired():
            return SessionStatus(authenticated=True, user_info=session.user_info)
        return SessionStatus(authenticated=False)

    async def logout(self, session_id: Optional[str]) -> str:
        """
        End the session and return where to send the browser.

        Revocation is best-effort; the local record is deleted regardless.
        """
        if session_id:
            async with self.store.lock(session_id):
                session = await self.store.get(session_id)
                if session is not None and self.config.revoke_on_logout:
                    if session.refresh_token:
                        await self.tokens.revoke(session.refresh_token, "refresh_token")
                    if session.access_token:
                        await self.tokens.revoke(session.access_token, "access_token")
                await self.store.delete(session_id)

            logger.info("Logged out", extra={"session": short_id(session_id)})

        return self.config.success_uri
