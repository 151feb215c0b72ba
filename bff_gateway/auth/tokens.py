"""
Token endpoint client and token refresher.

All calls are form-encoded POSTs to the provider. Provider error text is
logged here and never propagated to the browser: callers receive
``TokenExchangeError`` or ``RefreshError`` with generic details.
"""

import logging
from typing import Dict, Optional

import httpx
from pydantic import ValidationError

from ..config import GatewayConfig
from ..errors import RefreshError, TokenExchangeError
from ..models import Session, TokenSet
from .store import short_id

logger = logging.getLogger(__name__)

FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}


class TokenEndpointClient:
    """Talks to the provider's ``/token`` and ``/revoke`` endpoints."""

    def __init__(self, config: GatewayConfig, http_client: httpx.AsyncClient):
        self._config = config
        self._http = http_client

    def _client_credentials(self) -> Dict[str, str]:
        payload = {"client_id": self._config.client_id}
        if self._config.client_secret:
            payload["client_secret"] = self._config.client_secret
        return payload

    async def _post_token(self, payload: Dict[str, str]) -> TokenSet:
        """
        POST a grant to the token endpoint.

        Raises:
            httpx.HTTPError: On transport failure
            ValueError: On non-2xx status or an unusable response body
        """
        response = await self._http.post(
            self._config.token_endpoint,
            data={**self._client_credentials(), **payload},
            headers=FORM_HEADERS,
        )

        if not response.is_success:
            raise ValueError(f"{response.status_code} - {response.text[:500]}")

        try:
            return TokenSet.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ValueError(f"Malformed token response: {e}") from e

    async def exchange_code(self, code: str, code_verifier: str) -> TokenSet:
        """
        Exchange an authorization code for tokens.

        Raises:
            TokenExchangeError: If the provider rejects the code or is unreachable
        """
        try:
            return await self._post_token({
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self._config.redirect_uri,
                "code_verifier": code_verifier,
            })
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Token exchange failed: {e}")
            raise TokenExchangeError() from e

    async def refresh_grant(self, refresh_token: str) -> TokenSet:
        """
        Exchange a refresh token for a new token set.

        Raises:
            RefreshError: If the provider rejects the refresh token or is unreachable
        """
        try:
            return await self._post_token({
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            })
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Refresh token exchange failed: {e}")
            raise RefreshError() from e

    async def revoke(self, token: str, token_type_hint: Optional[str] = None) -> bool:
        """
        Best-effort token revocation. Never raises.

        Returns:
            True if the provider acknowledged the revocation
        """
        payload = {**self._client_credentials(), "token": token}
        if token_type_hint:
            payload["token_type_hint"] = token_type_hint

        try:
            response = await self._http.post(
                self._config.revoke_endpoint,
                data=payload,
                headers=FORM_HEADERS,
            )
        except httpx.HTTPError as e:
            logger.warning(f"Token revocation request failed: {e}")
            return False

        if not response.is_success:
            logger.warning(f"Token revocation rejected: {response.status_code}")
            return False
        return True


class TokenRefresher:
    """Exchanges a session's refresh token for a new access/refresh pair."""

    def __init__(self, config: GatewayConfig, token_client: TokenEndpointClient):
        self._config = config
        self._tokens = token_client

    async def refresh(self, session: Session) -> Session:
        """
        Refresh ``session`` in place.

        Overwrites ``access_token``, ``expires_at`` and, when rotated,
        ``refresh_token``. The caller persists the session.

        Raises:
            RefreshError: If the session has no refresh token or the grant fails
        """
        if not session.refresh_token:
            raise RefreshError()

        tokens = await self._tokens.refresh_grant(session.refresh_token)
        session.apply_tokens(tokens, self._config.session_grace_seconds)

        logger.info(
            "Refreshed access token",
            extra={"session": short_id(session.session_id), "expires_in": tokens.expires_in},
        )
        return session
