"""
ID token utilities.

This module handles:
- Decoding the ID token payload returned by the token endpoint
- Optionally verifying its signature against the provider's JWKS
  (fetched with httpx and cached)
"""

import logging
import time
from typing import Any, Dict, Optional

import httpx
from jose import JWTError, jwk, jwt

from ..config import GatewayConfig

logger = logging.getLogger(__name__)


def decode_id_token(id_token: str) -> Dict[str, Any]:
    """
    Decode an ID token payload without verifying its signature.

    Integrity rests on the TLS channel to the token endpoint.

    Raises:
        JWTError: If the token is not a well-formed JWT
    """
    claims = jwt.get_unverified_claims(id_token)
    if not isinstance(claims, dict):
        raise JWTError("ID token payload is not a JSON object")
    return claims


# =============================================================================
# JWKS Verification
# =============================================================================

class IdTokenVerifier:
    """
    Verifies ID token signatures against the provider's published keys.

    The JWKS document is cached for ``jwks_cache_seconds`` and refetched
    once when a token references an unknown ``kid`` (key rotation).
    """

    def __init__(self, config: GatewayConfig, http_client: httpx.AsyncClient):
        self._config = config
        self._http = http_client
        self._jwks: Optional[Dict[str, Any]] = None
        self._jwks_fetched_at: float = 0.0

    async def fetch_jwks(self, force_refresh: bool = False) -> Dict[str, Any]:
        """
        Fetch JWKS from the provider with caching.

        Raises:
            httpx.HTTPError: If the JWKS endpoint is unreachable
            ValueError: If the response is not a JWKS document
        """
        current_time = time.time()
        if (
            not force_refresh
            and self._jwks is not None
            and (current_time - self._jwks_fetched_at) < self._config.jwks_cache_seconds
        ):
            return self._jwks

        response = await self._http.get(self._config.jwks_uri)
        response.raise_for_status()

        jwks_data = response.json()
        if "keys" not in jwks_data:
            raise ValueError("Invalid JWKS response: missing 'keys' field")

        self._jwks = jwks_data
        self._jwks_fetched_at = current_time
        logger.debug(f"Fetched JWKS with {len(jwks_data['keys'])} keys")
        return jwks_data

    @staticmethod
    def find_signing_key(token: str, jwks: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Return the JWK matching the token's ``kid``, if any."""
        kid = jwt.get_unverified_header(token).get("kid")
        keys = jwks.get("keys", [])

        if not kid:
            # A provider publishing a single key may omit kid
            return keys[0] if len(keys) == 1 else None

        for key in keys:
            if key.get("kid") == kid:
                return key
        return None

    async def verify(self, id_token: str) -> Dict[str, Any]:
        """
        Verify signature, audience and expiry, and return the claims.

        Raises:
            JWTError: If verification fails or no signing key matches
        """
        jwks = await self.fetch_jwks()
        signing_key = self.find_signing_key(id_token, jwks)

        if not signing_key:
            jwks = await self.fetch_jwks(force_refresh=True)
            signing_key = self.find_signing_key(id_token, jwks)
            if not signing_key:
                raise JWTError("Unable to find matching signing key in JWKS")

        try:
            public_key = jwk.construct(signing_key, algorithm=signing_key.get("alg", "RS256"))
        except Exception as e:
            raise JWTError(f"Failed to construct public key from JWK: {e}")

        return jwt.decode(
            id_token,
            public_key.to_pem().decode("utf-8"),
            algorithms=["RS256"],
            audience=self._config.client_id,
            options={
                "verify_at_hash": False,
                "leeway": 10,
            },
        )
