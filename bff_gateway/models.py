"""
Data Models Module

Pydantic models shared across the gateway:
- Session records held by the session store
- Token endpoint responses
- Response payloads (check-session, health, errors)
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Token Models
# ============================================================================

class TokenSet(BaseModel):
    """Successful response from the provider's token endpoint."""

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(..., min_length=1, description="Bearer access token")
    token_type: str = Field(default="Bearer", description="Token type")
    expires_in: int = Field(default=3600, ge=0, description="Access token lifetime in seconds")
    refresh_token: Optional[str] = Field(None, description="Refresh token, if issued")
    id_token: Optional[str] = Field(None, description="OIDC ID token, if issued")
    scope: Optional[str] = Field(None, description="Granted scope")


# ============================================================================
# Session Model
# ============================================================================

class Session(BaseModel):
    """
    Server-side session record.

    A session is either pending (``code_verifier`` and ``state`` set, no
    tokens) or authenticated (tokens set, no ``code_verifier``/``state``).
    ``expires_at`` is the access token expiry; ``record_expires_at`` is when
    the store stops returning the record at all.
    """

    session_id: str
    code_verifier: Optional[str] = None
    state: Optional[str] = None
    access_token: str = ""
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    user_info: Optional[Dict[str, Any]] = None
    record_expires_at: datetime

    @classmethod
    def pending(
        cls,
        session_id: str,
        code_verifier: str,
        state: str,
        ttl_seconds: int,
        now: Optional[datetime] = None,
    ) -> "Session":
        now = now or utc_now()
        return cls(
            session_id=session_id,
            code_verifier=code_verifier,
            state=state,
            record_expires_at=now + timedelta(seconds=ttl_seconds),
        )

    @property
    def is_pending(self) -> bool:
        return bool(self.code_verifier or self.state) and not self.access_token

    @property
    def is_authenticated(self) -> bool:
        return bool(self.access_token) and not (self.code_verifier or self.state)

    def access_token_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return True
        return self.expires_at <= (now or utc_now())

    def record_expired(self, now: Optional[datetime] = None) -> bool:
        return self.record_expires_at <= (now or utc_now())

    def apply_tokens(
        self,
        tokens: TokenSet,
        grace_seconds: int,
        now: Optional[datetime] = None,
    ) -> None:
        """
        Store a new token set.

        The previous refresh token is kept when the provider does not
        rotate it. The record lifetime is re-derived from ``expires_in``.
        """
        now = now or utc_now()
        self.access_token = tokens.access_token
        if tokens.refresh_token:
            self.refresh_token = tokens.refresh_token
        self.expires_at = now + timedelta(seconds=tokens.expires_in)
        self.record_expires_at = self.expires_at + timedelta(seconds=grace_seconds)

    def promote(
        self,
        tokens: TokenSet,
        user_info: Optional[Dict[str, Any]],
        grace_seconds: int,
        now: Optional[datetime] = None,
    ) -> None:
        """Move a pending session to the authenticated phase."""
        self.apply_tokens(tokens, grace_seconds, now=now)
        self.user_info = user_info
        self.code_verifier = None
        self.state = None


# ============================================================================
# Response Models
# ============================================================================

class SessionStatus(BaseModel):
    """Payload of the check-session endpoint."""

    authenticated: bool
    user_info: Optional[Dict[str, Any]] = None

    def as_payload(self) -> Dict[str, Any]:
        if not self.authenticated:
            return {"authenticated": False}
        return {"authenticated": True, "userInfo": self.user_info}


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    sessions: int = Field(..., description="Live session records")


class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: str = Field(..., description="Error type or code")
    message: str = Field(..., description="Human-readable error message")
