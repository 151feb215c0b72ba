"""
Configuration module for the BFF gateway.

Two layers:

- ``Settings`` uses Pydantic Settings to load raw values from environment
  variables or a ``.env`` file.
- ``GatewayConfig`` is the immutable, normalized configuration handed to
  every component at construction. ``resolve_config`` builds it from
  ``Settings`` and applies the defaults for scope, redirect URI and
  success URI.

Missing required values raise ``ConfigurationError`` when the gateway is
built, never per request.
"""

from functools import lru_cache
from typing import Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


DEFAULT_SCOPE = "openid profile"
DEFAULT_SUCCESS_URI = "/"


class Settings(BaseSettings):
    """
    Gateway settings loaded from environment variables.

    Required values are declared optional here so that their absence is
    reported as a ``ConfigurationError`` by ``resolve_config`` instead of a
    validation error at import time.
    """

    # =========================================================================
    # OAuth2 / OIDC Provider
    # =========================================================================

    CLIENT_ID: Optional[str] = Field(
        None,
        description="OAuth client id registered with the identity provider",
    )

    CLIENT_SECRET: Optional[str] = Field(
        None,
        description="Client secret (confidential clients only)",
    )

    AUTH_SERVER_BASE_URL: Optional[str] = Field(
        None,
        description="Identity provider base URL (e.g., https://idp.example)",
    )

    SCOPE: Optional[str] = Field(None, description="Requested scope")

    REDIRECT_URI: Optional[str] = Field(
        None,
        description="OAuth redirect URI (defaults to <AUTH_SERVER_BASE_URL>/success)",
    )

    SUCCESS_URI: Optional[str] = Field(
        None,
        description="Where the browser lands after login and logout",
    )

    # =========================================================================
    # Proxied Services
    # =========================================================================

    SERVICES: Dict[str, str] = Field(
        default_factory=dict,
        description='JSON object of path prefix -> backend base URL, e.g. {"/api": "http://api:8000"}',
    )

    AUTH_PATH_PREFIX: str = Field(
        default="",
        description="Mount prefix for /login, /callback, /logout and /check-session",
    )

    # =========================================================================
    # Sessions
    # =========================================================================

    PENDING_SESSION_TTL_SECONDS: int = Field(default=600, ge=30, le=3600)

    SESSION_GRACE_SECONDS: int = Field(
        default=8 * 60 * 60,
        ge=0,
        description="How long a session record outlives its access token",
    )

    SESSION_SWEEP_INTERVAL_SECONDS: int = Field(default=60, ge=1)

    # =========================================================================
    # Outbound HTTP / Tokens
    # =========================================================================

    HTTP_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)

    REVOKE_ON_LOGOUT: bool = True

    VERIFY_ID_TOKEN_SIGNATURE: bool = False

    JWKS_URI: Optional[str] = None

    JWKS_CACHE_SECONDS: int = Field(default=3600, ge=60, le=86400)

    # =========================================================================
    # Server
    # =========================================================================

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins",
    )

    LOG_LEVEL: str = "INFO"

    GATEWAY_HOST: str = "0.0.0.0"

    GATEWAY_PORT: int = Field(default=8080, ge=1, le=65535)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def allowed_origins_list(self) -> List[str]:
        if not self.ALLOWED_ORIGINS:
            return []
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get or create the process-wide Settings instance."""
    return Settings()


# =============================================================================
# Normalized Gateway Configuration
# =============================================================================

class ServiceRoute(BaseModel):
    """A configured path prefix and the backend it forwards to."""

    model_config = ConfigDict(frozen=True)

    prefix: str
    base_url: str

    def matches(self, path: str) -> bool:
        """True if ``path`` falls under this prefix on a segment boundary."""
        if self.prefix == "/":
            return path.startswith("/")
        return path == self.prefix or path.startswith(self.prefix + "/")


class GatewayConfig(BaseModel):
    """
    Immutable gateway configuration.

    Build instances with ``GatewayConfig.build`` (or ``resolve_config``) so
    that defaults are applied and required values are checked.
    """

    model_config = ConfigDict(frozen=True)

    client_id: str
    auth_server_base_url: str
    scope: str = DEFAULT_SCOPE
    redirect_uri: str
    success_uri: str = DEFAULT_SUCCESS_URI
    services: Tuple[ServiceRoute, ...] = ()
    client_secret: Optional[str] = None

    pending_session_ttl_seconds: int = 600
    session_grace_seconds: int = 8 * 60 * 60
    revoke_on_logout: bool = True
    verify_id_token_signature: bool = False
    jwks_uri: str
    jwks_cache_seconds: int = 3600

    @classmethod
    def build(
        cls,
        client_id: Optional[str],
        auth_server_base_url: Optional[str],
        scope: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        success_uri: Optional[str] = None,
        services: Optional[Mapping[str, str]] = None,
        jwks_uri: Optional[str] = None,
        **options,
    ) -> "GatewayConfig":
        """
        Normalize raw configuration values.

        Args:
            client_id: OAuth client id (required)
            auth_server_base_url: Provider base URL (required)
            scope: Requested scope, defaults to ``openid profile``
            redirect_uri: Defaults to ``<auth_server_base_url>/success``
            success_uri: Defaults to ``/``
            services: Ordered mapping of path prefix -> backend base URL
            jwks_uri: Defaults to ``<auth_server_base_url>/.well-known/jwks.json``
            **options: Remaining ``GatewayConfig`` fields

        Raises:
            ConfigurationError: If a required value is missing or a service
                entry is malformed
        """
        if not client_id:
            raise ConfigurationError("Client ID is required")
        if not auth_server_base_url:
            raise ConfigurationError("Auth server URL is required")

        auth_server = auth_server_base_url.rstrip("/")
        if not _is_http_url(auth_server):
            raise ConfigurationError(f"Auth server URL must be http(s): {auth_server_base_url}")

        return cls(
            client_id=client_id,
            auth_server_base_url=auth_server,
            scope=scope or DEFAULT_SCOPE,
            redirect_uri=redirect_uri or f"{auth_server}/success",
            success_uri=success_uri or DEFAULT_SUCCESS_URI,
            services=_normalize_services(services or {}),
            jwks_uri=jwks_uri or f"{auth_server}/.well-known/jwks.json",
            **options,
        )

    @property
    def authorize_endpoint(self) -> str:
        return f"{self.auth_server_base_url}/authorize"

    @property
    def token_endpoint(self) -> str:
        return f"{self.auth_server_base_url}/token"

    @property
    def revoke_endpoint(self) -> str:
        return f"{self.auth_server_base_url}/revoke"


def resolve_config(settings: Optional[Settings] = None) -> GatewayConfig:
    """
    Build the immutable ``GatewayConfig`` from environment settings.

    Raises:
        ConfigurationError: If CLIENT_ID or AUTH_SERVER_BASE_URL is missing
    """
    settings = settings or get_settings()
    return GatewayConfig.build(
        client_id=settings.CLIENT_ID,
        auth_server_base_url=settings.AUTH_SERVER_BASE_URL,
        scope=settings.SCOPE,
        redirect_uri=settings.REDIRECT_URI,
        success_uri=settings.SUCCESS_URI,
        services=settings.SERVICES,
        jwks_uri=settings.JWKS_URI,
        client_secret=settings.CLIENT_SECRET,
        pending_session_ttl_seconds=settings.PENDING_SESSION_TTL_SECONDS,
        session_grace_seconds=settings.SESSION_GRACE_SECONDS,
        revoke_on_logout=settings.REVOKE_ON_LOGOUT,
        verify_id_token_signature=settings.VERIFY_ID_TOKEN_SIGNATURE,
        jwks_cache_seconds=settings.JWKS_CACHE_SECONDS,
    )


# =============================================================================
# Helpers
# =============================================================================

def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _normalize_services(services: Mapping[str, str]) -> Tuple[ServiceRoute, ...]:
    routes = []
    seen = set()

    for prefix, base_url in services.items():
        if not prefix or not prefix.startswith("/"):
            raise ConfigurationError(f"Service prefix must start with '/': {prefix!r}")
        if not base_url or not _is_http_url(base_url):
            raise ConfigurationError(f"Service {prefix!r} needs an http(s) base URL, got {base_url!r}")

        normalized = prefix.rstrip("/") or "/"
        if normalized in seen:
            raise ConfigurationError(f"Duplicate service prefix: {prefix!r}")
        seen.add(normalized)

        routes.append(ServiceRoute(prefix=normalized, base_url=base_url.rstrip("/")))

    return tuple(routes)
