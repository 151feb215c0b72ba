"""
Gateway Error Taxonomy
======================

Every failure the gateway can surface to a browser is a ``GatewayError``
subclass carrying the HTTP status and a public, generic detail string.
Internal causes (provider error text, stack traces) go to the logs only.

``ConfigurationError`` is the exception: it is raised at construction time
and never rendered as an HTTP response.
"""

from typing import Dict, Optional

from fastapi import status


class ConfigurationError(Exception):
    """Raised when gateway configuration is missing or malformed"""
    pass


class GatewayError(Exception):
    """
    Base class for errors rendered as HTTP responses.

    Attributes:
        status_code: HTTP status returned to the caller
        error: Short machine-readable error code
        detail: Human-readable message, safe to expose
        headers: Extra response headers
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error: str = "internal_server_error"
    detail: str = "An unexpected error occurred"

    def __init__(self, detail: Optional[str] = None, headers: Optional[Dict[str, str]] = None):
        if detail is not None:
            self.detail = detail
        self.headers = headers
        super().__init__(self.detail)


# =============================================================================
# 400 Bad Request
# =============================================================================

class MissingParameterError(GatewayError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "missing_parameter"
    detail = "Missing authorization code or state"


class SessionNotFoundError(GatewayError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "invalid_session"
    detail = "Invalid session"


class StateMismatchError(GatewayError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "state_mismatch"
    detail = "State mismatch"


class InvalidPathError(GatewayError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "invalid_path"
    detail = "Invalid path"


# =============================================================================
# 401 / 404 / 405
# =============================================================================

class UnauthenticatedError(GatewayError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "unauthorized"
    detail = "Unauthorized"


class RouteNotFoundError(GatewayError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "service_not_found"
    detail = "Service not found"


class MethodNotAllowedError(GatewayError):
    status_code = status.HTTP_405_METHOD_NOT_ALLOWED
    error = "method_not_allowed"
    detail = "Method not allowed"


# =============================================================================
# Upstream failures
# =============================================================================

class LoginError(GatewayError):
    error = "login_failed"
    detail = "Login initiation failed"


class TokenExchangeError(GatewayError):
    """Authorization code exchange (or ID token handling) failed"""
    error = "authentication_failed"
    detail = "Authentication failed"


class RefreshError(GatewayError):
    """Refresh token exchange failed; the proxy answers 401"""
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "unauthorized"
    detail = "Unauthorized"


class BackendUnavailableError(GatewayError):
    status_code = status.HTTP_502_BAD_GATEWAY
    error = "bad_gateway"
    detail = "Cannot reach backend service"


class BackendTimeoutError(GatewayError):
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    error = "gateway_timeout"
    detail = "Backend service timeout"


__all__ = [
    "ConfigurationError",
    "GatewayError",
    "MissingParameterError",
    "SessionNotFoundError",
    "StateMismatchError",
    "InvalidPathError",
    "UnauthenticatedError",
    "RouteNotFoundError",
    "MethodNotAllowedError",
    "LoginError",
    "TokenExchangeError",
    "RefreshError",
    "BackendUnavailableError",
    "BackendTimeoutError",
]
