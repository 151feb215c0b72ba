"""
Reverse Proxy Gate
==================

Forwards authenticated browser requests to configured backend services.

Security Model:
---------------
1. The browser presents only the opaque ``session_id`` cookie
2. The gate resolves the session and attaches ``Authorization: Bearer``
3. The cookie header is never forwarded to backends
4. Remainder paths containing ``..`` or ``//`` are rejected before routing
5. On a backend 401 the access token is refreshed at most once per request
"""

import logging
from typing import Iterable, List, Optional, Tuple
from urllib.parse import quote, unquote

import httpx
from starlette.requests import Request
from starlette.responses import Response

from ..config import GatewayConfig, ServiceRoute
from ..errors import (
    BackendTimeoutError,
    BackendUnavailableError,
    InvalidPathError,
    MethodNotAllowedError,
    RouteNotFoundError,
    UnauthenticatedError,
)
from ..auth.cookies import get_session_id
from ..auth.store import SessionStore, short_id
from ..auth.tokens import TokenRefresher

logger = logging.getLogger(__name__)

ALLOWED_METHODS = ("GET", "POST", "PUT", "DELETE")

HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
})

# Never forwarded upstream; authorization is replaced with the session's token
_STRIPPED_REQUEST_HEADERS = HOP_BY_HOP_HEADERS | {"cookie", "host", "content-length", "authorization"}

# httpx has already decoded and de-chunked the body
_STRIPPED_RESPONSE_HEADERS = HOP_BY_HOP_HEADERS | {"content-length", "content-encoding"}

_PATH_SAFE_CHARS = "/:@!$&'()*+,;=-._~"


# ============================================================================
# Routing Helpers
# ============================================================================

def select_route(routes: Iterable[ServiceRoute], path: str) -> Optional[ServiceRoute]:
    """Return the longest configured prefix matching ``path``."""
    best = None
    for route in routes:
        if route.matches(path) and (best is None or len(route.prefix) > len(best.prefix)):
            best = route
    return best


def strip_prefix(route: ServiceRoute, path: str) -> str:
    if route.prefix == "/":
        return path
    return path[len(route.prefix):]


def check_remainder(remainder: str) -> str:
    """
    Reject remainders that could escape the backend's routing space.

    Raises:
        InvalidPathError: If the remainder contains ``..`` or ``//``
    """
    if ".." in remainder or "//" in remainder:
        raise InvalidPathError()
    return remainder


def raw_remainder(route: ServiceRoute, path: str, raw_path: Optional[bytes]) -> Optional[str]:
    """
    Return the still-encoded remainder from the raw request path.

    None when the raw path is unavailable or does not decode to ``path``.
    """
    if not raw_path:
        return None
    raw = raw_path.decode("latin-1")
    if unquote(raw) != path:
        return None
    if route.prefix == "/":
        return raw
    if raw == route.prefix or raw.startswith(route.prefix + "/"):
        return raw[len(route.prefix):]
    return None


def build_target_url(
    route: ServiceRoute,
    remainder: str,
    query: str = "",
    encoded_remainder: Optional[str] = None,
) -> str:
    """
    Join the backend base URL, the remainder and the query string.

    ``encoded_remainder`` is preferred so escapes such as ``%2F`` inside a
    segment reach the backend unchanged.
    """
    if encoded_remainder is not None:
        path = quote(encoded_remainder, safe=_PATH_SAFE_CHARS + "%")
    else:
        path = quote(remainder, safe=_PATH_SAFE_CHARS)
    url = route.base_url + path
    if query:
        url = f"{url}?{query}"
    return url


def forward_headers(raw_headers: Iterable[Tuple[bytes, bytes]], access_token: str) -> List[Tuple[bytes, bytes]]:
    """Copy inbound headers minus cookie/host/hop-by-hop and add the bearer token."""
    headers = [
        (name, value) for name, value in raw_headers
        if name.decode("latin-1").lower() not in _STRIPPED_REQUEST_HEADERS
    ]
    headers.append((b"authorization", f"Bearer {access_token}".encode("latin-1")))
    return headers


def to_response(upstream: httpx.Response) -> Response:
    """Relay a backend response, keeping status, headers and body."""
    response = Response(content=upstream.content, status_code=upstream.status_code)
    response.raw_headers.extend(
        (name, value) for name, value in upstream.headers.raw
        if name.decode("latin-1").lower() not in _STRIPPED_RESPONSE_HEADERS
    )
    return response


# ============================================================================
# Gate
# ============================================================================

class ReverseProxyGate:
    """
    Maps inbound paths to backends and forwards with bearer credentials.

    Args:
        config: Immutable gateway configuration (provides ``services``)
        store: Session store
        refresher: Refreshes a session's tokens
        http_client: Shared client used for backend calls
    """

    def __init__(
        self,
        config: GatewayConfig,
        store: SessionStore,
        refresher: TokenRefresher,
        http_client: httpx.AsyncClient,
    ):
        self.config = config
        self.store = store
        self.refresher = refresher
        self._http = http_client

    def resolve(self, path: str) -> Tuple[ServiceRoute, str]:
        """
        Select the service for ``path`` and validate the remainder.

        Raises:
            RouteNotFoundError: No configured prefix matches
            InvalidPathError: The remainder is unsafe
        """
        route = select_route(self.config.services, path)
        if route is None:
            raise RouteNotFoundError()
        return route, check_remainder(strip_prefix(route, path))

    async def handle(self, request: Request) -> Response:
        """
        Proxy one browser request.

        Raises:
            UnauthenticatedError: No session cookie, unknown session, no token
            MethodNotAllowedError: Method outside GET/POST/PUT/DELETE
            RouteNotFoundError: Path matches no configured service
            InvalidPathError: Remainder contains ``..`` or ``//``
            RefreshError: The single refresh attempt failed
        """
        session_id = get_session_id(request.headers.get("cookie"))
        if not session_id:
            raise UnauthenticatedError("No session")

        session = await self.store.get(session_id)
        if session is None or not session.access_token:
            raise UnauthenticatedError()

        if request.method not in ALLOWED_METHODS:
            raise MethodNotAllowedError(headers={"Allow": ", ".join(ALLOWED_METHODS)})

        # request.url re-parses the decoded path, so %3F or %23 would split it
        path = request.scope["path"]
        query = request.scope.get("query_string", b"").decode("latin-1")

        route, remainder = self.resolve(path)
        target_url = build_target_url(
            route,
            remainder,
            query,
            encoded_remainder=raw_remainder(route, path, request.scope.get("raw_path")),
        )
        body = await request.body()

        access_token = session.access_token
        refreshed = False

        if session.access_token_expired():
            access_token = await self._refresh(session_id, access_token)
            refreshed = True

        upstream = await self._forward(request, target_url, body, access_token)

        if upstream.status_code == 401 and not refreshed and session.refresh_token:
            logger.info(
                "Backend returned 401, refreshing once",
                extra={"session": short_id(session_id), "service": route.prefix},
            )
            access_token = await self._refresh(session_id, access_token)
            upstream = await self._forward(request, target_url, body, access_token)

        return to_response(upstream)

    async def _refresh(self, session_id: str, stale_token: str) -> str:
        """
        Refresh under the session lock and return the access token to use.

        If a concurrent request rotated the token while this one waited,
        the stored token is returned without calling the provider.
        """
        async with self.store.lock(session_id):
            current = await self.store.get(session_id)
            if current is None:
                raise UnauthenticatedError()

            if (
                current.access_token
                and current.access_token != stale_token
                and not current.access_token_expired()
            ):
                return current.access_token

            await self.refresher.refresh(current)
            await self.store.put(current)
            return current.access_token

    async def _forward(self, request: Request, target_url: str, body: bytes, access_token: str) -> httpx.Response:
        headers = forward_headers(request.headers.raw, access_token)

        try:
            upstream = await self._http.request(
                request.method,
                target_url,
                headers=headers,
                content=body,
            )
        except httpx.TimeoutException as e:
            logger.error(f"Backend request timeout: {e}", extra={"target": target_url})
            raise BackendTimeoutError() from e
        except httpx.RequestError as e:
            logger.error(f"Backend network error: {e}", extra={"target": target_url})
            raise BackendUnavailableError() from e

        logger.debug(
            f"Proxied {request.method} -> {upstream.status_code}",
            extra={"target": target_url},
        )
        return upstream
