"""
Shared fixtures for gateway tests.

The identity provider and the backend services are faked with
``httpx.MockTransport``; every outbound request is recorded on the
``upstream`` fixture so tests can assert on what left the gateway.
"""

from typing import Callable, Dict, List, Optional, Union
from urllib.parse import parse_qs, parse_qsl, urlparse

import httpx
import jwt
import pytest
from fastapi.testclient import TestClient

from bff_gateway.auth.store import InMemorySessionStore
from bff_gateway.config import GatewayConfig, Settings
from bff_gateway.main import create_app


AUTH_SERVER = "https://idp.example"
USERS_BACKEND = "http://users.internal:8000"
ADMIN_BACKEND = "http://admin.internal:9000"

Responder = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


def token_response(
    access_token: str = "access-1",
    refresh_token: Optional[str] = "refresh-1",
    expires_in: int = 3600,
    id_token: Optional[str] = None,
    status_code: int = 200,
) -> httpx.Response:
    body = {"access_token": access_token, "token_type": "Bearer", "expires_in": expires_in}
    if refresh_token:
        body["refresh_token"] = refresh_token
    if id_token:
        body["id_token"] = id_token
    return httpx.Response(status_code, json=body)


def make_id_token(claims: Dict, key: str = "test-signing-key-not-verified", **kwargs) -> str:
    return jwt.encode(claims, key, algorithm=kwargs.pop("algorithm", "HS256"), **kwargs)


class FakeUpstream:
    """
    Answers like the identity provider and the backend services.

    Queue responses with ``queue_token``/``queue_backend``; unqueued
    backend calls answer 200 ``{"ok": true}``.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.token_queue: List[Responder] = []
        self.backend_queue: List[Responder] = []
        self.revoke_status = 200
        self.revoke_unreachable = False
        self.jwks: Dict = {"keys": []}

    def queue_token(self, *responses: Responder) -> None:
        self.token_queue.extend(responses)

    def queue_backend(self, *responses: Responder) -> None:
        self.backend_queue.extend(responses)

    @staticmethod
    def _answer(responder: Responder, request: httpx.Request) -> httpx.Response:
        return responder(request) if callable(responder) else responder

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.url.host == urlparse(AUTH_SERVER).hostname:
            if request.url.path == "/token":
                if not self.token_queue:
                    return httpx.Response(400, json={"error": "invalid_grant"})
                return self._answer(self.token_queue.pop(0), request)
            if request.url.path == "/revoke":
                if self.revoke_unreachable:
                    raise httpx.ConnectError("connection refused", request=request)
                return httpx.Response(self.revoke_status)
            if request.url.path == "/.well-known/jwks.json":
                return httpx.Response(200, json=self.jwks)
            return httpx.Response(404)

        if self.backend_queue:
            return self._answer(self.backend_queue.pop(0), request)
        return httpx.Response(200, json={"ok": True})

    # ------------------------------------------------------------------
    # Inspection helpers
    # ------------------------------------------------------------------

    def token_calls(self, grant_type: Optional[str] = None) -> List[Dict[str, str]]:
        calls = []
        for request in self.requests:
            if request.url.path != "/token":
                continue
            form = dict(parse_qsl(request.content.decode()))
            if grant_type is None or form.get("grant_type") == grant_type:
                calls.append(form)
        return calls

    def revoke_calls(self) -> List[Dict[str, str]]:
        return [
            dict(parse_qsl(request.content.decode()))
            for request in self.requests
            if request.url.path == "/revoke"
        ]

    def backend_calls(self) -> List[httpx.Request]:
        return [
            request for request in self.requests
            if request.url.host != urlparse(AUTH_SERVER).hostname
        ]


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def mock_settings():
    """Settings for tests, isolated from any local .env file"""
    return Settings(
        _env_file=None,
        CLIENT_ID="c1",
        AUTH_SERVER_BASE_URL=AUTH_SERVER,
        SERVICES={"/api": USERS_BACKEND, "/api/admin": ADMIN_BACKEND},
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture
def gateway_config(mock_settings) -> GatewayConfig:
    from bff_gateway.config import resolve_config
    return resolve_config(mock_settings)


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def http_client(upstream):
    return httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler))


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def app(mock_settings, store, http_client):
    return create_app(settings=mock_settings, store=store, http_client=http_client)


@pytest.fixture
def client(app):
    """Test client over https so the Secure session cookie round-trips"""
    with TestClient(app, base_url="https://testserver", follow_redirects=False) as test_client:
        yield test_client


# ============================================================================
# Flow helpers
# ============================================================================

def query_of(location: str) -> Dict[str, str]:
    return {key: values[0] for key, values in parse_qs(urlparse(location).query).items()}


def start_login(client: TestClient) -> Dict[str, str]:
    """Run /login and return the authorize query parameters."""
    response = client.get("/login")
    assert response.status_code == 302
    return query_of(response.headers["location"])


def authenticate(client: TestClient, upstream: FakeUpstream, **token_kwargs) -> str:
    """Complete login + callback; return the session id."""
    params = start_login(client)
    upstream.queue_token(token_response(**token_kwargs))

    response = client.get("/callback", params={"code": "auth-code", "state": params["state"]})
    assert response.status_code == 302
    return client.cookies.get("session_id")
