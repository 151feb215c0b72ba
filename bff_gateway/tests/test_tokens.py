"""
Token Endpoint Client Tests

Unit tests for code exchange, refresh and revocation against a mocked
provider.
"""

from datetime import timedelta
from urllib.parse import parse_qsl

import httpx
import pytest

from bff_gateway.auth.tokens import TokenEndpointClient, TokenRefresher
from bff_gateway.config import GatewayConfig
from bff_gateway.errors import RefreshError, TokenExchangeError
from bff_gateway.models import Session, utc_now
from bff_gateway.tests.conftest import AUTH_SERVER, token_response


@pytest.fixture
def config():
    return GatewayConfig.build(
        client_id="c1",
        auth_server_base_url=AUTH_SERVER,
        client_secret="s3cret",
        session_grace_seconds=60,
    )


def make_client(config, handler):
    return TokenEndpointClient(config, httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def form_of(request: httpx.Request):
    return dict(parse_qsl(request.content.decode()))


def authenticated_session(refresh_token="refresh-1"):
    now = utc_now()
    return Session(
        session_id="s1",
        access_token="access-1",
        refresh_token=refresh_token,
        expires_at=now - timedelta(seconds=1),
        record_expires_at=now + timedelta(minutes=1),
    )


class TestExchangeCode:
    """Authorization code grant"""

    @pytest.mark.asyncio
    async def test_sends_pkce_grant_with_client_secret(self, config):
        seen = []

        def handler(request):
            seen.append(request)
            return token_response(access_token="a", refresh_token="r", expires_in=120)

        tokens = await make_client(config, handler).exchange_code("the-code", "the-verifier")

        assert tokens.access_token == "a"
        assert tokens.refresh_token == "r"
        assert tokens.expires_in == 120

        [request] = seen
        assert str(request.url) == f"{AUTH_SERVER}/token"
        assert request.headers["content-type"] == "application/x-www-form-urlencoded"
        assert form_of(request) == {
            "grant_type": "authorization_code",
            "code": "the-code",
            "redirect_uri": f"{AUTH_SERVER}/success",
            "code_verifier": "the-verifier",
            "client_id": "c1",
            "client_secret": "s3cret",
        }

    @pytest.mark.asyncio
    async def test_omits_client_secret_for_public_clients(self):
        public = GatewayConfig.build(client_id="c1", auth_server_base_url=AUTH_SERVER)
        seen = []

        def handler(request):
            seen.append(form_of(request))
            return token_response()

        await make_client(public, handler).exchange_code("code", "verifier")

        assert "client_secret" not in seen[0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        httpx.Response(400, json={"error": "invalid_grant"}),
        httpx.Response(200, json={"token_type": "Bearer"}),
        httpx.Response(200, content=b"not json"),
    ])
    async def test_rejected_or_malformed_response_raises(self, config, response):
        client = make_client(config, lambda request: response)

        with pytest.raises(TokenExchangeError) as exc_info:
            await client.exchange_code("code", "verifier")

        assert exc_info.value.status_code == 500
        assert "invalid_grant" not in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_transport_failure_raises(self, config):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TokenExchangeError):
            await make_client(config, handler).exchange_code("code", "verifier")


class TestRefresher:
    """Refresh token grant applied to a session"""

    @pytest.mark.asyncio
    async def test_rotates_tokens_and_extends_record(self, config):
        seen = []

        def handler(request):
            seen.append(form_of(request))
            return token_response(access_token="access-2", refresh_token="refresh-2", expires_in=300)

        refresher = TokenRefresher(config, make_client(config, handler))
        session = authenticated_session()
        before = utc_now()

        await refresher.refresh(session)

        assert seen[0]["grant_type"] == "refresh_token"
        assert seen[0]["refresh_token"] == "refresh-1"
        assert seen[0]["client_id"] == "c1"
        assert session.access_token == "access-2"
        assert session.refresh_token == "refresh-2"
        assert session.expires_at >= before + timedelta(seconds=300)
        assert session.record_expires_at == session.expires_at + timedelta(seconds=60)

    @pytest.mark.asyncio
    async def test_keeps_refresh_token_when_not_rotated(self, config):
        refresher = TokenRefresher(
            config,
            make_client(config, lambda request: token_response(access_token="access-2", refresh_token=None)),
        )
        session = authenticated_session()

        await refresher.refresh(session)

        assert session.access_token == "access-2"
        assert session.refresh_token == "refresh-1"

    @pytest.mark.asyncio
    async def test_rejected_refresh_raises_and_leaves_session(self, config):
        refresher = TokenRefresher(
            config,
            make_client(config, lambda request: httpx.Response(400, json={"error": "invalid_grant"})),
        )
        session = authenticated_session()

        with pytest.raises(RefreshError) as exc_info:
            await refresher.refresh(session)

        assert exc_info.value.status_code == 401
        assert session.access_token == "access-1"

    @pytest.mark.asyncio
    async def test_missing_refresh_token_raises_without_calling_provider(self, config):
        seen = []

        def handler(request):
            seen.append(request)
            return token_response()

        refresher = TokenRefresher(config, make_client(config, handler))

        with pytest.raises(RefreshError):
            await refresher.refresh(authenticated_session(refresh_token=None))

        assert seen == []


class TestRevoke:
    """Best-effort revocation"""

    @pytest.mark.asyncio
    async def test_acknowledged_revocation_returns_true(self, config):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200)

        revoked = await make_client(config, handler).revoke("refresh-1", "refresh_token")

        assert revoked is True
        assert str(seen[0].url) == f"{AUTH_SERVER}/revoke"
        assert form_of(seen[0]) == {
            "client_id": "c1",
            "client_secret": "s3cret",
            "token": "refresh-1",
            "token_type_hint": "refresh_token",
        }

    @pytest.mark.asyncio
    async def test_rejection_returns_false(self, config):
        client = make_client(config, lambda request: httpx.Response(503))

        assert await client.revoke("access-1") is False

    @pytest.mark.asyncio
    async def test_transport_failure_returns_false(self, config):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        assert await make_client(config, handler).revoke("access-1") is False
