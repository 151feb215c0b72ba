"""
Gateway component wiring and FastAPI dependencies.
"""

from typing import Optional

import httpx
from fastapi import HTTPException, Request, status

from .auth.flow import AuthorizationFlow
from .auth.store import InMemorySessionStore, SessionStore
from .auth.tokens import TokenEndpointClient, TokenRefresher
from .auth.utils import IdTokenVerifier
from .config import GatewayConfig
from .proxy.gate import ReverseProxyGate


class Gateway:
    """
    Holds the components of one gateway instance.

    Every component receives the same immutable config, store and HTTP
    client at construction.
    """

    def __init__(
        self,
        config: GatewayConfig,
        http_client: httpx.AsyncClient,
        store: Optional[SessionStore] = None,
    ):
        self.config = config
        self.http_client = http_client
        self.store = store or InMemorySessionStore()

        self.token_client = TokenEndpointClient(config, http_client)
        self.refresher = TokenRefresher(config, self.token_client)
        self.flow = AuthorizationFlow(
            config,
            self.store,
            self.token_client,
            id_token_verifier=IdTokenVerifier(config, http_client),
        )
        self.proxy = ReverseProxyGate(config, self.store, self.refresher, http_client)


def get_gateway(request: Request) -> Gateway:
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Gateway not initialized",
        )
    return gateway


def get_flow(request: Request) -> AuthorizationFlow:
    return get_gateway(request).flow


def get_proxy_gate(request: Request) -> ReverseProxyGate:
    return get_gateway(request).proxy
