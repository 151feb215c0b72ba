"""
Proxy Routes - Backend Request Forwarding
==========================================

A single catch-all route hands every path not claimed by another router to
``ReverseProxyGate``. It is appended last so auth and system routes win.

The route carries no method list: every method, including ones no router
declares (TRACE, PROPFIND, ...), reaches the gate, which answers the session
check before the method check and renders both as gateway errors.
"""

from starlette.requests import Request
from starlette.routing import Route
from starlette.types import Receive, Scope, Send

from ..dependencies import get_proxy_gate


class ProxyEndpoint:
    """ASGI endpoint forwarding the request through the gateway's proxy gate."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        response = await get_proxy_gate(request).handle(request)
        await response(scope, receive, send)


proxy_route = Route(
    "/{path:path}",
    endpoint=ProxyEndpoint(),
    name="proxy",
    include_in_schema=False,
)
