"""
Authentication routes for the PKCE login flow.

Endpoints:
    GET       /login          Start the flow, 302 to the provider
    GET       /callback       Provider redirect target, 302 to success URI
    GET/POST  /logout         End the session, 302 to success URI
    GET       /check-session  JSON {authenticated, userInfo}
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse, RedirectResponse

from ..dependencies import get_flow
from .cookies import clear_session_cookie, get_session_id, set_session_cookie
from .flow import AuthorizationFlow

auth_router = APIRouter(tags=["authentication"])


def _session_id(request: Request) -> Optional[str]:
    return get_session_id(request.headers.get("cookie"))


@auth_router.get("/login", response_class=RedirectResponse)
async def login(request: Request, flow: AuthorizationFlow = Depends(get_flow)):
    """
    Initiate the login flow.

    Creates a pending session, sets the session cookie, and redirects to
    the provider's authorize endpoint with the PKCE challenge and state.
    """
    redirect = await flow.login(previous_session_id=_session_id(request))

    response = RedirectResponse(url=redirect.authorization_url, status_code=status.HTTP_302_FOUND)
    set_session_cookie(response, redirect.session_id)
    return response


@auth_router.get("/callback", response_class=RedirectResponse)
async def callback(
    request: Request,
    code: Optional[str] = Query(None, description="Authorization code from the provider"),
    state: Optional[str] = Query(None, description="State parameter for CSRF protection"),
    error: Optional[str] = Query(None, description="Error code if authorization failed"),
    flow: AuthorizationFlow = Depends(get_flow),
):
    """
    Handle the provider's redirect back to the gateway.

    Validates state against the session, exchanges the code for tokens and
    redirects to the success URI. Provider-reported errors are forwarded to
    the redirect URI as ``?error=``.
    """
    result = await flow.callback(code=code, state=state, error=error, session_id=_session_id(request))

    response = RedirectResponse(url=result.location, status_code=status.HTTP_302_FOUND)
    if result.session_id:
        set_session_cookie(response, result.session_id)
    return response


@auth_router.api_route("/logout", methods=["GET", "POST"], response_class=RedirectResponse)
async def logout(request: Request, flow: AuthorizationFlow = Depends(get_flow)):
    """Delete the server-side session and clear the cookie."""
    location = await flow.logout(_session_id(request))

    response = RedirectResponse(url=location, status_code=status.HTTP_302_FOUND)
    clear_session_cookie(response)
    return response


@auth_router.get("/check-session")
async def check_session(request: Request, flow: AuthorizationFlow = Depends(get_flow)) -> JSONResponse:
    """Report whether the browser holds a live authenticated session."""
    session_status = await flow.check_session(_session_id(request))
    return JSONResponse(session_status.as_payload())
