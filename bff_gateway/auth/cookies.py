"""
Session cookie helpers.

The gateway reads and writes exactly one cookie, ``session_id``. It is
always HttpOnly, Secure, SameSite=Strict and scoped to ``/``.
"""

from typing import Optional

from starlette.requests import cookie_parser
from starlette.responses import Response

SESSION_COOKIE_NAME = "session_id"


def get_session_id(cookie_header: Optional[str]) -> Optional[str]:
    """
    Extract the session id from a raw ``Cookie`` header.

    Returns:
        The cookie value, or None if the header or key is absent or empty
    """
    if not cookie_header:
        return None
    value = cookie_parser(cookie_header).get(SESSION_COOKIE_NAME)
    return value or None


def set_session_cookie(response: Response, session_id: str) -> None:
    response.set_cookie(
        SESSION_COOKIE_NAME,
        session_id,
        path="/",
        httponly=True,
        secure=True,
        samesite="strict",
    )


def clear_session_cookie(response: Response) -> None:
    """Expire the session cookie on the client (``Max-Age=0``)."""
    response.delete_cookie(
        SESSION_COOKIE_NAME,
        path="/",
        httponly=True,
        secure=True,
        samesite="strict",
    )
