"""
Authentication Package

Handles the OAuth 2.0 authorization code flow with PKCE and the
server-side sessions that hold the resulting tokens.

Modules:
- pkce: verifier, challenge and state generation
- store: session store interface, in-memory store, sweeper
- tokens: token endpoint client and token refresher
- utils: ID token decoding and optional JWKS verification
- cookies: session cookie parsing and Set-Cookie helpers
- flow: login, callback, check-session, logout
- routes: HTTP endpoints for the flow

The authentication flow:
1. Browser hits /login; a pending session is created and the browser is
   redirected to the provider with a PKCE challenge and state
2. Provider redirects to /callback with a code
3. Gateway checks state, exchanges the code with the verifier, stores the
   tokens and marks the session authenticated
4. Browser calls proxied services with the session cookie only
"""

from .flow import AuthorizationFlow
from .store import InMemorySessionStore, SessionStore
from .tokens import TokenEndpointClient, TokenRefresher

__all__ = [
    "AuthorizationFlow",
    "InMemorySessionStore",
    "SessionStore",
    "TokenEndpointClient",
    "TokenRefresher",
]
