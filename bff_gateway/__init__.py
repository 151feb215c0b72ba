"""
BFF Gateway
===========

OAuth2/OIDC Backend-For-Frontend gateway. It runs the authorization code
flow with PKCE on behalf of a browser, keeps tokens server-side behind an
opaque session cookie, refreshes them transparently, and proxies browser
requests to internal services with bearer credentials attached.

Packages:
- auth: login flow, session store, token endpoint client, cookies
- proxy: reverse proxy gate and catch-all route
"""

__version__ = "1.0.0"
