"""
Proxy Package
=============

Authenticated reverse proxy from the browser to configured backends.

Main Components:
----------------
- gate.py: ReverseProxyGate (routing, path checks, header rewriting,
  single refresh-and-retry)
- routes.py: catch-all FastAPI route

Security Features:
------------------
- Session cookie never forwarded
- Bearer token injected from the server-side session
- Path traversal rejection
"""

from .gate import ReverseProxyGate

__all__ = ["ReverseProxyGate"]
