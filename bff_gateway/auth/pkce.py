"""
PKCE helper functions.

Random values come from ``secrets``; a missing secure random source is a
startup failure, not something handled per request.
"""

import base64
import hashlib
import secrets
from typing import Tuple


VERIFIER_BYTES = 32
STATE_BYTES = 16
SESSION_ID_BYTES = 32


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def generate_code(byte_length: int) -> str:
    """
    Generate a cryptographically random, base64url-encoded value.

    Args:
        byte_length: Number of random bytes (32 for a verifier, 16 for state)

    Returns:
        Base64-URL-encoded string without padding
    """
    if byte_length <= 0:
        raise ValueError("byte_length must be positive")
    return _b64url(secrets.token_bytes(byte_length))


def derive_challenge(verifier: str) -> str:
    """
    Generate the S256 code challenge for a verifier.

    Args:
        verifier: Code verifier string

    Returns:
        Base64-URL-encoded SHA256 hash of verifier
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return _b64url(digest)


def generate_pkce_pair() -> Tuple[str, str]:
    """Return a fresh ``(code_verifier, code_challenge)`` pair."""
    verifier = generate_code(VERIFIER_BYTES)
    return verifier, derive_challenge(verifier)
