"""PKCE (:rfc:`7636`) verifier and challenge generation.

The verifier is 32 bytes from :mod:`secrets` (the OS CSPRNG), encoded as
base64url without padding, which always yields 43 characters. The challenge
is the base64url SHA-256 digest of the verifier. Only the ``S256`` method is
supported; ``plain`` is not offered.
"""

from __future__ import annotations

import base64
import hashlib
import secrets

CHALLENGE_METHOD = "S256"
VERIFIER_BYTES = 32


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_verifier() -> str:
    """Return a new high-entropy code verifier (43 chars of ``[A-Za-z0-9_-]``)."""
    return _b64url(secrets.token_bytes(VERIFIER_BYTES))


def generate_challenge(verifier: str) -> str:
    """Derive the ``S256`` code challenge for *verifier*.

    Args:
        verifier: The code verifier produced by :func:`generate_verifier`.

    Returns:
        The base64url (unpadded) SHA-256 digest of the verifier's ASCII bytes.
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return _b64url(digest)


def generate_pkce_pair() -> tuple[str, str]:
    """Generate a PKCE ``(code_verifier, code_challenge)`` pair."""
    verifier = generate_verifier()
    return verifier, generate_challenge(verifier)
