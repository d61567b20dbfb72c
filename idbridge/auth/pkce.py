"""PKCE (Proof Key for Code Exchange) implementation.

RFC 7636 - Proof Key for Code Exchange for OAuth 2.0 public clients.
Uses S256 challenge method (SHA-256 hash of the code verifier).
"""

from __future__ import annotations

import hashlib
import secrets

from base64 import urlsafe_b64encode
from dataclasses import dataclass


def s256_challenge(verifier: str) -> str:
    """Return the base64url (unpadded) SHA-256 of ``verifier``."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


@dataclass(frozen=True)
class PkceContext:
    """PKCE verifier/challenge pair plus the CSRF ``state`` of one flow.

    Lives only as long as a single interactive authorization flow.

    Attributes
    ----------
    verifier : str
        The code verifier (high-entropy random string).
    challenge : str
        The code challenge (base64url-encoded SHA-256 hash of verifier).
    state : str
        Opaque value echoed back on the redirect.
    method : str
        The challenge method, always "S256".
    """

    verifier: str
    challenge: str
    state: str
    method: str = "S256"

    @classmethod
    def generate(cls, length: int = 64) -> PkceContext:
        """Generate a new PKCE context.

        Parameters
        ----------
        length : int
            Number of bytes for the random verifier (default 64).
            RFC 7636 recommends at least 32 bytes.

        Returns
        -------
        PkceContext
            A new verifier, challenge and state.
        """
        verifier = secrets.token_urlsafe(length)
        return cls(
            verifier=verifier,
            challenge=s256_challenge(verifier),
            state=secrets.token_urlsafe(32),
        )
