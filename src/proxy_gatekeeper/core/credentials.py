"""
Credential Verification for Proxy Gatekeeper.

Holds the public key used to verify bearer credentials and performs
RS256 signature verification.

Zero-trust: No key loaded = every token is invalid.
"""

from __future__ import annotations

import os
from typing import Any

import jwt
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey

from proxy_gatekeeper.core.identity import Identity
from proxy_gatekeeper.errors import InvalidTokenError, TokenExpiredError

SIGNING_ALGORITHM = "RS256"

_CERTIFICATE_MARKER = "-----BEGIN CERTIFICATE-----"


def load_public_key(pem: str | bytes) -> RSAPublicKey:
    """
    Load an RSA public key from PEM text.

    Accepts a PEM public key or a PEM X.509 certificate.

    Args:
        pem: PEM-encoded key or certificate

    Returns:
        RSA public key

    Raises:
        ValueError: If the PEM cannot be parsed or is not RSA
    """
    data = pem.encode("utf-8") if isinstance(pem, str) else pem

    if _CERTIFICATE_MARKER.encode("ascii") in data:
        key = x509.load_pem_x509_certificate(data).public_key()
    else:
        key = serialization.load_pem_public_key(data)

    if not isinstance(key, RSAPublicKey):
        raise ValueError("Public key must be an RSA key for RS256 verification")
    return key


class KeyManager:
    """
    Public key holder and token verifier.

    Usage:
        manager = KeyManager()
        manager.load_from_env("GATEKEEPER_PUBLIC_KEY")

        identity = manager.verify(token)  # raises on failure
    """

    def __init__(self, public_key: str | bytes | None = None) -> None:
        """
        Initialize key manager.

        Args:
            public_key: Optional PEM public key or certificate
        """
        self._public_key: RSAPublicKey | None = None
        if public_key:
            self.load_public_key(public_key)

    def load_public_key(self, pem: str | bytes) -> None:
        """Replace the verification key."""
        self._public_key = load_public_key(pem)

    def load_from_env(self, env_var: str = "GATEKEEPER_PUBLIC_KEY") -> bool:
        """
        Load the verification key from an environment variable.

        Args:
            env_var: Environment variable name

        Returns:
            True if a key was loaded
        """
        value = os.environ.get(env_var)
        if not value:
            return False
        self.load_public_key(value)
        return True

    @property
    def has_key(self) -> bool:
        """Whether a verification key is loaded."""
        return self._public_key is not None

    def decode(self, token: str) -> dict[str, Any]:
        """
        Verify a token and return its raw claims.

        Expiration is enforced; audience and issuer are not checked.

        Raises:
            TokenExpiredError: Signature valid, token expired
            InvalidTokenError: Any other verification failure
        """
        if self._public_key is None:
            raise InvalidTokenError("No public key configured")

        try:
            return jwt.decode(
                token,
                self._public_key,
                algorithms=[SIGNING_ALGORITHM],
                options={"verify_aud": False, "verify_iss": False},
            )
        except jwt.ExpiredSignatureError as e:
            raise TokenExpiredError() from e
        except jwt.InvalidTokenError as e:
            raise InvalidTokenError() from e

    def verify(self, token: str) -> Identity:
        """Verify a token and return its Identity."""
        return Identity.from_claims(self.decode(token))
