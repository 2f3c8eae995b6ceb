"""Shared fixtures: RSA signing keys and token factory."""

from __future__ import annotations

import datetime
import time
from typing import Any, Callable

import httpx
import jwt
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID


@pytest.fixture(scope="session")
def private_key() -> rsa.RSAPrivateKey:
    """RSA key used to sign test tokens."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def public_key_pem(private_key: rsa.RSAPrivateKey) -> str:
    """PEM public key matching private_key."""
    return (
        private_key.public_key()
        .public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode("ascii")
    )


@pytest.fixture(scope="session")
def certificate_pem(private_key: rsa.RSAPrivateKey) -> str:
    """Self-signed certificate wrapping the public key."""
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "localhost")])
    now = datetime.datetime.now(datetime.UTC)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=1))
        .sign(private_key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


@pytest.fixture(scope="session")
def other_private_key() -> rsa.RSAPrivateKey:
    """Key the gatekeeper does not trust."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def make_token(private_key: rsa.RSAPrivateKey) -> Callable[..., str]:
    """
    Sign a token.

    make_token(claims, expires_in=None, key=None, algorithm="RS256")
    """

    def _make(
        claims: dict[str, Any] | None = None,
        *,
        expires_in: int | None = None,
        key: Any = None,
        algorithm: str = "RS256",
    ) -> str:
        payload = dict(claims or {})
        payload.setdefault("iat", int(time.time()) - 5)
        if expires_in is not None:
            payload["exp"] = int(time.time()) + expires_in
        return jwt.encode(payload, key or private_key, algorithm=algorithm)

    return _make


@pytest.fixture
def weather_claims() -> dict[str, Any]:
    """Claims of a caller entitled to the weather product."""
    return {
        "application_name": "app",
        "client_id": "client",
        "scopes": ["scope1"],
        "api_product_list": ["EdgeMicroTestProduct"],
        "test": "test",
    }


class KeyService:
    """
    Stand-in for the API key verification service.

    Answers every exchange with ``status`` and ``token`` as the body
    (or raw ``content`` with ``headers``), or raises ``error``.
    Records the API keys it was called with.
    """

    def __init__(self) -> None:
        self.token: str = ""
        self.status: int = 200
        self.error: Exception | None = None
        self.headers: dict[str, str] = {}
        self.content: bytes | None = None
        self.api_keys: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.api_keys.append(request.headers.get("x-dna-api-key", ""))
        if self.error is not None:
            raise self.error
        if self.content is not None:
            return httpx.Response(self.status, headers=self.headers, content=self.content)
        return httpx.Response(self.status, headers=self.headers, text=self.token)

    @property
    def calls(self) -> int:
        return len(self.api_keys)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def key_service() -> KeyService:
    """Fresh verification service stand-in."""
    return KeyService()
