"""
Identity Model for Proxy Gatekeeper.

An Identity is the decoded, verified claim set of a bearer credential.
It is created by the token resolver, read-only afterwards, and attached
to the request for the rest of its lifecycle.
"""

from __future__ import annotations

import base64
import json
from typing import Any

from pydantic import BaseModel, Field

# Claims that must not be forwarded to upstream targets
PRIVATE_CLAIMS: frozenset[str] = frozenset(
    {"application_name", "client_id", "api_product_list", "iat", "exp"}
)

PRODUCT_LIST_CLAIM = "api_product_list"
EXPIRATION_CLAIM = "exp"


class Identity(BaseModel):
    """
    Decoded token claims.

    Always carries the raw claim mapping; the well-known claims are
    exposed as properties.
    """

    model_config = {"frozen": True}

    claims: dict[str, Any] = Field(default_factory=dict, description="Decoded claims")

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> Identity:
        """Build an identity from a decoded claim mapping."""
        return cls(claims=dict(claims))

    @property
    def expires_at(self) -> float | None:
        """Expiration instant in epoch seconds, if set."""
        exp = self.claims.get(EXPIRATION_CLAIM)
        if exp is None:
            return None
        return float(exp)

    @property
    def products(self) -> list[str] | None:
        """
        Entitled product names, or None if the claim is absent.

        A claim that is not a list grants nothing.
        """
        products = self.claims.get(PRODUCT_LIST_CLAIM)
        if products is None:
            return None
        if not isinstance(products, (list, tuple)):
            return []
        return [p for p in products if isinstance(p, str)]

    @property
    def application_name(self) -> str | None:
        return self.claims.get("application_name")

    @property
    def client_id(self) -> str | None:
        return self.claims.get("client_id")

    @property
    def principal_id(self) -> str:
        """Best available identifier, for audit records."""
        return self.client_id or self.claims.get("sub") or "unknown"

    def is_expired(self, now: float) -> bool:
        """True once now is at or past the expiration instant."""
        expires_at = self.expires_at
        return expires_at is not None and now >= expires_at

    def with_default_expiry(self, now: float, ttl_seconds: int) -> Identity:
        """
        Return an identity whose expiration is set.

        Args:
            now: Current epoch seconds
            ttl_seconds: Lifetime to apply when no expiration is present

        Returns:
            self if already expiring, otherwise a copy with ``exp`` set
        """
        if self.expires_at is not None:
            return self
        return Identity(claims={**self.claims, EXPIRATION_CLAIM: round(now + ttl_seconds)})

    def public_claims(self) -> dict[str, Any]:
        """Claims with the private names removed."""
        return {k: v for k, v in self.claims.items() if k not in PRIVATE_CLAIMS}

    def encoded_claims(self) -> str:
        """Base64-encoded JSON of the public claims (outbound header value)."""
        payload = json.dumps(self.public_claims(), separators=(",", ":"), default=str)
        return base64.b64encode(payload.encode("utf-8")).decode("ascii")
