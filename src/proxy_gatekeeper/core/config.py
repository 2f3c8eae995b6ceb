"""
Configuration for Proxy Gatekeeper.

Accepts the gateway plugin option names (``authorization-header``,
``allowNoAuthorization``, ...) as aliases, or plain field names.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from enum import Flag, auto
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PassThrough(Flag):
    """
    Permissive bypass modes.

    When a flag is set, the matching failure resolves with no identity
    attached instead of failing the request.
    """

    NONE = 0
    MISSING = auto()  # no credential presented
    INVALID = auto()  # signature verification failed


@dataclass(frozen=True)
class Proxy:
    """Routable destination a request targets."""

    name: str
    base_path: str = "/"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Proxy:
        """Build from a gateway proxy record ({"name", "base_path"})."""
        return cls(name=data["name"], base_path=data.get("base_path", "/"))


class ProductRules(BaseModel):
    """
    Product authorization rules.

    product_to_proxy: product name -> authorized proxy names
    product_to_api_resource: product name -> path patterns
    """

    model_config = ConfigDict(frozen=True)

    product_to_proxy: dict[str, list[str]] = Field(default_factory=dict)
    product_to_api_resource: dict[str, list[str]] = Field(default_factory=dict)


class GatekeeperSettings(BaseModel):
    """
    Gatekeeper configuration.

    Usage:
        settings = GatekeeperSettings.from_mapping({
            "verify_api_key_url": "https://auth.internal/verifyApiKey",
            "public_key": pem,
            "product_to_proxy": {"weather": ["edgemicro_weather"]},
        })
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    authorization_header: str = Field(default="authorization", alias="authorization-header")
    api_key_header: str = Field(default="x-api-key", alias="api-key-header")
    keep_authorization_header: bool = Field(default=False, alias="keep-authorization-header")
    allow_no_authorization: bool = Field(default=False, alias="allowNoAuthorization")
    allow_invalid_authorization: bool = Field(default=False, alias="allowInvalidAuthorization")
    verify_api_key_url: str | None = None
    public_key: str | None = None
    product_to_proxy: dict[str, list[str]] = Field(default_factory=dict)
    product_to_api_resource: dict[str, list[str]] = Field(default_factory=dict)

    key_exchange_timeout: float = 10.0
    key_exchange_header: str = "x-dna-api-key"
    claims_header: str = "x-authorization-claims"
    cache_capacity: int = Field(default=10_000, ge=1)
    cache_default_ttl: int = Field(default=1800, ge=1)

    @field_validator(
        "authorization_header", "api_key_header", "key_exchange_header", "claims_header"
    )
    @classmethod
    def _lower_header(cls, value: str) -> str:
        return value.lower()

    @property
    def pass_through(self) -> PassThrough:
        """Bypass modes enabled by the allow* options."""
        mode = PassThrough.NONE
        if self.allow_no_authorization:
            mode |= PassThrough.MISSING
        if self.allow_invalid_authorization:
            mode |= PassThrough.INVALID
        return mode

    @property
    def rules(self) -> ProductRules:
        """Product authorization rules from this configuration."""
        return ProductRules(
            product_to_proxy=self.product_to_proxy,
            product_to_api_resource=self.product_to_api_resource,
        )

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> GatekeeperSettings:
        """Build settings from a plugin configuration mapping."""
        return cls.model_validate(dict(config))

    @classmethod
    def from_env(
        cls,
        prefix: str = "GATEKEEPER_",
        environ: Mapping[str, str] | None = None,
    ) -> GatekeeperSettings:
        """
        Load settings from environment variables.

        Variable names are the upper-cased field names with the prefix,
        e.g. GATEKEEPER_VERIFY_API_KEY_URL. Product mappings are JSON.

        Args:
            prefix: Environment variable prefix
            environ: Environment mapping (defaults to os.environ)

        Returns:
            Settings with unset values left at their defaults
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        for name in cls.model_fields:
            raw = env.get(f"{prefix}{name.upper()}")
            if raw is None:
                continue
            if name in ("product_to_proxy", "product_to_api_resource"):
                values[name] = json.loads(raw)
            else:
                values[name] = raw

        return cls.model_validate(values)
