"""Framework-neutral view of an inbound gateway request."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from proxy_gatekeeper.core.config import Proxy

NO_CACHE_DIRECTIVE = "no-cache"


@dataclass
class GateRequest:
    """
    Inbound request as seen by the gatekeeper.

    Header names are lower-cased. The headers dict is mutated in place
    when the authorization header is stripped or the claims header added;
    the framework adapter copies it back onto the outgoing request.
    """

    path: str
    proxy: Proxy
    headers: dict[str, str] = field(default_factory=dict)
    query: dict[str, str] = field(default_factory=dict)
    method: str = "GET"
    client_ip: str | None = None
    state: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.headers = {k.lower(): v for k, v in self.headers.items()}

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    @property
    def cache_allowed(self) -> bool:
        """False when cache-control carries a no-cache directive."""
        cache_control = self.headers.get("cache-control")
        if not cache_control:
            return True
        directives = {d.split("=", 1)[0].strip().lower() for d in cache_control.split(",")}
        return NO_CACHE_DIRECTIVE not in directives
