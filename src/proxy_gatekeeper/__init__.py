"""
Proxy Gatekeeper - Authentication & Authorization for gateway proxies.

Resolves caller identity from a bearer token or an exchanged API key and
decides whether the caller's product entitlements permit the requested
proxy path.
"""

from proxy_gatekeeper.audit import SecurityAuditor
from proxy_gatekeeper.core.config import GatekeeperSettings, PassThrough, ProductRules, Proxy
from proxy_gatekeeper.core.credentials import KeyManager
from proxy_gatekeeper.core.identity import Identity
from proxy_gatekeeper.core.request import GateRequest
from proxy_gatekeeper.engines.authorization import ProductAuthorizer, authorize
from proxy_gatekeeper.engines.identity_cache import (
    IdentityCache,
    InMemoryIdentityCache,
    NullIdentityCache,
    RedisIdentityCache,
)
from proxy_gatekeeper.engines.key_exchange import KeyExchangeClient
from proxy_gatekeeper.engines.matcher import matches
from proxy_gatekeeper.engines.resolver import Resolution, TokenResolver
from proxy_gatekeeper.errors import ErrorKind, ErrorOutcome, status_for
from proxy_gatekeeper.gate import GateOutcome, RequestGate

__version__ = "0.1.0"

__all__ = [
    # Models
    "Identity",
    "GateRequest",
    "Proxy",
    "ProductRules",
    "GatekeeperSettings",
    "PassThrough",
    # Errors
    "ErrorKind",
    "ErrorOutcome",
    "status_for",
    # Engines
    "matches",
    "authorize",
    "ProductAuthorizer",
    "IdentityCache",
    "InMemoryIdentityCache",
    "RedisIdentityCache",
    "NullIdentityCache",
    "KeyManager",
    "KeyExchangeClient",
    "TokenResolver",
    "Resolution",
    # Gate
    "RequestGate",
    "GateOutcome",
    "SecurityAuditor",
]
