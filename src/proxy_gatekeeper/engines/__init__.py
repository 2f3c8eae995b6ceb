"""Resolution, caching and authorization engines."""

from proxy_gatekeeper.engines.authorization import (
    AuthorizationDecision,
    ProductAuthorizer,
    authorize,
)
from proxy_gatekeeper.engines.identity_cache import (
    CacheEntry,
    IdentityCache,
    InMemoryIdentityCache,
    NullIdentityCache,
    RedisIdentityCache,
)
from proxy_gatekeeper.engines.key_exchange import KeyExchangeClient
from proxy_gatekeeper.engines.matcher import matches, resolve_pattern
from proxy_gatekeeper.engines.resolver import (
    CredentialSource,
    Resolution,
    ResolutionState,
    TokenResolver,
)

__all__ = [
    # Pattern matching
    "matches",
    "resolve_pattern",
    # Authorization
    "AuthorizationDecision",
    "ProductAuthorizer",
    "authorize",
    # Identity cache
    "CacheEntry",
    "IdentityCache",
    "InMemoryIdentityCache",
    "RedisIdentityCache",
    "NullIdentityCache",
    # Resolution
    "KeyExchangeClient",
    "TokenResolver",
    "Resolution",
    "ResolutionState",
    "CredentialSource",
]
