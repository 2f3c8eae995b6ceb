"""
Request Gate for Proxy Gatekeeper.

Runs once per inbound request: resolve the caller, then check product
entitlements for the target proxy and path. Any failure is terminal and
produces a single ErrorOutcome.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from proxy_gatekeeper.audit import SecurityAuditor
from proxy_gatekeeper.core.config import GatekeeperSettings
from proxy_gatekeeper.core.correlation import (
    CorrelatedLogger,
    correlation_context,
    extract_correlation_id,
)
from proxy_gatekeeper.core.credentials import KeyManager
from proxy_gatekeeper.core.identity import Identity
from proxy_gatekeeper.core.request import GateRequest
from proxy_gatekeeper.engines.authorization import ProductAuthorizer
from proxy_gatekeeper.engines.identity_cache import IdentityCache, InMemoryIdentityCache
from proxy_gatekeeper.engines.key_exchange import KeyExchangeClient
from proxy_gatekeeper.engines.resolver import Resolution, TokenResolver
from proxy_gatekeeper.errors import ErrorKind, ErrorOutcome

logger = CorrelatedLogger(logging.getLogger(__name__))


@dataclass
class GateOutcome:
    """
    Result of gating one request.

    allowed with identity None means a pass-through mode admitted the
    request; downstream consumers must not assume an identity.
    """

    allowed: bool
    identity: Identity | None = None
    error: ErrorOutcome | None = None
    resolution: Resolution | None = None
    correlation_id: str | None = None


class RequestGate:
    """
    Per-request authentication and authorization gate.

    Owns the identity cache, so the cache lives as long as the gate.

    Usage:
        gate = RequestGate.from_settings(settings)

        outcome = await gate.process(GateRequest(
            path="/weather/forecast",
            proxy=Proxy(name="edgemicro_weather", base_path="/weather"),
            headers={"authorization": f"Bearer {token}"},
        ))
        if not outcome.allowed:
            respond(outcome.error.status, outcome.error.to_body())
    """

    def __init__(
        self,
        settings: GatekeeperSettings,
        resolver: TokenResolver,
        authorizer: ProductAuthorizer,
        cache: IdentityCache,
        *,
        auditor: SecurityAuditor | None = None,
        key_exchange: KeyExchangeClient | None = None,
    ) -> None:
        self.settings = settings
        self.resolver = resolver
        self.authorizer = authorizer
        self.cache = cache
        self.auditor = auditor or SecurityAuditor()
        self._key_exchange = key_exchange

    @classmethod
    def from_settings(
        cls,
        settings: GatekeeperSettings,
        *,
        cache: IdentityCache | None = None,
        key_manager: KeyManager | None = None,
        auditor: SecurityAuditor | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> RequestGate:
        """
        Wire a gate from configuration.

        Args:
            settings: Gatekeeper configuration
            cache: Identity cache (defaults to a bounded in-memory cache)
            key_manager: Key holder (defaults to settings.public_key)
            auditor: Security auditor
            transport: httpx transport for the key exchange client

        Returns:
            Ready-to-use gate
        """
        if cache is None:
            cache = InMemoryIdentityCache(
                settings.cache_capacity,
                default_ttl=settings.cache_default_ttl,
            )
        if key_manager is None:
            key_manager = KeyManager(settings.public_key)

        key_exchange = None
        if settings.verify_api_key_url:
            key_exchange = KeyExchangeClient(
                settings.verify_api_key_url,
                timeout=settings.key_exchange_timeout,
                api_key_header=settings.key_exchange_header,
                transport=transport,
            )

        resolver = TokenResolver(settings, key_manager, cache, key_exchange)
        return cls(
            settings,
            resolver,
            ProductAuthorizer(settings.rules),
            cache,
            auditor=auditor,
            key_exchange=key_exchange,
        )

    async def aclose(self) -> None:
        """Release the key exchange HTTP client."""
        if self._key_exchange is not None:
            await self._key_exchange.aclose()

    async def process(self, request: GateRequest) -> GateOutcome:
        """
        Gate one request.

        Args:
            request: Inbound request (headers are rewritten in place)

        Returns:
            GateOutcome; on failure, error holds the response to write
        """
        with correlation_context(
            extract_correlation_id(request.headers),
            proxy=request.proxy.name,
            path=request.path,
        ) as cid:
            outcome = await self._process(request)
            outcome.correlation_id = cid
            return outcome

    async def _process(self, request: GateRequest) -> GateOutcome:
        proxy = request.proxy
        resolution = await self.resolver.resolve(request)

        if not resolution.success:
            error = resolution.error or ErrorOutcome.of(ErrorKind.INVALID_REQUEST)
            logger.error("auth failure %d %s", error.status, error.code)
            self.auditor.log_auth_failure(
                code=error.code,
                source=resolution.source.value,
                resource=request.path,
                proxy=proxy.name,
                ip_address=request.client_ip,
            )
            return GateOutcome(allowed=False, error=error, resolution=resolution)

        identity = resolution.identity
        if identity is None:
            self.auditor.log_auth_bypass(
                mode=str(resolution.pass_through.name),
                resource=request.path,
                proxy=proxy.name,
                ip_address=request.client_ip,
            )
            return GateOutcome(allowed=True, resolution=resolution)

        self.auditor.log_auth_success(
            identity,
            source=resolution.source.value,
            resource=request.path,
            proxy=proxy.name,
            cache_hit=resolution.cache_hit,
            ip_address=request.client_ip,
        )

        decision = self.authorizer.evaluate(request.path, proxy, identity)
        if not decision.allowed:
            error = ErrorOutcome.of(ErrorKind.ACCESS_DENIED)
            logger.error("auth failure %d %s", error.status, error.code)
            self.auditor.log_authz_denied(
                identity,
                proxy=proxy.name,
                resource=request.path,
                reason=decision.reason,
            )
            return GateOutcome(
                allowed=False,
                identity=identity,
                error=error,
                resolution=resolution,
            )

        self.auditor.log_authz_allowed(
            identity,
            proxy=proxy.name,
            resource=request.path,
            product=decision.product_matched,
            pattern=decision.pattern_matched,
        )
        request.state["identity"] = identity
        return GateOutcome(allowed=True, identity=identity, resolution=resolution)

    def cache_size(self) -> int:
        """Number of cached API key identities."""
        return self.cache.size

    def clear_cache(self) -> int:
        """Drop all cached identities; returns the count removed."""
        return self.cache.clear()
