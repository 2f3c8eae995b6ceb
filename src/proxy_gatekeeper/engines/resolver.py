"""
Token Resolver for Proxy Gatekeeper.

The "Who are you?" logic. Extracts a credential from the request (bearer
header, API key header or API key query parameter), verifies it directly
or exchanges the API key first, and produces an Identity or a classified
failure.

States:
    NO_CREDENTIAL   -> FAILED(missing_authorization) | RESOLVED (no identity)
    BEARER_PRESENT  -> VERIFYING | FAILED(invalid_request)
    API_KEY_PRESENT -> RESOLVED (cache hit) | VERIFYING (after exchange)
                       | FAILED(gateway_timeout | access_denied | invalid_request)
    VERIFYING       -> RESOLVED | FAILED(access_denied | invalid_token)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum

from proxy_gatekeeper.core.config import GatekeeperSettings, PassThrough
from proxy_gatekeeper.core.correlation import CorrelatedLogger, mask_api_key
from proxy_gatekeeper.core.credentials import KeyManager
from proxy_gatekeeper.core.identity import Identity
from proxy_gatekeeper.core.request import GateRequest
from proxy_gatekeeper.engines.identity_cache import IdentityCache
from proxy_gatekeeper.engines.key_exchange import KeyExchangeClient
from proxy_gatekeeper.errors import (
    ErrorKind,
    ErrorOutcome,
    KeyExchangeError,
    TokenVerificationError,
)

logger = CorrelatedLogger(logging.getLogger(__name__))

BEARER_PATTERN = re.compile(r"Bearer (.+)")


class ResolutionState(str, Enum):
    """Resolver states."""

    NO_CREDENTIAL = "no_credential"
    BEARER_PRESENT = "bearer_present"
    API_KEY_PRESENT = "api_key_present"
    VERIFYING = "verifying"
    RESOLVED = "resolved"
    FAILED = "failed"


class CredentialSource(str, Enum):
    """Where the credential came from."""

    BEARER = "bearer"
    API_KEY = "api_key"
    NONE = "none"


@dataclass
class Resolution:
    """
    Final state of one resolution.

    On RESOLVED, identity is None only when a PassThrough mode allowed
    the request through; pass_through then names that mode.
    """

    state: ResolutionState
    source: CredentialSource = CredentialSource.NONE
    identity: Identity | None = None
    error: ErrorOutcome | None = None
    pass_through: PassThrough = PassThrough.NONE
    cache_hit: bool = False

    @property
    def success(self) -> bool:
        return self.state == ResolutionState.RESOLVED

    @property
    def is_anonymous(self) -> bool:
        """Resolved without an identity (permissive bypass)."""
        return self.success and self.identity is None


class TokenResolver:
    """
    Resolves request credentials into an Identity.

    At most one key exchange per request; nothing is retried.

    Usage:
        resolver = TokenResolver(settings, key_manager, cache, key_exchange)
        resolution = await resolver.resolve(gate_request)

        if resolution.success:
            identity = resolution.identity  # may be None under PassThrough
        else:
            respond(resolution.error)
    """

    def __init__(
        self,
        settings: GatekeeperSettings,
        key_manager: KeyManager,
        cache: IdentityCache,
        key_exchange: KeyExchangeClient | None = None,
    ) -> None:
        """
        Initialize resolver.

        Args:
            settings: Gatekeeper configuration
            key_manager: Verification key holder
            cache: API key -> identity cache
            key_exchange: Key exchange client (None = API keys not supported)
        """
        self._settings = settings
        self._key_manager = key_manager
        self._cache = cache
        self._key_exchange = key_exchange

    async def resolve(self, request: GateRequest) -> Resolution:
        """
        Resolve the caller identity of a request.

        Mutates request.headers on the way: the inbound claims header is
        always dropped, the authorization header is dropped unless kept,
        and the claims header is set on success with identity.

        Args:
            request: Inbound request

        Returns:
            Resolution in state RESOLVED or FAILED
        """
        settings = self._settings
        request.headers.pop(settings.claims_header, None)

        authorization = request.header(settings.authorization_header)
        if authorization:
            return self._resolve_bearer(authorization, request)

        api_key = request.header(settings.api_key_header) or request.query.get(
            settings.api_key_header
        )
        if api_key:
            return await self._resolve_api_key(api_key, request)

        if PassThrough.MISSING in settings.pass_through:
            return Resolution(
                state=ResolutionState.RESOLVED,
                pass_through=PassThrough.MISSING,
            )

        logger.debug("missing_authorization")
        return self._fail(
            CredentialSource.NONE,
            ErrorOutcome.of(ErrorKind.MISSING_AUTHORIZATION, "Missing Authorization header"),
        )

    def _resolve_bearer(self, authorization: str, request: GateRequest) -> Resolution:
        match = BEARER_PATTERN.match(authorization)
        if not match:
            logger.debug("invalid authorization header")
            return self._fail(
                CredentialSource.BEARER,
                ErrorOutcome.of(ErrorKind.INVALID_REQUEST, "Invalid Authorization header"),
            )

        if not self._settings.keep_authorization_header:
            request.headers.pop(self._settings.authorization_header, None)

        return self._verify(match.group(1), request, CredentialSource.BEARER)

    async def _resolve_api_key(self, api_key: str, request: GateRequest) -> Resolution:
        masked = mask_api_key(api_key)
        use_cache = request.cache_allowed

        if use_cache:
            identity = self._cache.get(api_key)
            if identity is not None:
                logger.debug("api key cache hit %s", masked)
                return self._succeed(request, identity, CredentialSource.API_KEY, cache_hit=True)
            logger.debug("api key cache miss %s", masked)
        else:
            logger.debug("api key cache bypassed %s", masked)

        if self._key_exchange is None:
            return self._fail(
                CredentialSource.API_KEY,
                ErrorOutcome.of(
                    ErrorKind.INVALID_REQUEST, "API Key Verification URL not configured"
                ),
            )

        try:
            token = await self._key_exchange.exchange(api_key)
        except KeyExchangeError as e:
            return self._fail(CredentialSource.API_KEY, e.to_outcome())

        return self._verify(
            token,
            request,
            CredentialSource.API_KEY,
            api_key=api_key if use_cache else None,
        )

    def _verify(
        self,
        token: str,
        request: GateRequest,
        source: CredentialSource,
        *,
        api_key: str | None = None,
    ) -> Resolution:
        """VERIFYING state; api_key set means the result may be cached."""
        try:
            identity = self._key_manager.verify(token)
        except TokenVerificationError as e:
            if PassThrough.INVALID in self._settings.pass_through:
                logger.warning("ignoring invalid token: %s", e.kind.value)
                return Resolution(
                    state=ResolutionState.RESOLVED,
                    source=source,
                    pass_through=PassThrough.INVALID,
                )
            logger.debug("token verification failed: %s", e.kind.value)
            return self._fail(source, e.to_outcome())

        if api_key is not None:
            identity = self._cache.put(api_key, identity)
            logger.debug("api key cache store %s", mask_api_key(api_key))

        return self._succeed(request, identity, source)

    def _succeed(
        self,
        request: GateRequest,
        identity: Identity,
        source: CredentialSource,
        *,
        cache_hit: bool = False,
    ) -> Resolution:
        request.headers[self._settings.claims_header] = identity.encoded_claims()
        return Resolution(
            state=ResolutionState.RESOLVED,
            source=source,
            identity=identity,
            cache_hit=cache_hit,
        )

    @staticmethod
    def _fail(source: CredentialSource, error: ErrorOutcome) -> Resolution:
        return Resolution(state=ResolutionState.FAILED, source=source, error=error)
