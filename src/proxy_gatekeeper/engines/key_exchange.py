"""
Key Exchange Client for Proxy Gatekeeper.

Converts an opaque API key into a verifiable bearer credential by calling
the external verification service. Single attempt, no retries: failures
are reported to the caller immediately.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from proxy_gatekeeper.core.correlation import CorrelatedLogger, mask_api_key
from proxy_gatekeeper.errors import KeyExchangeRejected, KeyExchangeUnavailable

logger = CorrelatedLogger(logging.getLogger(__name__))

UNAVAILABLE_MESSAGE = "API key verification service unavailable"


class KeyExchangeClient:
    """
    Client for the API key verification service.

    The service is called with ``POST <url>``, body ``{"apiKey": <key>}``
    and the key in a header. A 200 response carries the credential, either
    as the raw body or as the ``token`` field of a JSON object.

    Usage:
        async with KeyExchangeClient(url, timeout=5.0) as client:
            token = await client.exchange(api_key)
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        api_key_header: str = "x-dna-api-key",
        transport: httpx.AsyncBaseTransport | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize client.

        Args:
            url: Verification service URL
            timeout: Per-call timeout in seconds
            api_key_header: Header carrying the API key on the exchange call
            transport: Optional httpx transport (tests, custom TLS)
            client: Optional pre-built httpx client (not closed by aclose)
        """
        self.url = url
        self.timeout = timeout
        self.api_key_header = api_key_header
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, transport=transport)

    async def __aenter__(self) -> KeyExchangeClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def exchange(self, api_key: str) -> str:
        """
        Exchange an API key for a bearer credential.

        Args:
            api_key: API key presented by the caller

        Returns:
            Opaque credential to verify

        Raises:
            KeyExchangeUnavailable: Transport, timeout or response decoding failure
            KeyExchangeRejected: Non-200 response
        """
        try:
            response = await self._client.post(
                self.url,
                json={"apiKey": api_key},
                headers={self.api_key_header: api_key},
                timeout=self.timeout,
            )
        except httpx.RequestError as e:
            logger.warning(
                "key exchange request failure for %s: %s: %s",
                mask_api_key(api_key),
                type(e).__name__,
                e,
            )
            raise KeyExchangeUnavailable(UNAVAILABLE_MESSAGE) from e

        if response.status_code != 200:
            logger.info(
                "key exchange rejected %s with status %d",
                mask_api_key(api_key),
                response.status_code,
            )
            raise KeyExchangeRejected(
                response.reason_phrase or None,
                status_code=response.status_code,
            )

        return self._credential_from(response)

    @staticmethod
    def _credential_from(response: httpx.Response) -> str:
        """Extract the credential from a 200 response body."""
        try:
            payload = response.json()
        except ValueError:
            return response.text.strip()

        if isinstance(payload, dict) and isinstance(payload.get("token"), str):
            return payload["token"]
        if isinstance(payload, str):
            return payload
        return response.text.strip()
