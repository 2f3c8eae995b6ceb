"""Core identity, configuration and credential models."""

from proxy_gatekeeper.core.config import GatekeeperSettings, PassThrough, ProductRules, Proxy
from proxy_gatekeeper.core.correlation import (
    CorrelatedLogger,
    correlation_context,
    extract_correlation_id,
    generate_correlation_id,
    get_correlation_id,
    get_request_context,
    mask_api_key,
)
from proxy_gatekeeper.core.credentials import KeyManager, load_public_key
from proxy_gatekeeper.core.identity import PRIVATE_CLAIMS, Identity
from proxy_gatekeeper.core.request import GateRequest

__all__ = [
    "Identity",
    "PRIVATE_CLAIMS",
    "GateRequest",
    # Configuration
    "GatekeeperSettings",
    "PassThrough",
    "ProductRules",
    "Proxy",
    # Credentials
    "KeyManager",
    "load_public_key",
    # Correlation
    "correlation_context",
    "get_correlation_id",
    "get_request_context",
    "extract_correlation_id",
    "generate_correlation_id",
    "mask_api_key",
    "CorrelatedLogger",
]
