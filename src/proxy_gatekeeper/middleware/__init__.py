"""FastAPI middleware integration."""

from proxy_gatekeeper.middleware.fastapi import (
    GatekeeperMiddleware,
    get_identity,
    proxy_from_state,
)

__all__ = [
    "GatekeeperMiddleware",
    "get_identity",
    "proxy_from_state",
]
