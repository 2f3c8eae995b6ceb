"""
Product Authorization for Proxy Gatekeeper.

The "Can you call this proxy path?" logic. A caller is admitted when any
one of its entitled products lists the target proxy and has a path
pattern matching the request path.

Zero-trust: No product list on the identity = deny.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from proxy_gatekeeper.core.config import ProductRules, Proxy
from proxy_gatekeeper.core.correlation import CorrelatedLogger
from proxy_gatekeeper.core.identity import Identity
from proxy_gatekeeper.engines.matcher import matches, resolve_pattern

logger = CorrelatedLogger(logging.getLogger(__name__))


@dataclass
class AuthorizationDecision:
    """
    Result of an authorization evaluation.

    Contains the decision and reasoning for audit purposes.
    """

    allowed: bool
    reason: str
    product_matched: str | None = None
    pattern_matched: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class ProductAuthorizer:
    """
    Evaluates product entitlements against a target proxy and path.

    Pure: evaluating the same (identity, proxy, path) twice gives the
    same answer for unchanged rules.

    Usage:
        authorizer = ProductAuthorizer(ProductRules(
            product_to_proxy={"weather": ["edgemicro_weather"]},
            product_to_api_resource={"weather": ["/forecast/**"]},
        ))

        if authorizer.authorize(path, proxy, identity):
            # Admit
    """

    def __init__(self, rules: ProductRules) -> None:
        self._rules = rules

    @property
    def rules(self) -> ProductRules:
        return self._rules

    def authorize(self, path: str, proxy: Proxy, identity: Identity) -> bool:
        """True if any entitled product admits the request."""
        return self.evaluate(path, proxy, identity).allowed

    def evaluate(self, path: str, proxy: Proxy, identity: Identity) -> AuthorizationDecision:
        """
        Evaluate entitlements with full decision details.

        Args:
            path: Request path
            proxy: Target proxy
            identity: Verified caller identity

        Returns:
            AuthorizationDecision with allow/deny and reasoning
        """
        products = identity.products
        if not products:
            logger.debug("no api product list")
            return AuthorizationDecision(allowed=False, reason="No api product list on token")

        for product in products:
            proxy_names = self._rules.product_to_proxy.get(product)
            if not proxy_names:
                logger.debug("no proxies found for product %s", product)
                continue

            if proxy.name not in proxy_names:
                continue

            patterns = self._rules.product_to_api_resource.get(product) or []
            if not patterns:
                return AuthorizationDecision(
                    allowed=True,
                    reason=f"Allowed by product {product} (no path restriction)",
                    product_matched=product,
                )

            for pattern in patterns:
                resolved = resolve_pattern(pattern, proxy.base_path)
                if matches(resolved, path):
                    return AuthorizationDecision(
                        allowed=True,
                        reason=f"Allowed by product {product} pattern {resolved}",
                        product_matched=product,
                        pattern_matched=resolved,
                    )

        return AuthorizationDecision(
            allowed=False,
            reason=f"No entitled product grants {proxy.name} {path}",
            metadata={"products": list(products)},
        )


def authorize(rules: ProductRules, path: str, proxy: Proxy, identity: Identity) -> bool:
    """
    Decide whether an identity may call a proxy path.

    Args:
        rules: Product authorization rules
        path: Request path
        proxy: Target proxy
        identity: Verified caller identity

    Returns:
        True if authorized
    """
    return ProductAuthorizer(rules).authorize(path, proxy, identity)
