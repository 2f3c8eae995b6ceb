"""
FastAPI / Starlette Integration for Proxy Gatekeeper.

Puts the RequestGate in front of every request of an ASGI app.

Usage:
    from fastapi import FastAPI
    from proxy_gatekeeper.middleware.fastapi import GatekeeperMiddleware

    app = FastAPI()
    app.add_middleware(
        GatekeeperMiddleware,
        gate=RequestGate.from_settings(settings),
        proxy_resolver=lambda request: Proxy(name="edgemicro_weather", base_path="/weather"),
    )

    @app.get("/weather/forecast")
    async def forecast(identity: Identity | None = Depends(get_identity)):
        ...
"""

from __future__ import annotations

from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from proxy_gatekeeper.core.config import Proxy
from proxy_gatekeeper.core.identity import Identity
from proxy_gatekeeper.core.request import GateRequest
from proxy_gatekeeper.errors import ErrorKind, ErrorOutcome
from proxy_gatekeeper.gate import RequestGate

CORRELATION_RESPONSE_HEADER = "X-Correlation-ID"

ProxyResolver = Callable[[Request], Proxy]


def proxy_from_state(request: Request) -> Proxy:
    """Default proxy resolver: the routing layer stores the target on request.state.proxy."""
    proxy = getattr(request.state, "proxy", None)
    if isinstance(proxy, Proxy):
        return proxy
    if isinstance(proxy, dict):
        return Proxy.from_mapping(proxy)
    return Proxy(name="default", base_path="/")


def to_gate_request(request: Request, proxy: Proxy) -> GateRequest:
    """Build the framework-neutral view of a Starlette request."""
    return GateRequest(
        path=request.url.path,
        proxy=proxy,
        headers=dict(request.headers),
        query=dict(request.query_params),
        method=request.method,
        client_ip=request.client.host if request.client else None,
    )


def _rewrite_headers(request: Request, before: dict[str, str], after: dict[str, str]) -> None:
    """
    Apply the gate's header changes to the ASGI scope headers.

    Only headers the gate removed or set are touched; every other raw
    header line, repeated ones included, is forwarded as received.
    """
    touched = {name for name in before if after.get(name) != before[name]}
    touched.update(name for name in after if name not in before)

    raw = [
        (name, value)
        for name, value in request.scope["headers"]
        if name.decode("latin-1").lower() not in touched
    ]
    raw.extend(
        (name.encode("latin-1"), value.encode("latin-1"))
        for name, value in after.items()
        if name in touched
    )
    request.scope["headers"] = raw


class GatekeeperMiddleware(BaseHTTPMiddleware):
    """
    Middleware gating every request through a RequestGate.

    On failure, writes {"error", "error_description"} with the mapped
    status and stops. On success, forwards the rewritten headers and
    stores the identity (possibly None) on request.state.identity.
    """

    def __init__(
        self,
        app: ASGIApp,
        gate: RequestGate,
        proxy_resolver: ProxyResolver = proxy_from_state,
    ) -> None:
        super().__init__(app)
        self.gate = gate
        self.proxy_resolver = proxy_resolver

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        """Gate the request, then hand it on or answer with the error."""
        gate_request = to_gate_request(request, self.proxy_resolver(request))
        inbound = dict(gate_request.headers)
        outcome = await self.gate.process(gate_request)

        if not outcome.allowed:
            error = outcome.error or ErrorOutcome.of(ErrorKind.ACCESS_DENIED)
            response: Response = JSONResponse(error.to_body(), status_code=error.status)
        else:
            _rewrite_headers(request, inbound, gate_request.headers)
            request.state.identity = outcome.identity
            response = await call_next(request)

        if outcome.correlation_id:
            response.headers[CORRELATION_RESPONSE_HEADER] = outcome.correlation_id
        return response


async def get_identity(request: Request) -> Identity | None:
    """
    FastAPI dependency returning the gated identity.

    None when a pass-through mode admitted the request.
    """
    return getattr(request.state, "identity", None)
