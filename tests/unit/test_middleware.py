"""Tests for the FastAPI gatekeeper middleware."""

import base64
import json
from typing import Any, Callable

import httpx
import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient

from proxy_gatekeeper.core.config import GatekeeperSettings, Proxy
from proxy_gatekeeper.core.identity import Identity
from proxy_gatekeeper.gate import RequestGate
from proxy_gatekeeper.middleware.fastapi import (
    GatekeeperMiddleware,
    get_identity,
    proxy_from_state,
)

PRODUCT = "EdgeMicroTestProduct"
PROXY = Proxy(name="edgemicro_weather", base_path="/hello")


def _build_app(gate: RequestGate) -> FastAPI:
    app = FastAPI()
    app.add_middleware(GatekeeperMiddleware, gate=gate, proxy_resolver=lambda request: PROXY)

    @app.get("/hello/{rest:path}")
    async def echo(request: Request, identity: Identity | None = Depends(get_identity)) -> dict:
        return {
            "headers": dict(request.headers),
            "client_id": identity.client_id if identity else None,
            "forwarded_for": request.headers.getlist("x-forwarded-for"),
            "authorization": request.headers.getlist("authorization"),
        }

    return app


@pytest.fixture
def build_client(public_key_pem: str, key_service: Any) -> Callable[..., TestClient]:
    """TestClient factory taking settings overrides."""

    def _build(**overrides: Any) -> TestClient:
        settings = GatekeeperSettings.from_mapping(
            {
                "public_key": public_key_pem,
                "verify_api_key_url": "https://auth.internal/verifyApiKey",
                "product_to_proxy": {PRODUCT: ["edgemicro_weather"]},
                "product_to_api_resource": {PRODUCT: ["/blah/*/foo*", "/some/**", "/blah"]},
                **overrides,
            }
        )
        gate = RequestGate.from_settings(settings, transport=key_service.transport)
        return TestClient(_build_app(gate))

    return _build


class TestGatekeeperMiddleware:
    """End-to-end behavior through FastAPI."""

    def test_missing_authorization(self, build_client: Callable[..., TestClient]) -> None:
        """No credential is a 401 with the error body."""
        response = build_client().get("/hello/blah")

        assert response.status_code == 401
        assert response.json() == {
            "error": "missing_authorization",
            "error_description": "Missing Authorization header",
        }
        assert response.headers["x-correlation-id"].startswith("pg-")

    def test_bare_bearer_is_invalid_request(self, build_client: Callable[..., TestClient]) -> None:
        """'Bearer' with no token is a 400."""
        response = build_client().get("/hello/blah", headers={"Authorization": "Bearer"})

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"

    def test_valid_token_forwards_claims(
        self,
        build_client: Callable[..., TestClient],
        make_token: Callable[..., str],
        weather_claims: dict[str, Any],
    ) -> None:
        """Downstream sees claims header, not the authorization header."""
        token = make_token(weather_claims, expires_in=60)
        response = build_client().get(
            "/hello/blah/somerule/foosomething",
            headers={"Authorization": f"Bearer {token}", "x-authorization-claims": "forged"},
        )

        assert response.status_code == 200
        body = response.json()
        assert "authorization" not in body["headers"]
        claims = json.loads(base64.b64decode(body["headers"]["x-authorization-claims"]))
        assert claims == {"scopes": ["scope1"], "test": "test"}
        assert body["client_id"] == "client"

    def test_repeated_headers_forwarded(
        self,
        build_client: Callable[..., TestClient],
        make_token: Callable[..., str],
        weather_claims: dict[str, Any],
    ) -> None:
        """Repeated headers reach the route intact; only gated headers change."""
        response = build_client().get(
            "/hello/blah",
            headers=[
                ("authorization", f"Bearer {make_token(weather_claims)}"),
                ("x-forwarded-for", "1.1.1.1"),
                ("x-forwarded-for", "2.2.2.2"),
                ("x-authorization-claims", "forged"),
            ],
        )

        assert response.status_code == 200
        body = response.json()
        assert body["forwarded_for"] == ["1.1.1.1", "2.2.2.2"]
        assert body["authorization"] == []
        assert body["headers"]["x-authorization-claims"] != "forged"

    def test_keep_authorization_header_forwarded(
        self,
        build_client: Callable[..., TestClient],
        make_token: Callable[..., str],
        weather_claims: dict[str, Any],
    ) -> None:
        """A kept authorization header is forwarded unchanged."""
        value = f"Bearer {make_token(weather_claims)}"
        client = build_client(**{"keep-authorization-header": True})
        response = client.get("/hello/blah", headers={"Authorization": value})

        assert response.status_code == 200
        assert response.json()["authorization"] == [value]

    def test_path_not_granted(
        self,
        build_client: Callable[..., TestClient],
        make_token: Callable[..., str],
        weather_claims: dict[str, Any],
    ) -> None:
        """Unentitled paths are 403 access_denied."""
        response = build_client().get(
            "/hello/blah/somerule/ifoosomething",
            headers={"Authorization": f"Bearer {make_token(weather_claims)}"},
        )

        assert response.status_code == 403
        assert response.json()["error"] == "access_denied"

    def test_expired_token(
        self,
        build_client: Callable[..., TestClient],
        make_token: Callable[..., str],
        weather_claims: dict[str, Any],
    ) -> None:
        """Expired tokens are 403."""
        response = build_client().get(
            "/hello/blah",
            headers={"Authorization": f"Bearer {make_token(weather_claims, expires_in=-60)}"},
        )
        assert response.status_code == 403

    def test_custom_authorization_header(
        self,
        build_client: Callable[..., TestClient],
        make_token: Callable[..., str],
        weather_claims: dict[str, Any],
    ) -> None:
        """Credentials are read from the configured header."""
        client = build_client(**{"authorization-header": "x-custom-auth"})
        response = client.get(
            "/hello/blah", headers={"x-custom-auth": f"Bearer {make_token(weather_claims)}"}
        )

        assert response.status_code == 200
        assert "x-custom-auth" not in response.json()["headers"]

    def test_api_key(
        self,
        build_client: Callable[..., TestClient],
        make_token: Callable[..., str],
        weather_claims: dict[str, Any],
        key_service: Any,
    ) -> None:
        """API keys are exchanged once, then served from cache."""
        key_service.token = make_token(weather_claims, expires_in=300)
        client = build_client()

        first = client.get("/hello/some/path", headers={"x-api-key": "abcd1234"})
        second = client.get("/hello/some/path", params={"x-api-key": "abcd1234"})

        assert first.status_code == 200
        assert second.status_code == 200
        assert key_service.calls == 1

    def test_verification_service_down(
        self, build_client: Callable[..., TestClient], key_service: Any
    ) -> None:
        """Unreachable verification service is a 504."""
        key_service.error = httpx.ConnectTimeout("timed out")
        response = build_client().get("/hello/blah", headers={"x-api-key": "k"})

        assert response.status_code == 504
        assert response.json()["error"] == "gateway_timeout"
        assert response.json()["error_description"] == "API key verification service unavailable"

    def test_allow_no_authorization(self, build_client: Callable[..., TestClient]) -> None:
        """Pass-through reaches the route without identity."""
        response = build_client(allowNoAuthorization=True).get("/hello/anything")

        assert response.status_code == 200
        assert response.json()["client_id"] is None
        assert "x-authorization-claims" not in response.json()["headers"]

    def test_correlation_id_echoed(self, build_client: Callable[..., TestClient]) -> None:
        """Inbound correlation IDs come back on the response."""
        response = build_client().get("/hello/blah", headers={"X-Correlation-ID": "abc"})
        assert response.headers["x-correlation-id"] == "abc"


class TestProxyFromState:
    """Tests for the default proxy resolver."""

    def _request(self, state: dict[str, Any]) -> Request:
        return Request({"type": "http", "state": state, "headers": []})

    def test_proxy_instance(self) -> None:
        """A Proxy on state is used directly."""
        assert proxy_from_state(self._request({"proxy": PROXY})) is PROXY

    def test_proxy_mapping(self) -> None:
        """A proxy record on state is converted."""
        proxy = proxy_from_state(self._request({"proxy": {"name": "x", "base_path": "/x"}}))
        assert proxy == Proxy(name="x", base_path="/x")

    def test_default(self) -> None:
        """Nothing on state falls back to a root proxy."""
        assert proxy_from_state(self._request({})) == Proxy(name="default", base_path="/")
