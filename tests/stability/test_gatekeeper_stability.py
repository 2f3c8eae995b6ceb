"""
Stability Tests for Proxy Gatekeeper.

These tests validate:
- Identity cache memory stays bounded under load
- Concurrent cache access is safe
- Repeated gating does not leak objects
- Verification throughput

Run with: pytest tests/stability/ -v --tb=short
"""

import asyncio
import gc
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable

import pytest

from proxy_gatekeeper.audit import SecurityAuditor
from proxy_gatekeeper.core.config import GatekeeperSettings, Proxy
from proxy_gatekeeper.core.credentials import KeyManager
from proxy_gatekeeper.core.identity import Identity
from proxy_gatekeeper.core.request import GateRequest
from proxy_gatekeeper.engines.identity_cache import InMemoryIdentityCache
from proxy_gatekeeper.gate import RequestGate

PRODUCT = "EdgeMicroTestProduct"
PROXY = Proxy(name="edgemicro_weather", base_path="/hello")


def _identity(client_id: str, ttl: float = 60) -> Identity:
    return Identity.from_claims(
        {"client_id": client_id, "api_product_list": [PRODUCT], "exp": time.time() + ttl}
    )


@pytest.fixture
def settings(public_key_pem: str) -> GatekeeperSettings:
    """Weather product, any path."""
    return GatekeeperSettings(
        public_key=public_key_pem,
        verify_api_key_url="https://auth.internal/verifyApiKey",
        product_to_proxy={PRODUCT: ["edgemicro_weather"]},
    )


class TestIdentityCacheMemory:
    """Critical: identity cache must stay bounded."""

    def test_capacity_bound_under_load(self) -> None:
        """Size never exceeds capacity however many keys arrive."""
        cache = InMemoryIdentityCache(capacity=1000)

        for i in range(20000):
            cache.put(f"key_{i}", _identity(f"client_{i}"))

        assert cache.size == 1000
        assert cache.evictions == 19000

    def test_expired_entries_swept(self) -> None:
        """Short-lived entries do not accumulate."""
        cache = InMemoryIdentityCache(capacity=10000)

        for i in range(1000):
            cache.put(f"key_{i}", _identity(f"client_{i}", ttl=0.5))

        time.sleep(0.6)
        assert cache.cleanup() == 1000
        assert cache.size == 0

    def test_cache_churn_no_memory_leak(self) -> None:
        """Repeated fill and clear returns to baseline."""
        cache = InMemoryIdentityCache(capacity=500)

        gc.collect()
        baseline = len(gc.get_objects())

        for round_ in range(20):
            for i in range(500):
                cache.put(f"key_{round_}_{i}", _identity(f"client_{i}"))
            cache.clear()

        gc.collect()
        growth = len(gc.get_objects()) - baseline
        assert growth < 1000, f"Cache churn leaked memory: {growth} objects"


class TestConcurrencyStability:
    """Thread-safety and concurrent access tests."""

    def test_concurrent_cache_access_safe(self) -> None:
        """Concurrent puts, gets and clears never corrupt the cache."""
        cache = InMemoryIdentityCache(capacity=200)
        errors: list[Exception] = []
        lock = threading.Lock()

        def worker(worker_id: int) -> None:
            try:
                for i in range(500):
                    key = f"worker_{worker_id}_{i % 50}"
                    cache.put(key, _identity(key))
                    identity = cache.get(key)
                    if identity is not None and identity.client_id != key:
                        raise AssertionError(f"{key} returned {identity.client_id}")
                    if i % 100 == 0:
                        cache.cleanup()
            except Exception as e:
                with lock:
                    errors.append(e)

        with ThreadPoolExecutor(max_workers=20) as executor:
            futures = [executor.submit(worker, i) for i in range(20)]
            for future in as_completed(futures):
                future.result()

        assert len(errors) == 0, f"Errors during concurrent access: {errors}"
        assert cache.size <= 200

    @pytest.mark.asyncio
    async def test_concurrent_gating_shares_cache(
        self,
        settings: GatekeeperSettings,
        key_service: Any,
        make_token: Callable[..., str],
        weather_claims: dict[str, Any],
    ) -> None:
        """Many concurrent requests for distinct keys all resolve."""
        key_service.token = make_token(weather_claims, expires_in=300)
        gate = RequestGate.from_settings(settings, transport=key_service.transport)

        async def call(i: int) -> bool:
            request = GateRequest(
                path="/hello/x", proxy=PROXY, headers={"x-api-key": f"key_{i % 25}"}
            )
            return (await gate.process(request)).allowed

        results = await asyncio.gather(*(call(i) for i in range(200)))
        await gate.aclose()

        assert all(results)
        assert gate.cache_size() == 25


class TestLoadStability:
    """High-load stress tests."""

    def test_repeated_gating_no_memory_leak(
        self,
        settings: GatekeeperSettings,
        make_token: Callable[..., str],
        weather_claims: dict[str, Any],
    ) -> None:
        """Gating the same bearer token repeatedly does not grow memory."""
        auditor = SecurityAuditor(log_level=logging.CRITICAL, logger_name="stability.audit")
        gate = RequestGate.from_settings(settings, auditor=auditor)
        token = make_token(weather_claims, expires_in=300)

        async def run(n: int) -> None:
            for _ in range(n):
                request = GateRequest(
                    path="/hello/x", proxy=PROXY, headers={"authorization": f"Bearer {token}"}
                )
                await gate.process(request)

        asyncio.run(run(100))
        gc.collect()
        baseline = len(gc.get_objects())

        asyncio.run(run(1000))
        gc.collect()
        growth = len(gc.get_objects()) - baseline

        assert growth < 1000, f"Repeated gating leaked memory: {growth} objects"

    def test_verification_throughput(
        self,
        public_key_pem: str,
        make_token: Callable[..., str],
        weather_claims: dict[str, Any],
    ) -> None:
        """RS256 verification keeps up with gateway traffic."""
        manager = KeyManager(public_key_pem)
        token = make_token(weather_claims, expires_in=300)

        for _ in range(100):
            manager.verify(token)

        start = time.time()
        for _ in range(2000):
            manager.verify(token)
        duration = time.time() - start

        print(f"\nRS256 verify throughput: {2000 / duration:.0f} verifies/sec")
        assert duration < 20, f"Verification too slow: {duration:.1f}s for 2000 tokens"


class TestLongRunning:
    """Extended stability tests."""

    @pytest.mark.slow
    def test_cache_stable_over_time(self) -> None:
        """Steady churn with expiry keeps the cache near its live set."""
        cache = InMemoryIdentityCache(capacity=5000)
        measurements: list[int] = []

        start = time.time()
        i = 0
        while time.time() - start < 30:
            for _ in range(100):
                cache.put(f"key_{i}", _identity(f"client_{i}", ttl=1))
                i += 1
            cache.cleanup()
            measurements.append(cache.size)
            time.sleep(0.1)

        print(f"\nCache size over 30s: max={max(measurements)} last={measurements[-1]}")
        assert max(measurements) <= 5000
        assert measurements[-1] < 2000
