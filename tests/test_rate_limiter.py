"""Tests del rate limiting por dispositivo e IP."""

import pytest

from relay_api.errors import RateLimited
from relay_api.rate_limiter import DeviceRateLimiter, RateLimitConfig, SlidingWindowCounter


class TestSlidingWindowCounter:
    def test_allows_up_to_limit(self):
        counter = SlidingWindowCounter(window_seconds=60)
        t = 1_800_000_010.0

        assert counter.hit("device:a", 2, now=t)[0] is True
        assert counter.hit("device:a", 2, now=t + 1)[0] is True
        assert counter.hit("device:a", 2, now=t + 2)[0] is False
        # Otra key no comparte contador
        assert counter.hit("device:b", 2, now=t + 2)[0] is True

    def test_previous_window_weighs_in(self):
        counter = SlidingWindowCounter(window_seconds=60)
        start = 1_800_000_000.0 - (1_800_000_000.0 % 60)

        for i in range(4):
            counter.hit("device:a", 10, now=start + 50 + i)
        # Al inicio de la ventana siguiente casi todo el conteo anterior sigue pesando
        _, approx = counter.hit("device:a", 10, now=start + 61)
        assert approx == 4

        # Dos ventanas después ya no cuenta
        _, approx = counter.hit("device:a", 10, now=start + 200)
        assert approx == 1

    def test_prune(self):
        counter = SlidingWindowCounter(window_seconds=60)
        counter.hit("device:a", 10, now=1_000.0)
        assert counter.prune(max_age_seconds=300, now=2_000.0) == 1


class TestDeviceRateLimiter:
    def test_device_limit(self):
        limiter = DeviceRateLimiter(RateLimitConfig(device_per_min=2, global_per_min=100))

        limiter.check_all(device_id="esp32-a", ip="10.0.0.1")
        limiter.check_all(device_id="esp32-a", ip="10.0.0.1")
        with pytest.raises(RateLimited) as exc:
            limiter.check_all(device_id="esp32-a", ip="10.0.0.1")

        assert exc.value.http_status == 429
        assert exc.value.retry_after_seconds == 60
        limiter.check_all(device_id="esp32-b", ip="10.0.0.1")

    def test_ip_limit(self):
        limiter = DeviceRateLimiter(RateLimitConfig(device_per_min=100, global_per_min=1))

        limiter.check_all(device_id="esp32-a", ip="10.0.0.2")
        with pytest.raises(RateLimited):
            limiter.check_all(device_id="esp32-b", ip="10.0.0.2")

    def test_disabled(self):
        limiter = DeviceRateLimiter(RateLimitConfig(device_per_min=1, global_per_min=1, enabled=False))
        for _ in range(5):
            limiter.check_all(device_id="esp32-a", ip="10.0.0.3")


class TestGatewayRateLimit:
    def test_poll_rate_limited(self, seeded, relay_env):
        relay_env.setenv("RATE_LIMIT_DEVICE_PER_MIN", "1")
        from fastapi.testclient import TestClient

        from relay_api.main import create_app

        with TestClient(create_app()) as client:
            params = {"device_id": seeded["device_id"]}
            assert client.get("/commands", params=params).status_code == 200

            r = client.get("/commands", params=params)
            assert r.status_code == 429
            assert r.json()["error"]["code"] == "RATE_LIMITED"
            assert r.headers["Retry-After"] == "60"
