import pytest

from studyhub.errors import RateLimitExceeded
from studyhub.rate_limit import RateGate


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestRateGate:
    def test_blocks_after_max_attempts(self):
        gate = RateGate(60, 3, clock=FakeClock())
        for _ in range(3):
            gate.hit("1.2.3.4")
        with pytest.raises(RateLimitExceeded) as exc:
            gate.hit("1.2.3.4")
        assert exc.value.retry_after == 60
        assert exc.value.to_body()["retryAfter"] == 60
        assert exc.value.headers == {"Retry-After": "60"}

    def test_rejected_attempts_are_not_recorded(self):
        gate = RateGate(60, 2, clock=FakeClock())
        gate.hit("k")
        gate.hit("k")
        for _ in range(3):
            with pytest.raises(RateLimitExceeded):
                gate.hit("k")
        assert gate.attempts("k") == 2

    def test_window_slides(self):
        clock = FakeClock()
        gate = RateGate(60, 2, clock=clock)
        gate.hit("k")
        clock.now += 30
        gate.hit("k")

        clock.now += 29
        with pytest.raises(RateLimitExceeded):
            gate.hit("k")

        # the first attempt is exactly one window old
        clock.now += 1
        gate.hit("k")
        assert gate.attempts("k") == 2

    def test_keys_are_independent(self):
        gate = RateGate(60, 1, clock=FakeClock())
        gate.hit("a")
        gate.hit("b")
        with pytest.raises(RateLimitExceeded):
            gate.hit("a")

    def test_reset(self):
        gate = RateGate(60, 1, clock=FakeClock())
        gate.hit("a")
        gate.hit("b")
        gate.reset("a")
        gate.hit("a")
        gate.reset()
        assert gate.attempts("a") == 0
        assert gate.attempts("b") == 0


class TestRateLimitedEndpoints:
    async def test_register_limited(self, app, client):
        clock = FakeClock()
        app.state.register_gate = RateGate(3600, 3, message="Too many registration attempts", clock=clock)

        for i in range(3):
            resp = await client.post("/api/auth/register", json={"username": "x"})
            assert resp.status_code == 400

        resp = await client.post("/api/auth/register", json={"username": "x"})
        assert resp.status_code == 429
        body = resp.json()
        assert body["code"] == "RATE_LIMIT_EXCEEDED"
        assert body["retryAfter"] == 3600
        assert resp.headers["Retry-After"] == "3600"

        clock.now += 3600
        resp = await client.post("/api/auth/register", json={"username": "x"})
        assert resp.status_code == 400

    async def test_login_limited_even_with_good_credentials(self, app, client, alice):
        app.state.login_gate = RateGate(900, 5, clock=FakeClock())
        creds = {"email": "alice@example.com", "password": "Passw0rd!"}

        for _ in range(5):
            resp = await client.post("/api/auth/login", json=creds)
            assert resp.status_code == 200

        resp = await client.post("/api/auth/login", json=creds)
        assert resp.status_code == 429
        assert resp.json()["retryAfter"] == 900
