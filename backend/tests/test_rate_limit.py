"""
Unit tests for the fixed-window rate limiter and its middleware.
"""
from fastapi import FastAPI
from fastapi.testclient import TestClient

from tonerweb.core.rate_limit import RateLimiter, RateLimitMiddleware


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_requests_within_limit_are_allowed():
    limiter = RateLimiter(window_seconds=60, max_requests=3, clock=FakeClock())

    results = [limiter.check("1.2.3.4") for _ in range(3)]

    assert [allowed for allowed, _, _ in results] == [True, True, True]
    assert [remaining for _, remaining, _ in results] == [2, 1, 0]


def test_request_over_limit_is_rejected():
    clock = FakeClock()
    limiter = RateLimiter(window_seconds=60, max_requests=2, clock=clock)
    limiter.check("1.2.3.4")
    limiter.check("1.2.3.4")

    allowed, remaining, reset_at = limiter.check("1.2.3.4")

    assert allowed is False
    assert remaining == 0
    assert reset_at == clock.now + 60
    assert limiter.retry_after(reset_at) == 60


def test_clients_are_counted_separately():
    limiter = RateLimiter(window_seconds=60, max_requests=1, clock=FakeClock())

    assert limiter.check("1.1.1.1")[0] is True
    assert limiter.check("2.2.2.2")[0] is True
    assert limiter.check("1.1.1.1")[0] is False


def test_window_resets():
    clock = FakeClock()
    limiter = RateLimiter(window_seconds=60, max_requests=1, clock=clock)
    limiter.check("1.2.3.4")

    clock.now += 60

    assert limiter.check("1.2.3.4")[0] is True
    assert len(limiter) == 1


def _app(limiter: RateLimiter) -> FastAPI:
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, limiter=limiter, path_prefix="/api/ai")

    @app.post("/api/ai/chat")
    async def chat():
        return {"content": "ok"}

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    return app


def test_middleware_rejects_with_envelope_and_headers():
    client = TestClient(_app(RateLimiter(window_seconds=900, max_requests=2)))

    first = client.post("/api/ai/chat")
    client.post("/api/ai/chat")
    rejected = client.post("/api/ai/chat")

    assert first.status_code == 200
    assert first.headers["X-RateLimit-Limit"] == "2"
    assert first.headers["X-RateLimit-Remaining"] == "1"
    assert rejected.status_code == 429
    assert rejected.json()["error"] == "rate_limit"
    assert int(rejected.headers["Retry-After"]) > 0
    assert rejected.json()["details"]["retry_after"] == int(rejected.headers["Retry-After"])


def test_middleware_only_limits_prefix():
    client = TestClient(_app(RateLimiter(window_seconds=900, max_requests=1)))

    for _ in range(3):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert "X-RateLimit-Limit" not in response.headers


def test_forwarded_for_identifies_client():
    client = TestClient(_app(RateLimiter(window_seconds=900, max_requests=1)))

    assert client.post("/api/ai/chat", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 200
    assert client.post("/api/ai/chat", headers={"X-Forwarded-For": "10.0.0.2, 10.0.0.9"}).status_code == 200
    assert client.post("/api/ai/chat", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 429
