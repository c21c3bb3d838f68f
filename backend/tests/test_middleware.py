"""
Unit tests for request context and security header middleware.
"""
from fastapi import FastAPI
from fastapi.testclient import TestClient

from tonerweb.core.errors import USER_MESSAGES, ErrorCategory
from tonerweb.core.middleware import RequestContextMiddleware, SecurityHeadersMiddleware


def _app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    @app.get("/api/ok")
    async def ok():
        return {"ok": True}

    @app.get("/api/boom")
    async def boom():
        raise RuntimeError("database password is hunter2")

    @app.get("/page")
    async def page():
        return {"page": True}

    return app


def test_trace_id_is_generated_and_echoed():
    client = TestClient(_app())

    first = client.get("/api/ok")
    second = client.get("/api/ok")

    assert first.headers["X-Trace-ID"]
    assert first.headers["X-Trace-ID"] != second.headers["X-Trace-ID"]
    assert first.headers["X-Response-Time"].endswith("ms")


def test_request_id_header_seeds_trace_id():
    response = TestClient(_app()).get("/api/ok", headers={"X-Request-ID": "req-42"})

    assert response.headers["X-Trace-ID"] == "req-42"
    assert response.headers["X-Request-ID"] != "req-42"


def test_unhandled_exception_becomes_envelope():
    response = TestClient(_app()).get("/api/boom")

    assert response.status_code == 500
    assert response.json() == {
        "message": USER_MESSAGES[ErrorCategory.UNKNOWN],
        "error": "unknown",
    }
    assert "hunter2" not in response.text
    assert response.headers["X-Trace-ID"]


def test_security_headers():
    client = TestClient(_app())

    api = client.get("/api/ok")
    page = client.get("/page")

    assert api.headers["X-Frame-Options"] == "DENY"
    assert api.headers["Content-Security-Policy"] == "default-src 'none'"
    assert page.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"
    assert "Content-Security-Policy" not in page.headers
