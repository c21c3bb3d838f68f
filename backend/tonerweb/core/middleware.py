"""
Request context and response hardening middleware.

RequestContextMiddleware:
- Takes the trace id from X-Trace-ID / X-Request-ID, then the active
  OpenTelemetry span, or generates one
- Generates a request id per request
- Binds both to the logging context and the current span
- Records HTTP RED metrics and logs request start / completion
- Echoes X-Trace-ID and X-Request-ID on every response, including
  responses for unhandled exceptions (converted to the error envelope here)

SecurityHeadersMiddleware adds the static security headers to every
response, plus a restrictive CSP for the JSON API.
"""
import time
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from tonerweb.core.errors import classify_error
from tonerweb.core.logging import (
    generate_request_id,
    generate_trace_id,
    get_logger,
    set_request_id,
    set_trace_id,
)
from tonerweb.core.metrics import record_http_request
from tonerweb.core.tracing import (
    get_trace_id_from_context,
    get_tracer,
    record_exception,
    set_span_attribute,
)

logger = get_logger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = (
            request.headers.get("X-Trace-ID")
            or request.headers.get("X-Request-ID")
            or get_trace_id_from_context()
            or generate_trace_id()
        )
        request_id = generate_request_id()

        set_trace_id(trace_id)
        set_request_id(request_id)

        tracer = get_tracer()
        with tracer.start_as_current_span("http.request"):
            set_span_attribute("http.method", request.method)
            set_span_attribute("http.route", request.url.path)
            set_span_attribute("app.trace_id", trace_id)

            start_time = time.time()
            request.state.start_time = start_time
            logger.info(
                "request_started",
                method=request.method,
                path=request.url.path,
                client_host=request.client.host if request.client else None,
            )

            try:
                response = await call_next(request)
            except Exception as e:
                record_exception(e)
                classified = classify_error(e)
                logger.error(
                    "request_failed",
                    method=request.method,
                    path=request.url.path,
                    error=classified.technical_message,
                    error_type=type(e).__name__,
                    category=classified.category.value,
                    exc_info=True,
                )
                response = JSONResponse(
                    status_code=classified.http_status,
                    content=classified.to_response(),
                )

            process_time = time.time() - start_time
            latency_ms = int(process_time * 1000)
            set_span_attribute("http.status_code", response.status_code)

            record_http_request(
                method=request.method,
                endpoint=request.url.path,
                status_code=response.status_code,
                duration_seconds=process_time,
            )
            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                latency_ms=latency_ms,
            )

            response.headers["X-Trace-ID"] = trace_id
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time"] = f"{latency_ms}ms"

        set_trace_id(None)
        set_request_id(None)
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        if request.url.path.startswith("/api/"):
            response.headers.setdefault("Content-Security-Policy", "default-src 'none'")
        return response
