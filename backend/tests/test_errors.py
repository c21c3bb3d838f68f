"""
Unit tests for the error classifier.
"""
import asyncio

import httpx
import pytest

from tonerweb.core.errors import (
    USER_MESSAGES,
    AuthenticationError,
    ConfigurationError,
    ErrorCategory,
    OrchestrationError,
    ProviderTimeoutError,
    RateLimitError,
    ValidationError,
    classify_error,
)


def _status_error(status: int, headers=None) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions")
    response = httpx.Response(status, request=request, headers=headers)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


@pytest.mark.parametrize(
    "error, category, status",
    [
        (ValidationError("Message cannot be empty"), ErrorCategory.VALIDATION, 400),
        (AuthenticationError("key missing"), ErrorCategory.AUTH, 401),
        (RateLimitError(), ErrorCategory.RATE_LIMIT, 429),
        (ProviderTimeoutError("search", 30), ErrorCategory.TIMEOUT, 504),
        (ConfigurationError("X", "bad"), ErrorCategory.UNKNOWN, 500),
        (_status_error(401), ErrorCategory.AUTH, 401),
        (_status_error(403), ErrorCategory.AUTH, 401),
        (_status_error(429), ErrorCategory.RATE_LIMIT, 429),
        (_status_error(503), ErrorCategory.SERVICE_UNAVAILABLE, 503),
        (_status_error(504), ErrorCategory.TIMEOUT, 504),
        (_status_error(500), ErrorCategory.UNKNOWN, 500),
        (Exception("Request failed with status 401"), ErrorCategory.AUTH, 401),
        (Exception("No auth credentials found"), ErrorCategory.AUTH, 401),
        (ValueError("Invalid API key"), ErrorCategory.AUTH, 401),
        (RuntimeError("Too Many Requests"), ErrorCategory.RATE_LIMIT, 429),
        (httpx.ConnectError("boom"), ErrorCategory.SERVICE_UNAVAILABLE, 503),
        (Exception("fetch failed"), ErrorCategory.SERVICE_UNAVAILABLE, 503),
        (asyncio.TimeoutError(), ErrorCategory.TIMEOUT, 504),
        (httpx.ReadTimeout("slow"), ErrorCategory.TIMEOUT, 504),
        (Exception("Request timed out"), ErrorCategory.TIMEOUT, 504),
        (Exception("something odd"), ErrorCategory.UNKNOWN, 500),
    ],
)
def test_classification(error, category, status):
    classified = classify_error(error)

    assert classified.category == category
    assert classified.http_status == status


def test_non_exception_inputs():
    assert classify_error(None).category == ErrorCategory.UNKNOWN
    assert classify_error(None).technical_message == "Unknown error"
    assert classify_error("Request timed out").category == ErrorCategory.TIMEOUT
    assert classify_error({"status_code": 503, "message": "down"}).category == ErrorCategory.SERVICE_UNAVAILABLE
    assert classify_error({"error": "rate limit reached"}).category == ErrorCategory.RATE_LIMIT


class _UnprintableError(Exception):
    def __str__(self):
        raise RuntimeError("boom")


class _BrokenStatus:
    @property
    def status_code(self):
        raise RuntimeError("no status")

    def __str__(self):
        return "broken status"


def test_unprintable_error_is_still_classified():
    classified = classify_error(_UnprintableError())

    assert classified.category == ErrorCategory.UNKNOWN
    assert classified.http_status == 500
    assert classified.technical_message == "_UnprintableError"


def test_raising_status_attribute_is_ignored():
    classified = classify_error(_BrokenStatus())

    assert classified.category == ErrorCategory.UNKNOWN
    assert classified.http_status == 500


def test_rate_limit_wins_over_timeout():
    assert classify_error(Exception("429 after timeout")).category == ErrorCategory.RATE_LIMIT


def test_network_wins_over_timeout():
    assert classify_error(ConnectionError("timed out")).category == ErrorCategory.SERVICE_UNAVAILABLE


def test_user_message_hides_technical_details():
    classified = classify_error(Exception("fetch failed: ECONNREFUSED 10.0.0.3:443"))
    body = classified.to_response()

    assert body == {
        "message": USER_MESSAGES[ErrorCategory.SERVICE_UNAVAILABLE],
        "error": "service_unavailable",
    }
    assert "ECONNREFUSED" in classified.technical_message


def test_retry_after_from_header():
    classified = classify_error(_status_error(429, headers={"Retry-After": "30"}))

    assert classified.retry_after == 30
    assert classified.to_response()["details"] == {"retry_after": 30}


def test_validation_details_are_exposed():
    classified = classify_error(ValidationError("too long", details={"field": "message"}))

    assert classified.to_response()["details"] == {"fields": {"field": "message"}}


def test_orchestration_error_keeps_its_classification():
    inner = classify_error(httpx.ConnectError("boom"))

    assert classify_error(OrchestrationError(inner)) is inner


def test_empty_exception_message_uses_type_name():
    assert classify_error(asyncio.TimeoutError()).technical_message == "TimeoutError"
