"""
Application errors and the error classifier.

Every failure that can reach a caller is mapped to exactly one of six
categories, each with a fixed HTTP status and a fixed user-facing message:

    validation           400
    auth                 401
    rate_limit           429
    service_unavailable  503
    timeout              504
    unknown              500

``classify_error`` is total: it accepts exceptions of any type, and also
non-exception values (strings, dicts, None) that some SDKs raise or return.
The technical message is kept on the ``ClassifiedError`` for logs and
analytics only; it is never sent to clients.
"""
import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError as PydanticValidationError


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    SERVICE_UNAVAILABLE = "service_unavailable"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


HTTP_STATUS_BY_CATEGORY: Dict[ErrorCategory, int] = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.AUTH: 401,
    ErrorCategory.RATE_LIMIT: 429,
    ErrorCategory.SERVICE_UNAVAILABLE: 503,
    ErrorCategory.TIMEOUT: 504,
    ErrorCategory.UNKNOWN: 500,
}

USER_MESSAGES: Dict[ErrorCategory, str] = {
    ErrorCategory.VALIDATION: "Invalid request data. Please check your request and try again.",
    ErrorCategory.AUTH: "The AI service could not authenticate. Please contact support if this persists.",
    ErrorCategory.RATE_LIMIT: "Too many requests. Please wait a moment before trying again.",
    ErrorCategory.SERVICE_UNAVAILABLE: "The AI service is temporarily unavailable. Please try again later.",
    ErrorCategory.TIMEOUT: "The request took too long to complete. Please try again.",
    ErrorCategory.UNKNOWN: "An unexpected error occurred. Please try again later.",
}

AUTH_MARKERS = (
    "401",
    "no auth credentials",
    "unauthorized",
    "api key not valid",
    "invalid api key",
)
RATE_LIMIT_MARKERS = ("429", "rate limit", "too many requests")
NETWORK_MARKERS = (
    "econnrefused",
    "fetch failed",
    "connection refused",
    "connection error",
    "name or service not known",
)
TIMEOUT_MARKERS = ("timeout", "timed out")


@dataclass(frozen=True)
class ClassifiedError:
    """Normalized view of a failure. Constructed once, never mutated."""

    category: ErrorCategory
    http_status: int
    user_message: str
    technical_message: str
    retry_after: Optional[int] = None
    details: Optional[Any] = None

    def to_response(self) -> Dict[str, Any]:
        """Client-safe error envelope."""
        body: Dict[str, Any] = {
            "message": self.user_message,
            "error": self.category.value,
        }
        details: Dict[str, Any] = {}
        if self.retry_after is not None:
            details["retry_after"] = self.retry_after
        if self.details is not None:
            details["fields"] = self.details
        if details:
            body["details"] = details
        return body


class AppError(Exception):
    """
    Base class for errors raised deliberately by the application.

    The category is explicit, so the classifier never has to guess.
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        user_message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.user_message = user_message or USER_MESSAGES[self.category]
        self.context: Dict[str, Any] = dict(context or {})

    @property
    def status_code(self) -> int:
        return HTTP_STATUS_BY_CATEGORY[self.category]

    def to_dict(self) -> Dict[str, Any]:
        """Full representation for logging (includes the technical message)."""
        return {
            "type": type(self).__name__,
            "category": self.category.value,
            "status_code": self.status_code,
            "message": self.message,
            "user_message": self.user_message,
            "context": self.context,
        }


class ValidationError(AppError):
    category = ErrorCategory.VALIDATION

    def __init__(self, message: str, details: Optional[Any] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.details = details


class ImageValidationError(ValidationError):
    """Raised when an image payload is not a usable data URL."""


class AuthenticationError(AppError):
    category = ErrorCategory.AUTH


class RateLimitError(AppError):
    category = ErrorCategory.RATE_LIMIT

    def __init__(self, message: str = "Rate limit exceeded", retry_after: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class ServiceUnavailableError(AppError):
    category = ErrorCategory.SERVICE_UNAVAILABLE

    def __init__(self, service: str, message: str, **kwargs):
        super().__init__(f"{service} service unavailable: {message}", **kwargs)
        self.service = service


class ProviderTimeoutError(AppError):
    category = ErrorCategory.TIMEOUT

    def __init__(self, provider: str, timeout_seconds: float, **kwargs):
        super().__init__(f"{provider} timed out after {timeout_seconds:.1f}s", **kwargs)
        self.provider = provider
        self.timeout_seconds = timeout_seconds


class ConfigurationError(AppError):
    """Invalid configuration value. Not operational: fix the environment."""

    category = ErrorCategory.UNKNOWN

    def __init__(self, setting: str, message: str, **kwargs):
        super().__init__(f"Configuration error for {setting}: {message}", **kwargs)
        self.setting = setting


class OrchestrationError(Exception):
    """Raised by the orchestrator after a backend failure has been classified and logged."""

    def __init__(self, classified: ClassifiedError):
        super().__init__(classified.technical_message)
        self.classified = classified


def _safe_str(value: Any) -> str:
    """``str(value)``, or the type name when its ``__str__`` fails."""
    try:
        return str(value)
    except Exception:
        return type(value).__name__


def _technical_message(error: Any) -> str:
    if error is None:
        return "Unknown error"
    if isinstance(error, BaseException):
        return _safe_str(error) or type(error).__name__
    if isinstance(error, dict):
        for key in ("message", "error", "detail"):
            if error.get(key):
                return _safe_str(error[key])
    return _safe_str(error)


def _explicit_status(error: Any) -> Optional[int]:
    """Status code carried by the error itself, if any."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    try:
        if isinstance(error, dict):
            status = error.get("status_code") or error.get("status")
        else:
            status = getattr(error, "status_code", None) or getattr(error, "status", None)
    except Exception:
        return None
    if isinstance(status, int):
        return status
    return None


def _retry_after(error: Any) -> Optional[int]:
    if isinstance(error, RateLimitError):
        return error.retry_after
    if isinstance(error, httpx.HTTPStatusError):
        header = error.response.headers.get("Retry-After")
        if header and header.strip().isdigit():
            return int(header.strip())
    return None


def _field_errors(errors: Any) -> List[Dict[str, Any]]:
    """Location, message and type of each field error. Input values are dropped."""
    return [
        {
            "loc": [str(part) for part in error.get("loc", ())],
            "msg": str(error.get("msg", "")),
            "type": str(error.get("type", "")),
        }
        for error in errors
    ]


def _build(
    category: ErrorCategory,
    error: Any,
    user_message: Optional[str] = None,
    details: Optional[Any] = None,
) -> ClassifiedError:
    return ClassifiedError(
        category=category,
        http_status=HTTP_STATUS_BY_CATEGORY[category],
        user_message=user_message or USER_MESSAGES[category],
        technical_message=_technical_message(error),
        retry_after=_retry_after(error) if category == ErrorCategory.RATE_LIMIT else None,
        details=details,
    )


def classify_error(error: Any) -> ClassifiedError:
    """
    Map any failure to a ClassifiedError.

    Priority when several signals match:
    1. explicit application error types
    2. explicit status codes, then auth / rate-limit message markers
    3. network failures
    4. timeouts
    5. unknown
    """
    if isinstance(error, OrchestrationError):
        return error.classified

    if isinstance(error, AppError):
        details = getattr(error, "details", None)
        return _build(error.category, error, user_message=error.user_message, details=details)

    if isinstance(error, (RequestValidationError, PydanticValidationError)):
        return _build(ErrorCategory.VALIDATION, error, details=_field_errors(error.errors()))

    status = _explicit_status(error)
    if status in (401, 403):
        return _build(ErrorCategory.AUTH, error)
    if status == 429:
        return _build(ErrorCategory.RATE_LIMIT, error)

    text = _technical_message(error).lower()
    if any(marker in text for marker in AUTH_MARKERS):
        return _build(ErrorCategory.AUTH, error)
    if any(marker in text for marker in RATE_LIMIT_MARKERS):
        return _build(ErrorCategory.RATE_LIMIT, error)

    if status in (502, 503):
        return _build(ErrorCategory.SERVICE_UNAVAILABLE, error)
    if isinstance(error, (httpx.NetworkError, ConnectionError)):
        return _build(ErrorCategory.SERVICE_UNAVAILABLE, error)
    if any(marker in text for marker in NETWORK_MARKERS):
        return _build(ErrorCategory.SERVICE_UNAVAILABLE, error)

    if status in (408, 504):
        return _build(ErrorCategory.TIMEOUT, error)
    if isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException, TimeoutError)):
        return _build(ErrorCategory.TIMEOUT, error)
    if any(marker in text for marker in TIMEOUT_MARKERS):
        return _build(ErrorCategory.TIMEOUT, error)

    return _build(ErrorCategory.UNKNOWN, error)
