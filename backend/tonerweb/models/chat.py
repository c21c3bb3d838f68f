"""
Request and response models for the chat API.
"""
import re
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from tonerweb.core.logging import get_logger

logger = get_logger(__name__)

SUSPICIOUS_PATTERNS = [
    re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"eval\s*\(", re.IGNORECASE),
]


def find_suspicious_pattern(text: str) -> Optional[str]:
    """Source of the first suspicious pattern found in ``text``, if any."""
    for pattern in SUSPICIOUS_PATTERNS:
        if pattern.search(text):
            return pattern.pattern
    return None


class ChatRequest(BaseModel):
    """Chat request. ``image`` is a base64 data URL."""
    message: str = Field("", description="User question")
    mode: Literal["DeepSearch", "Think"] = Field(..., description="Answer style")
    image: Optional[str] = Field(None, description="Optional image as a data URL")

    @field_validator("message")
    @classmethod
    def reject_suspicious_content(cls, value: str) -> str:
        pattern = find_suspicious_pattern(value)
        if pattern is not None:
            logger.warning(
                "suspicious_content_detected",
                pattern=pattern,
                message_preview=value[:100],
            )
            raise ValueError("Invalid content detected")
        return value

    @field_validator("image")
    @classmethod
    def empty_image_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value


class ChatResponse(BaseModel):
    content: str


class ErrorDetails(BaseModel):
    retry_after: Optional[int] = None
    fields: Optional[Any] = None


class ErrorEnvelope(BaseModel):
    """Body of every error response."""
    message: str
    error: str
    details: Optional[ErrorDetails] = None
