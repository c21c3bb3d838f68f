"""
Image analysis with Google Gemini.

Images arrive as base64 data URLs. They are validated locally (format,
allowed MIME type, strict base64, decoded size) before anything is sent to
the remote service; rejections raise ImageValidationError.
"""
import base64
import binascii
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from tonerweb.core.circuit_breaker import CircuitBreaker
from tonerweb.core.config import ProviderSettings, SecuritySettings
from tonerweb.core.errors import AuthenticationError, ImageValidationError
from tonerweb.core.logging import get_logger
from tonerweb.services.routing.prompts import VISION_PROMPT

logger = get_logger(__name__)

DATA_URL = re.compile(
    r"data:(?P<mime>[a-zA-Z0-9][a-zA-Z0-9!#$&^_.+-]*/[a-zA-Z0-9][a-zA-Z0-9!#$&^_.+-]*);base64,(?P<data>.+)",
    re.DOTALL,
)


@dataclass(frozen=True)
class ImagePayload:
    mime_type: str
    data: str
    size_bytes: int


def parse_image_data_url(
    image: str,
    allowed_types: List[str],
    max_size_bytes: int,
) -> ImagePayload:
    """
    Validate a data URL and split it into MIME type and base64 body.

    Raises:
        ImageValidationError: malformed data URL, disallowed type, invalid
            base64 or image larger than ``max_size_bytes``
    """
    if not isinstance(image, str) or not image:
        raise ImageValidationError("Image must be a non-empty data URL string")

    match = DATA_URL.fullmatch(image.strip())
    if match is None:
        raise ImageValidationError("Invalid image format. Must be a valid base64 data URL.")

    mime_type = match.group("mime").lower()
    if not mime_type.startswith("image/") or mime_type not in allowed_types:
        raise ImageValidationError(
            f"Unsupported image type: {mime_type}",
            details={"allowed_types": allowed_types},
        )

    data = re.sub(r"\s+", "", match.group("data"))
    try:
        decoded = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ImageValidationError("Image data is not valid base64") from exc

    if not decoded:
        raise ImageValidationError("Image data is empty")
    if len(decoded) > max_size_bytes:
        raise ImageValidationError(
            f"Image too large. Maximum size is {max_size_bytes // (1024 * 1024)}MB.",
            details={"size_bytes": len(decoded), "max_size_bytes": max_size_bytes},
        )

    return ImagePayload(mime_type=mime_type, data=data, size_bytes=len(decoded))


class GeminiVisionProvider:
    """
    Provider whose input is an image data URL.

    Args:
        base_url: Generative Language API root
        api_key: Gemini API key; calls fail with AuthenticationError when unset
        model: Vision-capable model name
        allowed_types: Accepted MIME types
        max_image_size: Maximum decoded image size in bytes
        timeout_seconds: HTTP timeout
        transport: Optional httpx transport, used by tests
    """

    name = "vision"

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        model: str,
        allowed_types: List[str],
        max_image_size: int,
        timeout_seconds: float = 20.0,
        prompt: str = VISION_PROMPT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.allowed_types = allowed_types
        self.max_image_size = max_image_size
        self.timeout_seconds = timeout_seconds
        self.prompt = prompt
        self.transport = transport
        self.breaker = breaker or CircuitBreaker(name=self.name)

    @classmethod
    def from_settings(
        cls,
        providers: ProviderSettings,
        security: SecuritySettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "GeminiVisionProvider":
        return cls(
            base_url=providers.gemini_base_url,
            api_key=providers.gemini_api_key,
            model=providers.vision_model,
            allowed_types=security.allowed_image_types,
            max_image_size=security.max_image_size,
            timeout_seconds=providers.vision_timeout_seconds,
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def _post(self, body: Dict[str, Any]) -> httpx.Response:
        url = f"{self.base_url}/models/{self.model}:generateContent"
        headers = {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            response = await client.post(url, headers=headers, json=body)
        response.raise_for_status()
        return response

    async def call(self, input: str, system_prompt: Optional[str] = None) -> str:
        """
        Analyze the image in ``input`` (a data URL).

        ``system_prompt`` replaces the default cartridge-identification prompt.
        """
        payload = parse_image_data_url(input, self.allowed_types, self.max_image_size)

        if not self.api_key:
            raise AuthenticationError("Gemini API key not configured", context={"model": self.model})

        body = {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"text": system_prompt or self.prompt},
                        {"inline_data": {"mime_type": payload.mime_type, "data": payload.data}},
                    ],
                }
            ]
        }

        response = await self.breaker.call_async(self._post, body)
        text = extract_text(response.json())
        logger.debug(
            "vision_analysis_completed",
            model=self.model,
            image_bytes=payload.size_bytes,
            analysis_length=len(text),
        )
        return text


def extract_text(data: Dict[str, Any]) -> str:
    """Concatenate the text parts of the first candidate."""
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts if isinstance(part, dict)).strip()
