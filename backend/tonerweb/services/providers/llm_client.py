"""
Async client for the OpenRouter chat completions API.

Uses plain httpx against the OpenAI-compatible endpoint instead of a vendor
SDK. One client is shared by the search, unified and reasoning providers;
each provider passes its own model and generation parameters.

Failures are not caught here: HTTP errors are
raised as ``httpx.HTTPStatusError`` (status code preserved for the error
classifier), transport errors as ``httpx.TransportError``.
"""
from typing import Any, Dict, List, Optional

import httpx

from tonerweb.core.circuit_breaker import CircuitBreaker
from tonerweb.core.errors import AuthenticationError
from tonerweb.core.logging import get_logger

logger = get_logger(__name__)


class OpenRouterClient:
    """
    Args:
        base_url: API root, e.g. https://openrouter.ai/api/v1
        api_key: Bearer token; calls fail with AuthenticationError when unset
        referrer: Sent as HTTP-Referer (OpenRouter app attribution)
        title: Sent as X-Title
        transport: Optional httpx transport, used by tests
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        referrer: str = "https://tonerweb.no",
        title: str = "TonerWeb AI Assistant",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.referrer = referrer
        self.title = title
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
            "HTTP-Referer": self.referrer,
            "X-Title": self.title,
        }

    async def _post(self, payload: Dict[str, Any], timeout: float) -> httpx.Response:
        async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
            response = await client.post(
                f"{self.base_url}/chat/completions",
                headers=self._headers(),
                json=payload,
            )
        response.raise_for_status()
        return response

    async def chat(
        self,
        model: str,
        messages: List[Dict[str, str]],
        temperature: float = 0.2,
        max_tokens: int = 2000,
        timeout: float = 30.0,
        breaker: Optional[CircuitBreaker] = None,
    ) -> Optional[str]:
        """
        Run one chat completion.

        Returns:
            The first choice's message content, or None when the model
            returned no content.

        Raises:
            AuthenticationError: no API key configured
            CircuitBreakerOpenError: the provider's breaker is open
            httpx.HTTPStatusError / httpx.TransportError: upstream failure
        """
        if not self.api_key:
            raise AuthenticationError(
                "OpenRouter API key not configured: No auth credentials found",
                context={"model": model},
            )

        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        if breaker is not None:
            response = await breaker.call_async(self._post, payload, timeout)
        else:
            response = await self._post(payload, timeout)

        data = response.json()
        choices = data.get("choices") or []
        if not choices:
            logger.warning("openrouter_empty_choices", model=model)
            return None
        content = (choices[0].get("message") or {}).get("content")

        usage = data.get("usage") or {}
        logger.debug(
            "openrouter_completion_received",
            model=model,
            prompt_tokens=usage.get("prompt_tokens"),
            completion_tokens=usage.get("completion_tokens"),
        )
        return content or None
