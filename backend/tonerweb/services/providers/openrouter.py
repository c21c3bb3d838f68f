"""
Text providers served through OpenRouter.

- SearchProvider:            web search model (Perplexity Sonar Pro)
- UnifiedReasoningProvider:  search and chain-of-thought in one call
                             (Perplexity Sonar Reasoning Pro)
- ReasoningProvider:         pure reasoning model (Claude 3.5 Sonnet)

All three share one OpenRouterClient and differ only in model, generation
parameters and default system prompt. Each owns its circuit breaker.
"""
from datetime import datetime, timezone
from typing import Optional

from tonerweb.core.circuit_breaker import CircuitBreaker
from tonerweb.core.config import ProviderSettings
from tonerweb.services.providers.llm_client import OpenRouterClient


class OpenRouterProvider:
    """One model behind the shared OpenRouter client."""

    name = "openrouter"
    # Prefix the system prompt with the current time (search models use it for freshness)
    include_timestamp = False

    def __init__(
        self,
        client: OpenRouterClient,
        model: str,
        temperature: float,
        max_tokens: int,
        timeout_seconds: float,
        default_system_prompt: Optional[str] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds
        self.default_system_prompt = default_system_prompt
        self.breaker = breaker or CircuitBreaker(name=self.name)

    @property
    def configured(self) -> bool:
        return self.client.configured

    def _system_content(self, system_prompt: Optional[str]) -> Optional[str]:
        prompt = system_prompt or self.default_system_prompt
        if prompt and self.include_timestamp:
            now = datetime.now(timezone.utc).isoformat()
            return f"Current date and time: {now}\n\n{prompt}"
        return prompt

    async def call(self, input: str, system_prompt: Optional[str] = None) -> str:
        messages = []
        system_content = self._system_content(system_prompt)
        if system_content:
            messages.append({"role": "system", "content": system_content})
        messages.append({"role": "user", "content": input})

        content = await self.client.chat(
            model=self.model,
            messages=messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            timeout=self.timeout_seconds,
            breaker=self.breaker,
        )
        return content or ""


class SearchProvider(OpenRouterProvider):
    name = "search"
    include_timestamp = True

    @classmethod
    def from_settings(cls, client: OpenRouterClient, settings: ProviderSettings) -> "SearchProvider":
        return cls(
            client,
            model=settings.search_model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            timeout_seconds=settings.search_timeout_seconds,
        )


class UnifiedReasoningProvider(OpenRouterProvider):
    name = "unified"
    include_timestamp = True

    @classmethod
    def from_settings(cls, client: OpenRouterClient, settings: ProviderSettings) -> "UnifiedReasoningProvider":
        return cls(
            client,
            model=settings.unified_model,
            temperature=settings.temperature,
            # Room for the chain-of-thought that precedes the answer
            max_tokens=settings.unified_max_tokens,
            timeout_seconds=settings.unified_timeout_seconds,
        )


class ReasoningProvider(OpenRouterProvider):
    name = "reasoning"

    @classmethod
    def from_settings(cls, client: OpenRouterClient, settings: ProviderSettings) -> "ReasoningProvider":
        return cls(
            client,
            model=settings.reasoning_model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            timeout_seconds=settings.reasoning_timeout_seconds,
        )
