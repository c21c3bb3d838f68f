"""
Service wiring.

``build_services(settings)`` constructs every long-lived object once: the
result cache, event log, rate limiter, classifier, providers and the
orchestrator. The container is stored on ``app.state`` and started/stopped
by the application lifecycle hooks.
"""
import time
from dataclasses import dataclass, field
from typing import Optional

import httpx

from tonerweb.core.cache import ResultCache
from tonerweb.core.config import Settings
from tonerweb.core.logging import get_logger
from tonerweb.core.rate_limit import RateLimiter
from tonerweb.services.analytics.event_log import EventLog
from tonerweb.services.providers.base import Provider
from tonerweb.services.providers.llm_client import OpenRouterClient
from tonerweb.services.providers.openrouter import (
    ReasoningProvider,
    SearchProvider,
    UnifiedReasoningProvider,
)
from tonerweb.services.providers.vision import GeminiVisionProvider
from tonerweb.services.routing.orchestration import Orchestrator
from tonerweb.services.routing.query_classification import QueryClassifier

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    cache: ResultCache
    event_log: EventLog
    rate_limiter: RateLimiter
    classifier: QueryClassifier
    orchestrator: Orchestrator
    started_at: float = field(default_factory=time.time)

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self.started_at

    def provider_status(self) -> dict:
        """Whether each upstream provider has credentials configured."""
        orchestrator = self.orchestrator
        return {
            name: bool(getattr(provider, "configured", True))
            for name, provider in (
                ("search", orchestrator.search),
                ("unified", orchestrator.unified),
                ("reasoning", orchestrator.reasoning),
                ("vision", orchestrator.vision),
            )
        }

    def circuit_breakers(self) -> dict:
        orchestrator = self.orchestrator
        breakers = {}
        for provider in (orchestrator.search, orchestrator.unified, orchestrator.reasoning, orchestrator.vision):
            breaker = getattr(provider, "breaker", None)
            if breaker is not None:
                breakers[breaker.name] = breaker.get_metrics()
        return breakers

    async def start(self) -> None:
        self.started_at = time.time()
        await self.cache.start()
        logger.info("services_started", providers=self.provider_status())

    async def shutdown(self) -> None:
        await self.cache.shutdown()
        logger.info("services_shutdown")


def build_services(
    settings: Settings,
    search: Optional[Provider] = None,
    unified: Optional[Provider] = None,
    reasoning: Optional[Provider] = None,
    vision: Optional[Provider] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ServiceContainer:
    """
    Build the service graph from settings.

    Providers can be passed in to replace the HTTP-backed defaults (tests,
    alternative backends). ``transport`` is handed to the default httpx
    clients.
    """
    cache = ResultCache(settings.cache, enabled=settings.features.enable_caching)
    event_log = EventLog(
        max_events=settings.analytics.max_events,
        enabled=settings.features.enable_analytics,
    )
    rate_limiter = RateLimiter(
        window_seconds=settings.security.rate_limit_window_seconds,
        max_requests=settings.security.rate_limit_max_requests,
    )
    classifier = QueryClassifier(settings.classifier)

    providers = settings.providers
    openrouter = OpenRouterClient(
        base_url=providers.openrouter_base_url,
        api_key=providers.openrouter_api_key,
        referrer=providers.openrouter_referrer,
        title=providers.openrouter_title,
        transport=transport,
    )

    orchestrator = Orchestrator(
        settings=settings,
        classifier=classifier,
        cache=cache,
        event_log=event_log,
        search=search or SearchProvider.from_settings(openrouter, providers),
        unified=unified or UnifiedReasoningProvider.from_settings(openrouter, providers),
        reasoning=reasoning or ReasoningProvider.from_settings(openrouter, providers),
        vision=vision or GeminiVisionProvider.from_settings(providers, settings.security, transport),
    )

    return ServiceContainer(
        settings=settings,
        cache=cache,
        event_log=event_log,
        rate_limiter=rate_limiter,
        classifier=classifier,
        orchestrator=orchestrator,
    )
