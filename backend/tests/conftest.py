"""
Shared fixtures.

Providers are replaced by in-memory stubs; no test performs a real HTTP call.
"""
import asyncio
from typing import List, Optional, Union

import pytest

from tonerweb.core.cache import ResultCache
from tonerweb.core.config import Settings
from tonerweb.services.analytics.event_log import EventLog
from tonerweb.services.routing.orchestration import Orchestrator
from tonerweb.services.routing.query_classification import QueryClassifier

# 1x1 transparent PNG
PNG_DATA_URL = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


class StubProvider:
    """
    Provider stub returning scripted outcomes.

    Each call consumes the next outcome; the last one repeats. An outcome is
    either the text to return or an exception to raise.
    """

    def __init__(
        self,
        name: str,
        model: str,
        outcomes: Optional[List[Union[str, BaseException]]] = None,
        delay: float = 0.0,
    ):
        self.name = name
        self.model = model
        self.outcomes = list(outcomes) if outcomes is not None else [f"{name} answer"]
        self.delay = delay
        self.calls = []

    async def call(self, input: str, system_prompt: Optional[str] = None) -> str:
        self.calls.append({"input": input, "system_prompt": system_prompt})
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes[0] if len(self.outcomes) == 1 else self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class Providers:
    def __init__(self):
        self.search = StubProvider("search", "perplexity/sonar-pro")
        self.unified = StubProvider("unified", "perplexity/sonar-reasoning-pro")
        self.reasoning = StubProvider("reasoning", "anthropic/claude-3.5-sonnet")
        self.vision = StubProvider("vision", "gemini-2.5-flash", ["Canon PG-540 svart blekkpatron"])

    def call_count(self) -> int:
        return sum(len(p.calls) for p in (self.search, self.unified, self.reasoning, self.vision))


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def providers():
    return Providers()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_orchestrator(settings, providers, sleeps):
    """Factory so tests can tweak settings before building."""

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    def _make(settings: Settings = settings) -> Orchestrator:
        return Orchestrator(
            settings=settings,
            classifier=QueryClassifier(settings.classifier),
            cache=ResultCache(settings.cache, enabled=settings.features.enable_caching),
            event_log=EventLog(max_events=settings.analytics.max_events),
            search=providers.search,
            unified=providers.unified,
            reasoning=providers.reasoning,
            vision=providers.vision,
            sleep=fake_sleep,
        )

    return _make


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()
