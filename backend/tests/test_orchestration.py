"""
Unit tests for strategy orchestration.

All providers are in-memory stubs (see conftest); backoff sleeps are recorded
instead of awaited.
"""
import asyncio

import httpx
import pytest

from tonerweb.core.cache import REASONING_POOL, SEARCH_POOL, ResultCache
from tonerweb.core.circuit_breaker import CircuitBreaker, CircuitState
from tonerweb.core.errors import (
    AuthenticationError,
    ConfigurationError,
    ErrorCategory,
    OrchestrationError,
    ValidationError,
)
from tonerweb.services.analytics.event_log import EventLog
from tonerweb.services.routing import prompts
from tonerweb.services.routing.orchestration import Orchestrator
from tonerweb.services.routing.query_classification import QueryClassifier
from tonerweb.services.routing.schema import Mode, Strategy

from conftest import PNG_DATA_URL

SIMPLE_QUERY = "Canon PG-540 pris"
COMPLEX_PRICE_QUERY = "Hvilken blekkpatron er best til prisen?"
REASONING_QUERY = "Hvorfor blekner utskriftene mine så raskt etter noen uker?"


@pytest.mark.asyncio
async def test_simple_query_uses_search_only(orchestrator, providers):
    result = await orchestrator.handle(SIMPLE_QUERY, "DeepSearch")

    assert result.content == "search answer"
    assert result.classification.strategy == Strategy.SEARCH_ONLY
    assert result.cache_hit is False
    assert result.model_used == "perplexity/sonar-pro"
    assert len(providers.search.calls) == 1
    assert providers.call_count() == 1

    call = providers.search.calls[0]
    assert call["system_prompt"] == prompts.search_system_prompt(Mode.DEEP_SEARCH)
    assert "PG-540" in call["input"]


@pytest.mark.asyncio
async def test_repeated_query_is_served_from_cache(orchestrator, providers):
    await orchestrator.handle(SIMPLE_QUERY, "DeepSearch")
    result = await orchestrator.handle("  canon pg-540   PRIS ", "DeepSearch")

    assert result.cache_hit is True
    assert result.model_used == "cache"
    assert result.content == "search answer"
    assert len(providers.search.calls) == 1

    summary = orchestrator.event_log.summary()
    assert summary["total_searches"] == 2
    assert summary["cache_hits"] == 1


@pytest.mark.asyncio
async def test_modes_are_cached_separately(orchestrator, providers):
    await orchestrator.handle(SIMPLE_QUERY, "DeepSearch")
    await orchestrator.handle(SIMPLE_QUERY, "Think")

    assert len(providers.search.calls) == 2
    assert providers.search.calls[1]["system_prompt"] == prompts.search_system_prompt(Mode.THINK)


@pytest.mark.asyncio
async def test_complex_price_query_uses_unified_model(orchestrator, providers):
    result = await orchestrator.handle(COMPLEX_PRICE_QUERY, "Think")

    assert result.classification.strategy == Strategy.UNIFIED_REASONING
    assert result.content == "unified answer"
    assert len(providers.unified.calls) == 1
    assert providers.call_count() == 1
    assert len(orchestrator.cache.search) == 1


@pytest.mark.asyncio
async def test_reasoning_only_uses_reasoning_pool(orchestrator, providers):
    result = await orchestrator.handle(REASONING_QUERY, "Think")

    assert result.classification.strategy == Strategy.REASONING_ONLY
    assert result.content == "reasoning answer"
    assert providers.call_count() == 1
    assert len(orchestrator.cache.reasoning) == 1
    assert len(orchestrator.cache.search) == 0
    assert providers.reasoning.calls[0]["input"].startswith(f"Brukerens spørsmål: {REASONING_QUERY}")


@pytest.mark.asyncio
async def test_search_then_reason_feeds_search_results(settings, make_orchestrator, providers):
    settings.features.strategy_override = "search-then-reason"
    orchestrator = make_orchestrator(settings)

    result = await orchestrator.handle(SIMPLE_QUERY, "DeepSearch")

    assert result.classification.strategy == Strategy.SEARCH_THEN_REASON
    assert result.content == "reasoning answer"
    assert result.model_used == "perplexity/sonar-pro+anthropic/claude-3.5-sonnet"
    assert "search answer" in providers.reasoning.calls[0]["input"]
    # Only the final answer is cached
    assert len(orchestrator.cache.reasoning) == 1
    assert len(orchestrator.cache.search) == 0


class _NoSearchThenReason(Orchestrator):
    _search_then_reason = None


def test_every_strategy_needs_a_handler(settings, providers):
    with pytest.raises(ConfigurationError) as exc_info:
        _NoSearchThenReason(
            settings=settings,
            classifier=QueryClassifier(settings.classifier),
            cache=ResultCache(settings.cache),
            event_log=EventLog(),
            search=providers.search,
            unified=providers.unified,
            reasoning=providers.reasoning,
            vision=providers.vision,
        )

    assert exc_info.value.setting == "strategies"
    assert "search-then-reason" in exc_info.value.message


def test_invalid_strategy_override(settings, make_orchestrator):
    settings.features.strategy_override = "ask-a-friend"

    with pytest.raises(ConfigurationError):
        make_orchestrator(settings)


@pytest.mark.asyncio
async def test_disabled_classification_routes_to_unified(settings, make_orchestrator, providers):
    settings.features.enable_query_classification = False
    orchestrator = make_orchestrator(settings)

    result = await orchestrator.handle(SIMPLE_QUERY, "DeepSearch")

    assert result.classification.strategy == Strategy.UNIFIED_REASONING
    assert len(providers.unified.calls) == 1


@pytest.mark.asyncio
async def test_image_analysis_is_added_to_search_input(orchestrator, providers):
    result = await orchestrator.handle(SIMPLE_QUERY, "DeepSearch", image=PNG_DATA_URL)

    assert providers.vision.calls[0]["input"] == PNG_DATA_URL
    assert result.image_analysis == "Canon PG-540 svart blekkpatron"
    assert "BILDANALYSE:\nCanon PG-540 svart blekkpatron" in providers.search.calls[0]["input"]
    assert result.model_used == "gemini-2.5-flash+perplexity/sonar-pro"


@pytest.mark.asyncio
async def test_vision_failure_degrades_to_placeholder(orchestrator, providers):
    providers.vision.outcomes = [httpx.ConnectError("vision down")]

    result = await orchestrator.handle(SIMPLE_QUERY, "DeepSearch", image=PNG_DATA_URL)

    assert result.content == "search answer"
    assert result.image_analysis == prompts.IMAGE_ANALYSIS_FALLBACK
    assert prompts.IMAGE_ANALYSIS_FALLBACK in providers.search.calls[0]["input"]
    assert orchestrator.event_log.summary()["failed_searches"] == 0


@pytest.mark.asyncio
async def test_image_only_request_goes_to_unified(orchestrator, providers):
    result = await orchestrator.handle("", "DeepSearch", image=PNG_DATA_URL)

    assert result.classification.strategy == Strategy.UNIFIED_REASONING
    assert len(providers.vision.calls) == 1
    assert len(providers.unified.calls) == 1
    assert providers.unified.calls[0]["input"].startswith(prompts.IMAGE_ONLY_MESSAGE)


@pytest.mark.asyncio
async def test_image_is_part_of_the_cache_key(orchestrator, providers):
    await orchestrator.handle(SIMPLE_QUERY, "DeepSearch")
    await orchestrator.handle(SIMPLE_QUERY, "DeepSearch", image=PNG_DATA_URL)

    assert len(providers.search.calls) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "message, mode",
    [
        ("", "DeepSearch"),
        ("   ", "Think"),
        ("x" * 10001, "DeepSearch"),
        (SIMPLE_QUERY, "Fast"),
    ],
)
async def test_invalid_input_is_rejected_before_any_work(orchestrator, providers, message, mode):
    with pytest.raises(ValidationError):
        await orchestrator.handle(message, mode)

    assert providers.call_count() == 0
    assert orchestrator.event_log.summary()["total_searches"] == 0
    assert orchestrator.cache.stats()[SEARCH_POOL]["misses"] == 0


@pytest.mark.asyncio
async def test_provider_failure_is_classified_and_recorded(orchestrator, providers):
    providers.search.outcomes = [httpx.ConnectError("connection refused by 10.0.0.3")]

    with pytest.raises(OrchestrationError) as exc_info:
        await orchestrator.handle(SIMPLE_QUERY, "DeepSearch")

    classified = exc_info.value.classified
    assert classified.category == ErrorCategory.SERVICE_UNAVAILABLE
    assert classified.http_status == 503
    assert "10.0.0.3" not in classified.user_message

    searches = orchestrator.event_log.recent_searches()
    errors = orchestrator.event_log.recent_errors()
    assert searches[0].success is False
    assert errors[0].category == "service_unavailable"
    assert errors[0].context == "orchestration:search-only"
    assert len(orchestrator.cache.search) == 0


class _UnprintableError(Exception):
    def __str__(self):
        raise RuntimeError("boom")


@pytest.mark.asyncio
async def test_unprintable_provider_error_is_still_recorded(orchestrator, providers):
    providers.search.outcomes = [_UnprintableError()]

    with pytest.raises(OrchestrationError) as exc_info:
        await orchestrator.handle(SIMPLE_QUERY, "DeepSearch")

    assert exc_info.value.classified.category == ErrorCategory.UNKNOWN
    assert orchestrator.event_log.recent_searches()[0].success is False
    assert orchestrator.event_log.recent_errors()[0].error_type == "_UnprintableError"


@pytest.mark.asyncio
async def test_transient_failures_are_retried_with_backoff(settings, make_orchestrator, providers, sleeps):
    settings.providers.max_retries = 2
    providers.search.outcomes = [
        httpx.ConnectError("connection refused"),
        httpx.ReadTimeout("slow"),
        "search answer",
    ]
    orchestrator = make_orchestrator(settings)

    result = await orchestrator.handle(SIMPLE_QUERY, "DeepSearch")

    assert result.content == "search answer"
    assert len(providers.search.calls) == 3
    assert sleeps == [0.5, 1.0]


@pytest.mark.asyncio
async def test_auth_failures_are_not_retried(settings, make_orchestrator, providers, sleeps):
    settings.providers.max_retries = 3
    providers.search.outcomes = [AuthenticationError("No auth credentials found")]
    orchestrator = make_orchestrator(settings)

    with pytest.raises(OrchestrationError) as exc_info:
        await orchestrator.handle(SIMPLE_QUERY, "DeepSearch")

    assert exc_info.value.classified.category == ErrorCategory.AUTH
    assert len(providers.search.calls) == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_provider_timeout(settings, make_orchestrator, providers):
    settings.providers.search_timeout_seconds = 0.01
    providers.search.delay = 1.0
    orchestrator = make_orchestrator(settings)

    with pytest.raises(OrchestrationError) as exc_info:
        await orchestrator.handle(SIMPLE_QUERY, "DeepSearch")

    assert exc_info.value.classified.category == ErrorCategory.TIMEOUT
    assert exc_info.value.classified.http_status == 504


@pytest.mark.asyncio
async def test_repeated_timeouts_open_the_provider_breaker(settings, make_orchestrator, providers):
    settings.providers.search_timeout_seconds = 0.01
    providers.search.delay = 1.0
    providers.search.breaker = CircuitBreaker(name="search", min_requests_for_threshold=2)
    orchestrator = make_orchestrator(settings)

    for _ in range(2):
        with pytest.raises(OrchestrationError):
            await orchestrator.handle(SIMPLE_QUERY, "DeepSearch")

    assert providers.search.breaker.state == CircuitState.OPEN


@pytest.mark.asyncio
async def test_cancellation_propagates_without_side_effects(orchestrator, providers):
    providers.search.delay = 5.0

    task = asyncio.create_task(orchestrator.handle(SIMPLE_QUERY, "DeepSearch"))
    await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert len(orchestrator.cache.search) == 0
    assert orchestrator.event_log.summary()["total_searches"] == 0
    assert orchestrator.event_log.recent_errors() == []


@pytest.mark.asyncio
async def test_empty_provider_output_uses_fallback_text(orchestrator, providers):
    providers.search.outcomes = [""]

    result = await orchestrator.handle(SIMPLE_QUERY, "DeepSearch")

    assert result.content == prompts.EMPTY_SEARCH_RESPONSE


@pytest.mark.asyncio
async def test_disabled_cache_calls_provider_every_time(settings, make_orchestrator, providers):
    settings.features.enable_caching = False
    orchestrator = make_orchestrator(settings)

    await orchestrator.handle(SIMPLE_QUERY, "DeepSearch")
    result = await orchestrator.handle(SIMPLE_QUERY, "DeepSearch")

    assert result.cache_hit is False
    assert len(providers.search.calls) == 2


@pytest.mark.asyncio
async def test_cache_write_failure_does_not_fail_request(orchestrator, providers, monkeypatch):
    def broken_set(pool, key, value):
        raise RuntimeError("cache full")

    monkeypatch.setattr(orchestrator.cache, "set", broken_set)

    result = await orchestrator.handle(SIMPLE_QUERY, "DeepSearch")

    assert result.content == "search answer"


@pytest.mark.asyncio
async def test_reasoning_answers_are_cached(orchestrator, providers):
    await orchestrator.handle(REASONING_QUERY, "Think")
    result = await orchestrator.handle(REASONING_QUERY, "DeepSearch")

    # Reasoning answers do not depend on the mode
    assert result.cache_hit is True
    assert len(providers.reasoning.calls) == 1
    assert orchestrator.cache.stats()[REASONING_POOL]["hits"] == 1


@pytest.mark.asyncio
async def test_image_only_request_survives_vision_failure(orchestrator, providers):
    providers.vision.outcomes = [RuntimeError("Gemini exploded")]

    result = await orchestrator.handle("", "DeepSearch", image=PNG_DATA_URL)

    assert result.content == "unified answer"
    assert prompts.IMAGE_ANALYSIS_FALLBACK in providers.unified.calls[0]["input"]
    event = orchestrator.event_log.recent_searches()[0]
    assert event.success is True
    assert event.has_image is True
