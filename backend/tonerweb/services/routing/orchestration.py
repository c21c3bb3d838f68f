"""
Strategy orchestration for chat requests.

Flow for one request:
1. Validate input (empty message without image, oversize message)
2. Classify the query and pick a Strategy
3. Look up the strategy's cache pool
4. On a miss, optionally analyze the attached image, then call the
   providers in the order the strategy requires
5. Cache the answer, record a SearchEvent and return

| Strategy           | Pool      | Key namespace        | Providers                  |
|--------------------|-----------|----------------------|----------------------------|
| search-only        | search    | request mode         | search                     |
| reasoning-only     | reasoning | "reasoning"          | reasoning                  |
| search-then-reason | reasoning | "search-then-reason" | search, then reasoning     |
| unified-reasoning  | search    | request mode         | unified                    |

Image analysis never fails a request: on any vision error the prompt gets
a fixed placeholder instead. Every other provider failure is classified,
recorded as a failed SearchEvent plus an ErrorEvent, and re-raised as
OrchestrationError carrying the user-facing message. Cancellation propagates
untouched: no cache write and no event.
"""
import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

from tonerweb.core.cache import REASONING_POOL, SEARCH_POOL, ResultCache, hash_image
from tonerweb.core.config import Settings
from tonerweb.core.errors import (
    ConfigurationError,
    ErrorCategory,
    OrchestrationError,
    ProviderTimeoutError,
    ValidationError,
    classify_error,
)
from tonerweb.core.logging import get_logger
from tonerweb.core.metrics import (
    record_classification,
    record_orchestration,
    record_provider_call,
    record_provider_error,
    record_vision_fallback,
)
from tonerweb.core.tracing import get_tracer, record_exception, set_span_attribute
from tonerweb.services.analytics.event_log import EventLog
from tonerweb.services.providers.base import Provider
from tonerweb.services.routing import prompts
from tonerweb.services.routing.query_classification import (
    QueryClassifier,
    extract_product_identifiers,
    suggest_alternative_terms,
)
from tonerweb.services.routing.schema import (
    Mode,
    OrchestrationResult,
    QueryClassification,
    Strategy,
)

logger = get_logger(__name__)

RETRYABLE_CATEGORIES = {
    ErrorCategory.SERVICE_UNAVAILABLE,
    ErrorCategory.TIMEOUT,
    ErrorCategory.RATE_LIMIT,
}

CACHE_MODEL_LABEL = "cache"
REASONING_NAMESPACE = "reasoning"


@dataclass
class _Request:
    message: str
    mode: Mode
    image: Optional[str]
    image_hash: Optional[str]
    classification: QueryClassification
    models: List[str] = field(default_factory=list)
    image_analysis: Optional[str] = None


@dataclass
class _Outcome:
    content: str
    cache_hit: bool


class Orchestrator:
    """
    Executes one of four strategies per request.

    Collaborators are injected; the orchestrator owns no global state.

    Args:
        settings: Full application settings
        classifier: Query classifier
        cache: Result cache with search and reasoning pools
        event_log: Analytics sink
        search / unified / reasoning / vision: Providers
        sleep: Awaitable sleep used for retry backoff (injectable for tests)
    """

    def __init__(
        self,
        settings: Settings,
        classifier: QueryClassifier,
        cache: ResultCache,
        event_log: EventLog,
        search: Provider,
        unified: Provider,
        reasoning: Provider,
        vision: Provider,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.classifier = classifier
        self.cache = cache
        self.event_log = event_log
        self.search = search
        self.unified = unified
        self.reasoning = reasoning
        self.vision = vision
        self._sleep = sleep

        # Strategy "search-only" is handled by ``_search_only`` and so on
        self._handlers: Dict[Strategy, Callable[[_Request], Awaitable[_Outcome]]] = {}
        missing = []
        for strategy in Strategy:
            handler = getattr(self, "_" + strategy.value.replace("-", "_"), None)
            if callable(handler):
                self._handlers[strategy] = handler
            else:
                missing.append(strategy.value)
        if missing:
            raise ConfigurationError("strategies", f"no handler for {', '.join(missing)}")

        providers = settings.providers
        self._timeouts: Dict[str, float] = {
            "search": providers.search_timeout_seconds,
            "unified": providers.unified_timeout_seconds,
            "reasoning": providers.reasoning_timeout_seconds,
            "vision": providers.vision_timeout_seconds,
        }

        self._strategy_override: Optional[Strategy] = None
        override = settings.features.strategy_override
        if override:
            try:
                self._strategy_override = Strategy(override)
            except ValueError as exc:
                allowed = ", ".join(strategy.value for strategy in Strategy)
                raise ConfigurationError(
                    "ROUTING_STRATEGY_OVERRIDE", f"{override!r} is not one of {allowed}"
                ) from exc

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def classify(self, message: str, has_image: bool = False) -> QueryClassification:
        """Classify and apply the routing feature flags."""
        classification = self.classifier.classify(message, has_image)

        if self._strategy_override is not None:
            return classification.model_copy(update={
                "strategy": self._strategy_override,
                "reasoning": f"Strategy forced by configuration: {self._strategy_override.value}",
            })
        if not self.settings.features.enable_query_classification:
            return classification.model_copy(update={
                "strategy": Strategy.UNIFIED_REASONING,
                "reasoning": "Query classification disabled, using unified reasoning",
            })
        if has_image and not message.strip():
            # Nothing to search for until the image is analyzed
            return classification.model_copy(update={
                "strategy": Strategy.UNIFIED_REASONING,
                "reasoning": "Image-only request, using the unified model on the image analysis",
            })
        return classification

    async def handle(self, message: str, mode, image: Optional[str] = None) -> OrchestrationResult:
        """
        Answer one chat request.

        Raises:
            ValidationError: invalid input, before any cache or provider use
            OrchestrationError: a provider failed; carries the classified error
        """
        mode = self._validate(message, mode, image)
        start = time.monotonic()

        classification = self.classify(message, has_image=image is not None)
        record_classification(
            classification.type.value,
            classification.strategy.value,
            classification.confidence,
        )
        request = _Request(
            message=message,
            mode=mode,
            image=image,
            image_hash=hash_image(image) if image else None,
            classification=classification,
        )
        strategy = classification.strategy
        handler = self._handlers[strategy]

        tracer = get_tracer()
        with tracer.start_as_current_span("orchestration"):
            set_span_attribute("routing.strategy", strategy.value)
            set_span_attribute("routing.query_type", classification.type.value)
            set_span_attribute("routing.confidence", classification.confidence)

            try:
                outcome = await handler(request)
            except asyncio.CancelledError:
                logger.info("orchestration_cancelled", strategy=strategy.value)
                raise
            except Exception as e:
                record_exception(e)
                elapsed = time.monotonic() - start
                self._record_failure(request, e, elapsed)
                raise OrchestrationError(classify_error(e)) from e

        elapsed = time.monotonic() - start
        response_time_ms = int(elapsed * 1000)
        model_used = CACHE_MODEL_LABEL if outcome.cache_hit else "+".join(request.models)

        record_orchestration(
            strategy.value,
            "cache_hit" if outcome.cache_hit else "success",
            elapsed,
        )
        self.event_log.record_search(
            query=message,
            mode=mode.value,
            has_image=image is not None,
            classification=classification.model_dump(mode="json"),
            response_time_ms=response_time_ms,
            success=True,
            cache_hit=outcome.cache_hit,
            model_used=model_used,
            response_length=len(outcome.content),
        )
        logger.info(
            "orchestration_completed",
            strategy=strategy.value,
            query_type=classification.type.value,
            confidence=classification.confidence,
            cache_hit=outcome.cache_hit,
            model_used=model_used,
            response_time_ms=response_time_ms,
        )

        return OrchestrationResult(
            content=outcome.content,
            classification=classification,
            cache_hit=outcome.cache_hit,
            model_used=model_used,
            image_analysis=request.image_analysis,
            response_time_ms=response_time_ms,
        )

    def _validate(self, message: str, mode, image: Optional[str]) -> Mode:
        if not isinstance(message, str):
            raise ValidationError("Message must be a string")
        if not message.strip() and not image:
            raise ValidationError("Message cannot be empty", details={"field": "message"})
        max_length = self.settings.security.max_message_length
        if len(message) > max_length:
            raise ValidationError(
                f"Message too long. Maximum length is {max_length} characters.",
                details={"field": "message", "max_length": max_length},
            )
        try:
            return Mode(mode)
        except ValueError as exc:
            raise ValidationError(
                f"Unknown mode: {mode!r}",
                details={"field": "mode", "allowed": [m.value for m in Mode]},
            ) from exc

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    async def _search_only(self, request: _Request) -> _Outcome:
        key = self.cache.key(request.message, request.mode.value, request.image_hash)
        cached = self._cache_get(SEARCH_POOL, key)
        if cached is not None:
            return _Outcome(cached, cache_hit=True)

        image_analysis = await self._analyze_image(request)
        content = await self._call(
            self.search,
            "search",
            self._search_input(request, image_analysis),
            prompts.search_system_prompt(request.mode, self.settings.app.language),
            request,
        )
        content = content or prompts.EMPTY_SEARCH_RESPONSE
        self._cache_set(SEARCH_POOL, key, content)
        return _Outcome(content, cache_hit=False)

    async def _reasoning_only(self, request: _Request) -> _Outcome:
        key = self.cache.key(request.message, REASONING_NAMESPACE, request.image_hash)
        cached = self._cache_get(REASONING_POOL, key)
        if cached is not None:
            return _Outcome(cached, cache_hit=True)

        image_analysis = await self._analyze_image(request)
        content = await self._call(
            self.reasoning,
            "reasoning",
            prompts.build_reasoning_input(request.message, image_analysis=image_analysis),
            prompts.reasoning_system_prompt(self.settings.app.language),
            request,
        )
        content = content or prompts.EMPTY_REASONING_RESPONSE
        self._cache_set(REASONING_POOL, key, content)
        return _Outcome(content, cache_hit=False)

    async def _search_then_reason(self, request: _Request) -> _Outcome:
        key = self.cache.key(request.message, Strategy.SEARCH_THEN_REASON.value, request.image_hash)
        cached = self._cache_get(REASONING_POOL, key)
        if cached is not None:
            return _Outcome(cached, cache_hit=True)

        image_analysis = await self._analyze_image(request)
        # Search results feed the reasoning step only; they are not cached on their own
        search_results = await self._call(
            self.search,
            "search",
            self._search_input(request, image_analysis),
            prompts.search_system_prompt(request.mode, self.settings.app.language),
            request,
        )
        content = await self._call(
            self.reasoning,
            "reasoning",
            prompts.build_reasoning_input(
                request.message,
                search_results=search_results or None,
                image_analysis=image_analysis,
            ),
            prompts.reasoning_system_prompt(self.settings.app.language),
            request,
        )
        content = content or prompts.EMPTY_REASONING_RESPONSE
        self._cache_set(REASONING_POOL, key, content)
        return _Outcome(content, cache_hit=False)

    async def _unified_reasoning(self, request: _Request) -> _Outcome:
        key = self.cache.key(request.message, request.mode.value, request.image_hash)
        cached = self._cache_get(SEARCH_POOL, key)
        if cached is not None:
            return _Outcome(cached, cache_hit=True)

        image_analysis = await self._analyze_image(request)
        content = await self._call(
            self.unified,
            "unified",
            self._search_input(request, image_analysis),
            prompts.search_system_prompt(request.mode, self.settings.app.language),
            request,
        )
        content = content or prompts.EMPTY_SEARCH_RESPONSE
        self._cache_set(SEARCH_POOL, key, content)
        return _Outcome(content, cache_hit=False)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _search_input(self, request: _Request, image_analysis: Optional[str]) -> str:
        return prompts.build_search_input(
            request.message,
            image_analysis=image_analysis,
            identifiers=extract_product_identifiers(request.message),
            alternatives=suggest_alternative_terms(request.message),
        )

    async def _analyze_image(self, request: _Request) -> Optional[str]:
        """Vision analysis, or the placeholder text when it fails."""
        if not (request.classification.requires_image and request.image):
            return None

        try:
            analysis = await self._call(self.vision, "vision", request.image, None, request, retry=False)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            record_vision_fallback()
            classified = classify_error(e)
            logger.warning(
                "image_analysis_failed",
                error=classified.technical_message,
                error_type=type(e).__name__,
                category=classified.category.value,
            )
            analysis = ""

        request.image_analysis = analysis or prompts.IMAGE_ANALYSIS_FALLBACK
        return request.image_analysis

    async def _call(
        self,
        provider: Provider,
        role: str,
        input: str,
        system_prompt: Optional[str],
        request: _Request,
        retry: bool = True,
    ) -> str:
        """
        Call a provider with its timeout and the retry policy.

        Only transient categories (service_unavailable, timeout, rate_limit)
        are retried, with exponential backoff.
        """
        timeout = self._timeouts[role]
        max_retries = self.settings.providers.max_retries if retry else 0
        backoff = self.settings.providers.retry_backoff_seconds
        if provider.model not in request.models:
            request.models.append(provider.model)

        attempt = 0
        while True:
            try:
                return await self._attempt(provider, role, input, system_prompt, timeout)
            except Exception as e:
                category = classify_error(e).category
                record_provider_error(role, category.value)
                if attempt >= max_retries or category not in RETRYABLE_CATEGORIES:
                    raise
                delay = backoff * (2 ** attempt)
                attempt += 1
                logger.warning(
                    "provider_call_retrying",
                    provider=role,
                    attempt=attempt,
                    max_retries=max_retries,
                    delay_seconds=delay,
                    category=category.value,
                )
                await self._sleep(delay)

    async def _attempt(
        self,
        provider: Provider,
        role: str,
        input: str,
        system_prompt: Optional[str],
        timeout: float,
    ) -> str:
        tracer = get_tracer()
        start = time.monotonic()
        with tracer.start_as_current_span(f"provider.{role}"):
            set_span_attribute("provider.name", role)
            set_span_attribute("provider.model", provider.model)
            try:
                return await asyncio.wait_for(
                    provider.call(input, system_prompt=system_prompt),
                    timeout=timeout,
                )
            except asyncio.TimeoutError as exc:
                logger.warning("provider_call_timed_out", provider=role, model=provider.model, timeout_seconds=timeout)
                # wait_for cancelled the call inside the breaker, which counts nothing
                breaker = getattr(provider, "breaker", None)
                if breaker is not None:
                    breaker.record_failure()
                raise ProviderTimeoutError(role, timeout) from exc
            except Exception as e:
                logger.warning(
                    "provider_call_failed",
                    provider=role,
                    model=provider.model,
                    error=classify_error(e).technical_message,
                    error_type=type(e).__name__,
                )
                raise
            finally:
                record_provider_call(role, time.monotonic() - start)

    def _cache_get(self, pool: str, key: str) -> Optional[str]:
        try:
            return self.cache.get(pool, key)
        except Exception as e:
            logger.warning(
                "cache_get_failed",
                pool=pool,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    def _cache_set(self, pool: str, key: str, value: str) -> None:
        try:
            self.cache.set(pool, key, value)
        except Exception as e:
            logger.warning(
                "cache_set_failed",
                pool=pool,
                error=str(e),
                error_type=type(e).__name__,
            )

    def _record_failure(self, request: _Request, error: Exception, elapsed: float) -> None:
        classified = classify_error(error)
        strategy = request.classification.strategy.value

        logger.error(
            "orchestration_failed",
            strategy=strategy,
            category=classified.category.value,
            http_status=classified.http_status,
            error=classified.technical_message,
            error_type=type(error).__name__,
            exc_info=True,
        )
        record_orchestration(strategy, "failure", elapsed)
        self.event_log.record_search(
            query=request.message,
            mode=request.mode.value,
            has_image=request.image is not None,
            classification=request.classification.model_dump(mode="json"),
            response_time_ms=int(elapsed * 1000),
            success=False,
            cache_hit=False,
            model_used="+".join(request.models) or "none",
            response_length=0,
        )
        self.event_log.record_error(
            classified,
            context=f"orchestration:{strategy}",
            error_type=type(error).__name__,
        )
