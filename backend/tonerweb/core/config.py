"""
Application configuration loaded from environment variables.

All tunables (cache TTLs, classifier weights, provider timeouts, rate limits,
feature flags) are read once at startup into a typed ``Settings`` object that
is passed to the services that need it. Defaults match the values the
assistant has been tuned with in production.

Environment variables are grouped by concern:
- App:        ENVIRONMENT, LOG_LEVEL, LOG_JSON, ASSISTANT_LANGUAGE
- Cache:      CACHE_SEARCH_TTL, CACHE_REASONING_TTL, CACHE_MAX_KEYS, ...
- Classifier: QUERY_KEYWORD_SCORE, QUERY_PATTERN_SCORE, SIMPLE_QUERY_MAX_WORDS, ...
- Providers:  OPENROUTER_API_KEY, GEMINI_API_KEY, *_MODEL, *_TIMEOUT_SECONDS, ...
- Security:   RATE_LIMIT_WINDOW, RATE_LIMIT_MAX_REQUESTS, MAX_MESSAGE_LENGTH, ...
- Features:   ENABLE_CACHING, ENABLE_ANALYTICS, ENABLE_QUERY_CLASSIFICATION, ...
"""
import os
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from tonerweb.core.errors import ConfigurationError

# "hash:" plus a sha256 hex digest, the form oversized cache keys collapse to
HASHED_CACHE_KEY_LENGTH = len("hash:") + 64


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(name, f"expected an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(name, f"expected a number, got {raw!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class AppSettings(BaseModel):
    environment: str = "development"
    log_level: str = "INFO"
    log_json: bool = True
    language: str = "no"
    service_name: str = "tonerweb_assistant"
    otlp_endpoint: Optional[str] = None
    trace_sampling_rate: float = 1.0


class CacheSettings(BaseModel):
    """TTL values are in seconds. Search results go stale faster than reasoning."""

    search_ttl: int = 900
    reasoning_ttl: int = 3600
    max_keys: int = 500
    check_period: int = 300
    max_key_length: int = 250
    max_query_length: int = 200


class ClassifierSettings(BaseModel):
    keyword_score: int = 2
    pattern_score: int = 3
    simple_query_max_words: int = 5
    complex_query_min_words: int = 15
    # Hand-picked approximation of the best attainable score, see query_classification.
    max_score: float = 25.0


class ProviderSettings(BaseModel):
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_api_key: Optional[str] = None
    openrouter_referrer: str = "https://tonerweb.no"
    openrouter_title: str = "TonerWeb AI Assistant"

    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_api_key: Optional[str] = None

    search_model: str = "perplexity/sonar-pro"
    unified_model: str = "perplexity/sonar-reasoning-pro"
    reasoning_model: str = "anthropic/claude-3.5-sonnet"
    vision_model: str = "gemini-2.5-flash"

    search_timeout_seconds: float = 30.0
    unified_timeout_seconds: float = 45.0
    reasoning_timeout_seconds: float = 30.0
    vision_timeout_seconds: float = 20.0

    max_retries: int = 0
    retry_backoff_seconds: float = 0.5

    temperature: float = 0.2
    max_tokens: int = 2000
    unified_max_tokens: int = 4000


class SecuritySettings(BaseModel):
    rate_limit_window_seconds: int = 900
    rate_limit_max_requests: int = 100
    max_message_length: int = 10000
    max_image_size: int = 10 * 1024 * 1024
    allowed_image_types: List[str] = Field(
        default_factory=lambda: ["image/jpeg", "image/png", "image/webp"]
    )


class FeatureFlags(BaseModel):
    enable_caching: bool = True
    enable_analytics: bool = True
    enable_query_classification: bool = True
    # One of the Strategy values; forces every request onto that strategy.
    strategy_override: Optional[str] = None


class AnalyticsSettings(BaseModel):
    max_events: int = 1000


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    classifier: ClassifierSettings = Field(default_factory=ClassifierSettings)
    providers: ProviderSettings = Field(default_factory=ProviderSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    features: FeatureFlags = Field(default_factory=FeatureFlags)
    analytics: AnalyticsSettings = Field(default_factory=AnalyticsSettings)


def load_settings() -> Settings:
    """Build settings from the current process environment."""
    environment = _env_str("ENVIRONMENT", "development")
    rate_limit_max = _env_int("RATE_LIMIT_MAX_REQUESTS", 100)
    if environment == "production" and os.getenv("RATE_LIMIT_MAX_REQUESTS") is None:
        rate_limit_max = 50

    settings = Settings(
        app=AppSettings(
            environment=environment,
            log_level=_env_str("LOG_LEVEL", "INFO"),
            log_json=_env_bool("LOG_JSON", True),
            language=_env_str("ASSISTANT_LANGUAGE", "no"),
            service_name=_env_str("OTEL_SERVICE_NAME", "tonerweb_assistant"),
            otlp_endpoint=_env_str("OTEL_EXPORTER_OTLP_ENDPOINT"),
            trace_sampling_rate=_env_float("OTEL_TRACES_SAMPLER_ARG", 1.0),
        ),
        cache=CacheSettings(
            search_ttl=_env_int("CACHE_SEARCH_TTL", 900),
            reasoning_ttl=_env_int("CACHE_REASONING_TTL", 3600),
            max_keys=_env_int("CACHE_MAX_KEYS", 500),
            check_period=_env_int("CACHE_CHECK_PERIOD", 300),
            max_key_length=_env_int("CACHE_MAX_KEY_LENGTH", 250),
            max_query_length=_env_int("CACHE_MAX_QUERY_LENGTH", 200),
        ),
        classifier=ClassifierSettings(
            keyword_score=_env_int("QUERY_KEYWORD_SCORE", 2),
            pattern_score=_env_int("QUERY_PATTERN_SCORE", 3),
            simple_query_max_words=_env_int("SIMPLE_QUERY_MAX_WORDS", 5),
            complex_query_min_words=_env_int("COMPLEX_QUERY_MIN_WORDS", 15),
            max_score=_env_float("QUERY_MAX_SCORE", 25.0),
        ),
        providers=ProviderSettings(
            openrouter_base_url=_env_str("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1"),
            openrouter_api_key=_env_str("OPENROUTER_API_KEY"),
            openrouter_referrer=_env_str("OPENROUTER_REFERRER", "https://tonerweb.no"),
            openrouter_title=_env_str("OPENROUTER_TITLE", "TonerWeb AI Assistant"),
            gemini_base_url=_env_str(
                "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"
            ),
            gemini_api_key=_env_str("GEMINI_API_KEY"),
            search_model=_env_str("SEARCH_MODEL", "perplexity/sonar-pro"),
            unified_model=_env_str("UNIFIED_MODEL", "perplexity/sonar-reasoning-pro"),
            reasoning_model=_env_str("REASONING_MODEL", "anthropic/claude-3.5-sonnet"),
            vision_model=_env_str("GEMINI_MODEL", "gemini-2.5-flash"),
            search_timeout_seconds=_env_float("SEARCH_TIMEOUT_SECONDS", 30.0),
            unified_timeout_seconds=_env_float("UNIFIED_TIMEOUT_SECONDS", 45.0),
            reasoning_timeout_seconds=_env_float("REASONING_TIMEOUT_SECONDS", 30.0),
            vision_timeout_seconds=_env_float("VISION_TIMEOUT_SECONDS", 20.0),
            max_retries=_env_int("PROVIDER_MAX_RETRIES", 0),
            retry_backoff_seconds=_env_float("PROVIDER_RETRY_BACKOFF_SECONDS", 0.5),
            temperature=_env_float("DEFAULT_TEMPERATURE", 0.2),
            max_tokens=_env_int("DEFAULT_MAX_TOKENS", 2000),
            unified_max_tokens=_env_int("UNIFIED_MAX_TOKENS", 4000),
        ),
        security=SecuritySettings(
            rate_limit_window_seconds=_env_int("RATE_LIMIT_WINDOW", 900),
            rate_limit_max_requests=rate_limit_max,
            max_message_length=_env_int("MAX_MESSAGE_LENGTH", 10000),
            max_image_size=_env_int("MAX_IMAGE_SIZE", 10 * 1024 * 1024),
            allowed_image_types=_env_list(
                "ALLOWED_IMAGE_TYPES", ["image/jpeg", "image/png", "image/webp"]
            ),
        ),
        features=FeatureFlags(
            enable_caching=_env_bool("ENABLE_CACHING", True),
            enable_analytics=_env_bool("ENABLE_ANALYTICS", True),
            enable_query_classification=_env_bool("ENABLE_QUERY_CLASSIFICATION", True),
            strategy_override=_env_str("ROUTING_STRATEGY_OVERRIDE"),
        ),
        analytics=AnalyticsSettings(
            max_events=_env_int("ANALYTICS_MAX_EVENTS", 1000),
        ),
    )
    return settings


def validate_settings(settings: Settings) -> List[str]:
    """
    Check settings for values the service cannot run with.

    Returns:
        List of human-readable problems (empty when the settings are usable).
        Missing provider keys are not problems: the affected provider reports
        an authentication error per request instead.
    """
    problems: List[str] = []

    if not 0.0 <= settings.providers.temperature <= 2.0:
        problems.append(f"DEFAULT_TEMPERATURE out of range: {settings.providers.temperature}")
    if settings.cache.search_ttl <= 0 or settings.cache.reasoning_ttl <= 0:
        problems.append("Cache TTLs must be positive")
    if settings.cache.max_keys <= 0:
        problems.append(f"CACHE_MAX_KEYS must be positive: {settings.cache.max_keys}")
    if settings.cache.max_key_length < HASHED_CACHE_KEY_LENGTH:
        problems.append(
            f"CACHE_MAX_KEY_LENGTH too small to hold a hashed key: {settings.cache.max_key_length}"
        )
    if settings.classifier.max_score <= 0:
        problems.append("QUERY_MAX_SCORE must be positive")
    if settings.providers.max_retries < 0:
        problems.append("PROVIDER_MAX_RETRIES cannot be negative")
    if settings.security.rate_limit_max_requests <= 0:
        problems.append("RATE_LIMIT_MAX_REQUESTS must be positive")

    return problems


def config_summary(settings: Settings) -> Dict[str, Any]:
    """Summary safe for logging: flags and limits, never secrets."""
    return {
        "environment": settings.app.environment,
        "language": settings.app.language,
        "features": settings.features.model_dump(),
        "providers": {
            "openrouter": bool(settings.providers.openrouter_api_key),
            "gemini": bool(settings.providers.gemini_api_key),
        },
        "cache": {
            "search_ttl": settings.cache.search_ttl,
            "reasoning_ttl": settings.cache.reasoning_ttl,
            "max_keys": settings.cache.max_keys,
        },
        "rate_limit": {
            "window_seconds": settings.security.rate_limit_window_seconds,
            "max_requests": settings.security.rate_limit_max_requests,
        },
    }
