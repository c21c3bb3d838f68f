from typing import Optional, Union

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tonerweb.core.config import Settings, config_summary, load_settings, validate_settings
from tonerweb.core.errors import (
    AppError,
    ClassifiedError,
    ConfigurationError,
    OrchestrationError,
    classify_error,
)
from tonerweb.core.logging import configure_logging, get_logger
from tonerweb.core.middleware import RequestContextMiddleware, SecurityHeadersMiddleware
from tonerweb.core.rate_limit import RateLimitMiddleware
from tonerweb.core.tracing import (
    StatusCode,
    configure_tracing,
    instrument_fastapi,
    record_exception,
    set_span_status,
    shutdown_tracing,
)
from tonerweb.routes import analytics, chat, health, metrics
from tonerweb.services.container import ServiceContainer, build_services

logger = get_logger(__name__)


def _error_response(error: Union[Exception, ClassifiedError]) -> JSONResponse:
    classified = error if isinstance(error, ClassifiedError) else classify_error(error)
    headers = {}
    if classified.retry_after is not None:
        headers["Retry-After"] = str(classified.retry_after)
    return JSONResponse(
        status_code=classified.http_status,
        content=classified.to_response(),
        headers=headers,
    )


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[ServiceContainer] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Defaults to ``load_settings()`` (environment variables)
        services: Prebuilt service container; built from settings when None
    """
    if settings is None:
        settings = services.settings if services is not None else load_settings()

    configure_logging(
        log_level=settings.app.log_level,
        service_name=settings.app.service_name,
        json_output=settings.app.log_json,
    )

    problems = validate_settings(settings)
    if problems:
        for problem in problems:
            logger.error("config_invalid", problem=problem)
        raise ConfigurationError("settings", "; ".join(problems))

    configure_tracing(
        service_name=settings.app.service_name,
        otlp_endpoint=settings.app.otlp_endpoint,
        sampling_rate=settings.app.trace_sampling_rate,
    )

    if services is None:
        services = build_services(settings)

    app = FastAPI(
        title="TonerWeb AI Assistant API",
        description="Product question answering for printer supplies",
        version="1.0.0",
    )
    app.state.services = services

    # Last added runs first: CORS, security headers, request context, rate limiter
    app.add_middleware(RateLimitMiddleware, limiter=services.rate_limiter, path_prefix="/api/ai")
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    instrument_fastapi(app)

    @app.on_event("startup")
    async def startup_event():
        logger.info("app_startup_started", config=config_summary(settings))
        await services.start()
        logger.info("app_startup_completed")

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("app_shutdown_started")
        await services.shutdown()
        shutdown_tracing()
        logger.info("app_shutdown_completed")

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        logger.warning(
            "app_error",
            path=request.url.path,
            **exc.to_dict(),
        )
        return _error_response(exc)

    @app.exception_handler(OrchestrationError)
    async def orchestration_error_handler(request: Request, exc: OrchestrationError):
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        logger.warning(
            "request_validation_failed",
            path=request.url.path,
            error_count=len(exc.errors()),
        )
        return _error_response(exc)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        record_exception(exc)
        set_span_status(StatusCode.ERROR, type(exc).__name__)
        classified = classify_error(exc)
        logger.error(
            "unhandled_exception",
            error=classified.technical_message,
            error_type=type(exc).__name__,
            path=request.url.path,
            method=request.method,
            exc_info=True,
        )
        return _error_response(classified)

    app.include_router(chat.router, prefix="/api/ai", tags=["Chat"])
    app.include_router(health.router, prefix="/api/health", tags=["Health"])
    app.include_router(analytics.router, prefix="/api/analytics", tags=["Analytics"])
    app.include_router(metrics.router, prefix="/metrics", tags=["Metrics"])

    return app


app = create_app()
