"""
Health check endpoint.
"""
from fastapi import APIRouter, Depends

from tonerweb.routes.deps import get_services
from tonerweb.services.container import ServiceContainer

router = APIRouter()


@router.get("")
async def health_check(services: ServiceContainer = Depends(get_services)):
    """
    Service health.

    Returns:
        status: "ok" when every provider is configured and no breaker is
            open, otherwise "degraded"
        uptime_seconds: seconds since startup
        providers: provider name -> credentials configured
        circuit_breakers: breaker state per HTTP-backed provider
        environment: deployment environment
    """
    providers = services.provider_status()
    breakers = services.circuit_breakers()
    healthy = all(providers.values()) and all(
        breaker["state"] != "open" for breaker in breakers.values()
    )
    return {
        "status": "ok" if healthy else "degraded",
        "uptime_seconds": round(services.uptime_seconds, 1),
        "providers": providers,
        "circuit_breakers": breakers,
        "environment": services.settings.app.environment,
    }
