"""
Search analytics endpoints.

GET /api/analytics           summary and cache statistics
GET /api/analytics/searches  most recent search events
GET /api/analytics/errors    most recent error events
"""
from fastapi import APIRouter, Depends, Query

from tonerweb.routes.deps import get_services
from tonerweb.services.container import ServiceContainer

router = APIRouter()


@router.get("")
async def analytics_summary(services: ServiceContainer = Depends(get_services)):
    return {
        "summary": services.event_log.summary(),
        "cache_stats": services.cache.stats(),
    }


@router.get("/searches")
async def recent_searches(
    limit: int = Query(20, ge=1, le=1000, description="Number of events to return"),
    services: ServiceContainer = Depends(get_services),
):
    """Newest first."""
    events = services.event_log.recent_searches(limit)
    return {"searches": [event.model_dump() for event in events], "count": len(events)}


@router.get("/errors")
async def recent_errors(
    limit: int = Query(20, ge=1, le=1000, description="Number of events to return"),
    services: ServiceContainer = Depends(get_services),
):
    """Newest first."""
    events = services.event_log.recent_errors(limit)
    return {"errors": [event.model_dump() for event in events], "count": len(events)}
