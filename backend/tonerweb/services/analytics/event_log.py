"""
In-memory search analytics.

Append-only store of SearchEvent and ErrorEvent records, bounded to the most
recent ``max_events`` of each kind. The orchestrator writes to it on every
completed request; the analytics routes read summaries and recent events.

Recording is a side channel: ``record_search`` and ``record_error`` never
raise into the caller. A failure to record is logged and dropped.
"""
import time
from collections import Counter, deque
from threading import Lock
from typing import Any, Deque, Dict, List, Optional

from pydantic import BaseModel, Field

from tonerweb.core.errors import ClassifiedError
from tonerweb.core.logging import get_logger

logger = get_logger(__name__)


class SearchEvent(BaseModel):
    timestamp: float = Field(default_factory=time.time)
    query: str
    mode: str
    has_image: bool = False
    classification: Optional[Dict[str, Any]] = None
    response_time_ms: int = 0
    success: bool
    cache_hit: bool = False
    model_used: str
    response_length: int = 0


class ErrorEvent(BaseModel):
    timestamp: float = Field(default_factory=time.time)
    context: str
    category: str
    http_status: int
    error: str
    error_type: Optional[str] = None


class EventLog:
    """Bounded, lock-protected event store."""

    def __init__(self, max_events: int = 1000, enabled: bool = True):
        self.max_events = max_events
        self.enabled = enabled
        self._searches: Deque[SearchEvent] = deque(maxlen=max_events)
        self._errors: Deque[ErrorEvent] = deque(maxlen=max_events)
        self._lock = Lock()

    def record_search(self, **fields: Any) -> None:
        """Append a SearchEvent built from keyword fields."""
        if not self.enabled:
            return
        try:
            event = SearchEvent(**fields)
            with self._lock:
                self._searches.append(event)
            logger.debug(
                "search_event_recorded",
                success=event.success,
                cache_hit=event.cache_hit,
                model_used=event.model_used,
            )
        except Exception as e:
            logger.warning(
                "search_event_record_failed",
                error=str(e),
                error_type=type(e).__name__,
            )

    def record_error(
        self,
        classified: ClassifiedError,
        context: str,
        error_type: Optional[str] = None,
    ) -> None:
        """Append an ErrorEvent for an already-classified failure."""
        if not self.enabled:
            return
        try:
            event = ErrorEvent(
                context=context,
                category=classified.category.value,
                http_status=classified.http_status,
                error=classified.technical_message,
                error_type=error_type,
            )
            with self._lock:
                self._errors.append(event)
        except Exception as e:
            logger.warning(
                "error_event_record_failed",
                error=str(e),
                error_type=type(e).__name__,
            )

    def summary(self) -> Dict[str, Any]:
        """
        Aggregate view over the retained search events.

        Rates are percentages. With no events yet, only a message and
        ``total_searches=0`` are returned.
        """
        with self._lock:
            searches = list(self._searches)
            total_errors = len(self._errors)

        total = len(searches)
        if total == 0:
            return {
                "message": "No search events logged yet.",
                "total_searches": 0,
                "total_errors": total_errors,
            }

        successful = sum(1 for event in searches if event.success)
        cache_hits = sum(1 for event in searches if event.cache_hit)
        model_usage = Counter(event.model_used for event in searches)
        query_types = Counter(
            (event.classification or {}).get("type", "unknown") for event in searches
        )

        return {
            "total_searches": total,
            "successful_searches": successful,
            "failed_searches": total - successful,
            "success_rate": successful / total * 100,
            "cache_hits": cache_hits,
            "cache_hit_rate": cache_hits / total * 100,
            "average_response_time_ms": sum(event.response_time_ms for event in searches) / total,
            "model_usage": dict(model_usage),
            "query_types": dict(query_types),
            "total_errors": total_errors,
        }

    def recent_searches(self, limit: int = 20) -> List[SearchEvent]:
        """Newest first."""
        with self._lock:
            events = list(self._searches)
        if limit <= 0:
            return []
        return list(reversed(events[-limit:]))

    def recent_errors(self, limit: int = 20) -> List[ErrorEvent]:
        """Newest first."""
        with self._lock:
            events = list(self._errors)
        if limit <= 0:
            return []
        return list(reversed(events[-limit:]))

    def clear(self) -> None:
        with self._lock:
            self._searches.clear()
            self._errors.clear()
