"""In-memory search analytics."""

from .event_log import ErrorEvent, EventLog, SearchEvent

__all__ = ["ErrorEvent", "EventLog", "SearchEvent"]
