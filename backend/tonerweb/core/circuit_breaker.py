"""
Circuit breaker for upstream AI providers.

Each provider client owns one breaker. When the failure rate over the
sliding window crosses the threshold the breaker opens and calls fail fast
with ``CircuitBreakerOpenError`` (classified as service_unavailable). After
``open_duration_seconds`` a single probe call is let through; its outcome
closes or re-opens the breaker.

Only upstream failures count. Request validation errors and cancellations
say nothing about the provider's health and are not recorded.
"""
import time
from collections import deque
from enum import Enum
from threading import Lock
from typing import Any, Awaitable, Callable, Deque, Optional, Tuple

from tonerweb.core.errors import ErrorCategory, ServiceUnavailableError
from tonerweb.core.logging import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpenError(ServiceUnavailableError):
    """Raised instead of calling a provider whose breaker is open."""

    def __init__(self, name: str):
        super().__init__(name, "circuit breaker is open")
        self.breaker = name


class CircuitBreaker:
    """
    Failure-rate circuit breaker.

    Args:
        name: Provider name, used in logs and errors
        failure_threshold: Error rate (0..1) that opens the breaker
        time_window_seconds: Sliding window for the error rate
        open_duration_seconds: Time spent open before a probe is allowed
        min_requests_for_threshold: Calls needed in the window before the
            rate is trusted
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        name: str,
        failure_threshold: float = 0.5,
        time_window_seconds: float = 60.0,
        open_duration_seconds: float = 30.0,
        min_requests_for_threshold: int = 5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.time_window_seconds = time_window_seconds
        self.open_duration_seconds = open_duration_seconds
        self.min_requests_for_threshold = min_requests_for_threshold
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._lock = Lock()
        self._history: Deque[Tuple[float, bool]] = deque()
        self._opened_at: Optional[float] = None
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._refresh(self._clock())
            return self._state

    def _refresh(self, now: float) -> None:
        cutoff = now - self.time_window_seconds
        while self._history and self._history[0][0] < cutoff:
            self._history.popleft()

        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if now - self._opened_at >= self.open_duration_seconds:
                self._state = CircuitState.HALF_OPEN
                self._probe_in_flight = False
                logger.info("circuit_breaker_half_open", circuit_breaker=self.name)

    def _open(self, now: float, **fields: Any) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._probe_in_flight = False
        logger.warning("circuit_breaker_opened", circuit_breaker=self.name, **fields)

    def _acquire(self) -> None:
        with self._lock:
            self._refresh(self._clock())
            if self._state == CircuitState.OPEN:
                raise CircuitBreakerOpenError(self.name)
            if self._state == CircuitState.HALF_OPEN:
                if self._probe_in_flight:
                    raise CircuitBreakerOpenError(self.name)
                self._probe_in_flight = True

    def record_success(self) -> None:
        with self._lock:
            now = self._clock()
            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.CLOSED
                self._opened_at = None
                self._probe_in_flight = False
                self._history.clear()
                logger.info("circuit_breaker_closed", circuit_breaker=self.name)
                return
            self._history.append((now, True))

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            if self._state == CircuitState.HALF_OPEN:
                self._open(now, reason="probe_failed")
                return
            self._history.append((now, False))
            self._refresh(now)
            total = len(self._history)
            if total >= self.min_requests_for_threshold:
                failures = sum(1 for _, ok in self._history if not ok)
                error_rate = failures / total
                if error_rate >= self.failure_threshold:
                    self._open(now, error_rate=error_rate, failures=failures, total=total)

    def _release_probe(self) -> None:
        with self._lock:
            self._probe_in_flight = False

    async def call_async(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Await ``func(*args, **kwargs)`` under breaker protection.

        Raises:
            CircuitBreakerOpenError: if the breaker is open, or half-open with
                a probe already running
        """
        self._acquire()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            if getattr(e, "category", None) == ErrorCategory.VALIDATION:
                self._release_probe()
            else:
                self.record_failure()
            raise
        except BaseException:
            # Cancellation: no verdict on provider health.
            self._release_probe()
            raise
        self.record_success()
        return result

    def get_metrics(self) -> dict:
        with self._lock:
            self._refresh(self._clock())
            total = len(self._history)
            failures = sum(1 for _, ok in self._history if not ok)
            return {
                "name": self.name,
                "state": self._state.value,
                "recent_requests": total,
                "recent_failures": failures,
                "error_rate": failures / total if total else 0.0,
            }
