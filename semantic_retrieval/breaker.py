"""Per-protocol circuit breaker.

A protocol that keeps failing is skipped for a while so requests go straight
to the fallback protocol instead of waiting out its timeout.

States:
- closed: calls pass; failures inside the monitoring window are counted.
- open: calls are refused until reset_timeout has elapsed since the last failure.
- half_open: a trial call is let through; success closes the breaker, failure re-opens it.
"""
import time
from collections import deque
from enum import Enum
from typing import Callable, Deque, Optional

from semantic_retrieval.config import Settings


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Failure-counting breaker for one backend protocol.

    Args:
        failure_threshold: Failures within the window that open the breaker.
        reset_timeout: Seconds an open breaker waits before allowing a trial call.
        monitoring_window: Seconds a failure keeps counting toward the threshold.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        reset_timeout: float = 30.0,
        monitoring_window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = max(1, failure_threshold)
        self.reset_timeout = reset_timeout
        self.monitoring_window = monitoring_window
        self._clock = clock
        self._state = BreakerState.CLOSED
        self._failures: Deque[float] = deque()
        self._last_failure: Optional[float] = None

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], float] = time.monotonic) -> "CircuitBreaker":
        return cls(
            failure_threshold=settings.BREAKER_FAILURE_THRESHOLD,
            reset_timeout=settings.BREAKER_RESET_TIMEOUT_SECONDS,
            monitoring_window=settings.BREAKER_MONITORING_WINDOW_SECONDS,
            clock=clock,
        )

    @property
    def state(self) -> BreakerState:
        if self._state == BreakerState.OPEN and self._reset_elapsed():
            return BreakerState.HALF_OPEN
        return self._state

    def _reset_elapsed(self) -> bool:
        return self._last_failure is not None and self._clock() - self._last_failure >= self.reset_timeout

    def allow(self) -> bool:
        """Whether a call may be attempted now; moves an expired open breaker to half-open."""
        if self._state == BreakerState.OPEN:
            if not self._reset_elapsed():
                return False
            self._state = BreakerState.HALF_OPEN
        return True

    def record_success(self) -> None:
        self._state = BreakerState.CLOSED
        self._failures.clear()

    def record_failure(self) -> None:
        now = self._clock()
        self._last_failure = now
        self._failures.append(now)
        while self._failures and now - self._failures[0] > self.monitoring_window:
            self._failures.popleft()
        if self._state == BreakerState.HALF_OPEN or len(self._failures) >= self.failure_threshold:
            self._state = BreakerState.OPEN
