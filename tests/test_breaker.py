from __future__ import annotations

from semantic_retrieval.breaker import BreakerState, CircuitBreaker
from semantic_retrieval.config import Settings


def _breaker(now: list[float]) -> CircuitBreaker:
    return CircuitBreaker(failure_threshold=3, reset_timeout=30.0, monitoring_window=60.0, clock=lambda: now[0])


def test_opens_after_threshold_failures() -> None:
    now = [0.0]
    breaker = _breaker(now)

    breaker.record_failure()
    breaker.record_failure()
    assert breaker.state == BreakerState.CLOSED
    assert breaker.allow() is True

    breaker.record_failure()
    assert breaker.state == BreakerState.OPEN
    assert breaker.allow() is False


def test_failures_outside_window_do_not_count() -> None:
    now = [0.0]
    breaker = _breaker(now)

    breaker.record_failure()
    breaker.record_failure()
    now[0] = 61.0
    breaker.record_failure()

    assert breaker.state == BreakerState.CLOSED


def test_half_open_trial_success_closes() -> None:
    now = [0.0]
    breaker = _breaker(now)
    for _ in range(3):
        breaker.record_failure()

    now[0] = 30.0
    assert breaker.state == BreakerState.HALF_OPEN
    assert breaker.allow() is True
    breaker.record_success()

    assert breaker.state == BreakerState.CLOSED
    breaker.record_failure()
    assert breaker.state == BreakerState.CLOSED


def test_half_open_trial_failure_reopens() -> None:
    now = [0.0]
    breaker = _breaker(now)
    for _ in range(3):
        breaker.record_failure()

    now[0] = 45.0
    assert breaker.allow() is True
    breaker.record_failure()

    assert breaker.state == BreakerState.OPEN
    now[0] = 60.0
    assert breaker.allow() is False


def test_from_settings_reads_breaker_knobs() -> None:
    settings = Settings(
        _env_file=None,
        BREAKER_FAILURE_THRESHOLD=5,
        BREAKER_RESET_TIMEOUT_SECONDS=10.0,
        BREAKER_MONITORING_WINDOW_SECONDS=20.0,
    )

    breaker = CircuitBreaker.from_settings(settings)

    assert breaker.failure_threshold == 5
    assert breaker.reset_timeout == 10.0
    assert breaker.monitoring_window == 20.0
