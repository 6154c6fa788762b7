"""
Unit tests for the engine circuit breaker.
"""
import pytest

from mrp_assistant.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError, CircuitState


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


async def succeed():
    return "success"


async def fail():
    raise ConnectionError("upstream down")


def _breaker(clock, **kwargs):
    options = {
        "failure_threshold": 0.5,
        "time_window_seconds": 60,
        "open_duration_seconds": 30,
        "min_requests_for_threshold": 4,
        "half_open_max_trials": 2,
        "half_open_successes_to_close": 2,
        "clock": clock,
    }
    options.update(kwargs)
    return CircuitBreaker("test", **options)


async def _fail_times(breaker, count):
    for _ in range(count):
        with pytest.raises(ConnectionError):
            await breaker.call_async(fail)


@pytest.mark.asyncio
async def test_closed_state_passes_calls_through():
    """In the closed state calls run normally."""
    breaker = _breaker(FakeClock())

    assert await breaker.call_async(succeed) == "success"
    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_stays_closed_below_minimum_requests():
    """The failure ratio is not evaluated until enough calls were seen."""
    breaker = _breaker(FakeClock())

    await _fail_times(breaker, 3)

    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_opens_at_failure_threshold():
    """Reaching the failure ratio opens the circuit and rejects calls."""
    breaker = _breaker(FakeClock())
    await breaker.call_async(succeed)
    await breaker.call_async(succeed)

    await _fail_times(breaker, 2)

    assert breaker.state == CircuitState.OPEN
    with pytest.raises(CircuitBreakerOpenError):
        await breaker.call_async(succeed)


@pytest.mark.asyncio
async def test_old_results_leave_the_window():
    """Calls older than the time window no longer count."""
    clock = FakeClock()
    breaker = _breaker(clock)
    await _fail_times(breaker, 3)

    clock.advance(61)
    await breaker.call_async(succeed)

    metrics = breaker.get_metrics()
    assert metrics["recent_requests"] == 1
    assert metrics["recent_failures"] == 0
    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_half_open_after_open_duration_then_closes():
    """After the open period, successful trial calls close the circuit."""
    clock = FakeClock()
    breaker = _breaker(clock)
    await _fail_times(breaker, 4)
    assert breaker.state == CircuitState.OPEN

    clock.advance(30)
    assert breaker.state == CircuitState.HALF_OPEN

    await breaker.call_async(succeed)
    assert breaker.state == CircuitState.HALF_OPEN
    await breaker.call_async(succeed)
    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_failed_trial_reopens():
    """A failure while half-open reopens the circuit."""
    clock = FakeClock()
    breaker = _breaker(clock)
    await _fail_times(breaker, 4)
    clock.advance(30)

    await _fail_times(breaker, 1)

    assert breaker.state == CircuitState.OPEN
    assert breaker.get_metrics()["opened_at"] == clock.now


def test_get_metrics_when_idle():
    """Metrics are well-defined before any call."""
    metrics = _breaker(FakeClock()).get_metrics()

    assert metrics["state"] == "closed"
    assert metrics["error_rate"] == 0.0
    assert metrics["opened_at"] is None
