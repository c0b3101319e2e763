import asyncio

import pytest

from influencer_search.circuit_breaker import BreakerRegistry, CircuitBreaker
from influencer_search.exceptions import BreakerOpenError, NetworkError, SearchTimeoutError
from influencer_search.models import BreakerConfig, CircuitState


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Dependency:
    """Counts invocations; fails while `failing` is set"""

    def __init__(self, failing: bool = True):
        self.failing = failing
        self.calls = 0

    async def __call__(self, value="ok"):
        self.calls += 1
        if self.failing:
            raise NetworkError("upstream down")
        return value


def make_breaker(threshold=3, reset=30.0, window=60.0, clock=None, observer=None):
    return CircuitBreaker(
        name="test",
        config=BreakerConfig(threshold, reset, window),
        on_state_change=observer,
        clock=clock or FakeClock(),
    )


@pytest.mark.asyncio
async def test_opens_after_threshold_and_rejects_without_invoking():
    breaker = make_breaker(threshold=3)
    dep = Dependency()

    for _ in range(3):
        with pytest.raises(NetworkError):
            await breaker.execute(dep)

    assert breaker.state == CircuitState.OPEN

    # N+1th call is rejected with a breaker signal, not the dependency's error
    with pytest.raises(BreakerOpenError) as exc:
        await breaker.execute(dep)
    assert dep.calls == 3, "Wrapped operation must not run while OPEN"
    assert exc.value.breaker_name == "test"
    assert breaker.stats().rejected_requests == 1


@pytest.mark.asyncio
async def test_open_rejection_serves_fallback():
    breaker = make_breaker(threshold=1)
    dep = Dependency()
    with pytest.raises(NetworkError):
        await breaker.execute(dep)

    result = await breaker.execute(dep, fallback=lambda: "from-fallback")
    assert result == "from-fallback"
    assert dep.calls == 1


@pytest.mark.asyncio
async def test_failure_with_fallback_returns_fallback_and_still_counts():
    breaker = make_breaker(threshold=5)
    dep = Dependency()

    async def fallback():
        return ["cached"]

    assert await breaker.execute(dep, fallback=fallback) == ["cached"]
    assert breaker.failure_count == 1


@pytest.mark.asyncio
async def test_rejected_before_reset_timeout_then_half_open_probe_closes():
    clock = FakeClock()
    transitions = []
    breaker = make_breaker(threshold=2, reset=30.0, clock=clock, observer=lambda s, e: transitions.append(s))
    dep = Dependency()

    for _ in range(2):
        with pytest.raises(NetworkError):
            await breaker.execute(dep)

    clock.advance(29.0)
    with pytest.raises(BreakerOpenError):
        await breaker.execute(dep)

    clock.advance(1.0)
    dep.failing = False
    assert await breaker.execute(dep, "probe") == "probe"
    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_count == 0
    assert transitions == [CircuitState.OPEN, CircuitState.HALF_OPEN, CircuitState.CLOSED]


@pytest.mark.asyncio
async def test_half_open_probe_failure_reopens_and_refreshes_failure_time():
    clock = FakeClock()
    breaker = make_breaker(threshold=1, reset=10.0, clock=clock)
    dep = Dependency()

    with pytest.raises(NetworkError):
        await breaker.execute(dep)
    opened_at = breaker.last_failure_time

    clock.advance(10.0)
    with pytest.raises(NetworkError):
        await breaker.execute(dep)

    assert breaker.state == CircuitState.OPEN
    assert breaker.last_failure_time > opened_at
    # A fresh cooldown starts from the failed probe
    clock.advance(5.0)
    with pytest.raises(BreakerOpenError):
        await breaker.execute(dep)


@pytest.mark.asyncio
async def test_half_open_allows_a_single_probe_in_flight():
    clock = FakeClock()
    breaker = make_breaker(threshold=1, reset=10.0, clock=clock)
    with pytest.raises(NetworkError):
        await breaker.execute(Dependency())
    clock.advance(10.0)

    release = asyncio.Event()

    async def slow_probe():
        await release.wait()
        return "done"

    probe = asyncio.ensure_future(breaker.execute(slow_probe))
    await asyncio.sleep(0)
    assert breaker.state == CircuitState.HALF_OPEN

    with pytest.raises(BreakerOpenError) as exc:
        await breaker.execute(Dependency(failing=False))
    assert exc.value.state == "HALF_OPEN"
    assert "is HALF_OPEN" in str(exc.value)

    release.set()
    assert await probe == "done"
    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_cancelled_probe_reopens_instead_of_sticking_half_open():
    clock = FakeClock()
    breaker = make_breaker(threshold=1, reset=10.0, clock=clock)
    with pytest.raises(NetworkError):
        await breaker.execute(Dependency())
    clock.advance(10.0)

    async def hangs():
        await asyncio.Event().wait()

    probe = asyncio.ensure_future(breaker.execute(hangs))
    await asyncio.sleep(0)
    assert breaker.state == CircuitState.HALF_OPEN

    probe.cancel()
    with pytest.raises(asyncio.CancelledError):
        await probe

    assert breaker.state == CircuitState.OPEN
    clock.advance(10.0)
    assert await breaker.execute(Dependency(failing=False)) == "ok"
    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_failure_at_clock_zero_still_times_out():
    clock = FakeClock(now=0.0)
    breaker = make_breaker(threshold=1, reset=10.0, clock=clock)
    with pytest.raises(NetworkError):
        await breaker.execute(Dependency())
    assert breaker.last_failure_time == 0.0

    clock.advance(5.0)
    with pytest.raises(BreakerOpenError):
        await breaker.execute(Dependency(failing=False))

    clock.advance(5.0)
    assert await breaker.execute(Dependency(failing=False)) == "ok"


@pytest.mark.asyncio
async def test_failure_window_resets_count_while_closed():
    clock = FakeClock()
    breaker = make_breaker(threshold=3, window=60.0, clock=clock)
    dep = Dependency()

    for _ in range(2):
        with pytest.raises(NetworkError):
            await breaker.execute(dep)

    clock.advance(61.0)
    with pytest.raises(NetworkError):
        await breaker.execute(dep)

    # Old failures aged out, so this is failure 1 of a new window
    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_count == 1


@pytest.mark.asyncio
async def test_timeout_counts_as_failure_and_leaves_task_running():
    breaker = make_breaker(threshold=1)
    finished = asyncio.Event()

    async def slow():
        await asyncio.sleep(0.05)
        finished.set()
        return "late"

    with pytest.raises(SearchTimeoutError):
        await breaker.execute_with_timeout(slow, 0.001)

    assert breaker.state == CircuitState.OPEN
    assert breaker.orphaned_calls == 1

    # The operation was not cancelled, it completes in the background
    await asyncio.wait_for(finished.wait(), timeout=1.0)
    await asyncio.sleep(0.01)
    assert breaker.orphaned_calls == 0


@pytest.mark.asyncio
async def test_execute_with_timeout_returns_fast_result():
    breaker = make_breaker()

    async def fast(x):
        return x * 2

    assert await breaker.execute_with_timeout(fast, 1.0, 21) == 42
    assert breaker.stats().success_count == 1


@pytest.mark.asyncio
async def test_force_open_and_reset():
    clock = FakeClock()
    breaker = make_breaker(clock=clock)
    breaker.force_open()
    with pytest.raises(BreakerOpenError):
        await breaker.execute(Dependency(failing=False))

    breaker.reset()
    assert breaker.state == CircuitState.CLOSED
    assert await breaker.execute(Dependency(failing=False)) == "ok"


def test_registry_returns_same_instance_per_name():
    registry = BreakerRegistry()
    assert registry.get_breaker("web-search:serply") is registry.get_breaker("web-search:serply")
    assert registry.get_breaker("a") is not registry.get_breaker("b")


def test_registry_presets_reflect_dependency_profiles():
    registry = BreakerRegistry()
    scraping = registry.scraping_breaker("instagram").config
    search = registry.search_api_breaker().config
    verification = registry.verification_breaker().config

    assert scraping == BreakerConfig(5, 60.0, 120.0)
    assert search == BreakerConfig(3, 30.0, 60.0)
    assert verification == BreakerConfig(3, 45.0, 90.0)
    assert registry.web_search_breaker().config.failure_threshold == 4
    # Scraping actors recover slowest
    assert scraping.reset_timeout > search.reset_timeout


def test_registry_explicit_config_wins_on_first_use():
    registry = BreakerRegistry()
    breaker = registry.get_breaker("custom", BreakerConfig(7, 1.0, 2.0))
    assert breaker.config.failure_threshold == 7
    # Later config is ignored, the existing breaker is shared
    assert registry.get_breaker("custom", BreakerConfig(1, 1.0, 1.0)) is breaker


@pytest.mark.asyncio
async def test_registry_stats_and_reset_all():
    registry = BreakerRegistry(presets={"flaky": BreakerConfig(1, 60.0, 60.0)})
    breaker = registry.get_breaker("flaky")
    with pytest.raises(NetworkError):
        await breaker.execute(Dependency())

    stats = registry.get_all_stats()
    assert stats["flaky"].state == CircuitState.OPEN
    assert stats["flaky"].total_requests == 1

    registry.reset_all()
    assert registry.get_all_stats()["flaky"].state == CircuitState.CLOSED
