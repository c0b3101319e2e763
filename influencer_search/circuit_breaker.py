"""Circuit breaker pattern implementation"""

import asyncio
import inspect
import time
from typing import Any, Callable, Dict, Optional, Set

from loguru import logger

from .config import BREAKER_PRESETS
from .exceptions import BreakerOpenError, SearchTimeoutError
from .models import BreakerConfig, BreakerStats, CircuitState

StateObserver = Callable[[CircuitState, Optional[BaseException]], None]


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class CircuitBreaker:
    """
    Circuit breaker pattern to prevent cascading failures.

    CLOSED counts failures inside a sliding window and opens at the threshold.
    OPEN rejects calls until reset_timeout has passed since the last failure,
    then lets exactly one probe through as HALF_OPEN. The probe alone decides
    whether the breaker closes again or re-opens.

    The failure window only decays while CLOSED, so a breaker cycling
    OPEN -> HALF_OPEN -> OPEN keeps its failure count.
    """

    def __init__(
        self,
        name: str = "default",
        config: Optional[BreakerConfig] = None,
        on_state_change: Optional[StateObserver] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize circuit breaker.

        Args:
            name: Logical service name, used in logs and rejections
            config: Thresholds (defaults from config.py)
            on_state_change: Observer called as (new_state, error) on every transition
            clock: Time source in seconds, injectable for tests
        """
        self.name = name
        self.config = config or BreakerConfig()
        self.on_state_change = on_state_change
        self.clock = clock

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.total_requests = 0
        self.rejected_requests = 0

        self._probe_in_flight = False
        self._orphaned: Set[asyncio.Future] = set()
        self.lock = asyncio.Lock()

        logger.debug(
            f"Circuit breaker '{name}' initialized: "
            f"threshold={self.config.failure_threshold}, "
            f"reset={self.config.reset_timeout}s, window={self.config.monitoring_period}s"
        )

    def _transition(self, new_state: CircuitState, error: Optional[BaseException] = None) -> None:
        if new_state == self.state:
            return
        self.state = new_state
        if self.on_state_change:
            self.on_state_change(new_state, error)

    async def _admit(self) -> bool:
        """Decide whether the next call may run. Returns False on rejection."""
        async with self.lock:
            self.total_requests += 1
            now = self.clock()

            if self.state == CircuitState.CLOSED:
                if (
                    self.failure_count
                    and self.last_failure_time is not None
                    and now - self.last_failure_time > self.config.monitoring_period
                ):
                    logger.debug(
                        f"Circuit '{self.name}' failure window expired, "
                        f"clearing {self.failure_count} failures"
                    )
                    self.failure_count = 0
                return True

            if self.state == CircuitState.OPEN:
                if (
                    self.last_failure_time is None
                    or now - self.last_failure_time >= self.config.reset_timeout
                ):
                    logger.info(
                        f"🔄 Circuit '{self.name}' transitioning to HALF_OPEN "
                        f"(timeout expired)"
                    )
                    self._transition(CircuitState.HALF_OPEN)
                    self._probe_in_flight = True
                    return True
                self.rejected_requests += 1
                return False

            # HALF_OPEN: a single probe at a time
            if self._probe_in_flight:
                self.rejected_requests += 1
                return False
            self._probe_in_flight = True
            return True

    def retry_in(self) -> float:
        """Seconds until an OPEN breaker will allow a probe"""
        if self.state != CircuitState.OPEN or self.last_failure_time is None:
            return 0.0
        remaining = self.config.reset_timeout - (self.clock() - self.last_failure_time)
        return max(0.0, remaining)

    async def _on_success(self) -> None:
        async with self.lock:
            self.success_count += 1
            if self.state == CircuitState.HALF_OPEN:
                self._probe_in_flight = False
                self.failure_count = 0
                logger.success(f"✅ Circuit '{self.name}' recovered, closing")
                self._transition(CircuitState.CLOSED)

    async def _on_failure(self, error: BaseException) -> None:
        async with self.lock:
            self.failure_count += 1
            self.last_failure_time = self.clock()

            if self.state == CircuitState.HALF_OPEN:
                self._probe_in_flight = False
                logger.error(f"❌ Circuit '{self.name}' probe failed, re-opening: {error}")
                self._transition(CircuitState.OPEN, error)
            elif self.failure_count >= self.config.failure_threshold:
                if self.state == CircuitState.CLOSED:
                    logger.error(
                        f"🔴 Circuit '{self.name}' OPENING after {self.failure_count} failures"
                    )
                    self._transition(CircuitState.OPEN, error)
            else:
                logger.warning(
                    f"⚠️ Circuit '{self.name}' failure "
                    f"{self.failure_count}/{self.config.failure_threshold}: {error}"
                )

    def _abandon_probe(self, error: BaseException) -> None:
        """Re-open after a cancelled probe so the next cooldown can probe again"""
        if self.state != CircuitState.HALF_OPEN or not self._probe_in_flight:
            return
        self._probe_in_flight = False
        self.last_failure_time = self.clock()
        logger.warning(f"⚠️ Circuit '{self.name}' probe cancelled, re-opening")
        self._transition(CircuitState.OPEN, error)

    async def execute(self, func: Callable, *args, fallback: Optional[Callable] = None, **kwargs):
        """
        Execute func with circuit breaker protection.

        Args:
            func: Async callable to protect
            fallback: Optional zero-argument callable (sync or async) used instead
                of the operation when the call is rejected or fails

        Raises:
            BreakerOpenError: If the breaker rejects the call and no fallback is given
            Exception: Whatever func raised, when no fallback is given
        """
        if not await self._admit():
            if fallback is not None:
                logger.debug(f"Circuit '{self.name}' is open, serving fallback")
                return await _resolve(fallback())
            raise BreakerOpenError(self.name, self.retry_in(), self.state.name)

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            await self._on_failure(e)
            if fallback is not None:
                return await _resolve(fallback())
            raise
        except BaseException as e:
            self._abandon_probe(e)
            raise

        await self._on_success()
        return result

    async def execute_with_timeout(
        self,
        func: Callable,
        timeout: float,
        *args,
        fallback: Optional[Callable] = None,
        **kwargs,
    ):
        """
        Like execute(), but a call that outlives `timeout` seconds counts as a failure.

        The timed-out operation is not cancelled. It keeps running in the
        background and its eventual outcome is discarded.
        """
        return await self.execute(self._race, func, timeout, *args, fallback=fallback, **kwargs)

    async def _race(self, func: Callable, timeout: float, *args, **kwargs):
        task = asyncio.ensure_future(func(*args, **kwargs))
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if task in done:
            return task.result()

        # Left running on purpose: only the wait is abandoned
        self._orphaned.add(task)
        task.add_done_callback(self._discard_orphan)
        logger.warning(
            f"⏱️ Circuit '{self.name}' call exceeded {timeout:.1f}s, "
            f"operation still running in background ({len(self._orphaned)} orphaned)"
        )
        raise SearchTimeoutError(
            f"'{self.name}' did not respond within {timeout:.1f}s", timeout=timeout
        )

    def _discard_orphan(self, task: asyncio.Future) -> None:
        self._orphaned.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Orphaned '{self.name}' call finished with error: {task.exception()}")

    @property
    def orphaned_calls(self) -> int:
        """Timed-out operations still running in the background"""
        return len(self._orphaned)

    def stats(self) -> BreakerStats:
        return BreakerStats(
            name=self.name,
            state=self.state,
            failure_count=self.failure_count,
            success_count=self.success_count,
            last_failure_time=self.last_failure_time,
            total_requests=self.total_requests,
            rejected_requests=self.rejected_requests,
            config=self.config,
        )

    def reset(self) -> None:
        """Manually close the breaker and clear its failure history"""
        self.failure_count = 0
        self.last_failure_time = None
        self._probe_in_flight = False
        self._transition(CircuitState.CLOSED)
        logger.info(f"Circuit '{self.name}' manually reset")

    def force_open(self) -> None:
        """Open the breaker for maintenance; it probes again after reset_timeout"""
        self.last_failure_time = self.clock()
        self._probe_in_flight = False
        self._transition(CircuitState.OPEN)
        logger.warning(f"Circuit '{self.name}' forced OPEN")


class BreakerRegistry:
    """
    Named breakers shared by every call site in the process.

    Construct once at startup and pass it to whatever needs a breaker.
    """

    SEARCH_API = "search-api"
    WEB_SEARCH = "web-search"
    SCRAPING = "scraping-actor"
    VERIFICATION = "verification-api"

    def __init__(
        self,
        presets: Optional[Dict[str, BreakerConfig]] = None,
        clock: Callable[[], float] = time.time,
    ):
        if presets is None:
            presets = {
                name: BreakerConfig(threshold, reset, window)
                for name, (threshold, reset, window) in BREAKER_PRESETS.items()
            }
        self.presets = presets
        self.clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}

    def _preset_for(self, name: str) -> BreakerConfig:
        # "scraping-actor:instagram" uses the "scraping-actor" preset
        base = name.split(":", 1)[0]
        return self.presets.get(base, BreakerConfig())

    def _log_transition(self, name: str) -> StateObserver:
        def observer(state: CircuitState, error: Optional[BaseException]) -> None:
            logger.debug(f"Circuit '{name}' -> {state.value}" + (f" ({error})" if error else ""))

        return observer

    def get_breaker(self, name: str, config: Optional[BreakerConfig] = None) -> CircuitBreaker:
        """Return the breaker for `name`, creating it on first use"""
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(
                name=name,
                config=config or self._preset_for(name),
                on_state_change=self._log_transition(name),
                clock=self.clock,
            )
            self._breakers[name] = breaker
        return breaker

    def search_api_breaker(self) -> CircuitBreaker:
        return self.get_breaker(self.SEARCH_API)

    def web_search_breaker(self, provider: Optional[str] = None) -> CircuitBreaker:
        return self.get_breaker(f"{self.WEB_SEARCH}:{provider}" if provider else self.WEB_SEARCH)

    def scraping_breaker(self, platform: Optional[str] = None) -> CircuitBreaker:
        return self.get_breaker(f"{self.SCRAPING}:{platform}" if platform else self.SCRAPING)

    def verification_breaker(self) -> CircuitBreaker:
        return self.get_breaker(self.VERIFICATION)

    def get_all_stats(self) -> Dict[str, BreakerStats]:
        return {name: breaker.stats() for name, breaker in self._breakers.items()}

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()
        logger.info(f"🔄 Reset {len(self._breakers)} circuit breakers")
