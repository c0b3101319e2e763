import pytest

from influencer_search.exceptions import RateLimitError
from influencer_search.rate_limiter import AdaptiveRateLimiter, PlatformRateLimiters


@pytest.mark.asyncio
async def test_backoff_halves_rate_and_recover_creeps_back():
    limiter = AdaptiveRateLimiter(rate=10.0, burst=5, platform="instagram")
    await limiter.backoff(0.0)
    assert limiter.current_rate == 5.0

    await limiter.recover()
    assert limiter.current_rate == pytest.approx(6.0)
    for _ in range(10):
        await limiter.recover()
    assert limiter.current_rate == 10.0, "Recovery never exceeds the base rate"


@pytest.mark.asyncio
async def test_block_longer_than_max_wait_raises_without_waiting():
    limiter = AdaptiveRateLimiter(rate=100.0, burst=5, platform="tiktok")
    await limiter.backoff(120.0)

    with pytest.raises(RateLimitError) as exc:
        await limiter.acquire(max_wait=1.0)
    assert exc.value.retry_after > 100
    assert "tiktok" in str(exc.value)


@pytest.mark.asyncio
async def test_shorter_retry_after_does_not_shorten_block():
    limiter = AdaptiveRateLimiter(rate=100.0, burst=5)
    await limiter.backoff(120.0)
    await limiter.backoff(1.0)
    assert limiter.remaining_block() > 100


@pytest.mark.asyncio
async def test_short_block_is_waited_out():
    limiter = AdaptiveRateLimiter(rate=100.0, burst=5)
    await limiter.backoff(0.01)
    await limiter.acquire(max_wait=1.0)
    assert limiter.remaining_block() == 0.0


@pytest.mark.asyncio
async def test_platform_limiters_are_independent():
    limiters = PlatformRateLimiters(rate=100.0, burst=5)
    assert limiters.for_platform("instagram") is limiters.for_platform("instagram")

    await limiters.for_platform("instagram").backoff(60.0)
    await limiters.for_platform("tiktok").acquire(max_wait=0.0)

    blocked = limiters.blocked_platforms()
    assert list(blocked) == ["instagram"]
    assert blocked["instagram"] > 50
