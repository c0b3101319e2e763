import pytest

from influencer_search.exceptions import AuthError, NetworkError
from influencer_search.fallback import NO_RESULTS_MESSAGE, FallbackChain, FallbackStrategy
from influencer_search.models import AttemptOutcome, DataSource, QualityTier, ScrapedProfile


def a_profile(name: str) -> ScrapedProfile:
    return ScrapedProfile(username=name, platform="instagram", url="", data_source=DataSource.VETTED)


def strategy(name, tier, results=None, error=None, calls=None):
    async def run(query):
        if calls is not None:
            calls.append(name)
        if error is not None:
            raise error
        return results or []

    return FallbackStrategy(name=name, quality_tier=tier, message=f"{name} message", run=run)


@pytest.mark.asyncio
async def test_first_non_empty_strategy_wins_and_earlier_ones_become_warnings():
    calls = []
    chain = FallbackChain(
        [
            strategy("A", QualityTier.HIGH, calls=calls),
            strategy("B", QualityTier.MEDIUM, results=[a_profile("b1")], calls=calls),
            strategy("C", QualityTier.LOW, results=[a_profile("c1")], calls=calls),
        ],
        initial_backoff=0,
    )

    result = await chain.execute({"q": "x"})

    assert result.success is True
    assert result.strategy == "B"
    assert result.quality_tier is QualityTier.MEDIUM
    assert [p.username for p in result.profiles] == ["b1"]
    assert result.message == "B message"
    assert any("A" in w for w in result.warnings)
    assert calls == ["A", "B"], "Later strategies must not run"
    assert [a.outcome for a in result.attempts] == [AttemptOutcome.EMPTY, AttemptOutcome.SUCCESS]


@pytest.mark.asyncio
async def test_errors_are_retried_then_reported_with_friendly_message():
    calls = []
    chain = FallbackChain(
        [
            strategy("A", QualityTier.HIGH, error=NetworkError("socket reset"), calls=calls),
            strategy("B", QualityTier.LOW, results=[a_profile("b1")]),
        ],
        max_retries=2,
        initial_backoff=0,
    )

    result = await chain.execute(None)

    assert calls == ["A", "A", "A"]
    assert result.strategy == "B"
    assert result.warnings[0].startswith("A failed:")
    assert "socket reset" not in result.warnings[0]


@pytest.mark.asyncio
async def test_non_retryable_errors_move_on_immediately():
    calls = []
    chain = FallbackChain(
        [strategy("A", QualityTier.HIGH, error=AuthError("bad key"), calls=calls)],
        initial_backoff=0,
    )
    await chain.execute(None)
    assert calls == ["A"]


@pytest.mark.asyncio
async def test_total_failure_is_a_structured_result():
    chain = FallbackChain(
        [
            strategy("A", QualityTier.HIGH, error=NetworkError("down")),
            strategy("B", QualityTier.MEDIUM),
        ],
        max_retries=0,
        initial_backoff=0,
    )

    result = await chain.execute(None)

    assert result.success is False
    assert result.profiles == []
    assert result.strategy is None
    assert result.quality_tier is None
    assert result.message == NO_RESULTS_MESSAGE
    assert len(result.warnings) == 2
    assert [a.order for a in result.attempts] == [1, 2]
