"""Ordered fallback strategies for when the primary pipeline comes back empty"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from loguru import logger

from .config import INITIAL_BACKOFF, MAX_RETRIES
from .models import AttemptOutcome, FallbackAttempt, QualityTier, ScrapedProfile
from .retry import classify_error, retry_with_backoff, user_friendly_message

NO_RESULTS_MESSAGE = (
    "We couldn't find any influencers matching your search right now. "
    "Try broadening your filters or searching again in a few minutes."
)


@dataclass
class FallbackStrategy:
    """One way of producing profiles, with the quality its results can claim"""

    name: str
    quality_tier: QualityTier
    message: str
    run: Callable[[Any], Awaitable[Sequence[ScrapedProfile]]]


@dataclass
class FallbackResult:
    success: bool
    profiles: List[ScrapedProfile]
    strategy: Optional[str]
    quality_tier: Optional[QualityTier]
    message: str
    warnings: List[str] = field(default_factory=list)
    attempts: List[FallbackAttempt] = field(default_factory=list)


class FallbackChain:
    """
    Runs strategies strictly in order and keeps the first non-empty result.

    Each strategy goes through retry_with_backoff. Errors and empty results
    become warnings on the final result; execute() never raises.
    """

    def __init__(
        self,
        strategies: Sequence[FallbackStrategy],
        max_retries: int = MAX_RETRIES,
        initial_backoff: float = INITIAL_BACKOFF,
    ):
        self.strategies = list(strategies)
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff

    async def execute(self, query: Any) -> FallbackResult:
        warnings: List[str] = []
        attempts: List[FallbackAttempt] = []

        for order, strategy in enumerate(self.strategies, start=1):
            logger.info(f"🔎 Trying strategy {order}/{len(self.strategies)}: {strategy.name}")
            try:
                profiles = await retry_with_backoff(
                    strategy.run,
                    query,
                    max_retries=self.max_retries,
                    initial_backoff=self.initial_backoff,
                )
            except Exception as e:
                error_type = classify_error(e)
                warning = f"{strategy.name} failed: {user_friendly_message(error_type)}"
                logger.warning(f"⚠️ Strategy '{strategy.name}' failed ({error_type.value}): {e}")
                warnings.append(warning)
                attempts.append(
                    FallbackAttempt(strategy.name, order, AttemptOutcome.ERROR, strategy.quality_tier, [warning])
                )
                continue

            if not profiles:
                warning = f"{strategy.name} returned no results"
                logger.info(f"∅ Strategy '{strategy.name}' returned no results")
                warnings.append(warning)
                attempts.append(
                    FallbackAttempt(strategy.name, order, AttemptOutcome.EMPTY, strategy.quality_tier, [warning])
                )
                continue

            attempts.append(FallbackAttempt(strategy.name, order, AttemptOutcome.SUCCESS, strategy.quality_tier))
            logger.success(
                f"✅ Strategy '{strategy.name}' returned {len(profiles)} profiles "
                f"({strategy.quality_tier.value} quality)"
            )
            return FallbackResult(
                success=True,
                profiles=list(profiles),
                strategy=strategy.name,
                quality_tier=strategy.quality_tier,
                message=strategy.message,
                warnings=warnings,
                attempts=attempts,
            )

        logger.error(f"❌ All {len(self.strategies)} search strategies came back empty")
        return FallbackResult(
            success=False,
            profiles=[],
            strategy=None,
            quality_tier=None,
            message=NO_RESULTS_MESSAGE,
            warnings=warnings,
            attempts=attempts,
        )
