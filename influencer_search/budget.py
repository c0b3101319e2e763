"""Budgeted, breaker-protected profile scraping"""

import dataclasses
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from loguru import logger

from .circuit_breaker import BreakerRegistry
from .config import (
    DEFAULT_SCRAPING_MODE,
    HIGH_QUALITY_SCORE,
    RATE_LIMIT_BACKOFF,
    SCRAPING_MODE_TABLE,
)
from .exceptions import BreakerOpenError, InvalidSearchParamsError, RateLimitError
from .models import CandidateProfile, DataSource, ScrapedProfile, ScrapingConfig, SearchParams
from .rate_limiter import PlatformRateLimiters
from .retry import classify_error, is_retryable

SCRAPING_MODES: Dict[str, ScrapingConfig] = {
    mode: ScrapingConfig(mode, max_profiles, threshold, timeout, retries, parallel, fallback)
    for mode, (max_profiles, threshold, timeout, retries, parallel, fallback) in SCRAPING_MODE_TABLE.items()
}

# scrape_fn(urls, platform, platform_input) -> list of raw records or ScrapedProfile
ScrapeFn = Callable[[List[str], str, Dict[str, Any]], Any]


def estimate_followers(quality_score: int) -> int:
    """Deterministic follower estimate for placeholder profiles"""
    if quality_score > 80:
        return 100_000 + (quality_score - 80) * 20_000
    if quality_score > 60:
        return 50_000 + (quality_score - 60) * 2_500
    return 10_000 + quality_score * 600


def estimate_engagement(quality_score: int) -> float:
    """Deterministic engagement-rate estimate for placeholder profiles"""
    if quality_score > 80:
        return round(0.03 + (quality_score - 80) * 0.0025, 4)
    if quality_score > 60:
        return round(0.02 + (quality_score - 60) * 0.0015, 4)
    return round(0.01 + quality_score * 0.0003, 4)


@dataclass
class ResourceUsage:
    time_spent: float = 0.0  # seconds
    api_calls: int = 0
    success_rate: float = 0.0


@dataclass
class ScrapingResult:
    profiles: List[ScrapedProfile]
    total_found: int
    total_scraped: int
    quality_score: int
    resource_usage: ResourceUsage
    recommendations: List[str] = field(default_factory=list)
    failed_platforms: List[str] = field(default_factory=list)


class ScrapingBudgetManager:
    """
    Spends a fixed scraping budget on the highest-priority candidates.

    Candidates are grouped by platform and platforms are scraped one after
    another. Each batch goes through the platform's breaker with the mode's
    timeout and is retried in a bounded loop. When a batch cannot be scraped
    and the mode allows it, placeholder profiles tagged ESTIMATED are
    returned in its place.
    """

    def __init__(
        self,
        config: ScrapingConfig,
        registry: Optional[BreakerRegistry] = None,
        rate_limiters: Optional[PlatformRateLimiters] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.registry = registry or BreakerRegistry()
        self.rate_limiters = rate_limiters or PlatformRateLimiters()
        self.clock = clock
        self._api_calls = 0

    @staticmethod
    def group_by_platform(candidates: Sequence[CandidateProfile]) -> Dict[str, List[CandidateProfile]]:
        groups: Dict[str, List[CandidateProfile]] = {}
        for candidate in candidates:
            groups.setdefault(candidate.platform, []).append(candidate)
        for group in groups.values():
            group.sort(key=lambda c: c.priority_score, reverse=True)
        return groups

    def _platform_input(self, params: Optional[SearchParams], batch_size: int) -> Dict[str, Any]:
        platform_input: Dict[str, Any] = {"resultsLimit": batch_size}
        if params is not None:
            platform_input["niches"] = list(params.niches)
            if params.location:
                platform_input["location"] = params.location
        return platform_input

    def _tag(
        self,
        raw_results: Sequence[Any],
        batch: Sequence[CandidateProfile],
        platform: str,
    ) -> List[ScrapedProfile]:
        """Convert raw records and copy each originating candidate's scores onto them"""
        by_handle = {c.normalized_handle: c for c in batch}
        by_url = {c.url.rstrip("/").lower(): c for c in batch}
        profiles = []
        for raw in raw_results or []:
            profile = raw if isinstance(raw, ScrapedProfile) else ScrapedProfile.from_raw(raw, platform)
            origin = by_handle.get(profile.username.lower()) or by_url.get(profile.url.rstrip("/").lower())
            if origin is not None:
                profile.priority_score = origin.priority_score
                profile.quality_score = origin.quality_score
                profile.estimated_relevance = origin.estimated_relevance
                profile.provenance = origin.provenance
            profiles.append(profile)
        return profiles

    def placeholders(self, batch: Sequence[CandidateProfile]) -> List[ScrapedProfile]:
        """Synthetic stand-ins derived only from each candidate's own scores"""
        return [
            ScrapedProfile(
                username=c.normalized_handle,
                platform=c.platform,
                url=c.url,
                data_source=DataSource.ESTIMATED,
                followers=estimate_followers(c.quality_score),
                engagement_rate=estimate_engagement(c.quality_score),
                is_fallback=True,
                priority_score=c.priority_score,
                quality_score=c.quality_score,
                estimated_relevance=c.estimated_relevance,
                provenance=c.provenance,
            )
            for c in batch
        ]

    async def _scrape_platform(
        self,
        batch: Sequence[CandidateProfile],
        platform: str,
        scrape_fn: ScrapeFn,
        params: Optional[SearchParams],
    ) -> Optional[List[ScrapedProfile]]:
        """Scrape one platform batch. Returns None once every attempt has failed."""
        breaker = self.registry.scraping_breaker(platform)
        limiter = self.rate_limiters.for_platform(platform)
        urls = [c.url for c in batch]
        platform_input = self._platform_input(params, len(urls))
        attempts_left = self.config.retry_attempts

        while True:
            try:
                await limiter.acquire(max_wait=self.config.timeout)
            except RateLimitError as e:
                logger.warning(f"🚫 Skipping {platform} scraping: {e}")
                return None
            try:
                raw = await breaker.execute_with_timeout(
                    scrape_fn, self.config.timeout, urls, platform, platform_input
                )
            except BreakerOpenError as e:
                logger.warning(f"🚫 Skipping {platform} scraping: {e}")
                return None
            except Exception as e:
                self._api_calls += 1
                if isinstance(e, RateLimitError):
                    await limiter.backoff(e.retry_after or RATE_LIMIT_BACKOFF)
                if attempts_left <= 0 or not is_retryable(e):
                    logger.error(
                        f"❌ Error scraping {platform} profiles ({classify_error(e).value}): {e}"
                    )
                    return None
                logger.info(f"🔄 Retrying {platform} scraping ({attempts_left} attempts left)...")
                attempts_left -= 1
                continue

            self._api_calls += 1
            await limiter.recover()
            return self._tag(raw, batch, platform)

    async def execute(
        self,
        candidates: Sequence[CandidateProfile],
        scrape_fn: ScrapeFn,
        params: Optional[SearchParams] = None,
    ) -> ScrapingResult:
        """
        Scrape prioritized candidates within this mode's budget.

        Args:
            candidates: Candidates with priority scores already assigned
            scrape_fn: Async scraping collaborator, called once per platform batch
            params: The search being served (forwarded as platform input)

        Returns:
            ScrapingResult with profiles, counters and recommendations
        """
        start = self.clock()
        self._api_calls = 0
        cfg = self.config

        qualified = [c for c in candidates if c.priority_score >= cfg.priority_threshold]
        total_found = len(qualified)
        logger.info(
            f"🚀 Starting scraping in {cfg.mode} mode: "
            f"{min(total_found, cfg.max_profiles)}/{total_found} candidates within budget"
        )

        profiles: List[ScrapedProfile] = []
        failed_platforms: List[str] = []
        total_scraped = 0
        consumed = 0

        for platform, group in self.group_by_platform(qualified).items():
            remaining = cfg.max_profiles - consumed
            if remaining <= 0:
                break
            batch = group[:remaining]
            consumed += len(batch)

            logger.info(f"📱 Processing {len(batch)} {platform} profiles...")
            results = await self._scrape_platform(batch, platform, scrape_fn, params)

            if results is None:
                failed_platforms.append(platform)
                if cfg.fallback_enabled:
                    logger.warning(f"🔄 Using estimated placeholders for {len(batch)} {platform} profiles")
                    profiles.extend(self.placeholders(batch))
                continue

            profiles.extend(results)
            total_scraped += len(results)
            logger.success(f"✅ Successfully scraped {len(results)} {platform} profiles")

        denominator = min(total_found, cfg.max_profiles)
        usage = ResourceUsage(
            time_spent=self.clock() - start,
            api_calls=self._api_calls,
            success_rate=total_scraped / denominator if denominator else 0.0,
        )
        quality = round(sum(p.quality_score for p in profiles) / len(profiles)) if profiles else 0

        logger.info(
            f"🎯 Scraping complete: {total_scraped}/{total_found} profiles scraped | "
            f"quality {quality}% | success rate {usage.success_rate * 100:.1f}%"
        )

        return ScrapingResult(
            profiles=profiles,
            total_found=total_found,
            total_scraped=total_scraped,
            quality_score=quality,
            resource_usage=usage,
            recommendations=self.recommendations(profiles, total_scraped, usage),
            failed_platforms=failed_platforms,
        )

    def recommendations(
        self,
        profiles: Sequence[ScrapedProfile],
        total_scraped: int,
        usage: ResourceUsage,
    ) -> List[str]:
        recommendations = []
        if usage.success_rate < 0.5:
            recommendations.append("Low success rate - consider using comprehensive mode for better results")
        if total_scraped < 10:
            recommendations.append("Few profiles found - try broader search criteria or unlimited mode")
        if usage.time_spent > 120:
            recommendations.append("Long processing time - consider economy mode for faster results")
        high_quality = sum(1 for p in profiles if p.quality_score > HIGH_QUALITY_SCORE)
        if profiles and high_quality > len(profiles) * 0.7:
            recommendations.append("High-quality results - excellent profile selection")
        if self.config.mode == "economy" and usage.success_rate > 0.8:
            recommendations.append("Consider balanced mode for more comprehensive results")
        for platform, seconds in self.rate_limiters.blocked_platforms().items():
            recommendations.append(f"{platform} is rate limiting scraping - retry in about {seconds:.0f}s")
        return recommendations


def create_budget_manager(
    mode: str = DEFAULT_SCRAPING_MODE,
    registry: Optional[BreakerRegistry] = None,
    rate_limiters: Optional[PlatformRateLimiters] = None,
    **overrides,
) -> ScrapingBudgetManager:
    """
    Build a manager for a named mode, optionally overriding fields.

    Raises:
        InvalidSearchParamsError: If the mode is unknown
    """
    if mode not in SCRAPING_MODES:
        raise InvalidSearchParamsError(
            f"Unknown scraping mode '{mode}' (expected one of {', '.join(SCRAPING_MODES)})"
        )
    config = SCRAPING_MODES[mode]
    if overrides:
        config = dataclasses.replace(config, **overrides)
    return ScrapingBudgetManager(config, registry=registry, rate_limiters=rate_limiters)
