"""Top-level search coordination: cache, discovery, budgeted scraping, fallbacks, ranking"""

import asyncio
import copy
import dataclasses
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from loguru import logger

from .budget import ScrapingBudgetManager, ScrapingResult, create_budget_manager
from .cache import ResultCache
from .circuit_breaker import BreakerRegistry
from .collaborators import ScrapingService, VerificationService, VettedDatasetStore, WebSearchProvider
from .config import (
    DEFAULT_SCRAPING_MODE,
    DISCOVERY_RESULTS_PER_QUERY,
    ESTIMATED_SCORE_PENALTY,
    INITIAL_BACKOFF,
    MAX_RETRIES,
    MAX_VERIFIED_PROFILES,
    VERIFICATION_CONFIDENCE_THRESHOLD,
    VERIFICATION_TIMEOUT,
    WEB_SEARCH_TIMEOUT,
)
from .exceptions import InvalidSearchParamsError
from .fallback import FallbackChain, FallbackResult, FallbackStrategy
from .models import (
    CandidateProfile,
    Category,
    DataSource,
    Decision,
    FeedbackRecord,
    QualityTier,
    RankedCandidate,
    ScrapedProfile,
    SearchParams,
    SearchResponse,
    SearchSummary,
    VettedFilters,
    detect_platform,
)
from .prioritizer import CandidatePrioritizer
from .quality import QualityScorer
from .rate_limiter import PlatformRateLimiters
from .retry import classify_error, user_friendly_message

PRIMARY = "multi_source_search"
CACHED = "cached_results"
DEGRADED = "single_source_search"
VETTED = "vetted_dataset"

PLATFORM_DOMAINS = {
    "instagram": "instagram.com",
    "tiktok": "tiktok.com",
    "youtube": "youtube.com",
    "twitter": "x.com",
}

# Path segments that point at posts, tags or search pages rather than accounts
NON_PROFILE_SEGMENTS = {"p", "reel", "reels", "explore", "tags", "tag", "watch", "video", "shorts", "search", "hashtag", "status"}

MAX_TRACKED_SEARCHES = 1000


def is_profile_url(url: str) -> bool:
    path = url.split("://", 1)[-1].split("?", 1)[0].split("#", 1)[0]
    segments = [s for s in path.split("/")[1:] if s]
    if not segments:
        return False
    return not any(s.lower() in NON_PROFILE_SEGMENTS for s in segments)


@dataclass
class SearchContext:
    """
    Shared, process-wide state for every search.

    Build once at startup and hand the same instance to each orchestrator.
    """

    registry: BreakerRegistry = field(default_factory=BreakerRegistry)
    cache: ResultCache = field(default_factory=ResultCache)
    rate_limiters: PlatformRateLimiters = field(default_factory=PlatformRateLimiters)
    scorer: QualityScorer = field(default_factory=QualityScorer)

    def start(self) -> None:
        """Begin background maintenance (periodic cache sweep). Needs a running loop."""
        self.cache.start_sweeper()

    async def close(self) -> None:
        await self.cache.stop_sweeper()


@dataclass
class _SearchRun:
    """Bookkeeping for one search while the fallback chain runs"""

    params: SearchParams
    budget: ScrapingBudgetManager
    total_found: int = 0
    total_scraped: int = 0
    scraping: Optional[ScrapingResult] = None
    estimated: List[ScrapedProfile] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class SearchOrchestrator:
    """
    Runs one influencer search end to end and never raises to its caller.

    cache lookup -> discovery -> prioritization -> budgeted scraping
    -> fallback chain -> quality filtering -> verification -> ranking
    -> cache write -> response
    """

    def __init__(
        self,
        context: SearchContext,
        search_providers: Sequence[WebSearchProvider] = (),
        scraper: Optional[ScrapingService] = None,
        vetted_store: Optional[VettedDatasetStore] = None,
        verifier: Optional[VerificationService] = None,
        prioritizer: Optional[CandidatePrioritizer] = None,
        mode: str = DEFAULT_SCRAPING_MODE,
        fallback_retries: int = MAX_RETRIES,
        fallback_backoff: float = INITIAL_BACKOFF,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize orchestrator.

        Args:
            context: Shared breaker registry, cache, rate limiters and scorer
            search_providers: Web search providers used for discovery
            scraper: Profile scraping service (None: no live scraping)
            vetted_store: Vetted dataset used as the last fallback
            verifier: Optional profile verification service
            prioritizer: Candidate prioritizer (default weights if omitted)
            mode: Scraping mode name (economy/balanced/comprehensive/unlimited)
            fallback_retries: Retries per fallback strategy
            fallback_backoff: Initial retry delay per fallback strategy, seconds
            clock: Monotonic time source for processing-time measurement
        """
        create_budget_manager(mode)  # Validate the mode once, up front
        self.context = context
        self.search_providers = list(search_providers)
        self.scraper = scraper
        self.vetted_store = vetted_store
        self.verifier = verifier
        self.prioritizer = prioritizer or CandidatePrioritizer()
        self.mode = mode
        self.fallback_retries = fallback_retries
        self.fallback_backoff = fallback_backoff
        self.clock = clock
        self._recent_searches: "OrderedDict[str, SearchParams]" = OrderedDict()

    # Public API

    async def __aenter__(self) -> "SearchOrchestrator":
        self.context.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.context.close()

    async def search(self, params: Union[SearchParams, Mapping[str, Any]]) -> SearchResponse:
        """Run a search. Every failure comes back as a structured response."""
        start = self.clock()
        search_id = uuid.uuid4().hex

        try:
            if not isinstance(params, SearchParams):
                params = SearchParams.from_dict(params)
        except InvalidSearchParamsError as e:
            logger.warning(f"⛔ Rejected search parameters: {e}")
            return self._failure(search_id, start, [f"Invalid search: {e}"])

        self._remember(search_id, params)
        with logger.contextualize(search_id=search_id[:8]):
            try:
                return await self._search(search_id, params, start)
            except Exception as e:
                logger.exception(f"❌ Search {search_id} failed unexpectedly: {e}")
                return self._failure(search_id, start, [user_friendly_message(classify_error(e))])

    def feedback(self, search_id: str, record: FeedbackRecord) -> None:
        """Route a user verdict about one result back to the quality scorer"""
        params = self._recent_searches.get(search_id)
        if params is None:
            logger.warning(f"Feedback for unknown or expired search {search_id}, applying anyway")
        else:
            logger.debug(f"Feedback for search {search_id} (niches={params.niches})")
        self.context.scorer.feedback(record)

    # Pipeline

    async def _search(self, search_id: str, params: SearchParams, start: float) -> SearchResponse:
        cache = self.context.cache
        entry = cache.get(params)
        if entry is not None:
            logger.info(f"💾 Serving search {search_id} from cache ({entry.source_strategy})")
            return self._from_cache(search_id, entry.payload, start)

        run = _SearchRun(
            params=params,
            budget=create_budget_manager(
                self.mode,
                registry=self.context.registry,
                rate_limiters=self.context.rate_limiters,
            ),
        )
        chain = FallbackChain(
            self._strategies(run),
            max_retries=self.fallback_retries,
            initial_backoff=self.fallback_backoff,
        )
        outcome = await chain.execute(params)

        if not outcome.success:
            return self._failure(
                search_id,
                start,
                [outcome.message] + (run.scraping.recommendations if run.scraping else []),
                warnings=outcome.warnings + run.warnings,
            )

        ranked = self._rank(outcome.profiles, params)
        verified = await self._verify(ranked) if self.verifier else 0
        ranked.sort(key=lambda r: r.combined_score, reverse=True)
        ranked = ranked[: params.max_results]
        for position, item in enumerate(ranked, start=1):
            item.rank = position

        response = self._assemble(search_id, params, run, outcome, ranked, verified, start)
        if response.success:
            cache.put(params, copy.deepcopy(response), outcome.strategy or PRIMARY)
        return response

    def _strategies(self, run: _SearchRun) -> List[FallbackStrategy]:
        return [
            FallbackStrategy(
                PRIMARY, QualityTier.HIGH, "Results from live multi-source search",
                lambda params: self._primary(run),
            ),
            FallbackStrategy(
                CACHED, QualityTier.MEDIUM, "Showing recent results for similar searches",
                lambda params: self._cached(run),
            ),
            FallbackStrategy(
                DEGRADED, QualityTier.LOW, "Live search is degraded; results may be incomplete or estimated",
                lambda params: self._degraded(run),
            ),
            FallbackStrategy(
                VETTED, QualityTier.MEDIUM, "Showing influencers from our vetted database",
                lambda params: self._vetted(run),
            ),
        ]

    async def _primary(self, run: _SearchRun) -> List[ScrapedProfile]:
        candidates = await self._discover(run.params, self.search_providers, run.budget.config.parallel)
        return await self._scrape(run, candidates)

    async def _cached(self, run: _SearchRun) -> List[ScrapedProfile]:
        """Profiles from live cache entries for overlapping searches"""
        params = run.params
        wanted_niches = set(params.niches)
        seen = set()
        profiles = []
        for entry in self.context.cache.live_entries():
            entry_niches = set(entry.normalized_params.get("niches", []))
            if wanted_niches and not wanted_niches & entry_niches:
                continue
            for item in getattr(entry.payload, "results", []):
                profile = item.profile
                key = profile.url or f"{profile.platform}:{profile.username}"
                if key in seen or profile.platform not in params.platforms:
                    continue
                if profile.is_estimated:
                    continue
                seen.add(key)
                profiles.append(dataclasses.replace(profile, data_source=DataSource.CACHED))
        return profiles

    async def _degraded(self, run: _SearchRun) -> List[ScrapedProfile]:
        """One provider, no parallelism; estimates only when nothing real was scraped"""
        if not run.estimated:
            candidates = await self._discover(run.params, self.search_providers[:1], parallel=False)
            profiles = await self._scrape(run, candidates)
            if profiles:
                return profiles
        if run.estimated and run.budget.config.fallback_enabled:
            run.warnings.append("Profiles are estimated from search results, not scraped")
            return run.estimated
        return []

    async def _vetted(self, run: _SearchRun) -> List[ScrapedProfile]:
        if self.vetted_store is None:
            return []
        params = run.params
        records = await self.vetted_store.query(
            VettedFilters(
                country=params.location,
                niches=list(params.niches),
                gender=params.gender,
                min_followers=params.min_followers,
                max_followers=params.max_followers,
            )
        )
        profiles = []
        for record in records:
            platform = str(record.get("platform") or params.platforms[0]).lower()
            if platform not in params.platforms:
                continue
            profiles.append(ScrapedProfile.from_raw(record, platform, DataSource.VETTED))
        return profiles

    async def _scrape(self, run: _SearchRun, candidates: List[CandidateProfile]) -> List[ScrapedProfile]:
        """Prioritize and scrape; placeholder-only batches are held back for the degraded tier"""
        run.total_found = max(run.total_found, len(candidates))
        if not candidates:
            return []

        budget = run.budget
        prioritized = self.prioritizer.prioritize(candidates, run.params, budget.config.priority_threshold)
        if not prioritized:
            run.warnings.append("No discovered profile met the priority threshold")
            return []

        if self.scraper is None:
            cap = budget.config.max_profiles
            run.estimated = budget.placeholders(prioritized[:cap]) if budget.config.fallback_enabled else []
            return []

        result = await budget.execute(prioritized, self.scraper.scrape, run.params)
        run.scraping = result
        run.total_scraped = max(run.total_scraped, result.total_scraped)

        real = [p for p in result.profiles if not p.is_estimated]
        if real:
            if len(real) < len(result.profiles):
                run.warnings.append(
                    f"Some profiles on {', '.join(result.failed_platforms)} are estimated, not scraped"
                )
            return result.profiles

        run.estimated = [p for p in result.profiles if p.is_estimated]
        return []

    async def _discover(
        self,
        params: SearchParams,
        providers: Sequence[WebSearchProvider],
        parallel: bool,
    ) -> List[CandidateProfile]:
        """
        Ask web search providers for profile links.

        Raises the last provider error when every provider failed, so the
        fallback chain records the attempt as an error rather than empty.
        """
        if not providers:
            return []
        queries = self.build_queries(params)

        if parallel:
            outcomes = await asyncio.gather(
                *(self._provider_search(p, queries) for p in providers), return_exceptions=True
            )
        else:
            outcomes = []
            for provider in providers:
                try:
                    outcomes.append(await self._provider_search(provider, queries))
                except Exception as e:
                    outcomes.append(e)

        candidates: Dict[str, CandidateProfile] = {}
        errors = []
        for provider, outcome in zip(providers, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.warning(f"⚠️ Discovery via {self._provider_name(provider)} failed: {outcome}")
                errors.append(outcome)
                continue
            for candidate in outcome:
                candidates.setdefault(candidate.url.rstrip("/").lower(), candidate)

        if errors and len(errors) == len(providers):
            raise errors[-1]

        found = [c for c in candidates.values() if c.platform in params.platforms]
        logger.info(f"🔍 Discovered {len(found)} candidate profiles from {len(providers)} providers")
        return found

    async def _provider_search(self, provider: WebSearchProvider, queries: List[Tuple[str, str]]) -> List[CandidateProfile]:
        name = self._provider_name(provider)
        breaker = self.context.registry.web_search_breaker(name)
        found = []
        for platform, query in queries:
            hits = await breaker.execute_with_timeout(
                provider.search, WEB_SEARCH_TIMEOUT, query, DISCOVERY_RESULTS_PER_QUERY
            )
            for hit in hits:
                link = hit.link.split("?", 1)[0]
                if not is_profile_url(link):
                    continue
                detected = detect_platform(link)
                if detected != platform:
                    continue
                found.append(
                    CandidateProfile(url=link, platform=detected, provenance=name, title=hit.title, snippet=hit.snippet)
                )
        return found

    @staticmethod
    def _provider_name(provider: Any) -> str:
        return getattr(provider, "name", None) or type(provider).__name__

    @staticmethod
    def build_queries(params: SearchParams) -> List[Tuple[str, str]]:
        """One site-restricted query per requested platform"""
        terms = []
        if params.user_query:
            terms.append(params.user_query)
        terms.extend(params.niches)
        if params.brand_name:
            terms.append(params.brand_name)
        terms.append("influencer")
        if params.location:
            terms.append(params.location)
        text = " ".join(terms)

        queries = []
        for platform in params.platforms:
            domain = PLATFORM_DOMAINS.get(platform)
            if domain:
                queries.append((platform, f"site:{domain} {text}"))
        return queries

    # Scoring and ranking

    def _scorer_context(self, params: SearchParams) -> Dict[str, Any]:
        return {"brand_name": params.brand_name, "search_query": params.user_query}

    def _within_filters(self, profile: ScrapedProfile, params: SearchParams) -> bool:
        if profile.is_estimated:
            return True
        if params.min_followers is not None and profile.followers < params.min_followers:
            return False
        if params.max_followers is not None and profile.followers > params.max_followers:
            return False
        if params.gender and params.gender != "any" and profile.gender:
            if profile.gender.lower() != params.gender:
                return False
        return True

    @staticmethod
    def _combined_score(profile: ScrapedProfile, quality: float) -> int:
        score = 0.3 * profile.priority_score + 0.7 * quality
        if profile.is_estimated:
            score *= ESTIMATED_SCORE_PENALTY
        return round(min(100.0, max(0.0, score)))

    @staticmethod
    def _quality_component(profile: ScrapedProfile, decision: Optional[Decision]) -> float:
        if decision is None:
            return float(profile.quality_score)
        return (profile.quality_score + decision.scores.get(Category.INFLUENCER, 0.0)) / 2

    def _rank(self, profiles: Sequence[ScrapedProfile], params: SearchParams) -> List[RankedCandidate]:
        scorer = self.context.scorer
        context = self._scorer_context(params)
        ranked = []
        excluded = 0

        for profile in profiles:
            if not self._within_filters(profile, params):
                excluded += 1
                continue

            decision = None
            if profile.data_source is DataSource.SCRAPED:
                outcome = scorer.filter_profile(profile, context)
                if not outcome.include:
                    logger.debug(f"Filtered out {profile.username}: {outcome.decision.reason}")
                    excluded += 1
                    continue
                decision = outcome.decision
            elif not profile.is_estimated:
                decision = scorer.decide(profile, context)

            quality = self._quality_component(profile, decision)
            ranked.append(
                RankedCandidate(
                    rank=0,
                    profile=profile,
                    combined_score=self._combined_score(profile, quality),
                    decision=decision,
                )
            )

        if excluded:
            logger.info(f"🧹 Quality filtering removed {excluded}/{len(profiles)} profiles")
        ranked.sort(key=lambda r: r.combined_score, reverse=True)
        return ranked

    async def _verify(self, ranked: List[RankedCandidate]) -> int:
        """Verify the top real profiles through the verification breaker"""
        breaker = self.context.registry.verification_breaker()
        targets = [r for r in ranked if not r.profile.is_estimated and r.profile.url][:MAX_VERIFIED_PROFILES]
        if not targets:
            return 0

        outcomes = await asyncio.gather(
            *(
                breaker.execute_with_timeout(
                    self.verifier.verify,
                    VERIFICATION_TIMEOUT,
                    r.profile.url,
                    r.profile.platform,
                    VERIFICATION_CONFIDENCE_THRESHOLD,
                )
                for r in targets
            ),
            return_exceptions=True,
        )

        verified = 0
        for item, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.debug(f"Verification skipped for {item.profile.url}: {outcome}")
                continue
            item.verified = outcome.verified
            item.verification_score = outcome.overall_score
            quality = (self._quality_component(item.profile, item.decision) + outcome.overall_score) / 2
            item.combined_score = self._combined_score(item.profile, quality)
            if outcome.verified:
                verified += 1

        logger.info(f"✅ Verified {verified}/{len(targets)} top profiles")
        return verified

    # Response assembly

    def _elapsed_ms(self, start: float) -> int:
        return round((self.clock() - start) * 1000)

    def _assemble(
        self,
        search_id: str,
        params: SearchParams,
        run: _SearchRun,
        outcome: FallbackResult,
        ranked: List[RankedCandidate],
        verified: int,
        start: float,
    ) -> SearchResponse:
        improvements = ["smart_prioritization", f"budgeted_scraping:{run.budget.config.mode}", "quality_filtering"]
        if outcome.strategy != PRIMARY:
            improvements.append(f"fallback:{outcome.strategy}")
        if self.verifier:
            improvements.append("profile_verification")

        recommendations = list(run.scraping.recommendations) if run.scraping else []
        if outcome.strategy != PRIMARY:
            recommendations.insert(0, outcome.message)
        if not ranked:
            recommendations.append("All candidates were filtered out - try relaxing follower or gender filters")

        quality_tier = outcome.quality_tier
        estimated = sum(1 for r in ranked if r.profile.is_estimated)
        if ranked and estimated == len(ranked):
            quality_tier = QualityTier.LOW

        summary = SearchSummary(
            total_found=run.total_found or len(outcome.profiles),
            total_scraped=run.total_scraped,
            total_returned=len(ranked),
            verified=verified,
            average_score=round(sum(r.combined_score for r in ranked) / len(ranked)) if ranked else 0,
            processing_time_ms=self._elapsed_ms(start),
            improvements_used=improvements,
        )
        logger.success(
            f"🎯 Search {search_id[:8]} done via '{outcome.strategy}': "
            f"{summary.total_returned} results in {summary.processing_time_ms}ms"
        )
        return SearchResponse(
            search_id=search_id,
            success=bool(ranked),
            results=ranked,
            summary=summary,
            recommendations=recommendations,
            source_strategy=outcome.strategy,
            quality_tier=quality_tier,
            warnings=outcome.warnings + run.warnings,
        )

    def _from_cache(self, search_id: str, cached: SearchResponse, start: float) -> SearchResponse:
        # Callers own what they get back, the stored entry stays untouched
        cached = copy.deepcopy(cached)
        summary = dataclasses.replace(
            cached.summary,
            processing_time_ms=self._elapsed_ms(start),
            improvements_used=cached.summary.improvements_used + ["result_cache"],
        )
        return dataclasses.replace(cached, search_id=search_id, summary=summary)

    def _failure(
        self,
        search_id: str,
        start: float,
        recommendations: List[str],
        warnings: Optional[List[str]] = None,
    ) -> SearchResponse:
        return SearchResponse(
            search_id=search_id,
            success=False,
            results=[],
            summary=SearchSummary(processing_time_ms=self._elapsed_ms(start)),
            recommendations=recommendations,
            warnings=warnings or [],
        )

    def _remember(self, search_id: str, params: SearchParams) -> None:
        self._recent_searches[search_id] = params
        while len(self._recent_searches) > MAX_TRACKED_SEARCHES:
            self._recent_searches.popitem(last=False)
