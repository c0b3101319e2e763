"""Candidate prioritization before any scraping is spent"""

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from loguru import logger

from .config import (
    BRAND_KEYWORDS,
    GENERIC_USERNAME_PATTERNS,
    LOCATION_CODES,
    NICHE_KEYWORDS,
    PLATFORM_PREFERENCES,
    PRIORITY_WEIGHTS,
    QUALITY_WEIGHTS,
    RELEVANCE_WEIGHTS,
    REQUESTED_PLATFORM_BONUS,
)
from .models import CandidateProfile, SearchParams


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return min(high, max(low, value))


def _weighted_mean(parts: Dict[str, float], weights: Dict[str, float]) -> float:
    total_weight = sum(weights[name] for name in parts)
    if not total_weight:
        return 0.0
    return sum(score * weights[name] for name, score in parts.items()) / total_weight


@dataclass
class PriorityScore:
    priority: int
    quality_score: int
    estimated_relevance: int
    reasons: List[str] = field(default_factory=list)
    components: Dict[str, float] = field(default_factory=dict)


class CandidatePrioritizer:
    """
    Scores discovered profile URLs from their handle alone.

    Every sub-score lives in [0, 100]. The priority is the weighted mean of
    the sub-scores that apply to the request (brand, niche and geography only
    count when the request names them), so a better sub-score always means a
    strictly better priority.
    """

    def __init__(
        self,
        weights: Optional[Dict[str, float]] = None,
        platform_preferences: Optional[Dict[str, int]] = None,
    ):
        self.weights = weights or dict(PRIORITY_WEIGHTS)
        self.platform_preferences = platform_preferences or dict(PLATFORM_PREFERENCES)

    # Sub-scores

    def username_quality(self, username: str) -> float:
        score = 50.0
        if 3 <= len(username) <= 20:
            score += 20
        elif len(username) > 20:
            score -= 10

        has_numbers = bool(re.search(r"\d", username))
        has_special = bool(re.search(r"[._-]", username))
        if username.isdigit():
            score -= 30
        elif has_numbers and has_special:
            score += 10
        elif has_numbers:
            score += 5

        lowered = username.lower()
        if any(pattern in lowered for pattern in GENERIC_USERNAME_PATTERNS):
            score -= 25
        if "official" in lowered or "brand" in lowered:
            score += 15
        return _clamp(score)

    def platform_relevance(self, platform: str, params: SearchParams) -> float:
        score = float(self.platform_preferences.get(platform, 50))
        if platform in params.platforms:
            score += REQUESTED_PLATFORM_BONUS
        return _clamp(score)

    def brand_relevance(self, username: str, brand_name: str) -> float:
        handle = username.lower()
        brand = brand_name.lower().replace(" ", "")
        score = 40.0
        if brand and brand in handle:
            score += 30
        keywords: List[str] = []
        for category, words in BRAND_KEYWORDS.items():
            if category in brand:
                keywords.extend(words)
        score += 8 * sum(1 for word in keywords if word in handle)
        return _clamp(score)

    def niche_alignment(self, username: str, niches: Iterable[str]) -> float:
        handle = username.lower()
        score = 30.0
        for niche in niches:
            keywords = NICHE_KEYWORDS.get(niche.lower(), [niche.lower()])
            score += 12 * sum(1 for word in keywords if word in handle)
        return _clamp(score)

    def geographic_relevance(self, username: str, location: str) -> float:
        handle = username.lower()
        loc = location.lower()
        score = 40.0
        if loc and loc in handle:
            score += 30
        for country, codes in LOCATION_CODES.items():
            if country in loc:
                score += 10 * sum(1 for code in codes if code in handle)
        return _clamp(score)

    def verification_indicators(self, username: str) -> float:
        handle = username.lower()
        score = 50.0
        if "official" in handle:
            score += 25
        if "verified" in handle:
            score += 20
        if "real" in handle:
            score += 15
        if "fake" in handle:
            score -= 30
        if "spam" in handle:
            score -= 30
        return _clamp(score)

    # Public API

    def score(self, candidate: CandidateProfile, params: SearchParams) -> PriorityScore:
        """Score one candidate. Pure: the candidate is not modified."""
        handle = candidate.normalized_handle
        parts: Dict[str, float] = {
            "username": self.username_quality(handle),
            "platform": self.platform_relevance(candidate.platform, params),
            "verification": self.verification_indicators(handle),
        }
        if params.brand_name:
            parts["brand"] = self.brand_relevance(handle, params.brand_name)
        if params.niches:
            parts["niche"] = self.niche_alignment(handle, params.niches)
        if params.location:
            parts["geography"] = self.geographic_relevance(handle, params.location)

        reasons = []
        if parts["username"] > 70:
            reasons.append("High-quality username")
        if parts["platform"] > 80:
            reasons.append("Optimal platform match")
        if parts.get("brand", 0) > 70:
            reasons.append("Strong brand alignment")
        if parts.get("niche", 0) > 60:
            reasons.append("Niche alignment detected")
        if parts.get("geography", 0) > 70:
            reasons.append("Geographic match")
        if parts["verification"] > 80:
            reasons.append("Likely verified account")

        quality_parts = {name: parts[name] for name in QUALITY_WEIGHTS}
        relevance_parts = {name: parts[name] for name in RELEVANCE_WEIGHTS if name in parts}
        relevance = _weighted_mean(relevance_parts, RELEVANCE_WEIGHTS) if relevance_parts else 50.0

        return PriorityScore(
            priority=round(_clamp(_weighted_mean(parts, self.weights))),
            quality_score=round(_clamp(_weighted_mean(quality_parts, QUALITY_WEIGHTS))),
            estimated_relevance=round(_clamp(relevance)),
            reasons=reasons or ["Basic profile analysis"],
            components=parts,
        )

    def prioritize(
        self,
        candidates: Iterable[CandidateProfile],
        params: SearchParams,
        threshold: int = 0,
    ) -> List[CandidateProfile]:
        """
        Score candidates in place, sort by priority descending and drop
        those below `threshold`.
        """
        scored = []
        for candidate in candidates:
            result = self.score(candidate, params)
            candidate.priority_score = result.priority
            candidate.quality_score = result.quality_score
            candidate.estimated_relevance = result.estimated_relevance
            candidate.reasons = result.reasons
            scored.append(candidate)

        scored.sort(key=lambda c: c.priority_score, reverse=True)
        qualified = [c for c in scored if c.priority_score >= threshold]

        logger.info(
            f"🎯 Prioritization complete: {len(qualified)}/{len(scored)} profiles qualify for scraping"
        )
        if qualified:
            top = ", ".join(f"{c.normalized_handle} ({c.priority_score})" for c in qualified[:5])
            logger.debug(f"📊 Top priorities: {top}")
        return qualified
