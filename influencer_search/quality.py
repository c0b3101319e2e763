"""Feature-based account classifier that adapts its weights from user feedback"""

import re
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, FrozenSet, List, Mapping, Optional, Union

from loguru import logger

from .config import (
    SCORER_ACCURACY_WINDOW,
    SCORER_LEARNING_RATE,
    SCORER_THRESHOLDS,
    SCORER_WEIGHT_FLOOR,
)
from .models import Category, Decision, FeedbackRecord, ProfileFeatures, RiskLevel, ScrapedProfile


class FeatureWeight(Enum):
    """Every weighted feature the scorer knows about"""

    # Influencer indicators
    PERSONAL_INDICATORS = "personal_indicators"
    PERSONAL_LANGUAGE = "personal_language"
    AUTHENTIC_INTERACTIONS = "authentic_interactions"
    VERIFIED = "verified"
    HIGH_ENGAGEMENT = "high_engagement"
    FOLLOWER_RATIO = "follower_ratio"

    # Brand indicators
    BRAND_KEYWORDS = "brand_keywords"
    BUSINESS_LANGUAGE = "business_language"
    PROMOTIONAL_CONTENT = "promotional_content"
    HAS_WEBSITE = "has_website"
    HIGH_FOLLOWER_RATIO = "high_follower_ratio"
    HIGH_POST_COUNT = "high_post_count"

    # Generic-account indicators
    ALL_NUMBERS = "all_numbers"
    SHORT_USERNAME = "short_username"
    NO_DISPLAY_NAME = "no_display_name"
    NO_BIOGRAPHY = "no_biography"
    NO_PROFILE_PICTURE = "no_profile_picture"
    LOW_FOLLOWERS = "low_followers"


DEFAULT_WEIGHTS: Dict[FeatureWeight, float] = {
    FeatureWeight.PERSONAL_INDICATORS: 20.0,
    FeatureWeight.PERSONAL_LANGUAGE: 15.0,
    FeatureWeight.AUTHENTIC_INTERACTIONS: 10.0,
    FeatureWeight.VERIFIED: 15.0,
    FeatureWeight.HIGH_ENGAGEMENT: 10.0,
    FeatureWeight.FOLLOWER_RATIO: 8.0,
    FeatureWeight.BRAND_KEYWORDS: 25.0,
    FeatureWeight.BUSINESS_LANGUAGE: 20.0,
    FeatureWeight.PROMOTIONAL_CONTENT: 15.0,
    FeatureWeight.HAS_WEBSITE: 10.0,
    FeatureWeight.HIGH_FOLLOWER_RATIO: 10.0,
    FeatureWeight.HIGH_POST_COUNT: 8.0,
    FeatureWeight.ALL_NUMBERS: 30.0,
    FeatureWeight.SHORT_USERNAME: 20.0,
    FeatureWeight.NO_DISPLAY_NAME: 15.0,
    FeatureWeight.NO_BIOGRAPHY: 15.0,
    FeatureWeight.NO_PROFILE_PICTURE: 10.0,
    FeatureWeight.LOW_FOLLOWERS: 8.0,
}


CATEGORY_FEATURES: Dict[Category, FrozenSet[FeatureWeight]] = {
    Category.INFLUENCER: frozenset({
        FeatureWeight.PERSONAL_INDICATORS,
        FeatureWeight.PERSONAL_LANGUAGE,
        FeatureWeight.AUTHENTIC_INTERACTIONS,
        FeatureWeight.VERIFIED,
        FeatureWeight.HIGH_ENGAGEMENT,
        FeatureWeight.FOLLOWER_RATIO,
    }),
    Category.BRAND: frozenset({
        FeatureWeight.BRAND_KEYWORDS,
        FeatureWeight.BUSINESS_LANGUAGE,
        FeatureWeight.PROMOTIONAL_CONTENT,
        FeatureWeight.HAS_WEBSITE,
        FeatureWeight.HIGH_FOLLOWER_RATIO,
        FeatureWeight.HIGH_POST_COUNT,
    }),
    Category.GENERIC: frozenset({
        FeatureWeight.ALL_NUMBERS,
        FeatureWeight.SHORT_USERNAME,
        FeatureWeight.NO_DISPLAY_NAME,
        FeatureWeight.NO_BIOGRAPHY,
        FeatureWeight.NO_PROFILE_PICTURE,
        FeatureWeight.LOW_FOLLOWERS,
    }),
}

# Learning-rate multipliers applied on corrective feedback
REINFORCE_STEPS = {
    FeatureWeight.PERSONAL_INDICATORS: 5,
    FeatureWeight.PERSONAL_LANGUAGE: 3,
    FeatureWeight.VERIFIED: 2,
    FeatureWeight.BRAND_KEYWORDS: 5,
    FeatureWeight.BUSINESS_LANGUAGE: 3,
    FeatureWeight.PROMOTIONAL_CONTENT: 2,
}
PENALTY_STEPS = {
    FeatureWeight.BRAND_KEYWORDS: 3,
    FeatureWeight.BUSINESS_LANGUAGE: 2,
}
DEFAULT_STEP = 2

BRAND_TERMS = [
    "official", "brand", "company", "corp", "inc", "ltd", "llc",
    "store", "shop", "business", "service", "agency", "studio",
    "headquarters", "hq", "customer", "support", "team",
]
PERSONAL_INDICATORS = [
    "love", "life", "my", "me", "i", "personal", "journey",
    "dreams", "passion", "adventure", "story", "diary",
    "thoughts", "experiences", "memories", "moments",
]
BUSINESS_TERMS = [
    "solutions", "services", "professional", "expert", "consultant",
    "industry", "market", "clients", "customers", "partnership",
    "quality", "premium", "excellence", "innovative", "leading",
]
PERSONAL_TERMS = [
    "mom", "dad", "family", "husband", "wife", "kids", "children",
    "home", "heart", "soul", "blessed", "grateful", "happy",
    "living", "enjoying", "sharing", "creating", "exploring",
]
PROMOTIONAL_TERMS = [
    "buy", "shop", "sale", "discount", "offer", "deal",
    "promo", "code", "link", "order", "purchase", "product",
    "available", "now", "new", "launch", "collection",
]


def _contains_any(text: str, terms: List[str]) -> bool:
    lowered = text.lower()
    return any(term in lowered for term in terms)


def active_features(features: ProfileFeatures) -> FrozenSet[FeatureWeight]:
    """The weighted features present in a feature vector"""
    present = {
        FeatureWeight.PERSONAL_INDICATORS: features.has_personal_indicators,
        FeatureWeight.PERSONAL_LANGUAGE: features.personal_language,
        FeatureWeight.AUTHENTIC_INTERACTIONS: features.authentic_interactions,
        FeatureWeight.VERIFIED: features.is_verified,
        FeatureWeight.HIGH_ENGAGEMENT: features.engagement_rate > 0.02,
        FeatureWeight.FOLLOWER_RATIO: features.follower_to_following_ratio > 5,
        FeatureWeight.BRAND_KEYWORDS: features.has_brand_keywords,
        FeatureWeight.BUSINESS_LANGUAGE: features.business_language,
        FeatureWeight.PROMOTIONAL_CONTENT: features.promotional_content,
        FeatureWeight.HAS_WEBSITE: features.has_website,
        FeatureWeight.HIGH_FOLLOWER_RATIO: features.follower_to_following_ratio > 100,
        FeatureWeight.HIGH_POST_COUNT: features.post_count > 500,
        FeatureWeight.ALL_NUMBERS: features.is_all_numbers,
        FeatureWeight.SHORT_USERNAME: features.username_length < 3,
        FeatureWeight.NO_DISPLAY_NAME: not features.has_display_name,
        FeatureWeight.NO_BIOGRAPHY: not features.has_biography,
        FeatureWeight.NO_PROFILE_PICTURE: not features.has_profile_picture,
        FeatureWeight.LOW_FOLLOWERS: features.follower_count < 100,
    }
    return frozenset(weight for weight, is_present in present.items() if is_present)


def _estimate_account_age(profile: ScrapedProfile) -> float:
    if profile.posts > 100 and profile.followers > 1000:
        return 365.0
    if profile.posts > 50:
        return 180.0
    return 90.0


def extract_features(profile: ScrapedProfile) -> ProfileFeatures:
    """Build the feature vector for one profile"""
    username = profile.username or ""
    biography = profile.biography or ""
    display_name = profile.display_name or ""
    followers = profile.followers
    following = profile.following

    engagement = profile.engagement_rate
    if not engagement and followers:
        engagement = (profile.avg_likes + profile.avg_comments) / followers

    account_age = _estimate_account_age(profile)
    text = f"{biography} {display_name}"

    return ProfileFeatures(
        username_length=len(username),
        has_numbers=bool(re.search(r"\d", username)),
        has_special_chars=bool(re.search(r"[._-]", username)),
        is_all_numbers=username.isdigit(),
        has_brand_keywords=_contains_any(username, BRAND_TERMS),
        has_personal_indicators=_contains_any(username, PERSONAL_INDICATORS),
        has_display_name=bool(display_name),
        has_profile_picture=bool(profile.profile_picture_url),
        has_biography=bool(biography),
        biography_length=len(biography),
        has_website=bool(profile.website),
        is_verified=profile.is_verified,
        post_count=profile.posts,
        follower_count=followers,
        following_count=following,
        engagement_rate=engagement,
        follower_to_following_ratio=followers / following if following > 0 else float(followers),
        account_age_days=account_age,
        post_frequency=profile.posts / account_age if account_age else 0.0,
        business_language=_contains_any(text, BUSINESS_TERMS),
        personal_language=_contains_any(text, PERSONAL_TERMS),
        promotional_content=_contains_any(biography, PROMOTIONAL_TERMS),
        authentic_interactions=engagement > 0.02 and 1000 < followers < 1_000_000,
    )


@dataclass
class FilterOutcome:
    include: bool
    decision: Decision
    recommendations: List[str] = field(default_factory=list)


class QualityScorer:
    """
    Classifies accounts as influencer, brand or generic.

    Each category accumulates the weights of its present features; the
    accumulators are normalized to percentages. Corrective feedback nudges
    the weights by a small learning rate, never below a positive floor.
    """

    def __init__(
        self,
        thresholds: Optional[Dict[str, float]] = None,
        learning_rate: float = SCORER_LEARNING_RATE,
        weight_floor: float = SCORER_WEIGHT_FLOOR,
        accuracy_window: int = SCORER_ACCURACY_WINDOW,
    ):
        thresholds = thresholds or SCORER_THRESHOLDS
        self.thresholds: Dict[Category, float] = {
            Category.INFLUENCER: thresholds["influencer"],
            Category.BRAND: thresholds["brand"],
            Category.GENERIC: thresholds["generic"],
        }
        self.learning_rate = learning_rate
        self.weight_floor = weight_floor
        self.weights: Dict[FeatureWeight, float] = dict(DEFAULT_WEIGHTS)
        self._history: Deque[bool] = deque(maxlen=accuracy_window)
        self.feedback_count = 0

    extract_features = staticmethod(extract_features)

    def category_scores(
        self,
        features: ProfileFeatures,
        context: Optional[Mapping[str, Any]] = None,
    ) -> Dict[Category, float]:
        present = active_features(features)
        scores = {
            category: sum(self.weights[w] for w in members if w in present)
            for category, members in CATEGORY_FEATURES.items()
        }

        if context and context.get("brand_name"):
            relevance = 0.0
            if features.has_brand_keywords:
                relevance += 0.3
            if features.business_language:
                relevance += 0.2
            if features.is_verified:
                relevance += 0.2
            if features.engagement_rate > 0.02:
                relevance += 0.3
            if relevance > 0.7:
                scores[Category.INFLUENCER] += 10

        if features.account_age_days > 365:
            scores[Category.INFLUENCER] += 5
            scores[Category.BRAND] += 5

        total = sum(scores.values())
        if total > 0:
            scores = {category: value / total * 100 for category, value in scores.items()}
        return scores

    def _pick_category(self, scores: Dict[Category, float]) -> Category:
        for category in (Category.INFLUENCER, Category.BRAND, Category.GENERIC):
            if scores[category] >= self.thresholds[category]:
                return category
        best = max(scores.values())
        for category in (Category.INFLUENCER, Category.BRAND, Category.GENERIC):
            if scores[category] == best:
                return category
        return Category.GENERIC

    @staticmethod
    def _confidence(scores: Dict[Category, float], features: ProfileFeatures) -> float:
        ordered = sorted(scores.values(), reverse=True)
        confidence = ordered[0] - ordered[1]
        if features.is_verified:
            confidence += 10
        if features.has_biography and features.biography_length > 50:
            confidence += 5
        if features.follower_count > 1000:
            confidence += 5
        if features.post_count > 10:
            confidence += 5
        return min(100.0, max(0.0, confidence))

    @staticmethod
    def _risk(confidence: float) -> RiskLevel:
        if confidence >= 80:
            return RiskLevel.LOW
        if confidence >= 60:
            return RiskLevel.MEDIUM
        return RiskLevel.HIGH

    @staticmethod
    def _explain(category: Category, features: ProfileFeatures, score: float) -> str:
        reasons = []
        if category is Category.INFLUENCER:
            if features.has_personal_indicators:
                reasons.append("personal username style")
            if features.personal_language:
                reasons.append("personal language in bio")
            if features.is_verified:
                reasons.append("verified account")
            if features.engagement_rate > 0.02:
                reasons.append("good engagement rate")
            if features.follower_to_following_ratio > 5:
                reasons.append("healthy follower ratio")
        elif category is Category.BRAND:
            if features.has_brand_keywords:
                reasons.append("brand-related keywords")
            if features.business_language:
                reasons.append("business language")
            if features.promotional_content:
                reasons.append("promotional content")
            if features.has_website:
                reasons.append("business website")
            if features.follower_to_following_ratio > 100:
                reasons.append("broadcast-style account")
        else:
            if features.is_all_numbers:
                reasons.append("numeric username")
            if features.username_length < 3:
                reasons.append("very short username")
            if not features.has_display_name:
                reasons.append("no display name")
            if not features.has_biography:
                reasons.append("no biography")
            if features.follower_count < 100:
                reasons.append("very low followers")

        text = f"Classified as {category.value} ({score:.1f}%)"
        return f"{text}: {', '.join(reasons)}" if reasons else text

    def decide(
        self,
        candidate: Union[ProfileFeatures, ScrapedProfile],
        context: Optional[Mapping[str, Any]] = None,
    ) -> Decision:
        """
        Classify a profile (or an already extracted feature vector).

        Args:
            candidate: Profile or its features
            context: Optional search context, e.g. {"brand_name": "nike"}
        """
        features = candidate if isinstance(candidate, ProfileFeatures) else extract_features(candidate)
        scores = self.category_scores(features, context)
        category = self._pick_category(scores)
        confidence = self._confidence(scores, features)
        return Decision(
            category=category,
            confidence=round(confidence, 1),
            risk_level=self._risk(confidence),
            reason=self._explain(category, features, scores[category]),
            scores=scores,
            features=features,
        )

    def filter_profile(
        self,
        profile: ScrapedProfile,
        context: Optional[Mapping[str, Any]] = None,
    ) -> FilterOutcome:
        """Include influencers; keep uncertain non-influencers for manual review"""
        decision = self.decide(profile, context)
        recommendations = []
        if decision.risk_level is RiskLevel.HIGH:
            recommendations.append("Manual review recommended: low-confidence classification")
        if decision.category is Category.BRAND:
            recommendations.append("Likely a brand or business account")
        elif decision.category is Category.GENERIC:
            recommendations.append("Likely an inactive or placeholder account")

        include = decision.category is Category.INFLUENCER or decision.risk_level is RiskLevel.HIGH
        return FilterOutcome(include=include, decision=decision, recommendations=recommendations)

    def feedback(self, record: FeedbackRecord) -> None:
        """Record a user verdict and adapt weights when it contradicts the prediction"""
        predicted = record.system_decision.category
        actual = record.actual_category
        self._history.append(predicted == actual)
        self.feedback_count += 1

        if not record.user_corrected or predicted == actual:
            return

        features = record.system_decision.features
        if features is None:
            features = extract_features(record.candidate)
        present = active_features(features)

        self._reinforce(actual, present)
        self._penalize(predicted, present)
        logger.info(f"📚 Model updated based on feedback: {predicted.value} → {actual.value}")

    def _reinforce(self, category: Category, present: FrozenSet[FeatureWeight]) -> None:
        members = CATEGORY_FEATURES.get(category)
        if not members:
            return
        targets = members & present or members
        for weight in targets:
            step = REINFORCE_STEPS.get(weight, DEFAULT_STEP)
            self.weights[weight] += self.learning_rate * step

    def _penalize(self, category: Category, present: FrozenSet[FeatureWeight]) -> None:
        for weight in CATEGORY_FEATURES.get(category, frozenset()) & present:
            step = PENALTY_STEPS.get(weight, DEFAULT_STEP)
            self.weights[weight] = max(self.weight_floor, self.weights[weight] - self.learning_rate * step)

    @property
    def accuracy(self) -> Optional[float]:
        """Share of the recent feedback that agreed with the prediction"""
        if not self._history:
            return None
        return sum(self._history) / len(self._history)

    def metrics(self) -> Dict[str, Any]:
        return {
            "weights": {weight.value: value for weight, value in self.weights.items()},
            "thresholds": {category.value: value for category, value in self.thresholds.items()},
            "accuracy": self.accuracy,
            "feedback_count": self.feedback_count,
            "window": len(self._history),
        }
