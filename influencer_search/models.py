"""Data models and enums for the influencer search layer"""

import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlparse

from .config import (
    CIRCUIT_BREAKER_MONITORING_PERIOD,
    CIRCUIT_BREAKER_RESET_TIMEOUT,
    CIRCUIT_BREAKER_THRESHOLD,
    DEFAULT_MAX_RESULTS,
    DEFAULT_PLATFORMS,
)
from .exceptions import InvalidSearchParamsError


class CircuitState(Enum):
    """Circuit breaker states"""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if recovered


class ErrorType(Enum):
    """Error categories for different handling strategies"""

    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    QUOTA_EXCEEDED = "quota_exceeded"
    AUTH = "auth"  # Don't retry
    PARSING = "parsing"
    CLIENT = "client"  # Malformed request, don't retry
    CIRCUIT_OPEN = "circuit_open"  # Breaker rejected, don't retry
    UNKNOWN = "unknown"


class DataSource(Enum):
    """Where a profile's metrics came from"""

    SCRAPED = "scraped"
    VETTED = "vetted"
    CACHED = "cached"
    ESTIMATED = "estimated"  # Synthetic, never authoritative


class QualityTier(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AttemptOutcome(Enum):
    EMPTY = "empty"
    SUCCESS = "success"
    ERROR = "error"


class Category(Enum):
    """Account categories produced by the quality scorer"""

    INFLUENCER = "influencer"
    BRAND = "brand"
    GENERIC = "generic"
    OTHER = "other"  # Only valid as user feedback


class RiskLevel(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class BreakerConfig:
    """Thresholds for a single circuit breaker (times in seconds)"""

    failure_threshold: int = CIRCUIT_BREAKER_THRESHOLD
    reset_timeout: float = CIRCUIT_BREAKER_RESET_TIMEOUT
    monitoring_period: float = CIRCUIT_BREAKER_MONITORING_PERIOD


@dataclass
class BreakerStats:
    name: str
    state: CircuitState
    failure_count: int
    success_count: int
    last_failure_time: Optional[float]
    total_requests: int
    rejected_requests: int
    config: BreakerConfig


_HANDLE_AT = re.compile(r"/@([^/?#\s]+)")
_HANDLE_TAIL = re.compile(r"/([^/?#]+)/?(?:[?#].*)?$")

_PLATFORM_HOSTS = {
    "instagram.com": "instagram",
    "tiktok.com": "tiktok",
    "youtube.com": "youtube",
    "twitter.com": "twitter",
    "x.com": "twitter",
}


def extract_handle(url: str) -> str:
    """Extract the account handle from a profile URL"""
    match = _HANDLE_AT.search(url)
    if match:
        return match.group(1)
    match = _HANDLE_TAIL.search(url)
    return match.group(1) if match else url


def detect_platform(url: str) -> str:
    """Map a profile URL to its platform name ('unknown' if unrecognised)"""
    host = urlparse(url).netloc.lower()
    for domain, platform in _PLATFORM_HOSTS.items():
        if host == domain or host.endswith("." + domain):
            return platform
    return "unknown"


@dataclass
class CandidateProfile:
    """A discovered profile URL, scored before any scraping happens"""

    url: str
    platform: str
    provenance: str = "web_search"
    normalized_handle: str = ""
    priority_score: int = 0
    quality_score: int = 0
    estimated_relevance: int = 0
    reasons: List[str] = field(default_factory=list)
    title: str = ""
    snippet: str = ""

    def __post_init__(self):
        self.platform = self.platform.lower()
        if not self.normalized_handle:
            self.normalized_handle = extract_handle(self.url).lower()


@dataclass(frozen=True)
class ScrapingConfig:
    """Resource budget for one search. Chosen from a fixed mode table."""

    mode: str
    max_profiles: int
    priority_threshold: int
    timeout: float
    retry_attempts: int
    parallel: bool
    fallback_enabled: bool


def _first(record: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = record.get(key)
        if value not in (None, ""):
            return value
    return default


@dataclass
class ScrapedProfile:
    """A profile with metrics, whatever its origin.

    data_source is required: estimated profiles can never pass as scraped ones.
    """

    username: str
    platform: str
    url: str
    data_source: DataSource
    display_name: str = ""
    biography: str = ""
    followers: int = 0
    following: int = 0
    posts: int = 0
    engagement_rate: float = 0.0
    avg_likes: float = 0.0
    avg_comments: float = 0.0
    is_verified: bool = False
    profile_picture_url: str = ""
    website: str = ""
    location: str = ""
    gender: str = ""
    niches: List[str] = field(default_factory=list)
    is_fallback: bool = False
    priority_score: int = 50
    quality_score: int = 50
    estimated_relevance: int = 50
    provenance: str = ""

    @property
    def is_estimated(self) -> bool:
        return self.data_source is DataSource.ESTIMATED

    @classmethod
    def from_raw(
        cls,
        record: Mapping[str, Any],
        platform: str,
        data_source: DataSource = DataSource.SCRAPED,
    ) -> "ScrapedProfile":
        """Build a profile from a scraper/dataset record with loose field names"""
        url = _first(record, "url", "profileUrl", "inputUrl", default="")
        username = _first(record, "username", "handle", "uniqueId", "channelName", default="")
        if not username and url:
            username = extract_handle(url)
        username = str(username).lstrip("@")
        followers = int(_first(record, "followers", "followerCount", "followersCount", default=0) or 0)
        avg_likes = float(_first(record, "avgLikes", "averageLikes", default=0.0) or 0.0)
        avg_comments = float(_first(record, "avgComments", "averageComments", default=0.0) or 0.0)
        engagement = _first(record, "engagementRate", "engagement_rate")
        if engagement is None:
            engagement = (avg_likes + avg_comments) / followers if followers else 0.0
        niches = _first(record, "niches", "niche", "category", default=[])
        if isinstance(niches, str):
            niches = [n.strip() for n in niches.split(",") if n.strip()]
        return cls(
            username=username,
            platform=str(_first(record, "platform", default=platform)).lower(),
            url=url,
            data_source=data_source,
            display_name=_first(record, "displayName", "fullName", "name", default=""),
            biography=_first(record, "biography", "bio", "description", "signature", default=""),
            followers=followers,
            following=int(_first(record, "following", "followingCount", "followsCount", default=0) or 0),
            posts=int(_first(record, "posts", "postCount", "postsCount", "videoCount", default=0) or 0),
            engagement_rate=float(engagement),
            avg_likes=avg_likes,
            avg_comments=avg_comments,
            is_verified=bool(_first(record, "isVerified", "verified", default=False)),
            profile_picture_url=_first(record, "profilePictureUrl", "profilePicUrl", "profilePicture", "avatar", default=""),
            website=_first(record, "website", "externalUrl", default=""),
            location=_first(record, "location", "country", default=""),
            gender=_first(record, "gender", default=""),
            niches=list(niches),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["data_source"] = self.data_source.value
        return data


def _string_list(value: Any, name: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise InvalidSearchParamsError(f"'{name}' must be a list of strings")
    return [str(v).strip().lower() for v in value if str(v).strip()]


def _optional_int(value: Any, name: str) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InvalidSearchParamsError(f"'{name}' must be an integer")
    if number < 0:
        raise InvalidSearchParamsError(f"'{name}' must not be negative")
    return number


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


@dataclass(frozen=True)
class SearchParams:
    """Validated search request"""

    platforms: List[str] = field(default_factory=lambda: list(DEFAULT_PLATFORMS))
    niches: List[str] = field(default_factory=list)
    min_followers: Optional[int] = None
    max_followers: Optional[int] = None
    location: Optional[str] = None
    gender: Optional[str] = None
    age_range: Optional[str] = None
    brand_name: Optional[str] = None
    user_query: Optional[str] = None
    max_results: int = DEFAULT_MAX_RESULTS

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SearchParams":
        """
        Validate a raw parameter bag once at the boundary.

        Accepts snake_case or camelCase keys.

        Raises:
            InvalidSearchParamsError: If any field has the wrong shape
        """

        def pick(snake: str, camel: str) -> Any:
            return data.get(snake, data.get(camel))

        platforms = _string_list(data.get("platforms"), "platforms") or list(DEFAULT_PLATFORMS)
        min_followers = _optional_int(pick("min_followers", "minFollowers"), "min_followers")
        max_followers = _optional_int(pick("max_followers", "maxFollowers"), "max_followers")
        if min_followers is not None and max_followers is not None and min_followers > max_followers:
            raise InvalidSearchParamsError("min_followers must not exceed max_followers")

        max_results = _optional_int(pick("max_results", "maxResults"), "max_results")
        if max_results is None:
            max_results = DEFAULT_MAX_RESULTS
        if max_results == 0:
            raise InvalidSearchParamsError("max_results must be positive")

        gender = _optional_str(data.get("gender"))
        if gender is not None:
            gender = gender.lower()
            if gender not in ("male", "female", "any"):
                raise InvalidSearchParamsError("gender must be 'male', 'female' or 'any'")

        return cls(
            platforms=platforms,
            niches=_string_list(data.get("niches"), "niches"),
            min_followers=min_followers,
            max_followers=max_followers,
            location=_optional_str(data.get("location")),
            gender=gender,
            age_range=_optional_str(pick("age_range", "ageRange")),
            brand_name=_optional_str(pick("brand_name", "brandName")),
            user_query=_optional_str(pick("user_query", "userQuery")),
            max_results=max_results,
        )

    def cache_projection(self) -> Dict[str, Any]:
        """Order- and case-insensitive view used for cache keys"""
        projection: Dict[str, Any] = {}
        for key, value in asdict(self).items():
            if value is None:
                continue
            if isinstance(value, str):
                value = value.strip().lower()
            elif isinstance(value, list):
                value = sorted(str(v).strip().lower() for v in value)
            projection[key] = value
        return projection


@dataclass
class SearchHit:
    """One web-search result"""

    title: str
    link: str
    snippet: str = ""


@dataclass
class VettedFilters:
    country: Optional[str] = None
    niches: List[str] = field(default_factory=list)
    gender: Optional[str] = None
    min_followers: Optional[int] = None
    max_followers: Optional[int] = None


@dataclass
class VerificationResult:
    profile_url: str
    platform: str
    verified: bool
    confidence: float
    overall_score: int


@dataclass
class CacheEntry:
    query_hash: str
    payload: Any
    created_at: float
    ttl: float
    source_strategy: str
    normalized_params: Dict[str, Any]
    hit_count: int = 0
    last_accessed_at: float = 0.0

    def is_expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl


@dataclass
class FallbackAttempt:
    strategy_name: str
    order: int
    outcome: AttemptOutcome
    quality_tier: QualityTier
    warnings: List[str] = field(default_factory=list)


@dataclass
class ProfileFeatures:
    """Signals extracted from one profile for classification"""

    # Username
    username_length: int = 0
    has_numbers: bool = False
    has_special_chars: bool = False
    is_all_numbers: bool = False
    has_brand_keywords: bool = False
    has_personal_indicators: bool = False

    # Profile completeness
    has_display_name: bool = False
    has_profile_picture: bool = False
    has_biography: bool = False
    biography_length: int = 0
    has_website: bool = False
    is_verified: bool = False

    # Content
    post_count: int = 0
    follower_count: int = 0
    following_count: int = 0
    engagement_rate: float = 0.0

    # Behavioural
    follower_to_following_ratio: float = 0.0
    account_age_days: float = 0.0
    post_frequency: float = 0.0

    # Semantic
    business_language: bool = False
    personal_language: bool = False
    promotional_content: bool = False
    authentic_interactions: bool = False


@dataclass
class Decision:
    category: Category
    confidence: float
    risk_level: RiskLevel
    reason: str
    scores: Dict[Category, float] = field(default_factory=dict)
    features: Optional[ProfileFeatures] = None


@dataclass
class FeedbackRecord:
    candidate: ScrapedProfile
    system_decision: Decision
    actual_category: Category
    user_corrected: bool = True


@dataclass
class RankedCandidate:
    rank: int
    profile: ScrapedProfile
    combined_score: int
    decision: Optional[Decision] = None
    verified: bool = False
    verification_score: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "rank": self.rank,
            "profile": self.profile.to_dict(),
            "combined_score": self.combined_score,
            "verified": self.verified,
            "verification_score": self.verification_score,
        }
        if self.decision is not None:
            data["decision"] = {
                "category": self.decision.category.value,
                "confidence": self.decision.confidence,
                "risk_level": self.decision.risk_level.value,
                "reason": self.decision.reason,
            }
        return data


@dataclass
class SearchSummary:
    total_found: int = 0
    total_scraped: int = 0
    total_returned: int = 0
    verified: int = 0
    average_score: int = 0
    processing_time_ms: int = 0
    improvements_used: List[str] = field(default_factory=list)


@dataclass
class SearchResponse:
    search_id: str
    success: bool
    results: List[RankedCandidate]
    summary: SearchSummary
    recommendations: List[str] = field(default_factory=list)
    source_strategy: Optional[str] = None
    quality_tier: Optional[QualityTier] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "search_id": self.search_id,
            "success": self.success,
            "results": [r.to_dict() for r in self.results],
            "summary": asdict(self.summary),
            "recommendations": list(self.recommendations),
            "source_strategy": self.source_strategy,
            "quality_tier": self.quality_tier.value if self.quality_tier else None,
            "warnings": list(self.warnings),
        }
