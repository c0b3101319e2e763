"""Influencer Search
Resilient search orchestration over unreliable discovery and scraping providers
"""

__version__ = "0.1.0"

from .budget import SCRAPING_MODES, ScrapingBudgetManager, ScrapingResult, create_budget_manager
from .cache import ResultCache
from .circuit_breaker import BreakerRegistry, CircuitBreaker
from .exceptions import (
    AuthError,
    BreakerOpenError,
    ClientError,
    InfluencerSearchError,
    InvalidSearchParamsError,
    NetworkError,
    ParsingError,
    QuotaExceededError,
    RateLimitError,
    SearchTimeoutError,
)
from .fallback import FallbackChain, FallbackResult, FallbackStrategy
from .models import (
    CandidateProfile,
    Category,
    CircuitState,
    DataSource,
    ErrorType,
    FeedbackRecord,
    QualityTier,
    ScrapedProfile,
    SearchParams,
    SearchResponse,
)
from .orchestrator import SearchContext, SearchOrchestrator
from .prioritizer import CandidatePrioritizer
from .quality import FeatureWeight, QualityScorer
from .rate_limiter import AdaptiveRateLimiter

__all__ = [
    "__version__",
    "AdaptiveRateLimiter",
    "AuthError",
    "BreakerOpenError",
    "BreakerRegistry",
    "CandidatePrioritizer",
    "CandidateProfile",
    "Category",
    "CircuitBreaker",
    "CircuitState",
    "ClientError",
    "DataSource",
    "ErrorType",
    "FallbackChain",
    "FallbackResult",
    "FallbackStrategy",
    "FeatureWeight",
    "FeedbackRecord",
    "InfluencerSearchError",
    "InvalidSearchParamsError",
    "NetworkError",
    "ParsingError",
    "QualityScorer",
    "QualityTier",
    "QuotaExceededError",
    "RateLimitError",
    "ResultCache",
    "SCRAPING_MODES",
    "ScrapedProfile",
    "ScrapingBudgetManager",
    "ScrapingResult",
    "SearchContext",
    "SearchOrchestrator",
    "SearchParams",
    "SearchResponse",
    "SearchTimeoutError",
    "create_budget_manager",
]
