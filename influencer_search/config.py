"""Configuration constants for the influencer search layer"""

from pathlib import Path

# Retry configuration (delays 1s, 2s, 4s)
MAX_RETRIES = 3
INITIAL_BACKOFF = 1.0
MAX_BACKOFF = 60.0
BACKOFF_MULTIPLIER = 2.0

# Circuit breaker defaults
CIRCUIT_BREAKER_THRESHOLD = 5  # Failures before opening circuit
CIRCUIT_BREAKER_RESET_TIMEOUT = 60.0  # Seconds before a probe is allowed
CIRCUIT_BREAKER_MONITORING_PERIOD = 60.0  # Sliding failure window

# Pre-configured breakers per external dependency class:
# (failure_threshold, reset_timeout, monitoring_period)
BREAKER_PRESETS = {
    "search-api": (3, 30.0, 60.0),
    "web-search": (4, 30.0, 60.0),
    "scraping-actor": (5, 60.0, 120.0),  # Actors recover slowly
    "verification-api": (3, 45.0, 90.0),
}

# Result cache
MAX_CACHE_SIZE = 100
DEFAULT_CACHE_TTL = 30 * 60  # 30 minutes
BROAD_QUERY_TTL = 2 * 60 * 60  # 2 hours
NARROW_QUERY_TTL = 15 * 60  # 15 minutes
BROAD_QUERY_RESULT_THRESHOLD = 50  # max_results above this is "broad"
NARROW_QUERY_NICHE_THRESHOLD = 2  # brand + more than this many niches is "narrow"
CACHE_SWEEP_INTERVAL = 5 * 60  # Seconds between proactive expiry sweeps

# Scraping modes:
# (max_profiles, priority_threshold, timeout_s, retry_attempts, parallel, fallback_enabled)
SCRAPING_MODE_TABLE = {
    "economy": (15, 70, 60.0, 1, False, True),
    "balanced": (25, 60, 90.0, 2, True, True),
    "comprehensive": (40, 50, 120.0, 3, True, True),
    "unlimited": (100, 30, 300.0, 3, True, False),  # Never masks failures
}
DEFAULT_SCRAPING_MODE = "balanced"

# Per-platform scraping rate limit
SCRAPING_RATE_LIMIT = 2.0  # Batches per second
SCRAPING_BURST = 5
RATE_LIMIT_BACKOFF = 5.0  # Seconds, when the provider gives no Retry-After

# Search defaults
DEFAULT_PLATFORMS = ["instagram", "tiktok", "youtube"]
DEFAULT_MAX_RESULTS = 20
DISCOVERY_RESULTS_PER_QUERY = 10
WEB_SEARCH_TIMEOUT = 15.0
VERIFICATION_TIMEOUT = 20.0
VERIFICATION_CONFIDENCE_THRESHOLD = 0.6
MAX_VERIFIED_PROFILES = 10

# Candidate prioritizer weights
PRIORITY_WEIGHTS = {
    "username": 0.3,
    "platform": 0.2,
    "brand": 0.25,
    "niche": 0.2,
    "geography": 0.15,
    "verification": 0.1,
}
QUALITY_WEIGHTS = {"username": 0.2, "verification": 0.15}
RELEVANCE_WEIGHTS = {"brand": 0.3, "niche": 0.3}

PLATFORM_PREFERENCES = {
    "instagram": 90,
    "tiktok": 85,
    "youtube": 80,
    "twitter": 70,
}
REQUESTED_PLATFORM_BONUS = 10

GENERIC_USERNAME_PATTERNS = ["user", "profile", "account", "test", "temp", "admin"]

BRAND_KEYWORDS = {
    "ikea": ["home", "interior", "design", "decor", "style"],
    "nike": ["fitness", "sport", "athletic", "gym", "workout"],
    "sephora": ["beauty", "makeup", "skincare", "cosmetic"],
    "food": ["chef", "cook", "recipe", "kitchen", "food"],
}

NICHE_KEYWORDS = {
    "home": ["home", "interior", "decor", "design", "house", "living"],
    "fitness": ["fit", "gym", "workout", "health", "strong", "athlete"],
    "beauty": ["beauty", "makeup", "skin", "cosmetic", "glam", "pretty"],
    "food": ["food", "recipe", "cook", "chef", "kitchen", "eat"],
    "fashion": ["fashion", "style", "outfit", "clothing", "wear", "look"],
    "travel": ["travel", "trip", "adventure", "explore", "journey", "wander"],
}

LOCATION_CODES = {
    "spain": ["es", "esp", "madrid", "barcelona", "spanish", "espana"],
    "usa": ["us", "usa", "america", "american", "ny", "la", "nyc"],
    "uk": ["uk", "london", "british", "england", "britain"],
    "france": ["fr", "paris", "french", "france"],
}

# Quality scorer
SCORER_THRESHOLDS = {"influencer": 60.0, "brand": 55.0, "generic": 65.0}
SCORER_LEARNING_RATE = 0.01
SCORER_WEIGHT_FLOOR = 5.0
SCORER_ACCURACY_WINDOW = 100

# Ranking
ESTIMATED_SCORE_PENALTY = 0.85
HIGH_QUALITY_SCORE = 80

# External connectors
SERPLY_ENDPOINT = "https://api.serply.io/v1/search/q"
APIFY_BASE_URL = "https://api.apify.com/v2"
APIFY_ACTORS = {
    "instagram": "apify~instagram-profile-scraper",
    "tiktok": "clockworks~tiktok-profile-scraper",
    "youtube": "apify~youtube-scraper",
}
DEFAULT_REQUEST_TIMEOUT = 30.0

# Output
DEFAULT_OUTPUT_DIR = Path("./output")
DEFAULT_LOG_FILE = Path("./logs/influencer_search.log")
