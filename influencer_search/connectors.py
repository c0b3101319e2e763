"""HTTP connectors for web search, profile scraping and verification"""

from typing import Any, Dict, List, Mapping, Optional

import httpx
import orjson
from loguru import logger

from .config import (
    APIFY_ACTORS,
    APIFY_BASE_URL,
    DEFAULT_REQUEST_TIMEOUT,
    SERPLY_ENDPOINT,
)
from .exceptions import (
    AuthError,
    ClientError,
    NetworkError,
    ParsingError,
    QuotaExceededError,
    RateLimitError,
    SearchTimeoutError,
)
from .models import ScrapedProfile, SearchHit, VerificationResult, extract_handle


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def raise_for_status(response: httpx.Response, service: str) -> None:
    """Map an HTTP error status onto the error taxonomy"""
    status = response.status_code
    if status < 400:
        return
    if status in (401, 403):
        raise AuthError(f"{service} rejected credentials (HTTP {status})")
    if status == 402:
        raise QuotaExceededError(f"{service} quota exhausted (HTTP 402)")
    if status == 429:
        raise RateLimitError(f"{service} rate limited (HTTP 429)", retry_after=_retry_after(response))
    if status >= 500:
        raise NetworkError(f"{service} server error (HTTP {status})")
    raise ClientError(f"{service} rejected the request (HTTP {status})", status_code=status)


def decode_json(response: httpx.Response, service: str) -> Any:
    try:
        return orjson.loads(response.content)
    except orjson.JSONDecodeError as e:
        raise ParsingError(f"{service} returned invalid JSON: {e}") from e


class _HttpConnector:
    service = "http"

    def __init__(
        self,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.transport = transport

    async def _post(self, url: str, payload: Any, headers: Dict[str, str], params=None) -> Any:
        # Fresh client per request
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    url,
                    content=orjson.dumps(payload),
                    headers={"Content-Type": "application/json", **headers},
                    params=params,
                )
        except httpx.TimeoutException as e:
            raise SearchTimeoutError(f"{self.service} timed out", timeout=self.timeout) from e
        except httpx.TransportError as e:
            raise NetworkError(f"{self.service} unreachable: {e}") from e

        raise_for_status(response, self.service)
        return decode_json(response, self.service)


class SerplySearchProvider(_HttpConnector):
    """Web search through the Serply API"""

    service = "serply"

    def __init__(
        self,
        api_key: str,
        endpoint: str = SERPLY_ENDPOINT,
        location: Optional[str] = None,
        language: Optional[str] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout=timeout, transport=transport)
        if not api_key:
            raise AuthError("SERPLY_API_KEY is not set")
        self.name = "serply"
        self.api_key = api_key
        self.endpoint = endpoint
        self.location = location
        self.language = language

    async def search(self, query: str, limit: int) -> List[SearchHit]:
        payload: Dict[str, Any] = {"q": query, "num": limit}
        if self.location:
            payload["location"] = self.location
        if self.language:
            payload["hl"] = self.language

        data = await self._post(self.endpoint, payload, {"X-API-KEY": self.api_key})
        if not isinstance(data, dict):
            raise ParsingError("serply returned an unexpected payload")

        hits = [
            SearchHit(
                title=item.get("title", ""),
                link=item.get("link") or item.get("url", ""),
                snippet=item.get("description") or item.get("snippet", ""),
            )
            for item in data.get("results") or []
            if item.get("link") or item.get("url")
        ]
        logger.debug(f"🔍 serply: {len(hits)} results for '{query}'")
        return hits


class ApifyScrapingService(_HttpConnector):
    """Profile scraping through Apify actors (run-sync, dataset items returned inline)"""

    service = "apify"

    def __init__(
        self,
        token: str,
        base_url: str = APIFY_BASE_URL,
        actors: Optional[Dict[str, str]] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout=timeout, transport=transport)
        if not token:
            raise AuthError("APIFY_TOKEN is not set")
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.actors = actors or dict(APIFY_ACTORS)

    def build_input(self, urls: List[str], platform: str, platform_input: Mapping[str, Any]) -> Dict[str, Any]:
        handles = [extract_handle(url) for url in urls]
        if platform == "instagram":
            actor_input: Dict[str, Any] = {
                "usernames": handles,
                "resultsType": "details",
                "resultsLimit": len(urls),
                "addParentData": False,
            }
        elif platform == "tiktok":
            actor_input = {"profiles": handles, "resultsPerPage": len(urls)}
        elif platform == "youtube":
            actor_input = {
                "startUrls": [{"url": url} for url in urls],
                "includeChannelInfo": True,
                "maxResults": len(urls),
            }
        else:
            raise ClientError(f"Scraping not supported for platform '{platform}'")

        extra = {k: v for k, v in platform_input.items() if k not in ("resultsLimit", "niches", "location")}
        actor_input.update(extra)
        return actor_input

    async def scrape(
        self,
        urls: List[str],
        platform: str,
        platform_input: Dict[str, Any],
    ) -> List[Mapping[str, Any]]:
        actor = self.actors.get(platform)
        if actor is None:
            raise ClientError(f"No scraping actor configured for '{platform}'")

        url = f"{self.base_url}/acts/{actor}/run-sync-get-dataset-items"
        logger.info(f"🕷️ Running {actor} for {len(urls)} {platform} profiles...")
        items = await self._post(
            url,
            self.build_input(urls, platform, platform_input),
            {"Authorization": f"Bearer {self.token}"},
        )
        if not isinstance(items, list):
            raise ParsingError(f"apify returned {type(items).__name__}, expected a list of items")

        logger.debug(f"Scraped {len(items)} {platform} profiles")
        return [dict(item, platform=platform) for item in items if isinstance(item, dict)]


class ScrapeBackedVerifier:
    """
    Verifies a profile exists by scraping it alone and scoring what comes back.

    Confidence grows with profile completeness; below the threshold the
    profile is reported unverified.
    """

    def __init__(self, scraper: ApifyScrapingService):
        self.scraper = scraper

    async def verify(self, profile_url: str, platform: str, confidence_threshold: float) -> VerificationResult:
        items = await self.scraper.scrape([profile_url], platform, {})
        if not items:
            return VerificationResult(profile_url, platform, verified=False, confidence=0.0, overall_score=0)

        profile = ScrapedProfile.from_raw(items[0], platform)
        checks = [
            profile.followers > 0,
            bool(profile.biography),
            bool(profile.display_name),
            bool(profile.profile_picture_url),
            profile.posts > 0,
        ]
        confidence = sum(checks) / len(checks)
        if profile.is_verified:
            confidence = min(1.0, confidence + 0.2)

        return VerificationResult(
            profile_url=profile_url,
            platform=platform,
            verified=confidence >= confidence_threshold,
            confidence=round(confidence, 2),
            overall_score=round(confidence * 100),
        )
