import httpx
import orjson
import pytest

from influencer_search.connectors import ApifyScrapingService, ScrapeBackedVerifier, SerplySearchProvider
from influencer_search.exceptions import (
    AuthError,
    ClientError,
    NetworkError,
    ParsingError,
    QuotaExceededError,
    RateLimitError,
    SearchTimeoutError,
)


def transport_returning(status=200, body=None, content=None, headers=None, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if content is not None:
            return httpx.Response(status, content=content, headers=headers)
        return httpx.Response(status, content=orjson.dumps(body), headers=headers)

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_serply_search_parses_hits_and_sends_key():
    seen = []
    body = {
        "results": [
            {"title": "Maria", "link": "https://www.instagram.com/mariafitness/", "description": "fitness"},
            {"title": "no link"},
        ]
    }
    provider = SerplySearchProvider("secret", location="ES", transport=transport_returning(body=body, seen=seen))

    hits = await provider.search("site:instagram.com fitness influencer", 10)

    assert [h.link for h in hits] == ["https://www.instagram.com/mariafitness/"]
    assert hits[0].snippet == "fitness"
    assert seen[0].headers["X-API-KEY"] == "secret"
    payload = orjson.loads(seen[0].content)
    assert payload == {"q": "site:instagram.com fitness influencer", "num": 10, "location": "ES"}


@pytest.mark.parametrize(
    "status, error",
    [
        (401, AuthError),
        (403, AuthError),
        (402, QuotaExceededError),
        (429, RateLimitError),
        (400, ClientError),
        (502, NetworkError),
    ],
)
@pytest.mark.asyncio
async def test_http_status_maps_to_error_taxonomy(status, error):
    provider = SerplySearchProvider("k", transport=transport_returning(status=status, body={}))
    with pytest.raises(error):
        await provider.search("q", 5)


@pytest.mark.asyncio
async def test_rate_limit_carries_retry_after():
    provider = SerplySearchProvider(
        "k", transport=transport_returning(status=429, body={}, headers={"Retry-After": "7"})
    )
    with pytest.raises(RateLimitError) as exc:
        await provider.search("q", 5)
    assert exc.value.retry_after == 7.0


@pytest.mark.asyncio
async def test_invalid_json_is_a_parsing_error():
    provider = SerplySearchProvider("k", transport=transport_returning(content=b"<html>oops"))
    with pytest.raises(ParsingError):
        await provider.search("q", 5)


@pytest.mark.asyncio
async def test_transport_failures_are_translated():
    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    def stall(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(NetworkError):
        await SerplySearchProvider("k", transport=httpx.MockTransport(refuse)).search("q", 5)
    with pytest.raises(SearchTimeoutError):
        await SerplySearchProvider("k", transport=httpx.MockTransport(stall)).search("q", 5)


def test_missing_credentials_are_auth_errors():
    with pytest.raises(AuthError):
        SerplySearchProvider("")
    with pytest.raises(AuthError):
        ApifyScrapingService("")


@pytest.mark.asyncio
async def test_apify_scrape_calls_platform_actor():
    seen = []
    items = [{"username": "mariafitness", "followersCount": 52000}]
    service = ApifyScrapingService(
        "token",
        base_url="https://api.example/v2/",
        actors={"instagram": "acme~ig-profile"},
        transport=transport_returning(body=items, seen=seen),
    )

    records = await service.scrape(["https://www.instagram.com/mariafitness/"], "instagram", {"resultsLimit": 1})

    request = seen[0]
    assert str(request.url) == "https://api.example/v2/acts/acme~ig-profile/run-sync-get-dataset-items"
    assert request.headers["Authorization"] == "Bearer token"
    assert orjson.loads(request.content)["usernames"] == ["mariafitness"]
    assert records == [{"username": "mariafitness", "followersCount": 52000, "platform": "instagram"}]


@pytest.mark.asyncio
async def test_apify_rejects_unsupported_platform():
    service = ApifyScrapingService("token", actors={}, transport=transport_returning(body=[]))
    with pytest.raises(ClientError):
        await service.scrape(["https://x.com/someone"], "twitter", {})


@pytest.mark.asyncio
async def test_apify_non_list_payload_is_a_parsing_error():
    service = ApifyScrapingService(
        "token", actors={"tiktok": "acme~tt"}, transport=transport_returning(body={"error": "nope"})
    )
    with pytest.raises(ParsingError):
        await service.scrape(["https://www.tiktok.com/@maria"], "tiktok", {})


@pytest.mark.asyncio
async def test_scrape_backed_verifier_scores_completeness():
    complete = [
        {
            "username": "mariafitness",
            "followersCount": 52000,
            "biography": "Fitness coach",
            "fullName": "Maria",
            "profilePicUrl": "https://cdn.example/m.jpg",
            "postsCount": 120,
        }
    ]
    scraper = ApifyScrapingService("t", actors={"instagram": "a"}, transport=transport_returning(body=complete))
    result = await ScrapeBackedVerifier(scraper).verify("https://www.instagram.com/mariafitness/", "instagram", 0.6)
    assert result.verified is True
    assert result.overall_score == 100

    empty = ApifyScrapingService("t", actors={"instagram": "a"}, transport=transport_returning(body=[]))
    result = await ScrapeBackedVerifier(empty).verify("https://www.instagram.com/ghost/", "instagram", 0.6)
    assert result.verified is False
    assert result.confidence == 0.0
