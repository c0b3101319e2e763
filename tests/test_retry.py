import httpx
import pytest

from influencer_search.exceptions import (
    AuthError,
    BreakerOpenError,
    ClientError,
    NetworkError,
    ParsingError,
    QuotaExceededError,
    RateLimitError,
    SearchTimeoutError,
)
from influencer_search.models import ErrorType
from influencer_search.retry import classify_error, is_retryable, retry_with_backoff, user_friendly_message


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://example.test")
    return httpx.HTTPStatusError("boom", request=request, response=httpx.Response(status, request=request))


@pytest.mark.parametrize(
    "error, expected",
    [
        (NetworkError("down"), ErrorType.NETWORK),
        (SearchTimeoutError("slow"), ErrorType.TIMEOUT),
        (RateLimitError(), ErrorType.RATE_LIMIT),
        (QuotaExceededError("out of credits"), ErrorType.QUOTA_EXCEEDED),
        (AuthError("bad key"), ErrorType.AUTH),
        (ParsingError("garbage"), ErrorType.PARSING),
        (ClientError("bad request", 400), ErrorType.CLIENT),
        (BreakerOpenError("serply", 12), ErrorType.CIRCUIT_OPEN),
        (_status_error(403), ErrorType.AUTH),
        (_status_error(429), ErrorType.RATE_LIMIT),
        (_status_error(503), ErrorType.NETWORK),
        (_status_error(404), ErrorType.CLIENT),
        (httpx.ConnectError("refused"), ErrorType.NETWORK),
        (httpx.ReadTimeout("slow"), ErrorType.TIMEOUT),
        (RuntimeError("???"), ErrorType.UNKNOWN),
    ],
)
def test_classify_error(error, expected):
    assert classify_error(error) == expected


def test_retryability():
    assert is_retryable(NetworkError("x"))
    assert is_retryable(QuotaExceededError("x"))
    assert not is_retryable(AuthError("x"))
    assert not is_retryable(ClientError("x"))
    assert not is_retryable(ParsingError("x"))


def test_user_friendly_messages_hide_internals():
    for error_type in ErrorType:
        message = user_friendly_message(error_type)
        assert message
        assert "Exception" not in message and "HTTP" not in message


@pytest.mark.asyncio
async def test_retries_transient_errors_then_succeeds():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise NetworkError("blip")
        return "ok"

    assert await retry_with_backoff(flaky, initial_backoff=0) == "ok"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_gives_up_after_three_retries_with_original_error():
    calls = []

    async def always_down():
        calls.append(1)
        raise SearchTimeoutError("still slow")

    with pytest.raises(SearchTimeoutError):
        await retry_with_backoff(always_down, initial_backoff=0)
    assert len(calls) == 4  # first attempt + 3 retries


@pytest.mark.asyncio
async def test_auth_errors_fail_immediately():
    calls = []

    async def rejected():
        calls.append(1)
        raise AuthError("invalid key")

    with pytest.raises(AuthError):
        await retry_with_backoff(rejected, initial_backoff=0)
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_backoff_delays_double(monkeypatch):
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    monkeypatch.setattr("influencer_search.retry.asyncio.sleep", fake_sleep)

    async def always_down():
        raise NetworkError("down")

    with pytest.raises(NetworkError):
        await retry_with_backoff(always_down)
    assert delays == [1.0, 2.0, 4.0]
