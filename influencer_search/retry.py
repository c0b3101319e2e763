"""Error classification and retry logic with exponential backoff"""

import asyncio
from typing import Callable, Optional

import httpx
from loguru import logger

from .config import BACKOFF_MULTIPLIER, INITIAL_BACKOFF, MAX_BACKOFF, MAX_RETRIES
from .exceptions import (
    AuthError,
    BreakerOpenError,
    ClientError,
    NetworkError,
    ParsingError,
    QuotaExceededError,
    RateLimitError,
    SearchTimeoutError,
)
from .models import ErrorType

NON_RETRYABLE = {ErrorType.AUTH, ErrorType.CLIENT, ErrorType.PARSING, ErrorType.CIRCUIT_OPEN}

USER_MESSAGES = {
    ErrorType.NETWORK: "A search provider could not be reached. Please try again shortly.",
    ErrorType.TIMEOUT: "The search took too long to respond. Try narrowing your filters.",
    ErrorType.RATE_LIMIT: "Too many searches right now. Please wait a moment and retry.",
    ErrorType.QUOTA_EXCEEDED: "The search service has reached its usage limit for now.",
    ErrorType.AUTH: "The search service rejected our credentials. Please contact support.",
    ErrorType.PARSING: "A provider returned data we could not read.",
    ErrorType.CLIENT: "The search request was not valid. Please check your filters.",
    ErrorType.CIRCUIT_OPEN: "A search provider is temporarily unavailable.",
    ErrorType.UNKNOWN: "Something went wrong while searching. Please try again.",
}


def classify_error(error: BaseException) -> ErrorType:
    """Classify error for appropriate handling"""
    if isinstance(error, AuthError):
        return ErrorType.AUTH
    elif isinstance(error, RateLimitError):
        return ErrorType.RATE_LIMIT
    elif isinstance(error, QuotaExceededError):
        return ErrorType.QUOTA_EXCEEDED
    elif isinstance(error, BreakerOpenError):
        return ErrorType.CIRCUIT_OPEN
    elif isinstance(error, (SearchTimeoutError, asyncio.TimeoutError, httpx.TimeoutException)):
        return ErrorType.TIMEOUT
    elif isinstance(error, ParsingError):
        return ErrorType.PARSING
    elif isinstance(error, ClientError):
        return ErrorType.CLIENT
    elif isinstance(error, NetworkError):
        return ErrorType.NETWORK
    elif isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status in (401, 403):
            return ErrorType.AUTH
        elif status == 402:
            return ErrorType.QUOTA_EXCEEDED
        elif status == 429:
            return ErrorType.RATE_LIMIT
        elif status >= 500:
            return ErrorType.NETWORK
        else:
            return ErrorType.CLIENT
    elif isinstance(error, (httpx.TransportError, ConnectionError)):
        return ErrorType.NETWORK
    elif isinstance(error, ValueError):
        # json.JSONDecodeError / orjson.JSONDecodeError are ValueErrors
        return ErrorType.PARSING
    else:
        return ErrorType.UNKNOWN


def is_retryable(error: BaseException) -> bool:
    return classify_error(error) not in NON_RETRYABLE


def user_friendly_message(error_type: ErrorType) -> str:
    return USER_MESSAGES.get(error_type, USER_MESSAGES[ErrorType.UNKNOWN])


async def retry_with_backoff(
    func: Callable,
    *args,
    max_retries: int = MAX_RETRIES,
    initial_backoff: float = INITIAL_BACKOFF,
    max_backoff: float = MAX_BACKOFF,
    backoff_multiplier: float = BACKOFF_MULTIPLIER,
    on_retry: Optional[Callable] = None,
    **kwargs,
):
    """
    Execute function with exponential backoff retry logic.

    Non-retryable errors (auth, client, parsing, open circuit) are raised
    immediately. Others are retried with delays 1s, 2s, 4s by default, and the
    last error is re-raised once retries run out.

    Args:
        func: Async function to execute
        max_retries: Maximum number of retry attempts
        initial_backoff: Initial backoff duration in seconds
        max_backoff: Maximum backoff duration
        backoff_multiplier: Multiplier for exponential backoff
        on_retry: Optional async callback called on each retry: on_retry(attempt, error)
    """
    backoff = initial_backoff

    for attempt in range(max_retries + 1):
        try:
            result = await func(*args, **kwargs)

            # Success - log recovery if this was a retry
            if attempt > 0:
                logger.success(f"✓ Recovered after {attempt} retries")

            return result

        except Exception as e:
            error_type = classify_error(e)

            if error_type in NON_RETRYABLE:
                logger.warning(f"⛔ Not retrying ({error_type.value}): {e}")
                raise

            if attempt >= max_retries:
                logger.error(f"❌ Failed after {max_retries} retries: {e}")
                raise

            sleep_time = min(backoff, max_backoff)
            if isinstance(e, RateLimitError) and e.retry_after:
                sleep_time = min(max(sleep_time, e.retry_after), max_backoff)

            logger.warning(
                f"⚠️ Attempt {attempt + 1}/{max_retries + 1} failed "
                f"({error_type.value}): {e}"
            )
            logger.info(f"   Retrying in {sleep_time:.1f}s...")

            if on_retry:
                await on_retry(attempt, e)

            await asyncio.sleep(sleep_time)
            backoff *= backoff_multiplier
