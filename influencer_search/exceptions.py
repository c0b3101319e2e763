"""Custom exception classes for the influencer search layer"""

from typing import Optional


class InfluencerSearchError(Exception):
    """Base exception for search orchestration errors"""

    pass


class NetworkError(InfluencerSearchError):
    """Raised when an external dependency is unreachable or returns a 5xx"""

    pass


class SearchTimeoutError(InfluencerSearchError):
    """Raised when an external call does not finish within its time budget"""

    def __init__(self, message: str, timeout: Optional[float] = None):
        self.timeout = timeout
        super().__init__(message)


class RateLimitError(InfluencerSearchError):
    """Raised when rate limited"""

    def __init__(self, message: str = "Rate limited", retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(message)


class QuotaExceededError(InfluencerSearchError):
    """Raised when a provider's usage quota or credit balance is exhausted"""

    pass


class AuthError(InfluencerSearchError):
    """Raised when credentials are missing, invalid or rejected.

    Never retried: repeating the call with the same credentials cannot succeed.
    """

    pass


class ParsingError(InfluencerSearchError):
    """Raised when a provider response cannot be decoded"""

    pass


class ClientError(InfluencerSearchError):
    """Raised for malformed requests (4xx other than auth/rate limit)"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class InvalidSearchParamsError(ClientError):
    """Raised when search parameters fail boundary validation"""

    pass


class BreakerOpenError(InfluencerSearchError):
    """Raised when a circuit breaker rejects a call without invoking it.

    This is a control-flow signal, not a dependency failure.
    """

    def __init__(self, name: str, retry_in: float = 0.0, state: str = "OPEN"):
        self.breaker_name = name
        self.retry_in = retry_in
        self.state = state
        super().__init__(f"Circuit '{name}' is {state}, retry in {retry_in:.0f}s")
