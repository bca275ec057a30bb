from __future__ import annotations

from typing import Optional


class CrawlerError(Exception):
    """Base class for crawler errors."""


class MalformedURLError(CrawlerError):
    def __init__(self, url: str):
        super().__init__(f"Malformed URL: {url!r}")
        self.url = url


class FetchError(CrawlerError):
    """
    A failed GET. ``retryable`` tells the fetcher whether backing off and
    trying again can help.
    """

    retryable = True
    category = "fetch_error"

    def __init__(self, url: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class RateLimitedError(FetchError):
    category = "rate_limited"

    def __init__(self, url: str, retry_after: Optional[float] = None):
        super().__init__(url, "HTTP 429 Too Many Requests", status_code=429)
        self.retry_after = retry_after


class ServerError(FetchError):
    category = "server_error"


class NetworkError(FetchError):
    category = "network_error"


class ClientError(FetchError):
    retryable = False
    category = "client_error"
