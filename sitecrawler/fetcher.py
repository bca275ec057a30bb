import asyncio
import math
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Awaitable, Callable, Optional

import httpx
from loguru import logger

from sitecrawler.errors import (
    ClientError,
    FetchError,
    NetworkError,
    RateLimitedError,
    ServerError,
)
from sitecrawler.monitoring.metrics_server import (
    FETCH_RETRIES,
    REQUEST_COUNT,
    REQUEST_LATENCY,
)


DEFAULT_POLITENESS_DELAY = 0.8
DEFAULT_MAX_RETRIES = 4
DEFAULT_BACKOFF_BASE = 1.0
DEFAULT_TIMEOUT = 15.0
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; SiteCrawler/1.0)"
DEFAULT_ACCEPT_LANGUAGE = "vi-VN,vi;q=0.9,en-US;q=0.8,en;q=0.7"

Sleep = Callable[[float], Awaitable[None]]


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds to wait according to a ``Retry-After`` header, if parseable."""
    if not value:
        return None
    value = value.strip()

    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        return max(0.0, seconds) if math.isfinite(seconds) else None

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if retry_at is None:
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    return max(0.0, (retry_at - datetime.now(timezone.utc)).total_seconds())


def classify_response(url: str, response: httpx.Response) -> Optional[FetchError]:
    status = response.status_code
    if status < 400:
        return None
    if status == 429:
        return RateLimitedError(url, parse_retry_after(response.headers.get("Retry-After")))
    if status >= 500:
        return ServerError(url, f"HTTP {status}", status_code=status)
    return ClientError(url, f"HTTP {status}", status_code=status)


class Fetcher:
    """
    GET pages politely: a fixed delay before the first attempt, then
    exponential backoff (or ``Retry-After``) for retryable failures.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        accept_language: str = DEFAULT_ACCEPT_LANGUAGE,
        timeout: float = DEFAULT_TIMEOUT,
        politeness_delay: float = DEFAULT_POLITENESS_DELAY,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
        sleep: Sleep = asyncio.sleep,
    ):
        self.user_agent = user_agent
        self.accept_language = accept_language
        self.timeout = timeout
        self.politeness_delay = politeness_delay
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self._sleep = sleep
        self.client = client
        self._owns_client = False

    async def __aenter__(self) -> "Fetcher":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def start(self) -> None:
        if self.client is None:
            self.client = httpx.AsyncClient(
                timeout=httpx.Timeout(timeout=self.timeout),
                follow_redirects=True,
            )
            self._owns_client = True

    async def close(self) -> None:
        if self.client is not None and self._owns_client:
            await self.client.aclose()
            self.client = None
            self._owns_client = False

    @property
    def headers(self) -> dict[str, str]:
        return {
            "User-Agent": self.user_agent,
            "Accept": (
                "text/html,application/xhtml+xml,application/xml;q=0.9,"
                "*/*;q=0.8"
            ),
            "Accept-Language": self.accept_language,
        }

    def backoff_delay(self, attempt: int) -> float:
        return self.backoff_base * 2 ** (attempt - 1)

    async def _get_once(self, url: str) -> str:
        if self.client is None:
            raise RuntimeError("HTTP client is not initialized")

        start = time.perf_counter()
        try:
            response = await self.client.get(url, headers=self.headers)
        except httpx.RequestError as exc:
            REQUEST_COUNT.labels(outcome=NetworkError.category).inc()
            raise NetworkError(url, f"{exc.__class__.__name__}: {exc}") from exc
        finally:
            REQUEST_LATENCY.observe(time.perf_counter() - start)

        error = classify_response(url, response)
        if error is not None:
            REQUEST_COUNT.labels(outcome=error.category).inc()
            raise error

        REQUEST_COUNT.labels(outcome="ok").inc()
        return response.text or ""

    async def fetch(self, url: str) -> str:
        """Return the body of ``url`` or raise the last ``FetchError``."""
        attempt = 0
        await self._sleep(self.politeness_delay)

        while True:
            try:
                return await self._get_once(url)
            except FetchError as exc:
                attempt += 1
                if not exc.retryable or attempt > self.max_retries:
                    raise

                if isinstance(exc, RateLimitedError) and exc.retry_after is not None:
                    wait = exc.retry_after
                else:
                    wait = self.backoff_delay(attempt)

                FETCH_RETRIES.labels(reason=exc.category).inc()
                logger.warning(
                    f"{exc} for {url}; waiting {wait:.2f}s before retry #{attempt}"
                )
                await self._sleep(wait)
