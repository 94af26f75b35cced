from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path

import httpx

from archiveharvest.pipeline.hashing import sha256_text
from archiveharvest.pipeline.io import write_bytes_atomic
from archiveharvest.pipeline.ratelimit import RateLimiter
from archiveharvest.settings import DEFAULT_USER_AGENT

logger = logging.getLogger(__name__)

_RETRY_STATUSES = {429, 500, 502, 503, 504}


class FetchError(Exception):
    """A page could not be retrieved. ``status_code`` is None for transport errors."""

    def __init__(self, url: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class CachedFetcher:
    """Fetches raw documents, keeping every successful body on disk.

    The cache key is the SHA-256 of the absolute URL. A cache hit returns the
    stored bytes without touching the network or the rate limiter. Entries
    never expire; operators delete the cache directory to force a re-fetch.
    """

    def __init__(
        self,
        *,
        cache_dir: Path,
        limiter: RateLimiter,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout_s: float = 30.0,
        max_retries: int = 2,
        backoff_s: float = 0.6,
        sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._cache_dir = cache_dir
        self._limiter = limiter
        self._user_agent = user_agent
        self._max_retries = max_retries
        self._backoff_s = backoff_s
        self._sleep_fn = sleep_fn
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout_s,
            follow_redirects=True,
            headers={"User-Agent": user_agent},
        )

    @property
    def user_agent(self) -> str:
        return self._user_agent

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> CachedFetcher:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def cache_path_for(self, url: str) -> Path:
        return self._cache_dir / f"{sha256_text(url)}.html"

    async def fetch(self, url: str, *, use_cache: bool = True) -> bytes:
        cache_path = self.cache_path_for(url)
        if use_cache and cache_path.exists():
            logger.debug("Cache hit for %s", url)
            return cache_path.read_bytes()

        resp = await self._get_with_retries(url)
        if use_cache:
            # Each writer renames its own temp file, so the last complete body wins.
            write_bytes_atomic(cache_path, resp.content)
        return resp.content

    async def _get_with_retries(self, url: str) -> httpx.Response:
        headers = {
            "User-Agent": self._user_agent,
            "Accept": "text/html,application/xhtml+xml,application/json;q=0.9,*/*;q=0.8",
        }
        for attempt in range(self._max_retries + 1):
            await self._limiter.throttle()
            try:
                resp = await self._client.get(url, headers=headers)
            except httpx.RequestError as e:
                if attempt >= self._max_retries:
                    raise FetchError(url, f"Request failed for {url} ({type(e).__name__}: {e})") from e
                await self._sleep_fn(self._backoff_delay(attempt))
                continue

            if resp.status_code in _RETRY_STATUSES and attempt < self._max_retries:
                delay = _retry_after_seconds(resp) or self._backoff_delay(attempt)
                logger.info("Retrying %s after HTTP %s (attempt %d)", url, resp.status_code, attempt + 1)
                await self._sleep_fn(delay)
                continue

            if not resp.is_success:
                raise FetchError(
                    url,
                    f"Request failed for {url} ({resp.status_code} {resp.reason_phrase})",
                    status_code=resp.status_code,
                )
            return resp

        raise RuntimeError("HTTP request failed unexpectedly.")

    def _backoff_delay(self, attempt: int) -> float:
        # 0.6, 1.2, 2.4, 4.8... (capped)
        delay = self._backoff_s * (1 << attempt)
        return min(20.0, delay)


def _retry_after_seconds(resp: httpx.Response) -> float | None:
    raw = resp.headers.get("Retry-After")
    if not raw:
        return None
    raw = raw.strip()
    if raw.isdigit():
        return float(raw)
    return None
