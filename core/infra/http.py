"""
http.py – Async HTTP client built on *aiohttp* with retries, 429 / 5xx
          back-off and a courtesy pause between outbound fetches.
"""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Mapping, Optional

import aiohttp

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "LearningPlatform/1.0 (Learning Bot)"
# Rate limits and transient server errors; anything else fails the fetch.
RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})


class HttpClient:
    """
    Thin wrapper over *aiohttp.ClientSession* adding:

    * a default user-agent and per-request headers
    * exponential back-off **with jitter** for 429 / 5xx / network errors
    * *Retry-After* parsing
    * ``pause()`` to space out requests to third-party sites
    """

    def __init__(
        self,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        pause_s: float = 0.0,
        user_agent: str = DEFAULT_USER_AGENT,
        default_headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._external_session = session
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._pause_s = pause_s
        self._own_session: Optional[aiohttp.ClientSession] = None
        self._default_headers: Dict[str, str] = {"User-Agent": user_agent, **(default_headers or {})}

    async def __aenter__(self) -> "HttpClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._external_session:
            return self._external_session
        if self._own_session is None or self._own_session.closed:
            self._own_session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self._timeout))
        return self._own_session

    async def close(self) -> None:
        if self._own_session and not self._own_session.closed:
            await self._own_session.close()
            self._own_session = None

    async def pause(self) -> None:
        """Courtesy delay between fetches to the same site."""
        if self._pause_s > 0:
            await asyncio.sleep(self._pause_s)

    @staticmethod
    def _parse_retry_after(header_val: Optional[str]) -> Optional[float]:
        """Return seconds given a Retry-After header value."""
        if not header_val:
            return None
        header_val = header_val.strip()
        if header_val.isdigit():
            return float(header_val)
        try:
            retry_at = parsedate_to_datetime(header_val)
        except (TypeError, ValueError):
            return None
        if retry_at.tzinfo is None:
            retry_at = retry_at.replace(tzinfo=timezone.utc)
        return max(0.0, (retry_at - datetime.now(timezone.utc)).total_seconds())

    def _backoff(self, attempt: int, retry_after: Optional[float]) -> float:
        if retry_after is not None:
            return min(retry_after, self._max_delay)
        exponential = min(self._base_delay * 2 ** (attempt - 1), self._max_delay)
        return exponential + random.uniform(0, self._base_delay)

    async def _send(self, method: str, url: str, **kwargs) -> aiohttp.ClientResponse:
        """Send one request, retrying rate limits, server errors and dropped connections.

        Rate-limited (429) and 5xx answers are retried after the server's
        Retry-After, or an exponential delay when it gives none. Any other
        error status is raised straight away as ClientResponseError.
        """
        session = await self._ensure_session()
        kwargs["headers"] = {**self._default_headers, **(kwargs.pop("headers", None) or {})}

        attempt = 0
        while True:
            attempt += 1
            last_attempt = attempt >= self._max_retries
            try:
                resp = await session.request(method, url, **kwargs)
            except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
                if last_attempt:
                    logger.error(f"{method} {url} unreachable after {attempt} attempts: {str(e) or type(e).__name__}")
                    raise
                delay = self._backoff(attempt, None)
                logger.warning(f"{method} {url} connection failed ({str(e) or type(e).__name__}), retry {attempt} in {delay:.1f}s")
                await asyncio.sleep(delay)
                continue

            if resp.status not in RETRYABLE_STATUSES:
                resp.raise_for_status()
                return resp

            resp.release()
            if last_attempt:
                logger.error(f"{method} {url} still answering HTTP {resp.status} after {attempt} attempts")
                raise aiohttp.ClientResponseError(
                    resp.request_info,
                    resp.history,
                    status=resp.status,
                    message=f"HTTP {resp.status} after {attempt} attempts",
                    headers=resp.headers,
                )
            delay = self._backoff(attempt, self._parse_retry_after(resp.headers.get("Retry-After")))
            logger.warning(f"{method} {url} answered HTTP {resp.status}, retry {attempt} in {delay:.1f}s")
            await asyncio.sleep(delay)

    async def get_json(self, url: str, headers: Optional[Mapping[str, str]] = None, **kwargs) -> Any:
        """GET a JSON document. Bodies are decoded whatever Content-Type the site sends."""
        resp = await self._send("GET", url, headers={"Accept": "application/json", **(headers or {})}, **kwargs)
        async with resp:
            return await resp.json(content_type=None)

    async def post_json(self, url: str, data: Any, **kwargs) -> int:
        """POST a JSON body; returns the response status."""
        resp = await self._send("POST", url, json=data, **kwargs)
        async with resp:
            return resp.status
