from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import aiohttp

from tech_news_aggregator.config import Config


logger = logging.getLogger(__name__)

FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml, text/xml;q=0.9, */*;q=0.8"
HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
JSON_ACCEPT = "application/json, text/plain;q=0.9, */*;q=0.8"


class FetchError(Exception):
    """A source could not be fetched (network failure, timeout or bad status)."""

    def __init__(self, url: str, message: str, status: int | None = None) -> None:
        super().__init__(f"{message} ({url})")
        self.url = url
        self.status = status


@dataclass
class RetryPolicy:
    max_attempts: int
    base_delay_seconds: float
    max_delay_seconds: float
    retry_statuses: set[int]

    def delay_for(self, attempt: int) -> float:
        return min(self.max_delay_seconds, self.base_delay_seconds * (2 ** (attempt - 1)))


class DomainRateLimiter:
    """Simple per-domain token bucket implemented with asyncio primitives."""

    def __init__(self, max_requests_per_period: int, period_seconds: float) -> None:
        self._max = max_requests_per_period
        self._period = period_seconds
        self._domain_locks: dict[str, asyncio.Lock] = {}
        self._domain_times: dict[str, list[float]] = {}

    async def acquire(self, url: str) -> None:
        domain = urlparse(url).netloc.lower() or url
        lock = self._domain_locks.setdefault(domain, asyncio.Lock())
        loop = asyncio.get_running_loop()

        while True:
            async with lock:
                now = loop.time()
                times = self._domain_times.setdefault(domain, [])
                cutoff = now - self._period
                while times and times[0] <= cutoff:
                    times.pop(0)

                if len(times) < self._max:
                    times.append(now)
                    return

                # wait until the oldest token expires
                wait_for = (times[0] + self._period) - now

            await asyncio.sleep(max(0.0, wait_for))


def _domain_matches(domain: str, suffixes: list[str]) -> bool:
    d = domain.lower()
    for s in suffixes:
        s = s.lower().strip()
        if not s:
            continue
        if s.startswith("."):
            if d.endswith(s):
                return True
        elif d == s or d.endswith("." + s):
            return True
    return False


class HttpClient:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        limiter: DomainRateLimiter,
        retry: RetryPolicy,
        semaphore: asyncio.Semaphore,
        user_agent: str,
        timeout_seconds: int,
        proxy: str | None = None,
        proxy_bypass_domains: list[str] | None = None,
    ) -> None:
        self._session = session
        self._limiter = limiter
        self._retry = retry
        self._sem = semaphore
        self._ua = user_agent
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._proxy = proxy
        self._bypass = list(proxy_bypass_domains or [])

    def proxy_for(self, url: str) -> Optional[str]:
        if not self._proxy:
            return None
        domain = urlparse(url).netloc.lower()
        if _domain_matches(domain, self._bypass):
            return None
        return self._proxy

    async def get_text(self, url: str, accept: str = HTML_ACCEPT) -> str:
        """GET a URL and return its body, retrying transient failures.

        Raises FetchError once the retry budget is exhausted or on a
        non-retryable error status.
        """

        headers: dict[str, str] = {
            "User-Agent": self._ua,
            "Accept": accept,
            "Accept-Language": "en-US,en;q=0.9,zh-CN;q=0.8",
        }
        proxy = self.proxy_for(url)

        last_error = "no attempt made"
        last_status: int | None = None
        for attempt in range(1, self._retry.max_attempts + 1):
            await self._limiter.acquire(url)
            async with self._sem:
                try:
                    async with self._session.get(
                        url, headers=headers, timeout=self._timeout, proxy=proxy
                    ) as r:
                        status = r.status
                        if status in self._retry.retry_statuses:
                            last_status = status
                            raise aiohttp.ClientResponseError(
                                request_info=r.request_info,
                                history=r.history,
                                status=status,
                                message=f"retryable status {status}",
                                headers=r.headers,
                            )
                        if status >= 400:
                            raise FetchError(url, f"HTTP {status}", status=status)
                        return await r.text(errors="ignore")
                except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                    last_error = str(e) or e.__class__.__name__
                    if attempt >= self._retry.max_attempts:
                        break
                    delay = self._retry.delay_for(attempt)
                    # jitter to avoid thundering herd
                    delay *= random.uniform(0.7, 1.3)
                    logger.debug("Retrying %s in %.2fs after: %s", url, delay, last_error)
            await asyncio.sleep(delay)

        raise FetchError(url, f"request failed: {last_error}", status=last_status)


def build_http_client(cfg: Config, session: aiohttp.ClientSession) -> HttpClient:
    http_cfg = cfg.section("http")
    conc_cfg = cfg.section("concurrency")
    rl_cfg = cfg.section("rate_limit")
    rt_cfg = cfg.section("retry")

    limiter = DomainRateLimiter(
        max_requests_per_period=int(rl_cfg["max_requests_per_period"]),
        period_seconds=float(rl_cfg["period_seconds"]),
    )
    retry = RetryPolicy(
        max_attempts=max(1, int(rt_cfg["max_attempts"])),
        base_delay_seconds=float(rt_cfg["base_delay_seconds"]),
        max_delay_seconds=float(rt_cfg["max_delay_seconds"]),
        retry_statuses=set(int(x) for x in rt_cfg.get("retry_statuses", [])),
    )
    return HttpClient(
        session=session,
        limiter=limiter,
        retry=retry,
        semaphore=asyncio.Semaphore(int(conc_cfg["max_in_flight_requests"])),
        user_agent=str(http_cfg["user_agent"]),
        timeout_seconds=int(http_cfg["timeout_seconds"]),
        proxy=cfg.proxy,
        proxy_bypass_domains=list(http_cfg.get("proxy_bypass_domains") or []),
    )


def new_session(cfg: Config) -> aiohttp.ClientSession:
    connector = aiohttp.TCPConnector(limit=int(cfg.section("http")["max_connections"]))
    return aiohttp.ClientSession(connector=connector)
