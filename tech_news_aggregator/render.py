from __future__ import annotations

import logging
from typing import Protocol

from tech_news_aggregator.config import Config
from tech_news_aggregator.http import FetchError


logger = logging.getLogger(__name__)


class Renderer(Protocol):
    """Fetch the post-JavaScript DOM of a page as HTML."""

    async def render(self, url: str) -> str: ...


class PlaywrightRenderer:
    """Headless Chromium via Playwright.

    The browser is launched lazily on first use and reused until `close()`.
    Playwright is an optional dependency (the `headless` extra); it is only
    imported when a rendered source is actually fetched.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 30,
        wait_until: str = "networkidle",
        user_agent: str | None = None,
        proxy: str | None = None,
    ) -> None:
        self._timeout_ms = int(timeout_seconds * 1000)
        self._wait_until = wait_until
        self._user_agent = user_agent
        self._proxy = proxy
        self._playwright = None
        self._browser = None

    async def _ensure_browser(self):
        if self._browser is None:
            from playwright.async_api import async_playwright

            self._playwright = await async_playwright().start()
            launch_kwargs = {"headless": True}
            if self._proxy:
                launch_kwargs["proxy"] = {"server": self._proxy}
            self._browser = await self._playwright.chromium.launch(**launch_kwargs)
        return self._browser

    async def render(self, url: str) -> str:
        from playwright.async_api import Error as PlaywrightError

        browser = await self._ensure_browser()
        context = await browser.new_context(user_agent=self._user_agent)
        try:
            page = await context.new_page()
            try:
                response = await page.goto(url, wait_until=self._wait_until, timeout=self._timeout_ms)
            except PlaywrightError as e:
                raise FetchError(url, f"render failed: {e}") from e
            if response is not None and response.status >= 400:
                raise FetchError(url, f"HTTP {response.status}", status=response.status)
            return await page.content()
        finally:
            await context.close()

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None


def build_renderer(cfg: Config) -> Renderer | None:
    headless = cfg.section("headless")
    if not bool(headless.get("enabled", False)):
        return None
    logger.info("Headless rendering enabled")
    return PlaywrightRenderer(
        timeout_seconds=float(headless.get("timeout_seconds", 30)),
        wait_until=str(headless.get("wait_until", "networkidle")),
        user_agent=str(cfg.section("http").get("user_agent") or "") or None,
        proxy=cfg.proxy,
    )
