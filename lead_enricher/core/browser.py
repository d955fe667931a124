"""Shared Playwright session used by discovery and contact extraction."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, List, Optional, Sequence, Tuple

from playwright.async_api import (
    Error as PlaywrightError,
    Page,
    Route,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from lead_enricher.core.config import DEFAULT_USER_AGENT
from lead_enricher.core.errors import FatalInitError, TransportError

logger = logging.getLogger(__name__)

BLOCKED_RESOURCE_TYPES = frozenset({"image", "stylesheet", "font", "media"})
DEFAULT_TIMEOUT_MS = 15000

_ANCHORS_JS = "els => els.map(el => [el.href || '', (el.textContent || '').trim()])"


def filter_links(anchors: Iterable[Tuple[str, str]], keywords: Optional[Sequence[str]] = None) -> List[str]:
    """Keep unique hrefs, optionally only those whose href or anchor text mentions a keyword."""
    lowered = [keyword.lower() for keyword in keywords or ()]
    links: List[str] = []
    seen = set()
    for href, text in anchors:
        href = (href or "").strip()
        if not href or href in seen:
            continue
        if lowered:
            haystack = f"{href.lower()} {(text or '').lower()}"
            if not any(keyword in haystack for keyword in lowered):
                continue
        seen.add(href)
        links.append(href)
    return links


async def _block_heavy_resources(route: Route) -> None:
    if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


class BrowserSession:
    """Owns one headless Chromium and hands out short-lived pages."""

    def __init__(
        self,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        headless: bool = True,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        locale: str = "es-AR",
    ) -> None:
        self.user_agent = user_agent
        self.headless = headless
        self.default_timeout_ms = default_timeout_ms
        self.locale = locale
        self._playwright = None
        self._browser = None
        self._context = None

    @property
    def is_open(self) -> bool:
        return self._context is not None

    async def open(self) -> "BrowserSession":
        if self._context is not None:
            return self
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=["--no-sandbox"],
            )
            self._context = await self._browser.new_context(
                user_agent=self.user_agent,
                viewport={"width": 1366, "height": 768},
                locale=self.locale,
            )
        except Exception as exc:  # noqa: BLE001
            await self.close()
            raise FatalInitError(f"Unable to start browser session: {exc}") from exc
        logger.info("Browser session started (headless=%s)", self.headless)
        return self

    async def close(self) -> None:
        if self._context is not None:
            try:
                await self._context.close()
            except PlaywrightError as exc:
                logger.debug("Error closing browser context: %s", exc)
            self._context = None
        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as exc:
                logger.debug("Error closing browser: %s", exc)
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def __aenter__(self) -> "BrowserSession":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @asynccontextmanager
    async def page(self, *, block_resources: bool = False) -> AsyncIterator[Page]:
        """Yield a fresh page that is always closed afterwards."""
        if self._context is None:
            raise FatalInitError("Browser session is not open")
        try:
            page = await self._context.new_page()
        except PlaywrightError as exc:
            raise TransportError(f"Unable to open a new page: {exc}") from exc
        try:
            if block_resources:
                await page.route("**/*", _block_heavy_resources)
            yield page
        finally:
            try:
                await page.close()
            except PlaywrightError as exc:
                logger.debug("Error closing page: %s", exc)

    async def navigate(
        self,
        page: Page,
        url: str,
        *,
        wait_until: str = "domcontentloaded",
        timeout_ms: Optional[int] = None,
    ) -> None:
        try:
            await page.goto(url, wait_until=wait_until, timeout=timeout_ms or self.default_timeout_ms)
        except PlaywrightTimeoutError as exc:
            raise TransportError(f"Timed out loading {url}") from exc
        except PlaywrightError as exc:
            raise TransportError(f"Failed to load {url}: {exc}") from exc

    async def wait_for(self, page: Page, selector: str, *, timeout_ms: Optional[int] = None) -> None:
        try:
            await page.wait_for_selector(selector, timeout=timeout_ms or self.default_timeout_ms)
        except PlaywrightTimeoutError as exc:
            raise TransportError(f"Timed out waiting for {selector}") from exc
        except PlaywrightError as exc:
            raise TransportError(f"Failed waiting for {selector}: {exc}") from exc

    async def read_content(self, page: Page) -> str:
        try:
            return await page.content()
        except PlaywrightError as exc:
            raise TransportError(f"Unable to read page content: {exc}") from exc

    async def evaluate_links(
        self,
        page: Page,
        *,
        selector: str = "a[href]",
        keywords: Optional[Sequence[str]] = None,
    ) -> List[str]:
        try:
            anchors = await page.eval_on_selector_all(selector, _ANCHORS_JS)
        except PlaywrightError as exc:
            raise TransportError(f"Unable to evaluate links ({selector}): {exc}") from exc
        return filter_links(((href, text) for href, text in anchors), keywords)

    def current_url(self, page: Page) -> str:
        return page.url
