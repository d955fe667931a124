"""Find a business's own website by querying search surfaces through the browser."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import random
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import parse_qs, quote_plus, urlparse

import requests
from serpapi import GoogleSearch

from lead_enricher.core.async_utils import attempt, retry_with_backoff, with_timeout
from lead_enricher.core.browser import BrowserSession
from lead_enricher.core.config import DEFAULT_USER_AGENT, Settings
from lead_enricher.core.errors import ExhaustionError, FatalInitError, TransportError
from lead_enricher.core.models import Record
from lead_enricher.core.scoring import best_candidate, clean_business_name

logger = logging.getLogger(__name__)

RESULT_LIMIT = 5
MAX_QUERIES = 8
SECONDARY_SURFACE_QUERIES = 3
QUERY_DELAY_RANGE = (1.0, 2.5)
SURFACE_DELAY_RANGE = (3.0, 5.0)


def build_queries(record: Record, max_queries: int = MAX_QUERIES, country_tld: str = "ar") -> List[str]:
    """Search strings for ``record``, most precise first and broadest last."""
    name = clean_business_name(record.name) or (record.name or "").strip()
    if not name:
        return []
    location = (record.location or "").strip()
    site = f"site:.com.{country_tld.lower().lstrip('.')}"

    candidates = [f'"{name}" {site}']
    if location:
        candidates.append(f'"{name}" {location} {site}')
        candidates.append(f"{name} {location} contacto")
        candidates.append(f"{name} {location} empresa")
    candidates.append(f'"{name}" sitio web oficial')
    legal_name = clean_business_name(record.legal_name or "")
    if legal_name and legal_name.lower() != name.lower():
        candidates.append(f'"{legal_name}" {site}')
    candidates.append(f"{name} contacto")
    candidates.append(name)

    queries: List[str] = []
    for query in candidates:
        if query not in queries:
            queries.append(query)
    return queries[:max_queries]


class SearchSurface:
    """A query-answering endpoint; ``search`` returns result URLs in ranking order."""

    name = "surface"

    def __init__(self, *, max_queries: int = MAX_QUERIES) -> None:
        self.max_queries = max_queries

    async def search(self, browser: BrowserSession, query: str) -> List[str]:
        raise NotImplementedError


class BrowserSearchSurface(SearchSurface):
    search_url = ""
    result_selector = "a[href]"

    def __init__(self, *, max_queries: int = MAX_QUERIES, timeout_ms: int = 10000) -> None:
        super().__init__(max_queries=max_queries)
        self.timeout_ms = timeout_ms

    def unwrap(self, href: str) -> Optional[str]:
        return href or None

    async def search(self, browser: BrowserSession, query: str) -> List[str]:
        url = self.search_url.format(query=quote_plus(query))
        async with browser.page(block_resources=True) as page:
            await browser.navigate(page, url, timeout_ms=self.timeout_ms)
            await browser.wait_for(page, self.result_selector, timeout_ms=self.timeout_ms)
            hrefs = await browser.evaluate_links(page, selector=self.result_selector)

        links: List[str] = []
        for href in hrefs:
            link = self.unwrap(href)
            if link and link not in links:
                links.append(link)
        return links[:RESULT_LIMIT]


class DuckDuckGoSurface(BrowserSearchSurface):
    name = "duckduckgo"
    search_url = "https://html.duckduckgo.com/html/?q={query}&kl=ar-es"
    result_selector = "a.result__a"

    def unwrap(self, href: str) -> Optional[str]:
        parsed = urlparse(href or "")
        if parsed.netloc.endswith("duckduckgo.com") and parsed.path.startswith("/l/"):
            target = parse_qs(parsed.query).get("uddg")
            return target[0] if target else None
        return href or None


class BingSurface(BrowserSearchSurface):
    name = "bing"
    search_url = "https://www.bing.com/search?q={query}&setlang=es&cc=AR"
    result_selector = "li.b_algo h2 a"

    def unwrap(self, href: str) -> Optional[str]:
        parsed = urlparse(href or "")
        if not (parsed.netloc.endswith("bing.com") and parsed.path.startswith("/ck/")):
            return href or None
        encoded = (parse_qs(parsed.query).get("u") or [""])[0]
        if not encoded.startswith("a1"):
            return None
        payload = encoded[2:]
        payload += "=" * (-len(payload) % 4)
        try:
            return base64.urlsafe_b64decode(payload).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            logger.debug("Unable to decode Bing redirect %s", href)
            return None


class SerpApiSurface(SearchSurface):
    """Google organic results through SerpAPI; the browser is not needed here."""

    name = "serpapi"

    def __init__(
        self,
        api_key: str,
        *,
        max_queries: int = SECONDARY_SURFACE_QUERIES,
        country: str = "ar",
        language: str = "es",
    ) -> None:
        super().__init__(max_queries=max_queries)
        if not api_key:
            raise ValueError("SerpAPI key is required for the serpapi surface")
        self.api_key = api_key
        self.country = country
        self.language = language

    def build_params(self, query: str) -> Dict[str, Any]:
        return {
            "engine": "google",
            "q": query,
            "api_key": self.api_key,
            "gl": self.country,
            "hl": self.language,
            "num": 10,
        }

    def fetch(self, query: str) -> Dict[str, Any]:
        logger.info("Calling SerpAPI for query=%s", query)
        data = GoogleSearch(self.build_params(query)).get_dict()
        if not data:
            raise ValueError("SerpAPI returned an empty payload.")
        if "error" in data:
            raise RuntimeError(f"SerpAPI returned an error response: {data.get('error')}")
        return data

    async def search(self, browser: BrowserSession, query: str) -> List[str]:
        data = await retry_with_backoff(asyncio.to_thread, self.fetch, query, retries=2, base_delay=1.2, jitter=0.8)
        links = [item.get("link") for item in data.get("organic_results") or [] if isinstance(item, dict)]
        return [link for link in links if link][:RESULT_LIMIT]


def build_surfaces(settings: Settings) -> List[SearchSurface]:
    """Instantiate the configured surfaces in priority order."""
    surfaces: List[SearchSurface] = []
    for name in settings.search_surfaces:
        budget = settings.search_max_queries if not surfaces else min(SECONDARY_SURFACE_QUERIES, settings.search_max_queries)
        if name == "duckduckgo":
            surfaces.append(DuckDuckGoSurface(max_queries=budget, timeout_ms=settings.search_timeout_ms))
        elif name == "bing":
            surfaces.append(BingSurface(max_queries=budget, timeout_ms=settings.search_timeout_ms))
        elif name == "serpapi":
            if not settings.serpapi_api_key:
                logger.warning("SERPAPI_API_KEY is not configured; skipping the serpapi surface.")
                continue
            surfaces.append(SerpApiSurface(settings.serpapi_api_key, max_queries=budget, country=settings.country_tld))
        else:
            logger.warning("Unknown search surface %r ignored", name)
    return surfaces


def _head_status(url: str, timeout: float, user_agent: str) -> int:
    response = requests.head(url, timeout=timeout, allow_redirects=True, headers={"User-Agent": user_agent})
    return response.status_code


async def check_liveness(url: str, timeout: float = 5.0, user_agent: str = DEFAULT_USER_AGENT) -> bool:
    """HEAD the URL; servers that refuse HEAD (403/405) still count as alive."""
    try:
        status = await with_timeout(
            asyncio.to_thread(_head_status, url, timeout, user_agent),
            timeout + 1,
            f"liveness check for {url}",
        )
    except (TransportError, requests.RequestException) as exc:
        logger.info("Liveness check failed for %s: %s", url, exc)
        return False
    return status < 400 or status in (403, 405)


class WebsiteDiscovery:
    """Run the query plan across surfaces and return the first accepted, reachable URL."""

    def __init__(
        self,
        browser: BrowserSession,
        surfaces: Sequence[SearchSurface],
        *,
        country_tld: str = "ar",
        max_queries: int = MAX_QUERIES,
        verify_liveness: bool = True,
        liveness_timeout: float = 5.0,
        user_agent: str = DEFAULT_USER_AGENT,
        query_delay: Tuple[float, float] = QUERY_DELAY_RANGE,
        surface_delay: Tuple[float, float] = SURFACE_DELAY_RANGE,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        liveness_check: Optional[Callable[..., Awaitable[bool]]] = None,
    ) -> None:
        self.browser = browser
        self.surfaces = list(surfaces)
        self.country_tld = country_tld
        self.max_queries = max_queries
        self.verify_liveness = verify_liveness
        self.liveness_timeout = liveness_timeout
        self.user_agent = user_agent
        self.query_delay = query_delay
        self.surface_delay = surface_delay
        self._sleep = sleep
        self._liveness_check = liveness_check or check_liveness

    @classmethod
    def from_settings(cls, browser: BrowserSession, settings: Settings) -> "WebsiteDiscovery":
        return cls(
            browser,
            build_surfaces(settings),
            country_tld=settings.country_tld,
            max_queries=settings.search_max_queries,
            verify_liveness=settings.verify_liveness,
            liveness_timeout=settings.liveness_timeout_seconds,
            user_agent=settings.user_agent,
        )

    async def discover(self, record: Record) -> Optional[str]:
        if not record.has_name:
            return None
        try:
            return await self._search(record)
        except ExhaustionError as exc:
            logger.info("%s", exc)
            return None

    async def _pause(self, bounds: Tuple[float, float]) -> None:
        low, high = bounds
        if high > 0:
            await self._sleep(random.uniform(low, high))

    async def _is_alive(self, url: str) -> bool:
        if not self.verify_liveness:
            return True
        return await self._liveness_check(url, self.liveness_timeout, self.user_agent)

    async def _search(self, record: Record) -> str:
        queries = build_queries(record, self.max_queries, self.country_tld)
        attempted = 0
        for surface_index, surface in enumerate(self.surfaces):
            if surface_index:
                await self._pause(self.surface_delay)
            for query_index, query in enumerate(queries[: surface.max_queries]):
                if query_index:
                    await self._pause(self.query_delay)
                attempted += 1
                outcome = await attempt(surface.search, self.browser, query)
                if not outcome.ok:
                    if isinstance(outcome.error, FatalInitError):
                        raise outcome.error
                    logger.warning("Search on %s failed for query=%s: %s", surface.name, query, outcome.error)
                    continue

                candidate = best_candidate((outcome.data or [])[:RESULT_LIMIT], record, query, self.country_tld)
                if candidate is None:
                    logger.debug("No acceptable candidate on %s for query=%s", surface.name, query)
                    continue
                if not await self._is_alive(candidate.url):
                    logger.info("Discarding unreachable candidate %s", candidate.url)
                    continue

                logger.info(
                    "Website for %s found on %s: %s (score=%s)", record.name, surface.name, candidate.url, candidate.score
                )
                return candidate.url

        raise ExhaustionError(f"No website found for {record.name!r} after {attempted} queries")
