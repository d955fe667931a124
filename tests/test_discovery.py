import asyncio
import base64
from contextlib import asynccontextmanager

import pytest
import requests

from lead_enricher.core import discovery
from lead_enricher.core.config import Settings
from lead_enricher.core.errors import FatalInitError, TransportError
from lead_enricher.core.models import Record

ACME = Record(name="Acme SA", location="CABA", sequence_number=2)


class FakeSurface(discovery.SearchSurface):
    def __init__(self, name, responses, max_queries=8):
        super().__init__(max_queries=max_queries)
        self.name = name
        self.responses = list(responses)
        self.queries = []

    async def search(self, browser, query):
        self.queries.append(query)
        response = self.responses.pop(0) if self.responses else []
        if isinstance(response, Exception):
            raise response
        return response


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


class FakeSearchBrowser:
    def __init__(self, hrefs):
        self.hrefs = hrefs
        self.visits = []
        self.waited_for = []
        self.pages_closed = 0

    @asynccontextmanager
    async def page(self, block_resources=False):
        try:
            yield object()
        finally:
            self.pages_closed += 1

    async def navigate(self, page, url, wait_until="domcontentloaded", timeout_ms=None):
        self.visits.append(url)

    async def wait_for(self, page, selector, timeout_ms=None):
        self.waited_for.append(selector)

    async def evaluate_links(self, page, selector="a[href]", keywords=None):
        return list(self.hrefs)


def make_discovery(surfaces, **kwargs):
    kwargs.setdefault("verify_liveness", False)
    kwargs.setdefault("sleep", RecordingSleep())
    return discovery.WebsiteDiscovery(browser=None, surfaces=surfaces, **kwargs)


def test_build_queries_orders_precision_first():
    queries = discovery.build_queries(ACME)

    assert queries[0] == '"Acme" site:.com.ar'
    assert queries[1] == '"Acme" CABA site:.com.ar'
    assert "Acme CABA contacto" in queries
    assert queries[-1] == "Acme"
    assert len(queries) <= 8
    assert len(set(queries)) == len(queries)


def test_build_queries_uses_distinct_legal_name_and_cap():
    record = Record(name="Acme", location="Rosario", legal_name="Industrias Acme SRL")
    queries = discovery.build_queries(record, max_queries=8)
    assert '"Industrias Acme" site:.com.ar' in queries
    assert len(queries) == 8
    assert discovery.build_queries(record, max_queries=3) == queries[:3]


def test_build_queries_empty_name():
    assert discovery.build_queries(Record(name="  ")) == []


def test_discover_discards_social_and_returns_country_domain():
    surface = FakeSurface("fake", [["https://acme.com.ar/about", "https://facebook.com/acme"]])

    website = asyncio.run(make_discovery([surface]).discover(ACME))

    assert website == "https://acme.com.ar/about"
    assert len(surface.queries) == 1


def test_discover_swallows_query_errors_and_moves_on():
    surface = FakeSurface("fake", [TransportError("timeout"), RuntimeError("parse"), ["https://acme.com.ar/"]])

    website = asyncio.run(make_discovery([surface]).discover(ACME))

    assert website == "https://acme.com.ar/"
    assert len(surface.queries) == 3


def test_discover_falls_back_to_next_surface_with_delays():
    sleep = RecordingSleep()
    first = FakeSurface("first", [], max_queries=2)
    second = FakeSurface("second", [["https://acme.com.ar/"]], max_queries=2)
    finder = make_discovery([first, second], sleep=sleep, query_delay=(1.0, 2.5), surface_delay=(3.0, 5.0))

    website = asyncio.run(finder.discover(ACME))

    assert website == "https://acme.com.ar/"
    assert len(first.queries) == 2
    assert len(second.queries) == 1
    # one pause between the two queries on the first surface, one between surfaces
    assert len(sleep.calls) == 2
    assert 1.0 <= sleep.calls[0] <= 2.5
    assert 3.0 <= sleep.calls[1] <= 5.0


def test_discover_returns_none_when_exhausted():
    surface = FakeSurface("fake", [["https://unrelated.net/"]] * 8)
    assert asyncio.run(make_discovery([surface]).discover(ACME)) is None
    assert len(surface.queries) == len(discovery.build_queries(ACME))


def test_discover_skips_unreachable_candidates():
    checked = []

    async def liveness(url, timeout, user_agent):
        checked.append(url)
        return url != "https://acme.com.ar/"

    surface = FakeSurface("fake", [["https://acme.com.ar/"], ["https://acme.com/"]])
    finder = make_discovery([surface], verify_liveness=True, liveness_check=liveness)

    assert asyncio.run(finder.discover(ACME)) == "https://acme.com/"
    assert checked == ["https://acme.com.ar/", "https://acme.com/"]


def test_discover_skips_empty_name_without_searching():
    surface = FakeSurface("fake", [["https://acme.com.ar/"]])
    assert asyncio.run(make_discovery([surface]).discover(Record(name=""))) is None
    assert surface.queries == []


def test_duckduckgo_unwraps_redirect_links():
    surface = discovery.DuckDuckGoSurface()
    href = "https://duckduckgo.com/l/?uddg=https%3A%2F%2Facme.com.ar%2Fcontacto&rut=abc"
    assert surface.unwrap(href) == "https://acme.com.ar/contacto"
    assert surface.unwrap("https://acme.com.ar/") == "https://acme.com.ar/"


def test_bing_unwraps_tracking_links():
    surface = discovery.BingSurface()
    encoded = base64.urlsafe_b64encode(b"https://acme.com.ar/").decode().rstrip("=")
    assert surface.unwrap(f"https://www.bing.com/ck/a?!&&p=x&u=a1{encoded}&ntb=1") == "https://acme.com.ar/"
    assert surface.unwrap("https://www.bing.com/ck/a?u=zz") is None
    assert surface.unwrap("https://acme.com/") == "https://acme.com/"


def test_browser_surface_search_reads_first_results():
    hrefs = [f"https://duckduckgo.com/l/?uddg=https%3A%2F%2Fsite{i}.com.ar%2F" for i in range(7)]
    browser = FakeSearchBrowser(hrefs)

    links = asyncio.run(discovery.DuckDuckGoSurface().search(browser, '"Acme" site:.com.ar'))

    assert links == [f"https://site{i}.com.ar/" for i in range(5)]
    assert browser.visits[0].startswith("https://html.duckduckgo.com/html/?q=%22Acme%22+site%3A.com.ar")
    assert browser.waited_for == ["a.result__a"]
    assert browser.pages_closed == 1


def test_serpapi_surface_reads_organic_results(monkeypatch):
    captured = {}

    class FakeGoogleSearch:
        def __init__(self, params):
            captured.update(params)

        def get_dict(self):
            return {"organic_results": [{"link": "https://acme.com.ar/"}, {"title": "no link"}]}

    monkeypatch.setattr(discovery, "GoogleSearch", FakeGoogleSearch)
    surface = discovery.SerpApiSurface("key")

    links = asyncio.run(surface.search(None, "acme"))

    assert links == ["https://acme.com.ar/"]
    assert captured["q"] == "acme"
    assert captured["engine"] == "google"
    assert captured["gl"] == "ar"


def test_serpapi_surface_requires_key():
    with pytest.raises(ValueError):
        discovery.SerpApiSurface("")


def test_build_surfaces_orders_and_budgets():
    settings = Settings(search_surfaces=("duckduckgo", "serpapi", "bing", "yahoo"), search_max_queries=8)
    surfaces = discovery.build_surfaces(settings)

    assert [surface.name for surface in surfaces] == ["duckduckgo", "bing"]
    assert surfaces[0].max_queries == 8
    assert surfaces[1].max_queries == 3


def test_build_surfaces_includes_serpapi_with_key():
    settings = Settings(search_surfaces=("serpapi",), serpapi_api_key="key")
    surfaces = discovery.build_surfaces(settings)
    assert [surface.name for surface in surfaces] == ["serpapi"]


class DummyResponse:
    def __init__(self, status_code):
        self.status_code = status_code


@pytest.mark.parametrize("status, alive", [(200, True), (301, True), (403, True), (405, True), (404, False), (500, False)])
def test_check_liveness_status_codes(monkeypatch, status, alive):
    monkeypatch.setattr(discovery.requests, "head", lambda url, **kwargs: DummyResponse(status))
    assert asyncio.run(discovery.check_liveness("https://acme.com.ar/")) is alive


def test_check_liveness_network_error(monkeypatch):
    def fail(url, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(discovery.requests, "head", fail)
    assert asyncio.run(discovery.check_liveness("https://acme.com.ar/")) is False


def test_discover_propagates_closed_browser_session():
    surface = FakeSurface("fake", [FatalInitError("Browser session is not open"), ["https://acme.com.ar/"]])

    with pytest.raises(FatalInitError):
        asyncio.run(make_discovery([surface]).discover(ACME))
    assert len(surface.queries) == 1
