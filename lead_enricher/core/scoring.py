"""Relevance scoring and plausibility checks for candidate business websites."""

from __future__ import annotations

import re
import unicodedata
from typing import Iterable, List, Optional
from urllib.parse import urlparse

from lead_enricher.core.models import Record, ScoredCandidate

ACCEPTANCE_THRESHOLD = 10

# A host label equal to one of these disqualifies the URL (articulo.mercadolibre.com.ar).
NON_BUSINESS_BRANDS = frozenset(
    {
        # social networks
        "facebook",
        "instagram",
        "linkedin",
        "youtube",
        "tiktok",
        "pinterest",
        "whatsapp",
        # marketplaces
        "mercadolibre",
        "mercadolivre",
        "amazon",
        "ebay",
        "olx",
        "aliexpress",
        # job boards
        "computrabajo",
        "zonajobs",
        "bumeran",
        "indeed",
        "glassdoor",
        "jooble",
        # wikis and directories
        "wikiwand",
        "paginasamarillas",
        "cylex",
        "infobae",
        "openstreetmap",
        # blogs
        "blogspot",
    }
)

# The host must equal one of these or be a subdomain of it.
NON_BUSINESS_DOMAINS = (
    "fb.com",
    "twitter.com",
    "x.com",
    "youtu.be",
    "wikipedia.org",
    "waze.com",
    "maps.app.goo.gl",
    "duckduckgo.com",
    "bing.com",
    "webcache.googleusercontent.com",
    "wordpress.com",
    "medium.com",
)

# Host label plus path prefix, for services sharing a domain with legitimate pages.
NON_BUSINESS_PATHS = (
    ("google", "/maps"),
    ("google", "/search"),
    ("goo", "/maps"),
)
NON_BUSINESS_HOST_PREFIXES = ("maps.google.",)

DOCUMENT_EXTENSIONS = (".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx")

LEGAL_SUFFIX_RE = re.compile(
    r"(?<!\w)(?:s\.?\s?a\.?\s?s\.?|s\.?\s?r\.?\s?l\.?|s\.?\s?c\.?\s?a\.?|s\.?\s?a\.?|"
    r"ltda\.?|cia\.?|inc\.?|corp\.?|ltd\.?|llc\.?|co\.)(?!\w)",
    re.IGNORECASE,
)

BUSINESS_KEYWORDS = (
    "empresa",
    "company",
    "contacto",
    "contact",
    "nosotros",
    "about",
    "quienes-somos",
    "institucional",
    "corporativo",
)

SHOP_HOST_PREFIXES = ("shop.", "tienda.", "store.")
BLOG_HOST_PREFIXES = ("blog.",)
DIGIT_RUN_RE = re.compile(r"\d{4,}")


def _normalize_word(word: str) -> str:
    decomposed = unicodedata.normalize("NFKD", word.lower())
    ascii_only = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return re.sub(r"[^a-z0-9]", "", ascii_only)


def _words(text: str, min_length: int) -> List[str]:
    words = []
    for raw in (text or "").split():
        word = _normalize_word(raw)
        if len(word) > min_length and word not in words:
            words.append(word)
    return words


def is_plausible_business_url(url: str) -> bool:
    """Return False for malformed URLs and for obvious non-business destinations."""
    if not isinstance(url, str) or not url.strip():
        return False
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return False

    host = parsed.hostname.lower().rstrip(".")
    labels = host.split(".")
    path = parsed.path.lower()
    if host.startswith(NON_BUSINESS_HOST_PREFIXES):
        return False
    if NON_BUSINESS_BRANDS.intersection(labels):
        return False
    if any(host == domain or host.endswith(f".{domain}") for domain in NON_BUSINESS_DOMAINS):
        return False
    if any(label in labels and path.startswith(prefix) for label, prefix in NON_BUSINESS_PATHS):
        return False
    if path.endswith(DOCUMENT_EXTENSIONS) or "/blog/" in path:
        return False
    return True


def clean_business_name(name: str) -> str:
    """Drop legal-entity suffixes (S.A., S.R.L., Inc, ...) and collapse whitespace."""
    cleaned = LEGAL_SUFFIX_RE.sub(" ", name or "")
    cleaned = re.sub(r"[,\s]+$", "", re.sub(r"\s+", " ", cleaned))
    return cleaned.strip()


def score_url(url: str, record: Record, query: str, country_tld: str = "ar") -> int:
    """Heuristic relevance of ``url`` for ``record`` found through ``query``."""
    lowered = (url or "").lower()
    try:
        host = (urlparse(lowered).hostname or "").lower()
    except ValueError:
        host = ""
    tld = country_tld.lower().lstrip(".")
    score = 0

    if host.endswith(f".com.{tld}"):
        score += 40
    elif host.endswith(f".{tld}"):
        score += 30
    elif host.endswith(".com"):
        score += 15

    for word in _words(clean_business_name(record.name), min_length=2):
        if word in lowered:
            score += 25

    for word in _words(query, min_length=3):
        if word in lowered:
            score += 10

    for keyword in BUSINESS_KEYWORDS:
        if keyword in lowered:
            score += 15

    if host.startswith(SHOP_HOST_PREFIXES):
        score -= 10
    if host.startswith(BLOG_HOST_PREFIXES) or "/blog" in lowered:
        score -= 15
    if DIGIT_RUN_RE.search(lowered):
        score -= 5

    return score


def rank_candidates(
    urls: Iterable[str],
    record: Record,
    query: str,
    country_tld: str = "ar",
) -> List[ScoredCandidate]:
    """Score plausible, unique URLs, best first; ties keep their search order."""
    seen = set()
    scored: List[ScoredCandidate] = []
    for url in urls:
        if url in seen or not is_plausible_business_url(url):
            continue
        seen.add(url)
        scored.append(ScoredCandidate(url=url, score=score_url(url, record, query, country_tld)))
    scored.sort(key=lambda candidate: candidate.score, reverse=True)
    return scored


def best_candidate(
    urls: Iterable[str],
    record: Record,
    query: str,
    country_tld: str = "ar",
) -> Optional[ScoredCandidate]:
    ranked = rank_candidates(urls, record, query, country_tld)
    if ranked and ranked[0].score > ACCEPTANCE_THRESHOLD:
        return ranked[0]
    return None
