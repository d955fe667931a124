"""Website enrichment utilities for extracting public contact data."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urldefrag, urljoin, urlparse, urlunparse

import phonenumbers
from bs4 import BeautifulSoup

from lead_enricher.core.browser import BrowserSession
from lead_enricher.core.config import Settings
from lead_enricher.core.errors import FatalInitError
from lead_enricher.core.models import ContactInfo

logger = logging.getLogger(__name__)

PAGE_TIMEOUT_MS = 20000
CONTACT_PAGE_TIMEOUT_MS = 15000

SOCIAL_HOSTS = {
    "linkedin": ("linkedin.com",),
    "facebook": ("facebook.com", "fb.com"),
    "instagram": ("instagram.com", "instagr.am"),
    "youtube": ("youtube.com", "youtu.be"),
    "tiktok": ("tiktok.com",),
}
CONTACT_KEYWORDS = (
    "contacto",
    "contact",
    "nosotros",
    "about",
    "empresa",
    "quienes-somos",
    "quienes somos",
    "ubicacion",
    "location",
    "direccion",
    "address",
)
FREE_MAIL_DOMAINS = frozenset(
    {
        "gmail.com",
        "googlemail.com",
        "yahoo.com",
        "yahoo.com.ar",
        "hotmail.com",
        "hotmail.com.ar",
        "outlook.com",
        "outlook.com.ar",
        "live.com",
        "live.com.ar",
        "msn.com",
        "aol.com",
        "icloud.com",
        "me.com",
    }
)
PLACEHOLDER_EMAIL_DOMAINS = ("example.com", "sentry.io", "wixpress.com", "domain.com")
ASSET_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".css", ".js")

EMAIL_REGEX = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
PHONE_PATTERNS = (
    # +54 11 4567-8900, +54 9 351 456-7890
    re.compile(r"(?<!\d)\+54\s?(?:9\s?)?(?:11|[2-9]\d{1,3})\s?\d{3,4}[-\s]?\d{4}(?!\d)"),
    # 011 4567-8900, 0351 456-7890
    re.compile(r"(?<![\d+])0\d{2,4}\s?\d{3,4}[-\s]?\d{4}(?!\d)"),
    # 11 4567-8900, 15 4567-8900
    re.compile(r"(?<![\d+])(?:11|15)\s?\d{4}[-\s]?\d{4}(?!\d)"),
    # (011) 4567-8900
    re.compile(r"\(\d{2,4}\)\s?\d{3,4}[-\s]?\d{4}(?!\d)"),
)
MIN_PHONE_DIGITS = 8
ADDRESS_PATTERNS = (
    # street words, number, then a known city within the same sentence
    re.compile(
        r"(?:[a-záéíóúñ.]+\s){1,5}\d{1,5}[^.\n]{0,80}?"
        r"(?:caba|buenos aires|córdoba|cordoba|rosario|mendoza|tucumán|tucuman|la plata)",
        re.IGNORECASE,
    ),
    re.compile(r"(?:[a-záéíóúñ.]+\s){1,5}\d{1,5}[^.\n]{0,50}?(?:provincia|prov\.|argentina)", re.IGNORECASE),
)
ADDRESS_KEYWORDS = ("calle", "av.", "avenida", "ruta", "piso", "dirección", "direccion", "domicilio", "barrio")


def _email_is_usable(email: str) -> bool:
    domain = email.rsplit("@", 1)[-1]
    if domain in FREE_MAIL_DOMAINS:
        return False
    if any(domain == junk or domain.endswith(f".{junk}") for junk in PLACEHOLDER_EMAIL_DOMAINS):
        return False
    return not email.endswith(ASSET_SUFFIXES)


def extract_emails(text: str) -> List[str]:
    """Return business emails in order of appearance; free-mail addresses are dropped."""
    emails: List[str] = []
    for match in EMAIL_REGEX.finditer(text or ""):
        email = match.group(0).lower().strip(".")
        if email not in emails and _email_is_usable(email):
            emails.append(email)
    return emails


def normalize_phone(raw: str) -> str:
    """Strip separators, the +54 country code and a leading trunk zero."""
    digits = re.sub(r"[\s\-().]", "", raw or "")
    digits = re.sub(r"^\+54", "", digits)
    return re.sub(r"^0", "", digits)


def _is_possible_phone(raw: str, region: Optional[str]) -> bool:
    try:
        parsed = phonenumbers.parse(raw, region or "AR")
    except phonenumbers.NumberParseException:
        return False
    return phonenumbers.is_possible_number(parsed)


def extract_phones(text: str, default_region: Optional[str] = "AR") -> List[str]:
    """Return normalized phone numbers, trying the locale formats in priority order."""
    phones: List[str] = []
    for pattern in PHONE_PATTERNS:
        for match in pattern.finditer(text or ""):
            raw = match.group(0).strip()
            normalized = normalize_phone(raw)
            if len(normalized) < MIN_PHONE_DIGITS or normalized in phones:
                continue
            if _is_possible_phone(raw, default_region):
                phones.append(normalized)
    return phones


def extract_social_links(soup: BeautifulSoup, base_url: str) -> Dict[str, str]:
    """First profile URL found per social platform."""
    results: Dict[str, str] = {}
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href:
            continue

        absolute = urljoin(base_url, href)
        parsed = urlparse(absolute)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            continue

        host = parsed.netloc.lower()
        for platform, allowed_hosts in SOCIAL_HOSTS.items():
            if platform not in results and any(allowed in host for allowed in allowed_hosts):
                results[platform] = urlunparse((parsed.scheme, parsed.netloc, parsed.path.rstrip("/"), "", "", ""))
    return results


def extract_address(soup: BeautifulSoup) -> Optional[str]:
    """Attempt to extract a postal address-like snippet from a page."""

    address_selectors = [
        "[itemprop='address']",
        "address",
        ".address",
        "#address",
        "[class*='direccion']",
        "[id*='direccion']",
        "[class*='domicilio']",
        "[class*='ubicacion']",
    ]

    for selector in address_selectors:
        for node in soup.select(selector):
            text = " ".join(node.stripped_strings)
            if len(text) >= 10:
                return text[:200]

    # Fallback: paragraphs that read like a street address.
    for tag in soup.find_all(["p", "li", "span"]):
        text = tag.get_text(" ", strip=True)
        lowered = text.lower()
        if 15 < len(text) <= 200 and any(keyword in lowered for keyword in ADDRESS_KEYWORDS) and re.search(r"\d", text):
            return text

    return None


def match_address_pattern(text: str) -> Optional[str]:
    for pattern in ADDRESS_PATTERNS:
        match = pattern.search(text or "")
        if match:
            return match.group(0).strip()[:200]
    return None


def _iter_json_ld(payload: Any) -> Iterable[Dict[str, Any]]:
    if isinstance(payload, list):
        for item in payload:
            yield from _iter_json_ld(item)
    elif isinstance(payload, dict):
        yield payload
        if "@graph" in payload:
            yield from _iter_json_ld(payload["@graph"])


def extract_structured_data(soup: BeautifulSoup) -> Dict[str, str]:
    """Email, phone and address from JSON-LD Organization/LocalBusiness blocks and meta tags."""
    data: Dict[str, str] = {}
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            payload = json.loads(script.string or script.get_text() or "")
        except ValueError:
            continue
        for node in _iter_json_ld(payload):
            types = node.get("@type")
            types = types if isinstance(types, list) else [types]
            if not {"Organization", "LocalBusiness"} & set(filter(None, types)):
                continue
            if node.get("email") and "email" not in data:
                data["email"] = str(node["email"]).replace("mailto:", "").strip()
            if node.get("telephone") and "phone" not in data:
                data["phone"] = str(node["telephone"]).strip()
            address = node.get("address")
            if address and "address" not in data:
                if isinstance(address, dict):
                    parts = [address.get("streetAddress"), address.get("addressLocality")]
                    address = " ".join(str(part) for part in parts if part)
                if address:
                    data["address"] = str(address).strip()

    for key in ("email", "phone"):
        if key in data:
            continue
        meta = soup.find("meta", attrs={"name": key}) or soup.find("meta", attrs={"property": key})
        if meta and meta.get("content"):
            data[key] = meta["content"].strip()
    return data


def _tel_links(soup: BeautifulSoup) -> List[str]:
    numbers: List[str] = []
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if href.lower().startswith("tel:"):
            numbers.append(href.split(":", 1)[1])
    return numbers


def extract_contact_info(content: str, url: str, default_region: Optional[str] = "AR") -> ContactInfo:
    """Apply every extraction heuristic to one page's HTML."""
    soup = BeautifulSoup(content or "", "html.parser")
    structured = extract_structured_data(soup)
    socials = extract_social_links(soup, url)

    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    text = soup.get_text(" ", strip=True)

    emails = extract_emails(content)
    if not emails and structured.get("email"):
        emails = extract_emails(structured["email"])

    phones = extract_phones(text, default_region)
    if not phones:
        phones = extract_phones(" ; ".join(_tel_links(soup)), default_region)
    if not phones and structured.get("phone"):
        phones = extract_phones(structured["phone"], default_region)

    address = extract_address(soup) or structured.get("address") or match_address_pattern(text)

    return ContactInfo(
        website=url,
        email=emails[0] if emails else None,
        phone=phones[0] if phones else None,
        address=address,
        social_media=socials,
    )


def pick_contact_link(links: Iterable[str], page_url: str) -> Optional[str]:
    """First same-site link other than the page itself."""
    parsed = urlparse(page_url)
    origin_host = parsed.netloc.lower().removeprefix("www.")
    current = urldefrag(page_url)[0].rstrip("/")
    for link in links:
        if link.lower().startswith(("mailto:", "tel:", "javascript:")):
            continue
        absolute = urldefrag(urljoin(page_url, link))[0]
        candidate = urlparse(absolute)
        if candidate.scheme not in ("http", "https"):
            continue
        if candidate.netloc.lower().removeprefix("www.") != origin_host:
            continue
        if absolute.rstrip("/") == current:
            continue
        return absolute
    return None


class SiteEnricher:
    """Extract contact details from a website and, if needed, one contact-like subpage."""

    def __init__(
        self,
        browser: BrowserSession,
        *,
        timeout_ms: int = PAGE_TIMEOUT_MS,
        contact_page_timeout_ms: int = CONTACT_PAGE_TIMEOUT_MS,
        default_phone_region: Optional[str] = "AR",
        wait_until: str = "load",
    ) -> None:
        self.browser = browser
        self.timeout_ms = timeout_ms
        self.contact_page_timeout_ms = contact_page_timeout_ms
        self.default_phone_region = default_phone_region
        self.wait_until = wait_until

    @classmethod
    def from_settings(cls, browser: BrowserSession, settings: Settings) -> "SiteEnricher":
        return cls(
            browser,
            timeout_ms=settings.page_timeout_ms,
            contact_page_timeout_ms=min(settings.page_timeout_ms, CONTACT_PAGE_TIMEOUT_MS),
            default_phone_region=settings.default_phone_region,
        )

    async def extract(self, url: str) -> ContactInfo:
        """On failure returns whatever was collected, at least the website; only a closed session raises."""
        contact = ContactInfo(website=url)
        try:
            async with self.browser.page(block_resources=True) as page:
                await self.browser.navigate(page, url, wait_until=self.wait_until, timeout_ms=self.timeout_ms)
                content = await self.browser.read_content(page)
                contact = extract_contact_info(content, url, self.default_phone_region)
                if contact.is_complete:
                    return contact

                links = await self.browser.evaluate_links(page, keywords=CONTACT_KEYWORDS)
                contact_url = pick_contact_link(links, self.browser.current_url(page) or url)
                if not contact_url:
                    return contact

                logger.info("Checking contact page %s", contact_url)
                await self.browser.navigate(
                    page, contact_url, wait_until=self.wait_until, timeout_ms=self.contact_page_timeout_ms
                )
                secondary = extract_contact_info(
                    await self.browser.read_content(page), contact_url, self.default_phone_region
                )
                contact = contact.merge(secondary)
        except FatalInitError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning("Contact extraction for %s stopped early: %s", url, exc)

        logger.info(
            "Contacts for %s: email=%s phone=%s address=%s",
            url,
            "yes" if contact.email else "no",
            "yes" if contact.phone else "no",
            "yes" if contact.address else "no",
        )
        return contact
