"""CUIT (Argentine tax id) helpers and lookups against a public registry API."""

import logging
import re
from difflib import SequenceMatcher
from typing import Any, Dict, List, Optional

import requests

from lead_enricher.core.config import get_settings
from lead_enricher.core.models import Record
from lead_enricher.core.scoring import clean_business_name

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_SESSION.headers.setdefault("Accept", "application/json")

CUIT_WEIGHTS = (5, 4, 3, 2, 7, 6, 5, 4, 3, 2)
SIMILARITY_THRESHOLD = 0.8
LEGAL_FORMS = ("SA", "SRL", "SAS")


class TaxIdLookupError(RuntimeError):
    """Raised when the registry API answers with something unusable."""


def clean_cuit(value: str) -> str:
    return re.sub(r"\D", "", value or "")


def validate_cuit(value: str) -> bool:
    """Check length and the mod-11 verification digit."""
    digits = clean_cuit(value)
    if len(digits) != 11:
        return False
    total = sum(int(digit) * weight for digit, weight in zip(digits[:10], CUIT_WEIGHTS))
    remainder = total % 11
    check = remainder if remainder < 2 else 11 - remainder
    return check == int(digits[10])


def format_cuit(value: str) -> str:
    digits = clean_cuit(value)
    if len(digits) != 11:
        return value
    return f"{digits[:2]}-{digits[2:10]}-{digits[10]}"


def similarity(left: str, right: str) -> float:
    return SequenceMatcher(None, left.lower().strip(), right.lower().strip()).ratio()


def _base_url() -> str:
    return get_settings().tax_id_api_url.rstrip("/")


def lookup_legal_name(cuit: str) -> Optional[str]:
    digits = clean_cuit(cuit)
    if not validate_cuit(digits):
        logger.info("Invalid CUIT %s; skipping lookup", cuit)
        return None

    response = _SESSION.get(f"{_base_url()}/{digits}", timeout=10)
    if response.status_code == 404:
        return None
    response.raise_for_status()
    payload = response.json()
    if not isinstance(payload, dict):
        raise TaxIdLookupError(f"unexpected payload for {digits}")
    legal_name = payload.get("razonSocial") or payload.get("razon_social")
    return legal_name.strip() if isinstance(legal_name, str) and legal_name.strip() else None


def search_tax_id(legal_name: str) -> Optional[str]:
    """Best registry match for a legal name, only if it is close enough."""
    response = _SESSION.get(f"{_base_url()}/search", params={"q": legal_name}, timeout=10)
    response.raise_for_status()
    payload = response.json()
    items: List[Dict[str, Any]] = payload if isinstance(payload, list) else payload.get("results", [])

    best_cuit = None
    best_score = SIMILARITY_THRESHOLD
    for item in items:
        if not isinstance(item, dict):
            continue
        candidate_name = item.get("razonSocial") or item.get("razon_social") or ""
        cuit = clean_cuit(str(item.get("cuit") or ""))
        if not candidate_name or not validate_cuit(cuit):
            continue
        score = similarity(candidate_name, legal_name)
        if score > best_score:
            best_cuit, best_score = cuit, score
    return best_cuit


def lookup_tax_data(record: Record) -> Optional[Dict[str, str]]:
    """Fill whichever of tax_id / legal_name the record is missing; None when nothing was found."""
    try:
        if record.tax_id and not record.legal_name:
            legal_name = lookup_legal_name(record.tax_id)
            if legal_name:
                logger.info("Legal name for %s: %s", record.name, legal_name)
                return {"legal_name": legal_name}

        elif record.legal_name and not record.tax_id:
            cuit = search_tax_id(record.legal_name)
            if cuit:
                logger.info("CUIT for %s: %s", record.name, format_cuit(cuit))
                return {"tax_id": cuit}

        elif not record.tax_id and not record.legal_name:
            base = clean_business_name(record.name)
            terms = dict.fromkeys([base, record.name] + [f"{base} {form}" for form in LEGAL_FORMS])
            for term in terms:
                cuit = search_tax_id(term)
                if cuit:
                    logger.info("CUIT for %s: %s (%s)", record.name, format_cuit(cuit), term)
                    return {"tax_id": cuit, "legal_name": term}
    except (requests.RequestException, TaxIdLookupError, ValueError) as exc:
        logger.warning("Tax id lookup failed for %s: %s", record.name, exc)
        return None

    logger.info("No tax data found for %s", record.name)
    return None
