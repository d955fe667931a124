"""Client utilities for the Google Places and Geocoding APIs."""

import logging
from typing import Any, Dict, Optional

import requests

from lead_enricher.core.models import LocationData, Record

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://maps.googleapis.com/maps/api"
_DEFAULT_COUNTRY = "Argentina"


class GooglePlacesError(RuntimeError):
    """Raised when the Places API returns a non-successful response."""


def _check_status(payload: Dict[str, Any], operation: str) -> None:
    status = payload.get("status")
    if status not in {"OK", "ZERO_RESULTS"}:
        logger.error("%s failed: status=%s, error_message=%s", operation, status, payload.get("error_message"))
        raise GooglePlacesError(payload.get("error_message") or status)


def _maps_url(lat: Optional[float], lng: Optional[float]) -> Optional[str]:
    if lat is None or lng is None:
        return None
    return f"https://www.google.com/maps/search/?api=1&query={lat},{lng}"


def _to_location(item: Dict[str, Any]) -> LocationData:
    location = (item.get("geometry") or {}).get("location") or {}
    lat = location.get("lat")
    lng = location.get("lng")
    return LocationData(
        address=item.get("formatted_address"),
        latitude=lat,
        longitude=lng,
        place_id=item.get("place_id"),
        maps_url=_maps_url(lat, lng),
    )


def find_place(query: str, api_key: str, region: str = "ar", language: str = "es") -> Optional[LocationData]:
    params = {
        "input": query,
        "inputtype": "textquery",
        "fields": "place_id,name,formatted_address,geometry",
        "language": language,
        "region": region,
        "key": api_key,
    }
    response = _SESSION.get(f"{_BASE_URL}/place/findplacefromtext/json", params=params, timeout=10)
    response.raise_for_status()
    payload = response.json()
    _check_status(payload, "find_place")
    candidates = payload.get("candidates") or []
    return _to_location(candidates[0]) if candidates else None


def geocode(address: str, api_key: str, region: str = "ar", language: str = "es") -> Optional[LocationData]:
    params = {"address": address, "region": region, "language": language, "key": api_key}
    response = _SESSION.get(f"{_BASE_URL}/geocode/json", params=params, timeout=10)
    response.raise_for_status()
    payload = response.json()
    _check_status(payload, "geocode")
    results = payload.get("results") or []
    return _to_location(results[0]) if results else None


def build_location_query(record: Record, address: Optional[str] = None) -> str:
    parts = [record.name, address or record.location, _DEFAULT_COUNTRY]
    return " ".join(part.strip() for part in parts if part and part.strip())


def lookup_location(record: Record, api_key: str, address: Optional[str] = None) -> Optional[LocationData]:
    """Places text search first, Geocoding as fallback; None when nothing matched or the API failed."""
    if not api_key:
        logger.debug("No Google Maps API key; skipping location lookup for %s", record.name)
        return None

    query = build_location_query(record, address)
    try:
        location = find_place(query, api_key)
        if location is None:
            location = geocode(query, api_key)
    except (requests.RequestException, GooglePlacesError) as exc:
        logger.warning("Location lookup failed for %s: %s", record.name, exc)
        return None

    if location is None:
        logger.info("No location found for %s", record.name)
    return location
