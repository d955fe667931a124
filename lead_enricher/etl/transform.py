"""Utilities for mapping database rows to records and results back to rows."""

from typing import Any, Dict, Mapping, Optional

from lead_enricher.core.errors import ValidationError
from lead_enricher.core.models import EnrichmentResult, LocationData, Record


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = " ".join(str(value).split())
    return text or None


def row_to_record(row: Mapping[str, Any]) -> Record:
    name = _clean(row.get("name"))
    if not name:
        raise ValidationError("row has no business name")

    sequence_number = row.get("id", row.get("sequence_number"))
    try:
        sequence_number = int(sequence_number)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"row has no usable id: {sequence_number!r}") from exc

    return Record(
        name=name,
        location=_clean(row.get("location")),
        tax_id=_clean(row.get("tax_id")),
        legal_name=_clean(row.get("legal_name")),
        sequence_number=sequence_number,
    )


def result_to_params(result: EnrichmentResult) -> Dict[str, Any]:
    contact = result.contact_info
    return {
        "sequence_number": result.record.sequence_number,
        "website": contact.website,
        "email": contact.email,
        "phone": contact.phone,
        "address": contact.address,
        "social_media": dict(contact.social_media),
        "status": result.status.value,
        "notes": list(result.errors),
        "processed_at": result.processed_at,
    }


def location_to_params(sequence_number: int, location: LocationData) -> Dict[str, Any]:
    return {
        "sequence_number": sequence_number,
        "address": location.address,
        "latitude": location.latitude,
        "longitude": location.longitude,
        "place_id": location.place_id,
        "maps_url": location.maps_url,
    }
