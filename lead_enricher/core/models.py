"""Core data models shared by the enrichment pipeline."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple


class EnrichmentStatus(str, enum.Enum):
    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"


@dataclass(frozen=True, slots=True)
class Record:
    """One business row read from the record source."""

    name: str
    location: Optional[str] = None
    tax_id: Optional[str] = None
    legal_name: Optional[str] = None
    sequence_number: int = 0

    @property
    def has_name(self) -> bool:
        return bool(self.name and self.name.strip())


@dataclass(slots=True)
class ContactInfo:
    """Contact details discovered for a business."""

    website: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    social_media: Dict[str, str] = field(default_factory=dict)

    def merge(self, other: "ContactInfo") -> "ContactInfo":
        """Combine two extraction passes; values already on ``self`` win, and so does its website."""
        socials = dict(other.social_media)
        socials.update(self.social_media)
        return ContactInfo(
            website=self.website or other.website,
            email=self.email or other.email,
            phone=self.phone or other.phone,
            address=self.address or other.address,
            social_media=socials,
        )

    def has_any(self) -> bool:
        return bool(self.website or self.email or self.phone)

    @property
    def is_complete(self) -> bool:
        return bool(self.email and self.phone)


@dataclass(frozen=True, slots=True)
class EnrichmentResult:
    record: Record
    contact_info: ContactInfo
    status: EnrichmentStatus
    processed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    errors: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence_number": self.record.sequence_number,
            "name": self.record.name,
            "location": self.record.location,
            "tax_id": self.record.tax_id,
            "legal_name": self.record.legal_name,
            "website": self.contact_info.website,
            "email": self.contact_info.email,
            "phone": self.contact_info.phone,
            "address": self.contact_info.address,
            "social_media": dict(self.contact_info.social_media),
            "status": self.status.value,
            "processed_at": self.processed_at.isoformat(),
            "errors": list(self.errors),
        }


@dataclass(frozen=True, slots=True)
class ScoredCandidate:
    url: str
    score: int


@dataclass(slots=True)
class LocationData:
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    place_id: Optional[str] = None
    maps_url: Optional[str] = None


@dataclass(slots=True)
class ProcessingStats:
    """Running counters for one batch run."""

    total: int = 0
    processed: int = 0
    successful: int = 0
    partial: int = 0
    failed: int = 0
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    estimated_end_time: Optional[datetime] = None

    def reset(self, total: int, now: Optional[datetime] = None) -> None:
        self.total = total
        self.processed = 0
        self.successful = 0
        self.partial = 0
        self.failed = 0
        self.start_time = now or datetime.now(timezone.utc)
        self.estimated_end_time = None

    def record(self, status: EnrichmentStatus, now: Optional[datetime] = None) -> None:
        """Count one finished record and refresh the completion estimate."""
        now = now or datetime.now(timezone.utc)
        self.processed += 1
        if status is EnrichmentStatus.SUCCESS:
            self.successful += 1
        elif status is EnrichmentStatus.PARTIAL:
            self.partial += 1
        else:
            self.failed += 1

        elapsed = (now - self.start_time).total_seconds()
        if elapsed <= 0:
            return
        rate = self.processed / elapsed
        if rate <= 0:
            return
        remaining = max(self.total - self.processed, 0)
        self.estimated_end_time = now + timedelta(seconds=remaining / rate)

    def snapshot(self) -> "ProcessingStats":
        return replace(self)

    @property
    def progress_percent(self) -> float:
        if not self.total:
            return 100.0
        return round(self.processed * 100.0 / self.total, 1)
