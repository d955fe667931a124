"""Database helpers: read pending records and write enrichment results back."""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional

import psycopg2
from psycopg2 import extras, pool

from lead_enricher.core.config import get_settings
from lead_enricher.core.errors import ValidationError
from lead_enricher.core.models import EnrichmentResult, LocationData, Record
from lead_enricher.etl.transform import location_to_params, result_to_params, row_to_record

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.SimpleConnectionPool] = None


def init_pool(minconn: int = 1, maxconn: int = 5) -> pool.SimpleConnectionPool:
    """Initialise and return the shared connection pool."""
    global _connection_pool
    if _connection_pool is None:
        settings = get_settings()
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is required for database connections")
        _connection_pool = pool.SimpleConnectionPool(
            minconn,
            maxconn,
            dsn=settings.database_url,
            connect_timeout=10,
        )
        logger.info("Database connection pool initialised")
    return _connection_pool


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection."""
    pg_pool = init_pool()
    conn = pg_pool.getconn()
    try:
        yield conn
    finally:
        pg_pool.putconn(conn)


_SELECT_PENDING = """
SELECT id, name, location, tax_id, legal_name
FROM companies
WHERE enrichment_status IS DISTINCT FROM 'SUCCESS'
  AND COALESCE(TRIM(name), '') <> ''
ORDER BY id
"""

_UPDATE_RESULT = """
UPDATE companies SET
    website = COALESCE(%(website)s, website),
    email = COALESCE(%(email)s, email),
    phone = COALESCE(%(phone)s, phone),
    address = COALESCE(%(address)s, address),
    social_media = %(social_media)s,
    enrichment_status = %(status)s,
    enrichment_notes = %(notes)s,
    processed_at = %(processed_at)s,
    updated_at = NOW()
WHERE id = %(sequence_number)s
"""

_UPDATE_LOCATION = """
UPDATE companies SET
    address = COALESCE(address, %(address)s),
    latitude = %(latitude)s,
    longitude = %(longitude)s,
    place_id = %(place_id)s,
    maps_url = %(maps_url)s,
    updated_at = NOW()
WHERE id = %(sequence_number)s
"""

_UPDATE_TAX_DATA = """
UPDATE companies SET
    tax_id = COALESCE(tax_id, %(tax_id)s),
    legal_name = COALESCE(legal_name, %(legal_name)s),
    updated_at = NOW()
WHERE id = %(sequence_number)s
"""


def fetch_pending_records(limit: Optional[int] = None) -> List[Record]:
    """Return records that have not been enriched successfully yet, in source order."""
    sql = _SELECT_PENDING
    params: Dict[str, Any] = {}
    if limit is not None:
        sql += " LIMIT %(limit)s"
        params["limit"] = int(limit)

    records: List[Record] = []
    with get_connection() as conn:
        with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()

    for row in rows:
        try:
            records.append(row_to_record(row))
        except ValidationError as exc:
            logger.warning("Skipping row %s: %s", row.get("id"), exc)
    logger.info("Loaded %d pending records", len(records))
    return records


def persist_results(results: Iterable[EnrichmentResult]) -> int:
    """Write every result onto its source row; returns the number of rows sent."""
    params = [result_to_params(result) for result in results]
    if not params:
        return 0

    params = [{**item, "social_media": extras.Json(item["social_media"]), "notes": extras.Json(item["notes"])} for item in params]
    with get_connection() as conn:
        try:
            with conn.cursor() as cur:
                extras.execute_batch(cur, _UPDATE_RESULT, params)
            conn.commit()
        except psycopg2.Error:
            conn.rollback()
            raise
    logger.info("Persisted %d enrichment results", len(params))
    return len(params)


def update_location(sequence_number: int, location: LocationData) -> None:
    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(_UPDATE_LOCATION, location_to_params(sequence_number, location))
        conn.commit()
        logger.debug("Stored location for row %s", sequence_number)


def update_tax_data(record: Record) -> None:
    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(
                _UPDATE_TAX_DATA,
                {
                    "sequence_number": record.sequence_number,
                    "tax_id": record.tax_id,
                    "legal_name": record.legal_name,
                },
            )
        conn.commit()
        logger.debug("Stored tax data for row %s", record.sequence_number)
