"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
)


class ConfigError(RuntimeError):
    """Raised when configuration values are missing or malformed."""


@dataclass(frozen=True)
class Settings:
    database_url: str = ""
    serpapi_api_key: str = ""
    google_maps_api_key: str = ""
    tax_id_api_url: str = "https://api.argentinadatos.com/v1/cuit"
    worker_port: int = 9000
    batch_size: int = 5
    max_concurrent: int = 3
    batch_delay_seconds: float = 2.0
    record_timeout_seconds: float = 180.0
    search_surfaces: Tuple[str, ...] = ("duckduckgo", "bing")
    search_max_queries: int = 8
    search_timeout_ms: int = 10000
    page_timeout_ms: int = 20000
    verify_liveness: bool = True
    liveness_timeout_seconds: float = 5.0
    success_requires_website: bool = True
    country_tld: str = "ar"
    default_phone_region: Optional[str] = "AR"
    browser_headless: bool = True
    user_agent: str = DEFAULT_USER_AGENT


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw.strip())
    except ValueError as exc:
        raise ConfigError(f"{name} must be numeric, got {raw!r}") from exc
    if value < 0:
        raise ConfigError(f"{name} must not be negative, got {value}")
    return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    database_url = os.getenv("DATABASE_URL", "")
    serpapi_api_key = os.getenv("SERPAPI_API_KEY", "")
    google_maps_api_key = os.getenv("GOOGLE_MAPS_API_KEY", "")
    tax_id_api_url = os.getenv("TAX_ID_API_URL") or Settings.tax_id_api_url

    surfaces_raw = os.getenv("SEARCH_SURFACES", "duckduckgo,bing")
    search_surfaces = tuple(part.strip().lower() for part in surfaces_raw.split(",") if part.strip())
    if not search_surfaces:
        raise ConfigError("SEARCH_SURFACES must name at least one search surface")

    default_phone_region_raw = os.getenv("DEFAULT_PHONE_REGION", "AR")
    default_phone_region = default_phone_region_raw.strip().upper() or None

    if not database_url:
        logger.warning("DATABASE_URL is not set; database operations will fail.")
    if not google_maps_api_key:
        logger.warning("GOOGLE_MAPS_API_KEY is not configured; geolocation lookups are disabled.")

    return Settings(
        database_url=database_url,
        serpapi_api_key=serpapi_api_key,
        google_maps_api_key=google_maps_api_key,
        tax_id_api_url=tax_id_api_url.rstrip("/"),
        worker_port=_env_int("WORKER_PORT", 9000),
        batch_size=_env_int("ENRICH_BATCH_SIZE", 5, minimum=1),
        max_concurrent=_env_int("ENRICH_MAX_CONCURRENT", 3, minimum=1),
        batch_delay_seconds=_env_float("ENRICH_BATCH_DELAY_SECONDS", 2.0),
        record_timeout_seconds=_env_float("RECORD_TIMEOUT_SECONDS", 180.0),
        search_surfaces=search_surfaces,
        search_max_queries=_env_int("SEARCH_MAX_QUERIES", 8, minimum=1),
        search_timeout_ms=_env_int("SEARCH_TIMEOUT_MS", 10000, minimum=1),
        page_timeout_ms=_env_int("PAGE_TIMEOUT_MS", 20000, minimum=1),
        verify_liveness=_env_bool("VERIFY_LIVENESS", True),
        liveness_timeout_seconds=_env_float("LIVENESS_TIMEOUT_SECONDS", 5.0),
        success_requires_website=_env_bool("SUCCESS_REQUIRES_WEBSITE", True),
        country_tld=os.getenv("COUNTRY_TLD", "ar").strip().lower().lstrip(".") or "ar",
        default_phone_region=default_phone_region,
        browser_headless=_env_bool("BROWSER_HEADLESS", True),
        user_agent=os.getenv("USER_AGENT") or DEFAULT_USER_AGENT,
    )
