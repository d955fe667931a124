"""Per-record enrichment pipeline and the bounded-concurrency batch runner."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Sequence, TypeVar

from lead_enricher.core.async_utils import run_in_batches, with_timeout
from lead_enricher.core.browser import BrowserSession
from lead_enricher.core.config import Settings, get_settings
from lead_enricher.core.discovery import WebsiteDiscovery
from lead_enricher.core.errors import FatalInitError, TransportError
from lead_enricher.core.models import ContactInfo, EnrichmentResult, EnrichmentStatus, ProcessingStats, Record
from lead_enricher.core.site_enricher import SiteEnricher

logger = logging.getLogger(__name__)

T = TypeVar("T")

NO_WEBSITE_NOTE = "no website found"
EMPTY_NAME_NOTE = "empty business name"

ProgressCallback = Callable[[ProcessingStats], Any]


def classify(contact_info: ContactInfo, require_website: bool = True) -> EnrichmentStatus:
    if contact_info.is_complete and (contact_info.website or not require_website):
        return EnrichmentStatus.SUCCESS
    if contact_info.has_any():
        return EnrichmentStatus.PARTIAL
    return EnrichmentStatus.FAILED


def failed_result(record: Record, note: str) -> EnrichmentResult:
    return EnrichmentResult(
        record=record,
        contact_info=ContactInfo(),
        status=EnrichmentStatus.FAILED,
        errors=(note,),
    )


class CompanyEnricher:
    """Discovery followed by extraction for one record, always ending in a terminal status."""

    def __init__(
        self,
        discovery: WebsiteDiscovery,
        extractor: SiteEnricher,
        *,
        require_website: bool = True,
        record_timeout: Optional[float] = None,
    ) -> None:
        self.discovery = discovery
        self.extractor = extractor
        self.require_website = require_website
        self.record_timeout = record_timeout

    async def enrich_record(self, record: Record) -> EnrichmentResult:
        if not record.has_name:
            return failed_result(record, EMPTY_NAME_NOTE)
        try:
            return await self._enrich(record)
        except FatalInitError:
            raise
        except TransportError as exc:
            logger.warning("Giving up on %s: %s", record.name, exc)
            return failed_result(record, str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Error processing %s: %s", record.name, exc)
            return failed_result(record, f"unexpected error: {exc}")

    async def _bounded(self, awaitable: Awaitable[T], what: str) -> T:
        if self.record_timeout:
            return await with_timeout(awaitable, self.record_timeout, what)
        return await awaitable

    async def _enrich(self, record: Record) -> EnrichmentResult:
        logger.info("Processing: %s", record.name)
        notes = []
        try:
            website = await self._bounded(self.discovery.discover(record), f"website search for {record.name!r}")
        except TransportError as exc:
            logger.warning("Website search for %s stopped: %s", record.name, exc)
            website = None
        if not website:
            return failed_result(record, NO_WEBSITE_NOTE)

        try:
            contact_info = await self._bounded(self.extractor.extract(website), f"contact extraction for {website}")
        except TransportError as exc:
            logger.warning("Contact extraction for %s stopped: %s", website, exc)
            contact_info = ContactInfo(website=website)
            notes.append(str(exc))

        status = classify(contact_info, self.require_website)
        if not contact_info.email:
            notes.append("no email found")
        if not contact_info.phone:
            notes.append("no phone found")
        logger.info("%s -> %s (%s)", record.name, status.value, website)
        return EnrichmentResult(
            record=record,
            contact_info=contact_info,
            status=status,
            errors=tuple(notes),
        )


class BatchProcessor:
    """Run records in fixed-size chunks with at most ``max_concurrent`` in flight."""

    def __init__(
        self,
        enricher: CompanyEnricher,
        *,
        batch_size: int = 5,
        max_concurrent: int = 3,
        batch_delay: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be positive")
        self.enricher = enricher
        self.batch_size = batch_size
        self.max_concurrent = max_concurrent
        self.batch_delay = batch_delay
        self.stats = ProcessingStats()
        self._sleep = sleep
        self._stats_lock: Optional[asyncio.Lock] = None

    async def run(self, records: Sequence[Record], on_progress: Optional[ProgressCallback] = None) -> List[EnrichmentResult]:
        """Enrich ``records``; the returned list lines up with the input order."""
        records = list(records)
        self.stats.reset(len(records))
        self._stats_lock = asyncio.Lock()
        results: List[Optional[EnrichmentResult]] = [None] * len(records)
        slots = asyncio.Semaphore(self.max_concurrent)

        async def process_chunk(chunk: Sequence[Record], offset: int) -> List[EnrichmentResult]:
            await asyncio.gather(
                *(self._process(record, offset + index, slots, results) for index, record in enumerate(chunk))
            )
            return [results[offset + index] for index in range(len(chunk))]

        def report(batch_number: int, batch_count: int) -> None:
            self._log_progress(batch_number, batch_count)
            if on_progress is not None:
                on_progress(self.stats.snapshot())

        logger.info(
            "Enriching %s records (batch_size=%s, max_concurrent=%s)",
            len(records),
            self.batch_size,
            self.max_concurrent,
        )
        await run_in_batches(
            records,
            self.batch_size,
            process_chunk,
            delay=self.batch_delay,
            sleep=self._sleep,
            on_batch_done=report,
        )
        logger.info(
            "Completed run: processed=%s success=%s partial=%s failed=%s",
            self.stats.processed,
            self.stats.successful,
            self.stats.partial,
            self.stats.failed,
        )
        return [result for result in results if result is not None]

    async def _process(
        self,
        record: Record,
        index: int,
        slots: asyncio.Semaphore,
        results: List[Optional[EnrichmentResult]],
    ) -> None:
        try:
            if not record.has_name:
                result = failed_result(record, EMPTY_NAME_NOTE)
            else:
                async with slots:
                    result = await self.enricher.enrich_record(record)
        except FatalInitError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unhandled error for %s: %s", record.name, exc)
            result = failed_result(record, f"unexpected error: {exc}")
        results[index] = result
        async with self._stats_lock:
            self.stats.record(result.status)

    def _log_progress(self, batch_number: int, batch_count: int) -> None:
        eta = self.stats.estimated_end_time.strftime("%H:%M:%S") if self.stats.estimated_end_time else "n/a"
        logger.info(
            "Batch %s/%s done: %s/%s records (%.1f%%) success=%s partial=%s failed=%s eta=%s",
            batch_number,
            batch_count,
            self.stats.processed,
            self.stats.total,
            self.stats.progress_percent,
            self.stats.successful,
            self.stats.partial,
            self.stats.failed,
            eta,
        )


def build_enricher(browser: BrowserSession, settings: Settings) -> CompanyEnricher:
    return CompanyEnricher(
        WebsiteDiscovery.from_settings(browser, settings),
        SiteEnricher.from_settings(browser, settings),
        require_website=settings.success_requires_website,
        record_timeout=settings.record_timeout_seconds or None,
    )


async def enrich_records(
    records: Sequence[Record],
    settings: Optional[Settings] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> List[EnrichmentResult]:
    """Open a browser session, enrich every record, and close the session again."""
    settings = settings or get_settings()
    async with BrowserSession(
        user_agent=settings.user_agent,
        headless=settings.browser_headless,
        default_timeout_ms=settings.page_timeout_ms,
    ) as browser:
        processor = BatchProcessor(
            build_enricher(browser, settings),
            batch_size=settings.batch_size,
            max_concurrent=settings.max_concurrent,
            batch_delay=settings.batch_delay_seconds,
        )
        return await processor.run(records, on_progress=on_progress)
