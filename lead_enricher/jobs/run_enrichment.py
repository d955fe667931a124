"""CLI job to enrich pending records and persist the results."""

import argparse
import asyncio
import logging
from dataclasses import replace
from typing import Callable, List, Optional

from lead_enricher.core.config import ConfigError, Settings, get_settings
from lead_enricher.core.db import fetch_pending_records, init_pool, persist_results, update_location, update_tax_data
from lead_enricher.core.errors import FatalInitError
from lead_enricher.core.models import EnrichmentResult, ProcessingStats, Record
from lead_enricher.core.orchestrator import enrich_records
from lead_enricher.vendors.google_places import lookup_location
from lead_enricher.vendors.tax_id import lookup_tax_data

logger = logging.getLogger(__name__)

InputFn = Callable[[str], str]

MENU = """
Options:
  1. Process ALL {total} records
  2. Process the first 10 records
  3. Process the first 50 records
  4. Choose a custom amount
  5. Cancel
"""


def choose_amount(total: int, input_fn: InputFn = input) -> int:
    """Interactive selection; returns 0 when the user cancels."""
    print(MENU.format(total=total))
    while True:
        choice = input_fn("Choose an option (1-5): ").strip()
        if choice == "1":
            return total
        if choice == "2":
            return min(10, total)
        if choice == "3":
            return min(50, total)
        if choice == "4":
            while True:
                raw = input_fn(f"How many records? (max {total}): ").strip()
                if raw.isdigit() and 0 < int(raw) <= total:
                    return int(raw)
                print(f"Please enter a number between 1 and {total}")
        if choice == "5":
            return 0
        print("Invalid option. Choose 1, 2, 3, 4 or 5.")


def confirm(message: str, input_fn: InputFn = input) -> bool:
    answer = input_fn(f"{message} (y/n): ").strip().lower()
    return answer in {"y", "yes", "s", "si", "sí"}


def apply_tax_data(records: List[Record]) -> List[Record]:
    enriched: List[Record] = []
    for record in records:
        partial = lookup_tax_data(record)
        if partial:
            record = replace(record, **partial)
            update_tax_data(record)
        enriched.append(record)
    return enriched


def _log_progress(stats: ProcessingStats) -> None:
    print(
        f"Progress: {stats.processed}/{stats.total} ({stats.progress_percent}%) "
        f"success={stats.successful} partial={stats.partial} failed={stats.failed}"
    )


def run_enrichment_job(
    *,
    limit: Optional[int],
    assume_yes: bool,
    with_tax_id: bool = False,
    with_location: bool = False,
    settings: Optional[Settings] = None,
    input_fn: InputFn = input,
) -> List[EnrichmentResult]:
    settings = settings or get_settings()
    init_pool()

    records = fetch_pending_records()
    if not records:
        logger.info("No pending records to process")
        return []
    logger.info("Found %d pending records", len(records))

    amount = min(limit, len(records)) if limit is not None else choose_amount(len(records), input_fn)
    if amount <= 0:
        logger.info("Run cancelled by user")
        return []
    selected = records[:amount]

    if not assume_yes and not confirm(f"Enrich {amount} records?", input_fn):
        logger.info("Run cancelled by user")
        return []

    if with_tax_id:
        selected = apply_tax_data(selected)

    results = asyncio.run(enrich_records(selected, settings, on_progress=_log_progress))
    persist_results(results)

    if with_location:
        for result in results:
            location = lookup_location(result.record, settings.google_maps_api_key, result.contact_info.address)
            if location:
                update_location(result.record.sequence_number, location)

    return results


def _positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected an integer, got {raw!r}") from exc
    if value <= 0:
        raise argparse.ArgumentTypeError(f"must be positive, got {value}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Find websites and contact details for pending records")
    parser.add_argument("--limit", type=_positive_int, help="Number of pending records to process (skips the menu)")
    parser.add_argument("--yes", dest="assume_yes", action="store_true", help="Do not ask for confirmation")
    parser.add_argument("--batch-size", type=_positive_int, help="Records per batch")
    parser.add_argument("--max-concurrent", type=_positive_int, help="Records enriched in parallel")
    parser.add_argument("--with-tax-id", action="store_true", help="Resolve CUIT / legal name before searching")
    parser.add_argument("--with-location", action="store_true", help="Geolocate records after enrichment")
    return parser


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    args = build_parser().parse_args()

    try:
        settings = get_settings()
        overrides = {}
        if args.batch_size:
            overrides["batch_size"] = args.batch_size
        if args.max_concurrent:
            overrides["max_concurrent"] = args.max_concurrent
        if overrides:
            settings = replace(settings, **overrides)

        results = run_enrichment_job(
            limit=args.limit,
            assume_yes=args.assume_yes,
            with_tax_id=args.with_tax_id,
            with_location=args.with_location,
            settings=settings,
        )
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        raise SystemExit(2) from exc
    except FatalInitError as exc:
        logger.error("Unable to start: %s", exc)
        raise SystemExit(1) from exc
    except KeyboardInterrupt:
        logger.warning("Interrupted; no further records will be scheduled")
        raise SystemExit(130)

    logger.info("Enriched %d records", len(results))


if __name__ == "__main__":
    main()
