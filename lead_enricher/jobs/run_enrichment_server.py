"""HTTP entrypoint that enriches single records or queues batch runs."""

from __future__ import annotations

import asyncio
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from lead_enricher.core.config import get_settings
from lead_enricher.core.db import fetch_pending_records, init_pool, persist_results
from lead_enricher.core.errors import FatalInitError
from lead_enricher.core.models import Record
from lead_enricher.core.orchestrator import enrich_records

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App & executor ----------
app = Flask(__name__)
_executor = ThreadPoolExecutor(max_workers=1)

# ---------- Routes ----------


@app.get("/healthz")
def healthcheck() -> Any:
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "worker_port_config": settings.worker_port,
                "search_surfaces": list(settings.search_surfaces),
            }
        ),
        200,
    )


@app.post("/enrich")
def enrich_one() -> Any:
    """Enrich one business synchronously. Required JSON field: name."""
    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    name = str(payload.get("name") or "").strip()
    if not name:
        return jsonify({"error": "name is required"}), 400

    record = Record(
        name=name,
        location=(str(payload["location"]).strip() or None) if payload.get("location") else None,
        tax_id=(str(payload["tax_id"]).strip() or None) if payload.get("tax_id") else None,
        legal_name=(str(payload["legal_name"]).strip() or None) if payload.get("legal_name") else None,
    )

    try:
        results = asyncio.run(enrich_records([record], get_settings()))
    except FatalInitError as exc:
        logger.error("Browser unavailable: %s", exc)
        return jsonify({"error": "browser unavailable"}), 503

    return jsonify({"data": results[0].to_dict()}), 200


@app.post("/batch")
def enqueue_batch() -> Any:
    """Queue enrichment of pending records. Optional: limit (int)."""
    payload: Dict[str, Any] = request.get_json(silent=True) or {}

    limit_raw = payload.get("limit")
    limit = None
    if limit_raw is not None:
        try:
            limit = int(limit_raw)
            if limit <= 0:
                return jsonify({"error": "limit must be positive"}), 400
        except (TypeError, ValueError):
            return jsonify({"error": "limit must be numeric"}), 400

    logger.info("Queueing batch enrichment (limit=%s)", limit)
    _executor.submit(_run_batch_safe, limit)
    return jsonify({"data": {"status": "queued", "limit": limit}}), 202


# ---------- Internals ----------


def _run_batch_safe(limit: Optional[int]) -> None:
    try:
        init_pool()
        records = fetch_pending_records(limit)
        if not records:
            logger.info("No pending records to process")
            return
        results = asyncio.run(enrich_records(records, get_settings()))
        persist_results(results)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Batch enrichment failed: %s", exc)


def main() -> None:
    port = int(os.getenv("PORT") or get_settings().worker_port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
