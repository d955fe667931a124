import pytest

from lead_enricher.core.config import Settings
from lead_enricher.core.errors import FatalInitError
from lead_enricher.core.models import ContactInfo, EnrichmentResult, EnrichmentStatus
from lead_enricher.jobs import run_enrichment_server


@pytest.fixture(autouse=True)
def reset_executor(monkeypatch):
    submitted = {}

    class DummyExecutor:
        def submit(self, fn, limit):
            submitted["called"] = True
            submitted["fn"] = fn
            submitted["limit"] = limit

    monkeypatch.setattr(run_enrichment_server, "_executor", DummyExecutor())
    monkeypatch.setattr(run_enrichment_server, "get_settings", lambda: Settings())
    yield submitted


def test_health_endpoint():
    client = run_enrichment_server.app.test_client()
    response = client.get("/healthz")
    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "ok"
    assert body["search_surfaces"] == ["duckduckgo", "bing"]


def test_enrich_requires_name():
    client = run_enrichment_server.app.test_client()
    assert client.post("/enrich", json={}).status_code == 400
    assert client.post("/enrich", json={"name": "   "}).status_code == 400


def test_enrich_returns_result(monkeypatch):
    seen = {}

    async def fake_enrich_records(records, settings, on_progress=None):
        seen["records"] = records
        contact = ContactInfo(website="https://acme.com.ar/", email="ventas@acme.com.ar", phone="1145678900")
        return [EnrichmentResult(record=records[0], contact_info=contact, status=EnrichmentStatus.SUCCESS)]

    monkeypatch.setattr(run_enrichment_server, "enrich_records", fake_enrich_records)
    client = run_enrichment_server.app.test_client()

    response = client.post("/enrich", json={"name": " Acme SA ", "location": "CABA"})

    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["status"] == "SUCCESS"
    assert data["website"] == "https://acme.com.ar/"
    assert seen["records"][0].name == "Acme SA"
    assert seen["records"][0].location == "CABA"


def test_enrich_reports_unavailable_browser(monkeypatch):
    async def broken(records, settings, on_progress=None):
        raise FatalInitError("no chromium")

    monkeypatch.setattr(run_enrichment_server, "enrich_records", broken)
    client = run_enrichment_server.app.test_client()

    assert client.post("/enrich", json={"name": "Acme"}).status_code == 503


def test_batch_validates_limit(reset_executor):
    client = run_enrichment_server.app.test_client()
    assert client.post("/batch", json={"limit": 0}).status_code == 400
    assert client.post("/batch", json={"limit": "many"}).status_code == 400
    assert "called" not in reset_executor


def test_batch_is_queued(reset_executor):
    client = run_enrichment_server.app.test_client()

    response = client.post("/batch", json={"limit": 25})

    assert response.status_code == 202
    assert response.get_json()["data"] == {"status": "queued", "limit": 25}
    assert reset_executor["fn"] is run_enrichment_server._run_batch_safe
    assert reset_executor["limit"] == 25


def test_run_batch_safe_persists_results(monkeypatch):
    persisted = {}

    async def fake_enrich_records(records, settings, on_progress=None):
        return ["result"]

    monkeypatch.setattr(run_enrichment_server, "init_pool", lambda: None)
    monkeypatch.setattr(run_enrichment_server, "fetch_pending_records", lambda limit: ["record"] * limit)
    monkeypatch.setattr(run_enrichment_server, "enrich_records", fake_enrich_records)
    monkeypatch.setattr(run_enrichment_server, "persist_results", lambda results: persisted.update(results=results))

    run_enrichment_server._run_batch_safe(2)

    assert persisted["results"] == ["result"]


def test_run_batch_safe_logs_failures(monkeypatch, caplog):
    def fail():
        raise RuntimeError("DATABASE_URL is required")

    monkeypatch.setattr(run_enrichment_server, "init_pool", fail)

    run_enrichment_server._run_batch_safe(None)

    assert "Batch enrichment failed" in caplog.text
