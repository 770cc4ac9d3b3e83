import json

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.search_routes import get_pipeline
from app.verify_routes import get_verifier
from leadscout.classifier import LocationClassifier
from leadscout.models import VerificationResult
from leadscout.pipeline import LeadPipeline
from leadscout.retry import CircuitBreaker
from leadscout.search_agent import UnitSearchAgent
from leadscout.validator import BatchValidator

from conftest import FakeProvider


class AllValidVerifier:
    def __init__(self):
        self.items = []

    async def verify(self, items):
        self.items.extend(items)
        return [
            VerificationResult(
                email=it.email, is_valid=True, confidence=90, reason="Valid",
                has_valid_format=True, has_mx_records=True, domain_matches_website=True,
            )
            for it in items
        ]


def _handler(prompt):
    if "Decide whether the location" in prompt:
        return '{"type": "single", "subLocations": ["Vienna"]}'
    return json.dumps([
        {"name": "Donau Soft", "website": "donausoft.at", "email": "anna@donausoft.at", "description": "Apps."},
        {"name": "Ring Labs", "website": "https://ringlabs.at", "email": "max@ringlabs.at"},
    ])


@pytest.fixture
def client(make_gateway):
    gw = make_gateway()
    provider = FakeProvider(_handler)
    pipeline = LeadPipeline(
        LocationClassifier(provider, gw),
        UnitSearchAgent(provider, gw, probe_websites=False),
        BatchValidator(AllValidVerifier(), gw, pause_s=0),
        provider_breaker=CircuitBreaker(name="provider"),
        provider_scheduler=gw.scheduler,
    )
    verifier = AllValidVerifier()
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    app.dependency_overrides[get_verifier] = lambda: verifier
    try:
        with TestClient(app) as c:
            c.verifier = verifier
            yield c
    finally:
        app.dependency_overrides.clear()


def test_search_runs_to_completion(client):
    r = client.post("/api/searches", json={"location": "Vienna", "category": "tech"})
    assert r.status_code == 202
    assert r.headers.get("x-request-id")
    search_id = r.json()["search_id"]

    status = client.get(f"/api/searches/{search_id}").json()
    assert status["status"] == "done"
    assert status["progress"] == 100
    assert [lead["name"] for lead in status["leads"]] == ["Donau Soft", "Ring Labs"]
    assert status["leads"][0]["website"] == "https://donausoft.at"
    assert all(lead["is_verified"] for lead in status["leads"])
    assert status["logs"][-1] == "Found 2 unique lead(s), 2 verified"


def test_stream_replays_finished_search(client):
    search_id = client.post("/api/searches", json={"location": "Vienna", "category": "tech"}).json()["search_id"]
    r = client.get(f"/api/searches/{search_id}/stream")
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    assert r.text.startswith("event: done\n")
    payload = json.loads(r.text.split("data: ", 1)[1].strip())
    assert payload["context"]["lead_count"] == 2


def test_rejects_unknown_category(client):
    r = client.post("/api/searches", json={"location": "Vienna", "category": "bakeries"})
    assert r.status_code == 422


def test_rejects_blank_location(client):
    r = client.post("/api/searches", json={"location": "   ", "category": "tech"})
    assert r.status_code == 422


def test_unknown_search_is_404(client):
    assert client.get("/api/searches/s-missing").status_code == 404
    assert client.get("/api/searches/s-missing/stream").status_code == 404


def test_validate_emails_caps_at_twenty(client):
    emails = [{"email": f"a{i}@x.io", "website": "x.io", "companyName": "X"} for i in range(25)]
    r = client.post("/api/validate-emails", json={"emails": emails})
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert len(body["results"]) == 20
    assert body["results"][0] == {
        "email": "a0@x.io", "isValid": True, "hasValidFormat": True, "hasMxRecords": True,
        "domainMatchesWebsite": True, "confidence": 90, "reason": "Valid",
    }
    assert len(client.verifier.items) == 20


def test_health_reports_provider_state(client):
    body = client.get("/health").json()
    assert body == {"ok": True, "provider_circuit": "CLOSED", "provider_queue": 0, "provider_in_flight": 0}


def test_stream_ends_when_run_finishes_while_subscribing(client, monkeypatch):
    import app.search_routes as search_routes
    from app.search_runs import create_run

    run = create_run()
    real_subscribe = search_routes.subscribe

    def subscribe_then_finish(search_id):
        events = real_subscribe(search_id)
        run.on_progress(100.0, "No leads found")
        run.finish([])
        return events

    monkeypatch.setattr(search_routes, "subscribe", subscribe_then_finish)
    r = client.get(f"/api/searches/{run.search_id}/stream")
    assert r.status_code == 200
    assert r.text.startswith("event: done\n")
    payload = json.loads(r.text.split("data: ", 1)[1].strip())
    assert payload["message"] == "No leads found"
    assert payload["context"]["lead_count"] == 0


def test_shared_pipeline_serves_consecutive_clients(client):
    # a second TestClient session runs on a fresh event loop
    for _ in range(2):
        with TestClient(app) as c:
            r = c.post("/api/searches", json={"location": "Vienna", "category": "tech"})
            status = c.get(f"/api/searches/{r.json()['search_id']}").json()
            assert status["status"] == "done"
