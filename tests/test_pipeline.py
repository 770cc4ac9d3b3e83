import json
import re

import pytest

from leadscout.classifier import LocationClassifier
from leadscout.errors import PipelineError, UpstreamError
from leadscout.models import SearchRequest, VerificationResult
from leadscout.pipeline import LeadPipeline
from leadscout.search_agent import UnitSearchAgent
from leadscout.validator import BatchValidator

from conftest import FakeProvider

CITIES = [
    "Berlin", "Munich", "Hamburg", "Frankfurt", "Cologne", "Stuttgart", "Dusseldorf", "Leipzig",
    "Dresden", "Hanover", "Nuremberg", "Bremen", "Essen", "Dortmund", "Bonn",
]
_SERVING = re.compile(r"serving ([^,.]+)")


class RecordingVerifier:
    def __init__(self):
        self.calls = 0

    async def verify(self, items):
        self.calls += 1
        return [
            VerificationResult(email=it.email, is_valid=not it.email.startswith("info@"), confidence=70, reason="ok")
            for it in items
        ]


def _companies(city, n):
    slug = city.lower()
    return [
        {"name": f"{city} Soft {i}", "website": f"https://{slug}{i}.example.com", "email": f"jane@{slug}{i}.example.com"}
        for i in range(n)
    ]


def _provider(classification, search):
    def handler(prompt):
        if "Decide whether the location" in prompt:
            return classification
        return search(_SERVING.search(prompt).group(1).strip(), prompt)
    return FakeProvider(handler)


def _pipeline(provider, gateway, verifier):
    return LeadPipeline(
        LocationClassifier(provider, gateway),
        UnitSearchAgent(provider, gateway, probe_websites=False),
        BatchValidator(verifier, gateway, pause_s=0),
    )


def _assert_monotonic(progress):
    values = [p for p, _ in progress]
    assert values == sorted(values)
    assert values[-1] == 100


@pytest.mark.asyncio
async def test_single_city_standard_search(make_gateway):
    provider = _provider('{"type": "single", "subLocations": ["Berlin"]}', lambda city, p: json.dumps(_companies(city, 12)))
    verifier = RecordingVerifier()
    progress = []
    leads = await _pipeline(provider, make_gateway(), verifier).run(
        SearchRequest("Berlin", "tech", "standard"), on_progress=lambda pct, label: progress.append((pct, label))
    )

    search_prompts = [p for p in provider.prompts if "Decide whether" not in p]
    assert len(search_prompts) == 1
    assert "Find 10 unique and active" in search_prompts[0]
    assert len(leads) == 10
    assert all(lead.origin_sub_location == "Berlin" for lead in leads)
    assert all(lead.is_verified for lead in leads)
    _assert_monotonic(progress)
    assert progress[-1][1] == "Found 10 unique lead(s), 10 verified"


@pytest.mark.asyncio
async def test_region_deep_search_skips_failing_city(make_gateway):
    classification = json.dumps({"type": "region", "subLocations": CITIES + ["Leverkusen", "Kiel"]})

    def search(city, prompt):
        if city == "Leipzig":
            return UpstreamError("invalid api key", status_code=401)
        shared = {"name": "Global Corp GmbH", "website": "https://www.globalcorp.com", "email": "info@globalcorp.com"}
        return json.dumps([shared] + _companies(city, 2))

    provider = _provider(classification, search)
    progress = []
    leads = await _pipeline(provider, make_gateway(max_attempts=1), RecordingVerifier()).run(
        SearchRequest("Germany", "tech", "deep"), on_progress=lambda pct, label: progress.append((pct, label))
    )

    searched = [_SERVING.search(p).group(1).strip() for p in provider.prompts if "Decide whether" not in p]
    assert searched == CITIES
    assert all("Find 10 unique" in p for p in provider.prompts[1:])
    units = {lead.origin_sub_location for lead in leads}
    assert "Leipzig" not in units
    assert len(units) == 14
    domains = [lead.website.replace("https://www.", "https://") for lead in leads]
    assert len(domains) == len(set(domains))
    # the shared company is kept once, from the first city that returned it
    globals_ = [lead for lead in leads if lead.name == "Global Corp GmbH"]
    assert [g.origin_sub_location for g in globals_] == ["Berlin"]
    assert not globals_[0].is_verified
    assert len(leads) == 1 + 14 * 2
    assert any(label.startswith("Skipped Leipzig") for _, label in progress)
    _assert_monotonic(progress)


@pytest.mark.asyncio
async def test_region_standard_search_asks_for_one_lead_per_city(make_gateway):
    classification = json.dumps({"type": "region", "subLocations": CITIES[:3]})
    provider = _provider(classification, lambda city, p: json.dumps(_companies(city, 3)))
    leads = await _pipeline(provider, make_gateway(), RecordingVerifier()).run(SearchRequest("Germany", "tech"))
    assert all("single most prominent" in p for p in provider.prompts[1:])
    assert [lead.origin_sub_location for lead in leads] == CITIES[:3]


@pytest.mark.asyncio
async def test_empty_scan_skips_validation(make_gateway):
    provider = _provider('{"type": "single", "subLocations": ["Nowhere"]}', lambda city, p: "[]")
    verifier = RecordingVerifier()
    progress = []
    leads = await _pipeline(provider, make_gateway(), verifier).run(
        SearchRequest("Nowhere", "legal"), on_progress=lambda pct, label: progress.append((pct, label))
    )
    assert leads == []
    assert verifier.calls == 0
    assert progress[-1] == (100, "No leads found")


@pytest.mark.asyncio
async def test_classification_failure_still_searches_raw_location(make_gateway):
    def handler(prompt):
        if "Decide whether the location" in prompt:
            return UpstreamError("permission denied", status_code=403)
        return json.dumps(_companies("Bavaria", 2))

    provider = FakeProvider(handler)
    leads = await _pipeline(provider, make_gateway(), RecordingVerifier()).run(SearchRequest("Bavaria", "events"))
    assert len(leads) == 2
    assert {lead.origin_sub_location for lead in leads} == {"Bavaria"}


@pytest.mark.asyncio
async def test_transient_errors_are_reported_as_progress(make_gateway):
    replies = [UpstreamError("overloaded", status_code=503)]

    def search(city, prompt):
        if replies:
            return replies.pop()
        return json.dumps(_companies(city, 1))

    provider = _provider('{"type": "single", "subLocations": ["Paris"]}', search)
    progress = []
    await _pipeline(provider, make_gateway(), RecordingVerifier()).run(
        SearchRequest("Paris", "marketing"), on_progress=lambda pct, label: progress.append((pct, label))
    )
    assert any("retrying in" in (label or "") for _, label in progress)
    _assert_monotonic(progress)


@pytest.mark.asyncio
async def test_unexpected_error_fails_the_run(make_gateway):
    class BrokenValidator:
        async def validate(self, leads, on_batch=None, on_retry=None):
            raise RuntimeError("validator exploded")

    provider = _provider('{"type": "single", "subLocations": ["Rome"]}', lambda city, p: json.dumps(_companies(city, 1)))
    gw = make_gateway()
    pipeline = LeadPipeline(
        LocationClassifier(provider, gw),
        UnitSearchAgent(provider, gw, probe_websites=False),
        BrokenValidator(),
    )
    progress = []
    with pytest.raises(PipelineError, match="validator exploded"):
        await pipeline.run(SearchRequest("Rome", "legal"), on_progress=lambda pct, label: progress.append((pct, label)))
    assert progress[-1] == (0.0, "Search failed: validator exploded")


@pytest.mark.asyncio
async def test_broken_progress_sink_is_ignored(make_gateway):
    def sink(pct, label):
        raise RuntimeError("ui went away")

    provider = _provider('{"type": "single", "subLocations": ["Oslo"]}', lambda city, p: json.dumps(_companies(city, 1)))
    leads = await _pipeline(provider, make_gateway(), RecordingVerifier()).run(SearchRequest("Oslo", "tech"), on_progress=sink)
    assert len(leads) == 1


def test_breadth_policy():
    pipeline = LeadPipeline(None, None, None)
    assert pipeline.breadth_for("standard", True) == (1, 10)
    assert pipeline.breadth_for("standard", False) == (15, 1)
    assert pipeline.breadth_for("deep", True) == (1, 10)
    assert pipeline.breadth_for("deep", False) == (15, 10)


@pytest.mark.asyncio
async def test_deep_check_runs_after_validation(make_gateway):
    from leadscout.deep_check import ProviderEmailVerifier

    def handler(prompt):
        if "Decide whether the location" in prompt:
            return '{"type": "single", "subLocations": ["Zurich"]}'
        if "Verification task" in prompt:
            authentic = "zurich0" in prompt
            return json.dumps({"isAuthentic": authentic, "confidence": 90 if authentic else 10, "reason": "checked"})
        return json.dumps(_companies("Zurich", 2))

    provider = FakeProvider(handler)
    gw = make_gateway()
    pipeline = LeadPipeline(
        LocationClassifier(provider, gw),
        UnitSearchAgent(provider, gw, probe_websites=False),
        BatchValidator(RecordingVerifier(), gw, pause_s=0),
        deep_checker=ProviderEmailVerifier(provider, gw),
    )
    progress = []
    leads = await pipeline.run(SearchRequest("Zurich", "tech"), on_progress=lambda pct, label: progress.append((pct, label)))
    assert [lead.is_verified for lead in leads] == [True, False]
    assert sum("Verification task" in p for p in provider.prompts) == 2
    assert any(label == "Deep-checking contact 2/2..." for _, label in progress)
    assert progress[-1] == (100, "Found 2 unique lead(s), 1 verified")
    _assert_monotonic(progress)
