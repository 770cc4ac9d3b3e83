"""
Lead discovery pipeline.

Stages run in a fixed order for each search:

    CLASSIFYING -> SCANNING (one sub-location at a time) -> VALIDATING -> DONE

Local failures never end a run: a sub-location that keeps failing is
skipped, a verification batch that fails leaves its leads unverified, and a
classification problem falls back to searching the raw location. Only an
unexpected error in the pipeline itself moves the run to FAILED.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
import uuid
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from leadscout import settings
from leadscout.classifier import LocationClassifier
from leadscout.dedupe import Deduplicator
from leadscout.deep_check import ProviderEmailVerifier
from leadscout.errors import LeadScoutError, PipelineError
from leadscout.llm import ChatProvider
from leadscout.models import EnrichedLead, LeadCandidate, SearchRequest
from leadscout.retry import BackoffPolicy, CircuitBreaker, RetryObserver
from leadscout.scheduler import RequestScheduler, ResilientGateway
from leadscout.search_agent import UnitSearchAgent
from leadscout.troubleshoot_log import log_json
from leadscout.validator import BatchValidator
from leadscout.verification import Verifier, build_verifier

log = logging.getLogger("pipeline")

ProgressSink = Callable[[float, Optional[str]], Any]
LeadCountPolicy = Dict[Tuple[str, bool], Tuple[int, int]]

SCAN_START = 10.0
SCAN_END = 85.0
VALIDATE_END = 98.0


class PipelineStage(str, Enum):
    CLASSIFYING = "classifying"
    SCANNING = "scanning"
    VALIDATING = "validating"
    DONE = "done"
    FAILED = "failed"


class ProgressReporter:
    """Per-run progress: never goes backwards, never blocks, never raises."""

    def __init__(self, sink: Optional[ProgressSink] = None):
        self._sink = sink
        self.percent = 0.0
        self.label: Optional[str] = None
        self.stage = PipelineStage.CLASSIFYING
        self._pending: Set[asyncio.Future] = set()

    def enter(self, stage: PipelineStage) -> None:
        log.info("stage %s -> %s", self.stage.value, stage.value)
        self.stage = stage

    def report(self, percent: float, label: Optional[str] = None) -> None:
        self.percent = max(self.percent, min(100.0, float(percent)))
        self.label = label
        self._deliver(self.percent, label)

    def fail(self, label: str) -> None:
        self.stage = PipelineStage.FAILED
        self.percent = 0.0
        self.label = label
        self._deliver(0.0, label)

    def retry_observer(self, what: str) -> RetryObserver:
        def _on_retry(attempt: int, delay_s: float) -> None:
            self.report(self.percent, f"Provider busy during {what}; retrying in {delay_s:.0f}s (attempt {attempt + 1})")
        return _on_retry

    def _deliver(self, percent: float, label: Optional[str]) -> None:
        if self._sink is None:
            return
        try:
            out = self._sink(round(percent, 1), label)
            if inspect.isawaitable(out):
                fut = asyncio.ensure_future(out)
                self._pending.add(fut)
                fut.add_done_callback(self._pending.discard)
        except Exception:
            log.warning("progress sink failed", exc_info=True)


class LeadPipeline:
    def __init__(
        self,
        classifier: LocationClassifier,
        search_agent: UnitSearchAgent,
        validator: BatchValidator,
        *,
        lead_count_policy: Optional[LeadCountPolicy] = None,
        provider_breaker: Optional[CircuitBreaker] = None,
        provider_scheduler: Optional[RequestScheduler] = None,
        deep_checker: Optional[ProviderEmailVerifier] = None,
    ):
        self.classifier = classifier
        self.search_agent = search_agent
        self.validator = validator
        self.lead_count_policy = lead_count_policy or settings.LEAD_COUNT_POLICY
        self.provider_breaker = provider_breaker
        self.provider_scheduler = provider_scheduler
        self.deep_checker = deep_checker

    def breadth_for(self, intensity: str, is_single: bool) -> Tuple[int, int]:
        max_units, per_unit = self.lead_count_policy.get(
            (intensity, is_single), (settings.MAX_SUB_LOCATIONS, settings.DEFAULT_LEADS_PER_UNIT)
        )
        return max(1, int(max_units)), max(1, int(per_unit))

    async def run(self, request: SearchRequest, on_progress: Optional[ProgressSink] = None) -> List[EnrichedLead]:
        """Run one search to completion and return its (possibly empty) lead list.

        Raises PipelineError only when the pipeline's own logic breaks.
        """
        reporter = ProgressReporter(on_progress)
        run_id = uuid.uuid4().hex[:12]
        started = time.monotonic()
        log_json("pipeline", "info", "run started", {
            "run_id": run_id,
            "location": request.location,
            "category": request.category,
            "intensity": request.intensity,
        })
        try:
            leads = await self._run(request, reporter, run_id)
        except Exception as exc:
            log.exception("search run %s failed", run_id)
            reporter.fail(f"Search failed: {exc}")
            log_json("pipeline", "error", "run failed", {"run_id": run_id, "error": str(exc)})
            raise PipelineError(str(exc)) from exc
        log_json("pipeline", "info", "run finished", {
            "run_id": run_id,
            "leads": len(leads),
            "verified": sum(1 for lead in leads if lead.is_verified),
            "duration_s": round(time.monotonic() - started, 2),
        })
        return leads

    async def _run(self, request: SearchRequest, reporter: ProgressReporter, run_id: str) -> List[EnrichedLead]:
        location, category = request.location.strip(), request.category

        reporter.enter(PipelineStage.CLASSIFYING)
        reporter.report(2, f"Analyzing location {location}...")
        classification = await self.classifier.classify(
            location, category, on_retry=reporter.retry_observer("location analysis")
        )
        max_units, per_unit = self.breadth_for(request.intensity, classification.is_single_location)
        units = classification.sub_locations[:max_units] or [location]

        reporter.enter(PipelineStage.SCANNING)
        reporter.report(SCAN_START, f"Scanning {len(units)} location(s) for {category} leads...")
        dedup = Deduplicator()
        kept: List[LeadCandidate] = []
        skipped = 0
        span = (SCAN_END - SCAN_START) / len(units)
        for i, unit in enumerate(units):
            reporter.report(SCAN_START + span * i, f"Searching in {unit} ({i + 1}/{len(units)})...")
            try:
                candidates = await self.search_agent.search_unit(
                    unit, location, category, per_unit, on_retry=reporter.retry_observer(f"search in {unit}")
                )
            except LeadScoutError as exc:
                skipped += 1
                log.warning("skipping %s: %s", unit, exc)
                log_json("pipeline", "warn", "sub-location skipped", {"run_id": run_id, "sub_location": unit, "error": str(exc)})
                reporter.report(SCAN_START + span * (i + 1), f"Skipped {unit}: {exc}")
                continue
            fresh = dedup.dedupe(candidates)
            kept.extend(fresh)
            reporter.report(SCAN_START + span * (i + 1), f"{unit}: {len(fresh)} new lead(s), {len(kept)} total")

        if not kept:
            reporter.enter(PipelineStage.DONE)
            reporter.report(100, "No leads found" + (f" ({skipped} location(s) skipped)" if skipped else ""))
            return []

        reporter.enter(PipelineStage.VALIDATING)
        reporter.report(SCAN_END, f"Verifying {len(kept)} contact(s)...")

        def _on_batch(idx: int, total: int) -> None:
            reporter.report(SCAN_END + (VALIDATE_END - SCAN_END) * idx / total, f"Verifying batch {idx + 1}/{total}...")

        enriched = await self.validator.validate(kept, on_batch=_on_batch, on_retry=reporter.retry_observer("verification"))

        if self.deep_checker is not None:
            reporter.report(VALIDATE_END, "Double-checking verified contacts...")

            def _on_item(idx: int, total: int) -> None:
                reporter.report(VALIDATE_END, f"Deep-checking contact {idx + 1}/{total}...")

            enriched = await self.deep_checker.review(
                enriched, on_item=_on_item, on_retry=reporter.retry_observer("deep email check")
            )

        reporter.enter(PipelineStage.DONE)
        verified = sum(1 for lead in enriched if lead.is_verified)
        reporter.report(100, f"Found {len(enriched)} unique lead(s), {verified} verified")
        return enriched


def build_pipeline(
    provider: Optional[ChatProvider] = None,
    verifier: Optional[Verifier] = None,
    deep_check: Optional[bool] = None,
) -> LeadPipeline:
    """Compose a pipeline; call once per process and share the result."""
    provider = provider or ChatProvider()
    breaker = CircuitBreaker(name="provider")
    scheduler = RequestScheduler(name="provider")
    provider_gateway = ResilientGateway(scheduler, breaker)
    # verification is a separate dependency with its own admission queue
    verify_gateway = ResilientGateway(RequestScheduler(settings.VERIFY_RPM, name="verification"))
    deep_checker = None
    enabled = settings.DEEP_EMAIL_CHECK if deep_check is None else deep_check
    if enabled:
        # same admission and breaker as search, shorter retry budget
        deep_policy = BackoffPolicy(
            max_attempts=settings.DEEP_CHECK_MAX_ATTEMPTS,
            base_delay_s=settings.DEEP_CHECK_BASE_DELAY_S,
            max_delay_s=settings.RETRY_MAX_DELAY_S,
            multiplier=settings.RETRY_MULTIPLIER,
            jitter_s=settings.RETRY_JITTER_S,
        )
        deep_checker = ProviderEmailVerifier(provider, ResilientGateway(scheduler, breaker, deep_policy))
    return LeadPipeline(
        LocationClassifier(provider, provider_gateway),
        UnitSearchAgent(provider, provider_gateway),
        BatchValidator(verifier or build_verifier(), verify_gateway),
        provider_breaker=breaker,
        provider_scheduler=scheduler,
        deep_checker=deep_checker,
    )
