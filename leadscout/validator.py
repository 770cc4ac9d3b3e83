from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from leadscout import settings
from leadscout.models import EnrichedLead, LeadCandidate, VerificationItem, VerificationResult
from leadscout.retry import RetryObserver
from leadscout.scheduler import ResilientGateway
from leadscout.troubleshoot_log import log_json
from leadscout.verification import Verifier

log = logging.getLogger("validator")

# (batch_index, batch_count) before each batch is sent
BatchObserver = Callable[[int, int], None]


def _chunks(items: Sequence[LeadCandidate], size: int) -> List[List[LeadCandidate]]:
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def _match_results(batch: List[LeadCandidate], results: List[VerificationResult]) -> List[Optional[VerificationResult]]:
    if len(results) == len(batch) and all(
        (r.email or "").lower() == (c.email or "").lower() for r, c in zip(results, batch)
    ):
        return list(results)
    by_email: Dict[str, VerificationResult] = {}
    for r in results:
        by_email.setdefault((r.email or "").lower(), r)
    return [by_email.get((c.email or "").lower()) for c in batch]


class BatchValidator:
    def __init__(
        self,
        verifier: Verifier,
        gateway: ResilientGateway,
        *,
        batch_size: Optional[int] = None,
        pause_s: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.verifier = verifier
        self.gateway = gateway
        self.batch_size = batch_size or settings.VALIDATION_BATCH_SIZE
        self.pause_s = settings.VALIDATION_BATCH_PAUSE_S if pause_s is None else pause_s
        self._sleep = sleep

    async def _validate_batch(self, batch: List[LeadCandidate], on_retry: Optional[RetryObserver]) -> List[EnrichedLead]:
        sendable = [c for c in batch if c.email]
        if not sendable:
            return [EnrichedLead.from_candidate(c, reason="No contact email") for c in batch]
        items = [
            VerificationItem(email=c.email, website=c.website, company_name=c.name, website_alive=c.website_alive)
            for c in sendable
        ]
        results = await self.gateway.call(lambda: self.verifier.verify(items), on_retry=on_retry)
        matched = iter(_match_results(sendable, results))
        out: List[EnrichedLead] = []
        for cand in batch:
            if not cand.email:
                out.append(EnrichedLead.from_candidate(cand, reason="No contact email"))
                continue
            res = next(matched)
            if res is None:
                out.append(EnrichedLead.from_candidate(cand, reason="Not returned by verification service"))
            else:
                out.append(EnrichedLead.from_candidate(cand, is_verified=res.is_valid, confidence=res.confidence, reason=res.reason))
        return out

    async def validate(
        self,
        leads: Sequence[LeadCandidate],
        on_batch: Optional[BatchObserver] = None,
        on_retry: Optional[RetryObserver] = None,
    ) -> List[EnrichedLead]:
        """Score every lead's contact email; a failed batch degrades to unverified."""
        batches = _chunks(leads, self.batch_size)
        enriched: List[EnrichedLead] = []
        for idx, batch in enumerate(batches):
            if idx > 0 and self.pause_s > 0:
                await self._sleep(self.pause_s)
            if on_batch is not None:
                try:
                    on_batch(idx, len(batches))
                except Exception:
                    log.warning("batch observer failed", exc_info=True)
            try:
                enriched.extend(await self._validate_batch(batch, on_retry))
            except Exception as exc:
                log.warning("verification batch %d/%d failed: %s", idx + 1, len(batches), exc)
                log_json("validator", "warn", "batch failed", {"batch": idx + 1, "size": len(batch), "error": str(exc)})
                enriched.extend(
                    EnrichedLead.from_candidate(c, reason=f"Verification unavailable: {exc}") for c in batch
                )
        return enriched
