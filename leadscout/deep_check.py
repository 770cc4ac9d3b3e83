"""
Provider-backed second opinion on contact emails.

After DNS-based scoring, an optional pass asks the generation provider
whether each verified address is a real business contact for its company.
An address counts as authentic only when the provider says so with
confidence at or above ``DEEP_CHECK_MIN_CONFIDENCE``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from leadscout import settings
from leadscout.decode import extract_json_object
from leadscout.llm import ChatProvider
from leadscout.models import EnrichedLead
from leadscout.retry import RetryObserver
from leadscout.scheduler import ResilientGateway
from leadscout.troubleshoot_log import log_json

log = logging.getLogger("deep_check")

# (index, total) before each lead is checked
ItemObserver = Callable[[int, int], None]

_PROMPT = """
Verification task: decide whether the email "{email}" is a legitimate business
contact for "{company}" ({website}).

1. Look for this exact address on the official domain {website}.
2. Check professional directories (LinkedIn, ZoomInfo, Apollo, Yelp) for recent
   mentions of this contact at this company.
3. Check that the domain part of the email matches the website.

Return ONLY a JSON object: {{"isAuthentic": true|false, "confidence": 0-100, "reason": "..."}}
"""


@dataclass
class AuthenticityVerdict:
    is_authentic: bool
    confidence: int
    reason: str = ""


def parse_verdict(text: str, min_confidence: int) -> Optional[AuthenticityVerdict]:
    obj = extract_json_object(text)
    if obj is None:
        return None
    try:
        confidence = int(obj.get("confidence") or 0)
    except (TypeError, ValueError, OverflowError):
        confidence = 0
    confidence = max(0, min(confidence, 100))
    claimed = obj.get("isAuthentic") is True
    return AuthenticityVerdict(
        is_authentic=claimed and confidence >= min_confidence,
        confidence=confidence,
        reason=" ".join(str(obj.get("reason") or "").split()),
    )


class ProviderEmailVerifier:
    def __init__(self, provider: ChatProvider, gateway: ResilientGateway, *, min_confidence: Optional[int] = None):
        self.provider = provider
        self.gateway = gateway
        self.min_confidence = settings.DEEP_CHECK_MIN_CONFIDENCE if min_confidence is None else min_confidence

    async def check(self, email: str, company_name: str, website: str, on_retry: Optional[RetryObserver] = None) -> AuthenticityVerdict:
        """Ask the provider about one address. Upstream errors propagate after retries."""
        prompt = _PROMPT.format(email=email, company=company_name, website=website)
        text = await self.gateway.call(lambda: self.provider.generate(prompt, json_mode=True), on_retry=on_retry)
        verdict = parse_verdict(text, self.min_confidence)
        if verdict is None:
            log.warning("unparseable deep-check reply for %s: %.200s", email, text)
            return AuthenticityVerdict(is_authentic=False, confidence=0, reason="Unreadable deep-check reply")
        return verdict

    async def review(
        self,
        leads: List[EnrichedLead],
        on_item: Optional[ItemObserver] = None,
        on_retry: Optional[RetryObserver] = None,
    ) -> List[EnrichedLead]:
        """Re-check every verified lead; a rejected address loses its verified flag.

        A lead whose check fails keeps its DNS-based verdict.
        """
        targets = [lead for lead in leads if lead.is_verified and lead.email]
        for idx, lead in enumerate(targets):
            if on_item is not None:
                try:
                    on_item(idx, len(targets))
                except Exception:
                    log.warning("deep-check observer failed", exc_info=True)
            try:
                verdict = await self.check(lead.email, lead.name, lead.website, on_retry=on_retry)
            except Exception as exc:
                log.warning("deep check failed for %s: %s", lead.email, exc)
                log_json("deep_check", "warn", "check failed", {"email": lead.email, "error": str(exc)})
                continue
            if verdict.is_authentic:
                lead.verification_reason = f"{lead.verification_reason}; deep check passed ({verdict.confidence}%)".lstrip("; ")
                continue
            lead.is_verified = False
            lead.email_confidence = min(lead.email_confidence, verdict.confidence)
            lead.verification_reason = f"Deep check rejected ({verdict.confidence}%): {verdict.reason or 'no reason given'}"
        rejected = sum(1 for lead in targets if not lead.is_verified)
        if targets:
            log.info("deep check: %d of %d verified contact(s) rejected", rejected, len(targets))
        return leads
