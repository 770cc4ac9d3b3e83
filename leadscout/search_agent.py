from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from leadscout import settings
from leadscout.decode import extract_json_array
from leadscout.liveness import probe_many
from leadscout.llm import ChatProvider
from leadscout.models import LeadCandidate
from leadscout.retry import RetryObserver
from leadscout.scheduler import ResilientGateway

log = logging.getLogger("search_agent")

CATEGORY_PROMPTS: Dict[str, str] = {
    "events": "professional event planning companies, concert organizers, booking agencies, or festival producers",
    "investors": "venture capital firms, angel investor networks, family offices, and private equity groups",
    "manufacturing": "industrial manufacturing plants, factories, specialized production facilities, and B2B suppliers",
    "marketing": "digital marketing agencies, branding firms, PR agencies, and creative content studios",
    "tech": "software development houses, SaaS companies, AI startups, and specialized IT service providers",
    "real_estate": "commercial real estate agencies, property development firms, real estate investment trusts (REITs), and luxury brokerage firms",
    "healthcare": "private clinics, specialized medical centers, pharmaceutical distributors, and healthcare service providers",
    "legal": "corporate law firms, legal consultancy practices, intellectual property specialists, and professional legal services",
}

_PLACEHOLDER_EMAILS = {"", "n/a", "na", "none", "unknown", "null", "-"}


def build_prompt(sub_location: str, broader_location: str, category: str, lead_count: int) -> str:
    kind = CATEGORY_PROMPTS.get(category, category)
    where = sub_location if sub_location.strip().lower() == broader_location.strip().lower() else f"{sub_location}, {broader_location}"
    if lead_count == 1:
        scope = f"Find the single most prominent active company among {kind} located in or serving {where}."
    else:
        scope = f"Find {lead_count} unique and active {kind} located in or serving {where}."
    return f"""
{scope}

Rules:
- Only include real companies you can verify, each with a working official website.
- For the contact email, prefer an address confirmed on the company's own website.
  If none is confirmed, give the most likely contact address from the company's site
  or from public business directories.

For each company provide: name, official website URL, category (specific to the
industry), contact email, and a one-sentence description.

Format strictly as a JSON array:
[{{"name": "...", "website": "...", "category": "...", "email": "...", "description": "..."}}]
"""


def _text(value: Any) -> str:
    return " ".join(str(value).split()) if value is not None else ""


def _clean_email(value: Any) -> str:
    email = _text(value).lower().removeprefix("mailto:")
    if email in _PLACEHOLDER_EMAILS or "@" not in email:
        return ""
    return email


def _clean_website(value: Any) -> str:
    site = _text(value)
    if not site or site.lower() in _PLACEHOLDER_EMAILS:
        return ""
    if not site.lower().startswith(("http://", "https://")):
        site = "https://" + site
    return site


def parse_candidates(text: str, sub_location: str, category: str, lead_count: int) -> List[LeadCandidate]:
    """Decode a search reply; an undecodable reply yields no candidates."""
    items = extract_json_array(text)
    if items is None:
        log.warning("no JSON array in search reply for %s: %.200s", sub_location, text)
        return []
    out: List[LeadCandidate] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        name = _text(item.get("name") or item.get("companyName"))
        website = _clean_website(item.get("website") or item.get("url"))
        if not name or not website:
            continue
        out.append(
            LeadCandidate(
                name=name,
                website=website,
                category=_text(item.get("category")) or category,
                email=_clean_email(item.get("email") or item.get("contactEmail")),
                description=_text(item.get("description")),
                origin_sub_location=sub_location,
                source_url=_text(item.get("sourceUrl")) or None,
            )
        )
        if len(out) >= lead_count:
            break
    return out


class UnitSearchAgent:
    def __init__(
        self,
        provider: ChatProvider,
        gateway: ResilientGateway,
        *,
        probe_websites: Optional[bool] = None,
        liveness_timeout_s: Optional[float] = None,
    ):
        self.provider = provider
        self.gateway = gateway
        self.probe_websites = settings.ENABLE_LIVENESS_PROBE if probe_websites is None else probe_websites
        self.liveness_timeout_s = liveness_timeout_s

    async def search_unit(
        self,
        sub_location: str,
        broader_location: str,
        category: str,
        lead_count: Optional[int] = None,
        on_retry: Optional[RetryObserver] = None,
    ) -> List[LeadCandidate]:
        """Ask the provider for leads in one sub-location.

        Upstream failures propagate after retries; a reply that cannot be
        decoded simply produces an empty list.
        """
        count = lead_count or settings.DEFAULT_LEADS_PER_UNIT
        prompt = build_prompt(sub_location, broader_location, category, count)
        text = await self.gateway.call(
            lambda: self.provider.generate(prompt, temperature=settings.SEARCH_TEMPERATURE),
            on_retry=on_retry,
        )
        candidates = parse_candidates(text, sub_location, category, count)
        if candidates and self.probe_websites:
            alive = await probe_many([c.website for c in candidates], self.liveness_timeout_s)
            for cand, ok in zip(candidates, alive):
                cand.website_alive = ok
        log.info("[%s] %d candidate(s) for %s", category, len(candidates), sub_location)
        return candidates
