from __future__ import annotations

import logging
from typing import Any, List, Optional

from leadscout import settings
from leadscout.decode import extract_json_array, extract_json_object
from leadscout.llm import ChatProvider
from leadscout.models import Classification
from leadscout.retry import RetryObserver
from leadscout.scheduler import ResilientGateway

log = logging.getLogger("classifier")

_PROMPT = """
Decide whether the location "{location}" names a single place (a city or town)
or a broader region (a country, state or province).

If it is a single place, answer: {{"type": "single", "subLocations": ["{location}"]}}
If it is a region, list up to {limit} cities or hubs in it with the most
activity for the "{category}" industry, busiest first:
{{"type": "region", "subLocations": ["City1", "City2", ...]}}

Return ONLY that JSON object.
"""


def _clean_names(raw: Any, limit: int) -> List[str]:
    out: List[str] = []
    seen = set()
    if not isinstance(raw, list):
        return out
    for item in raw:
        if not isinstance(item, str):
            continue
        name = " ".join(item.split())
        key = name.lower()
        if not name or key in seen:
            continue
        seen.add(key)
        out.append(name)
        if len(out) >= limit:
            break
    return out


def parse_classification(text: str, location: str, limit: int) -> Optional[Classification]:
    """Decode a classifier reply; None when nothing usable came back."""
    obj = extract_json_object(text)
    if obj is not None:
        kind = str(obj.get("type") or "").strip().lower()
        names = _clean_names(obj.get("subLocations") or obj.get("sub_locations") or obj.get("cities"), limit)
        if kind == "single":
            return Classification(sub_locations=[location], is_single_location=True)
        if names:
            return Classification(sub_locations=names, is_single_location=False)
        return None
    # A bare list of cities is accepted too
    names = _clean_names(extract_json_array(text), limit)
    if not names:
        return None
    if len(names) == 1 and names[0].lower() == location.strip().lower():
        return Classification(sub_locations=[location], is_single_location=True)
    return Classification(sub_locations=names, is_single_location=False)


class LocationClassifier:
    def __init__(self, provider: ChatProvider, gateway: ResilientGateway, max_sub_locations: Optional[int] = None):
        self.provider = provider
        self.gateway = gateway
        self.max_sub_locations = max_sub_locations or settings.MAX_SUB_LOCATIONS

    async def classify(self, location: str, category: str, on_retry: Optional[RetryObserver] = None) -> Classification:
        """Split a location into sub-locations; falls back to the raw text on any failure."""
        fallback = Classification(sub_locations=[location], is_single_location=True)
        prompt = _PROMPT.format(location=location, category=category, limit=self.max_sub_locations)
        try:
            text = await self.gateway.call(
                lambda: self.provider.generate(prompt, json_mode=True),
                on_retry=on_retry,
            )
        except Exception as exc:
            log.warning("classification failed for %r, searching it as one place: %s", location, exc)
            return fallback
        result = parse_classification(text, location, self.max_sub_locations)
        if result is None:
            log.warning("unparseable classification for %r: %.200s", location, text)
            return fallback
        log.info("classified %r -> %d sub-location(s)", location, len(result.sub_locations))
        return result
