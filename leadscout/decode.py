"""Best-effort JSON decoding of free-text model replies.

Model output is untrusted: it may wrap the payload in prose or code fences,
or truncate it. These helpers return ``None`` instead of raising so callers
can treat "nothing usable" as an ordinary, silent outcome.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

_decoder = json.JSONDecoder()


def _first_value(text: str, opener: str, kind: type) -> Optional[Any]:
    if not text:
        return None
    start = text.find(opener)
    while start != -1:
        try:
            value, _end = _decoder.raw_decode(text, start)
        except ValueError:
            value = None
        if isinstance(value, kind):
            return value
        start = text.find(opener, start + 1)
    return None


def extract_json_array(text: Optional[str]) -> Optional[List[Any]]:
    """Return the first well-formed JSON array embedded in ``text``."""
    return _first_value(text or "", "[", list)


def extract_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Return the first well-formed JSON object embedded in ``text``."""
    return _first_value(text or "", "{", dict)
