from __future__ import annotations

import logging
import re
from typing import Iterable, List, Set, Tuple

from leadscout.models import LeadCandidate

log = logging.getLogger("dedupe")

LEGAL_SUFFIXES = {
    "inc", "incorporated", "llc", "llp", "lp", "ltd", "limited", "plc",
    "corp", "corporation", "co", "company", "gmbh", "mbh", "ag", "kg", "ug",
    "ohg", "ev", "sa", "sas", "sarl", "srl", "spa", "bv", "nv", "oy", "ab",
    "as", "aps", "pty", "pte", "kk", "sl", "sro", "zoo", "group", "holding",
    "holdings",
}

_NON_ALNUM = re.compile(r"[^\w\s]|_", re.UNICODE)
_SCHEME = re.compile(r"^[a-z][a-z0-9+.-]*://")


def normalize_company_name(name: str) -> str:
    """Lowercase, drop punctuation, then strip trailing legal-form tokens."""
    text = _NON_ALNUM.sub(" ", (name or "").lower())
    tokens = text.split()
    while len(tokens) > 1 and tokens[-1] in LEGAL_SUFFIXES:
        tokens.pop()
    # "& Co." style fragments leave a dangling "and"
    while len(tokens) > 1 and tokens[-1] == "and":
        tokens.pop()
    return " ".join(tokens)


def normalize_domain(website: str) -> str:
    """Lowercase and strip scheme, leading ``www.`` and trailing slashes.

    Paths and query strings are kept, so ``acme.com/?utm=x`` and ``acme.com``
    are different keys; the name key still catches that pair.
    """
    d = (website or "").strip().lower()
    d = _SCHEME.sub("", d)
    if d.startswith("www."):
        d = d[4:]
    return d.rstrip("/")


def identity_keys(candidate: LeadCandidate) -> Tuple[str, str]:
    return normalize_company_name(candidate.name), normalize_domain(candidate.website)


class Deduplicator:
    """Seen-sets for one pipeline run; fed sub-location by sub-location.

    A candidate is a duplicate when its normalized name or its normalized
    domain was already recorded. Empty keys are never recorded.
    """

    def __init__(self):
        self._names: Set[str] = set()
        self._domains: Set[str] = set()

    def dedupe(self, candidates: Iterable[LeadCandidate]) -> List[LeadCandidate]:
        kept: List[LeadCandidate] = []
        dropped = 0
        for cand in candidates:
            name, domain = identity_keys(cand)
            if (name and name in self._names) or (domain and domain in self._domains):
                dropped += 1
                continue
            if name:
                self._names.add(name)
            if domain:
                self._domains.add(domain)
            kept.append(cand)
        if dropped:
            log.info("dropped %d duplicate candidate(s)", dropped)
        return kept
