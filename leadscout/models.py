from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

CATEGORIES = (
    "events",
    "investors",
    "manufacturing",
    "marketing",
    "tech",
    "real_estate",
    "healthcare",
    "legal",
)
INTENSITIES = ("standard", "deep")


@dataclass(frozen=True)
class SearchRequest:
    location: str
    category: str
    intensity: str = "standard"

    def __post_init__(self):
        if not (self.location or "").strip():
            raise ValueError("location is required")
        if self.category not in CATEGORIES:
            raise ValueError(f"unknown category {self.category!r}; expected one of {', '.join(CATEGORIES)}")
        if self.intensity not in INTENSITIES:
            raise ValueError(f"unknown intensity {self.intensity!r}")


@dataclass
class Classification:
    sub_locations: List[str]
    is_single_location: bool


@dataclass
class LeadCandidate:
    name: str
    website: str
    category: str = ""
    email: str = ""
    description: str = ""
    origin_sub_location: str = ""
    source_url: Optional[str] = None
    website_alive: Optional[bool] = None


@dataclass
class EnrichedLead:
    name: str
    website: str
    category: str
    email: str
    description: str
    origin_sub_location: str
    is_verified: bool = False
    email_confidence: int = 0
    verification_reason: str = ""
    source_url: Optional[str] = None
    website_alive: Optional[bool] = None
    id: str = field(default_factory=lambda: f"lead-{uuid.uuid4().hex[:12]}")

    @classmethod
    def from_candidate(cls, c: LeadCandidate, *, is_verified: bool = False, confidence: int = 0, reason: str = "") -> "EnrichedLead":
        return cls(
            name=c.name,
            website=c.website,
            category=c.category,
            email=c.email,
            description=c.description,
            origin_sub_location=c.origin_sub_location,
            is_verified=is_verified,
            email_confidence=max(0, min(100, int(confidence))),
            verification_reason=reason,
            source_url=c.source_url,
            website_alive=c.website_alive,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class VerificationItem:
    email: str
    website: str
    company_name: str
    website_alive: Optional[bool] = None


@dataclass
class VerificationResult:
    email: str
    is_valid: bool
    confidence: int
    reason: str = ""
    has_valid_format: bool = False
    has_mx_records: bool = False
    domain_matches_website: bool = False
