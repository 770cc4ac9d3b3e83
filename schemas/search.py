from __future__ import annotations

from typing import List, Literal, Optional
from pydantic import BaseModel, Field

Category = Literal[
    "events",
    "investors",
    "manufacturing",
    "marketing",
    "tech",
    "real_estate",
    "healthcare",
    "legal",
]


class SearchRequestIn(BaseModel):
    location: str = Field(..., min_length=1, max_length=200)
    category: Category
    intensity: Literal["standard", "deep"] = "standard"


class SearchAccepted(BaseModel):
    search_id: str
    status: str


class LeadOut(BaseModel):
    id: str
    name: str
    website: str
    category: str
    email: str
    description: str
    origin_sub_location: str
    is_verified: bool = False
    email_confidence: int = Field(0, ge=0, le=100)
    verification_reason: str = ""
    source_url: Optional[str] = None
    website_alive: Optional[bool] = None


class SearchStatusOut(BaseModel):
    search_id: str
    status: Literal["running", "done", "failed"]
    progress: float = 0.0
    label: Optional[str] = None
    logs: List[str] = Field(default_factory=list)
    leads: List[LeadOut] = Field(default_factory=list)
    error: Optional[str] = None
