from typing import List, Optional
from pydantic import BaseModel, Field


class EmailToVerify(BaseModel):
    email: str
    website: str = ""
    companyName: str = ""
    websiteAlive: Optional[bool] = None


class VerifyEmailsRequest(BaseModel):
    emails: List[EmailToVerify]


class EmailVerdict(BaseModel):
    email: str
    isValid: bool
    hasValidFormat: bool
    hasMxRecords: bool
    domainMatchesWebsite: bool
    confidence: int = Field(..., ge=0, le=100)
    reason: str


class VerifyEmailsResponse(BaseModel):
    success: bool = True
    results: List[EmailVerdict] = Field(default_factory=list)
