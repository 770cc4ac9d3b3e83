from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from leadscout.models import VerificationItem
from leadscout.verification import MAX_ITEMS_PER_REQUEST, LocalEmailVerifier
from schemas.verification import EmailVerdict, VerifyEmailsRequest, VerifyEmailsResponse

router = APIRouter(prefix="/api", tags=["verification"])
_lg = logging.getLogger("verification")


def get_verifier() -> LocalEmailVerifier:
    return LocalEmailVerifier()


@router.post("/validate-emails", response_model=VerifyEmailsResponse)
async def validate_emails(body: VerifyEmailsRequest, verifier: LocalEmailVerifier = Depends(get_verifier)):
    """Score up to 20 contact emails with MX lookups and a domain/website match."""
    items = [
        VerificationItem(email=e.email, website=e.website, company_name=e.companyName, website_alive=e.websiteAlive)
        for e in body.emails[:MAX_ITEMS_PER_REQUEST]
    ]
    results = await verifier.verify(items)
    _lg.info("validated %d email(s), %d valid", len(results), sum(1 for r in results if r.is_valid))
    return VerifyEmailsResponse(
        success=True,
        results=[
            EmailVerdict(
                email=r.email,
                isValid=r.is_valid,
                hasValidFormat=r.has_valid_format,
                hasMxRecords=r.has_mx_records,
                domainMatchesWebsite=r.domain_matches_website,
                confidence=r.confidence,
                reason=r.reason,
            )
            for r in results
        ],
    )
