"""
Email verification service clients.

``HttpVerificationClient`` talks to a remote verification service.
``LocalEmailVerifier`` is that service's own logic (format check, MX lookup
over DNS-over-HTTPS, domain/website match) and backs the ``/api/validate-emails``
endpoint; the pipeline uses it directly when no remote URL is configured.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional, Protocol, Sequence
from urllib.parse import urlparse

import httpx

from leadscout import settings
from leadscout.errors import VerificationError
from leadscout.models import VerificationItem, VerificationResult

log = logging.getLogger("verification")

MAX_ITEMS_PER_REQUEST = 20

EMAIL_RE = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)
GENERIC_LOCAL_PARTS = {"info", "contact", "hello", "office", "admin", "support", "sales"}


class Verifier(Protocol):
    async def verify(self, items: Sequence[VerificationItem]) -> List[VerificationResult]:
        ...


def email_domain(email: str) -> str:
    return email.split("@", 1)[1].lower() if "@" in (email or "") else ""


def website_domain(website: str) -> str:
    w = (website or "").strip()
    try:
        host = urlparse(w if w.lower().startswith("http") else "https://" + w).hostname or ""
    except ValueError:
        host = re.sub(r"^(https?://)?", "", w, flags=re.I).split("/", 1)[0]
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


def domains_match(email_dom: str, site_dom: str) -> bool:
    if not email_dom or not site_dom:
        return False
    return email_dom == site_dom or site_dom.endswith("." + email_dom) or email_dom.endswith("." + site_dom)


def score_email(
    *,
    has_format: bool,
    has_mx: bool,
    resolves: bool,
    domain_match: bool,
    local_part: str,
    website_alive: Optional[bool] = None,
) -> int:
    if not has_format:
        return 0
    confidence = 20
    if has_mx:
        confidence += 40
    if domain_match:
        confidence += 30
    if resolves and not has_mx:
        confidence += 10
    # role addresses are less specific than a named contact
    if local_part.lower() not in GENERIC_LOCAL_PARTS:
        confidence += 10
    if website_alive is False:
        confidence -= 10
    return max(0, min(confidence, 100))


class LocalEmailVerifier:
    def __init__(
        self,
        doh_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        valid_min: Optional[int] = None,
    ):
        self.doh_url = doh_url or settings.DOH_URL
        self.timeout_s = timeout_s if timeout_s is not None else settings.DOH_TIMEOUT_S
        self.valid_min = valid_min if valid_min is not None else settings.VALID_CONFIDENCE_MIN
        self._client = client

    async def _has_records(self, client: httpx.AsyncClient, domain: str, rtype: str) -> bool:
        try:
            resp = await client.get(
                self.doh_url,
                params={"name": domain, "type": rtype},
                headers={"Accept": "application/dns-json"},
                timeout=self.timeout_s,
            )
            if resp.status_code >= 400:
                return False
            data = resp.json()
        except Exception as exc:
            log.info("[doh] %s lookup failed for %s: %s", rtype, domain, exc)
            return False
        # Status 0 = NOERROR
        return data.get("Status") == 0 and bool(data.get("Answer"))

    async def _verify_one(self, client: httpx.AsyncClient, item: VerificationItem, cache: Dict[tuple, "asyncio.Task[bool]"]) -> VerificationResult:
        email = (item.email or "").strip()
        result = VerificationResult(email=email, is_valid=False, confidence=0)
        result.has_valid_format = bool(EMAIL_RE.match(email))
        if not result.has_valid_format:
            result.reason = "Invalid email format"
            return result

        dom = email_domain(email)
        result.domain_matches_website = domains_match(dom, website_domain(item.website))

        async def lookup(rtype: str) -> bool:
            key = (dom, rtype)
            if key not in cache:
                cache[key] = asyncio.ensure_future(self._has_records(client, dom, rtype))
            return await cache[key]

        result.has_mx_records = await lookup("MX")
        resolves = result.has_mx_records or await lookup("A")
        result.confidence = score_email(
            has_format=True,
            has_mx=result.has_mx_records,
            resolves=resolves,
            domain_match=result.domain_matches_website,
            local_part=email.split("@", 1)[0],
            website_alive=item.website_alive,
        )
        result.is_valid = result.confidence >= self.valid_min
        if result.is_valid:
            result.reason = f"Valid: MX={result.has_mx_records}, DomainMatch={result.domain_matches_website}"
        else:
            result.reason = (
                f"Low confidence ({result.confidence}%): MX={result.has_mx_records}, "
                f"Resolves={resolves}, DomainMatch={result.domain_matches_website}"
            )
        return result

    async def verify(self, items: Sequence[VerificationItem]) -> List[VerificationResult]:
        batch = list(items)[:MAX_ITEMS_PER_REQUEST]
        cache: Dict[tuple, asyncio.Task] = {}
        if self._client is not None:
            return list(await asyncio.gather(*(self._verify_one(self._client, it, cache) for it in batch)))
        async with httpx.AsyncClient(timeout=self.timeout_s) as client:
            return list(await asyncio.gather(*(self._verify_one(client, it, cache) for it in batch)))


def _result_from_json(obj: Dict[str, Any]) -> VerificationResult:
    try:
        confidence = int(obj.get("confidence") or 0)
    except (TypeError, ValueError, OverflowError):
        confidence = 0
    return VerificationResult(
        email=str(obj.get("email") or ""),
        is_valid=bool(obj.get("isValid")),
        confidence=max(0, min(confidence, 100)),
        reason=str(obj.get("reason") or ""),
        has_valid_format=bool(obj.get("hasValidFormat")),
        has_mx_records=bool(obj.get("hasMxRecords")),
        domain_matches_website=bool(obj.get("domainMatchesWebsite")),
    )


class HttpVerificationClient:
    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout_s: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url or settings.VERIFICATION_URL
        if not self.url:
            raise ValueError("VERIFICATION_URL is not configured")
        self.api_key = api_key if api_key is not None else settings.VERIFICATION_API_KEY
        self.timeout_s = timeout_s if timeout_s is not None else settings.VERIFICATION_TIMEOUT_S
        self._client = client

    def _payload(self, items: Sequence[VerificationItem]) -> Dict[str, Any]:
        emails = []
        for it in items:
            row = {"email": it.email, "website": it.website, "companyName": it.company_name}
            if it.website_alive is not None:
                row["websiteAlive"] = it.website_alive
            emails.append(row)
        return {"emails": emails}

    async def _post(self, client: httpx.AsyncClient, payload: Dict[str, Any]) -> httpx.Response:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return await client.post(self.url, json=payload, headers=headers, timeout=self.timeout_s)

    async def verify(self, items: Sequence[VerificationItem]) -> List[VerificationResult]:
        payload = self._payload(items)
        try:
            if self._client is not None:
                resp = await self._post(self._client, payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                    resp = await self._post(client, payload)
        except httpx.HTTPError as exc:
            raise VerificationError(
                f"verification request failed: {exc}",
                retryable=isinstance(exc, httpx.TransportError),
            ) from exc
        except Exception as exc:
            # bad URL or client misconfiguration; waiting will not help
            raise VerificationError(f"verification request failed: {exc}", retryable=False) from exc
        if resp.status_code >= 400:
            raise VerificationError(
                f"verification service returned {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise VerificationError("verification service returned non-JSON body", retryable=False) from exc
        if not isinstance(data, dict) or data.get("success") is False:
            err = data.get("error") if isinstance(data, dict) else None
            raise VerificationError(f"verification service error: {err or 'unknown'}", retryable=False)
        rows = data.get("results")
        if rows is None:
            rows = []
        if not isinstance(rows, list):
            raise VerificationError(f"verification service returned malformed results: {type(rows).__name__}", retryable=False)
        return [_result_from_json(r) for r in rows if isinstance(r, dict)]


def build_verifier() -> Verifier:
    if settings.VERIFICATION_URL:
        return HttpVerificationClient()
    return LocalEmailVerifier()
