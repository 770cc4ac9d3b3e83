from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Optional

import httpx

from leadscout import settings

log = logging.getLogger("liveness")


def _as_url(website: str) -> str:
    w = (website or "").strip()
    if not w:
        return ""
    return w if w.lower().startswith(("http://", "https://")) else "https://" + w


async def probe_website(url: str, timeout: Optional[float] = None, client: Optional[httpx.AsyncClient] = None) -> bool:
    """Best-effort check that a website answers; any failure reads as not alive."""
    target = _as_url(url)
    if not target:
        return False
    timeout = timeout if timeout is not None else settings.LIVENESS_TIMEOUT_S
    own_client = client is None
    if own_client:
        client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": settings.CRAWLER_USER_AGENT},
        )
    try:
        resp = await client.head(target, timeout=timeout)
        if resp.status_code in (403, 405, 501):
            # some servers refuse HEAD outright
            resp = await client.get(target, timeout=timeout)
        return resp.status_code < 400
    except Exception as exc:
        log.info("[liveness] %s unreachable: %s", target, exc)
        return False
    finally:
        if own_client:
            await client.aclose()


async def probe_many(urls: Iterable[str], timeout: Optional[float] = None) -> List[bool]:
    timeout = timeout if timeout is not None else settings.LIVENESS_TIMEOUT_S
    async with httpx.AsyncClient(
        timeout=timeout,
        follow_redirects=True,
        headers={"User-Agent": settings.CRAWLER_USER_AGENT},
    ) as client:
        return list(await asyncio.gather(*(probe_website(u, timeout, client) for u in urls)))
