from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, TypeVar

from leadscout import settings
from leadscout.errors import CircuitOpen, QueueFull, UpstreamError
from leadscout.troubleshoot_log import log_json

log = logging.getLogger("retry")

T = TypeVar("T")

RetryObserver = Callable[[int, float], None]

_RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}
_FATAL_STATUS = {400, 401, 403, 404, 422}
_RETRYABLE_MARKERS = (
    "overloaded",
    "rate limit",
    "rate_limit",
    "ratelimit",
    "too many requests",
    "unavailable",
    "timeout",
    "timed out",
    "503",
    "429",
)
# Quota exhaustion reads like a rate limit but will not clear by waiting
_FATAL_MARKERS = (
    "quota",
    "api key",
    "api_key",
    "invalid_request",
    "unauthorized",
    "permission",
)


@dataclass(frozen=True)
class BackoffPolicy:
    max_attempts: int = 5
    base_delay_s: float = 4.0
    max_delay_s: float = 30.0
    multiplier: float = 1.8
    jitter_s: float = 1.0

    @classmethod
    def from_settings(cls) -> "BackoffPolicy":
        return cls(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            base_delay_s=settings.RETRY_BASE_DELAY_S,
            max_delay_s=settings.RETRY_MAX_DELAY_S,
            multiplier=settings.RETRY_MULTIPLIER,
            jitter_s=settings.RETRY_JITTER_S,
        )


def is_retryable(exc: BaseException) -> bool:
    """Classify an error as transient (overload, rate limit, unavailable, timeout)."""
    if isinstance(exc, (CircuitOpen, QueueFull)):
        return False
    if isinstance(exc, UpstreamError) and exc.retryable is not None:
        return exc.retryable
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return True
    text = str(exc).lower()
    if any(m in text for m in _FATAL_MARKERS):
        return False
    status = getattr(exc, "status_code", None)
    if status in _RETRYABLE_STATUS:
        return True
    if status in _FATAL_STATUS:
        return False
    return any(m in text for m in _RETRYABLE_MARKERS)


def backoff_delay(policy: BackoffPolicy, retry_number: int) -> float:
    """Pre-jitter delay before retry ``retry_number`` (1-based)."""
    raw = policy.base_delay_s * (policy.multiplier ** max(0, retry_number - 1))
    return min(policy.max_delay_s, raw)


def backoff_delays(policy: BackoffPolicy, count: int) -> List[float]:
    return [backoff_delay(policy, n) for n in range(1, count + 1)]


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: Optional[BackoffPolicy] = None,
    on_retry: Optional[RetryObserver] = None,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``fn`` until it succeeds, a non-retryable error occurs, or attempts run out.

    ``on_retry(attempt, delay_s)`` is told about each scheduled retry; it never
    changes what happens next.
    """
    policy = policy or BackoffPolicy.from_settings()
    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except Exception as e:
            if not is_retryable(e) or attempt >= policy.max_attempts:
                raise
            # exponential backoff with jitter
            delay = backoff_delay(policy, attempt) + random.uniform(0, policy.jitter_s)
            log.info("retryable failure (attempt %d/%d), sleeping %.1fs: %s", attempt, policy.max_attempts, delay, e)
            if on_retry is not None:
                try:
                    on_retry(attempt, delay)
                except Exception:
                    log.warning("retry observer failed", exc_info=True)
            await sleep(delay)


class CircuitBreaker:
    """Failure counter guarding one shared upstream.

    Failures accumulate; a burst of ``failure_threshold`` with the latest one
    inside ``window_s`` opens the circuit for ``cool_off_s``. Successes pay the
    count down one at a time.
    """

    def __init__(
        self,
        name: str = "upstream",
        failure_threshold: Optional[int] = None,
        window_s: Optional[float] = None,
        cool_off_s: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self.failure_threshold = failure_threshold if failure_threshold is not None else settings.CB_FAILURE_THRESHOLD
        self.window_s = window_s if window_s is not None else settings.CB_FAILURE_WINDOW_S
        self.cool_off_s = cool_off_s if cool_off_s is not None else settings.CB_COOL_OFF_S
        self._clock = clock
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.is_open = False
        self.open_until: Optional[float] = None

    @property
    def state(self) -> str:
        return "OPEN" if self.is_open else "CLOSED"

    def check(self) -> None:
        """Raise CircuitOpen while suspended; close once the cool-off has passed."""
        if not self.is_open:
            return
        now = self._clock()
        if self.open_until is not None and now > self.open_until:
            self.is_open = False
            self.open_until = None
            self.failure_count = 0
            log.info("[breaker:%s] cool-off elapsed, closing", self.name)
            return
        raise CircuitOpen(max(0.0, (self.open_until or now) - now))

    def allow(self) -> bool:
        try:
            self.check()
        except CircuitOpen:
            return False
        return True

    def record_success(self) -> None:
        self.failure_count = max(0, self.failure_count - 1)

    def record_failure(self) -> None:
        now = self._clock()
        previous = self.last_failure_time
        self.failure_count += 1
        self.last_failure_time = now
        if self.is_open:
            return
        recent = previous is None or (now - previous) <= self.window_s
        if self.failure_count >= self.failure_threshold and recent:
            self.is_open = True
            self.open_until = now + self.cool_off_s
            log.warning("[breaker:%s] opened after %d failures", self.name, self.failure_count)
            log_json("breaker", "warn", "circuit opened", {
                "name": self.name,
                "failure_count": self.failure_count,
                "cool_off_s": self.cool_off_s,
            })
