import itertools
import os
import sys


def _ensure_repo_on_path() -> None:
    root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    if root not in sys.path:
        sys.path.append(root)


_ensure_repo_on_path()
os.environ.setdefault("OPENAI_API_KEY", "test")
# keep JSONL troubleshoot files out of the working tree
os.environ.setdefault("ENVIRONMENT", "test")

import pytest

from leadscout.retry import BackoffPolicy, CircuitBreaker
from leadscout.scheduler import RequestScheduler, ResilientGateway


class FakeProvider:
    """Stands in for ChatProvider; ``handler(prompt)`` returns text or an exception to raise."""

    def __init__(self, handler):
        self.handler = handler
        self.prompts = []

    async def generate(self, prompt, *, temperature=None, json_mode=False):
        self.prompts.append(prompt)
        out = self.handler(prompt)
        if isinstance(out, BaseException):
            raise out
        return out


def far_apart_clock():
    """Monotonic clock whose readings are always minutes apart (no spacing waits)."""
    ticks = itertools.count(start=0, step=1000)
    return lambda: float(next(ticks))


@pytest.fixture
def make_gateway():
    sleeps = []

    async def _fake_sleep(delay):
        sleeps.append(delay)

    def _make(breaker=None, max_attempts=3):
        scheduler = RequestScheduler(1000, max_queue_size=50, cooldown_s=0, clock=far_apart_clock())
        policy = BackoffPolicy(max_attempts=max_attempts, base_delay_s=1.0, max_delay_s=5.0, jitter_s=0.0)
        gw = ResilientGateway(scheduler, breaker, policy, sleep=_fake_sleep)
        gw.sleeps = sleeps
        return gw

    return _make


@pytest.fixture
def fake_clock():
    box = {"now": 1_000.0}

    def clock():
        return box["now"]

    clock.box = box
    return clock


@pytest.fixture
def breaker(fake_clock):
    return CircuitBreaker(name="test", failure_threshold=10, window_s=60, cool_off_s=120, clock=fake_clock)
