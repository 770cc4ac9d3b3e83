from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Optional, Set, TypeVar

from leadscout import settings
from leadscout.errors import QueueFull
from leadscout.retry import BackoffPolicy, CircuitBreaker, RetryObserver, with_retry

log = logging.getLogger("scheduler")

T = TypeVar("T")


@dataclass
class ScheduledCall:
    operation: Callable[[], Awaitable[Any]]
    future: asyncio.Future
    enqueued_at: float = field(default_factory=time.monotonic)


class RequestScheduler:
    """Bounded FIFO admission in front of one rate-limited upstream.

    At most ``requests_per_minute`` operations run at once, consecutive
    admissions are at least ``60 / requests_per_minute`` seconds apart, and a
    finished operation keeps its slot for ``cooldown_s`` before the next
    queued call may take it.
    """

    def __init__(
        self,
        requests_per_minute: Optional[int] = None,
        max_queue_size: Optional[int] = None,
        cooldown_s: Optional[float] = None,
        *,
        name: str = "provider",
        clock: Callable[[], float] = time.monotonic,
    ):
        rpm = requests_per_minute if requests_per_minute is not None else settings.SCHEDULER_RPM
        if rpm <= 0:
            raise ValueError("requests_per_minute must be positive")
        self.name = name
        self.requests_per_minute = rpm
        self.max_queue_size = max_queue_size if max_queue_size is not None else settings.SCHEDULER_MAX_QUEUE
        self.cooldown_s = cooldown_s if cooldown_s is not None else settings.SCHEDULER_COOLDOWN_S
        self.min_interval_s = 60.0 / rpm
        self._clock = clock
        self._queue: Deque[ScheduledCall] = deque()
        self._in_flight = 0
        self._last_admission: Optional[float] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._slot_freed: Optional[asyncio.Event] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def _bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Event, pump and queued futures belong to one loop; start fresh on a new one."""
        if self._loop is loop:
            return
        if self._loop is not None:
            log.info("[scheduler:%s] event loop changed, dropping %d stale call(s)", self.name, len(self._queue))
        self._loop = loop
        self._slot_freed = asyncio.Event()
        self._pump_task = None
        self._queue.clear()
        self._tasks.clear()
        self._in_flight = 0

    async def schedule(self, operation: Callable[[], Awaitable[T]]) -> T:
        loop = asyncio.get_running_loop()
        self._bind_loop(loop)
        if len(self._queue) >= self.max_queue_size:
            raise QueueFull(self.max_queue_size)
        call = ScheduledCall(operation=operation, future=loop.create_future())
        self._queue.append(call)
        if self._pump_task is None or self._pump_task.done():
            self._pump_task = loop.create_task(self._pump())
        return await call.future

    async def _pump(self) -> None:
        while self._queue:
            while self._in_flight >= self.requests_per_minute:
                self._slot_freed.clear()
                await self._slot_freed.wait()
            if self._last_admission is not None:
                wait = self.min_interval_s - (self._clock() - self._last_admission)
                if wait > 0:
                    await asyncio.sleep(wait)
            if not self._queue:
                break
            call = self._queue.popleft()
            if call.future.done():
                # caller went away while queued
                continue
            self._last_admission = self._clock()
            self._in_flight += 1
            task = asyncio.get_running_loop().create_task(self._run(call))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, call: ScheduledCall) -> None:
        try:
            result = await call.operation()
        except asyncio.CancelledError:
            call.future.cancel()
            raise
        except Exception as exc:
            if not call.future.done():
                call.future.set_exception(exc)
        else:
            if not call.future.done():
                call.future.set_result(result)
        finally:
            try:
                if self.cooldown_s > 0:
                    await asyncio.sleep(self.cooldown_s)
            finally:
                self._in_flight -= 1
                self._slot_freed.set()


class ResilientGateway:
    """breaker check -> scheduled admission -> call -> retry (which re-enters both)."""

    def __init__(
        self,
        scheduler: RequestScheduler,
        breaker: Optional[CircuitBreaker] = None,
        policy: Optional[BackoffPolicy] = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.scheduler = scheduler
        self.breaker = breaker
        self.policy = policy
        self._sleep = sleep

    async def call(self, operation: Callable[[], Awaitable[T]], on_retry: Optional[RetryObserver] = None) -> T:
        async def _attempt() -> T:
            if self.breaker is not None:
                self.breaker.check()
            try:
                result = await self.scheduler.schedule(operation)
            except QueueFull:
                raise
            except Exception:
                if self.breaker is not None:
                    self.breaker.record_failure()
                raise
            if self.breaker is not None:
                self.breaker.record_success()
            return result

        return await with_retry(_attempt, self.policy, on_retry, sleep=self._sleep)
