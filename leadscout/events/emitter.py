import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger("search_events")

TERMINAL_EVENTS = ("done", "failed")


@dataclass
class Event:
    event: str
    message: str
    context: Dict[str, Any] = field(default_factory=dict)


_subscribers: Dict[str, List[asyncio.Queue]] = {}


class Subscription:
    """Progress events for one search, ending after done or failed.

    The queue is registered on construction, so nothing emitted after
    ``subscribe()`` returns can be missed. A slow reader loses the oldest
    events first.
    """

    def __init__(self, search_id: str):
        self.search_id = search_id
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=100)
        self._finished = False
        _subscribers.setdefault(search_id, []).append(self._queue)
        logger.info("[search_events] subscriber added search=%s; total=%d", search_id, subscriber_count(search_id))

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Event:
        if self._finished:
            raise StopAsyncIteration
        ev = await self._queue.get()
        if ev.event in TERMINAL_EVENTS:
            self.close()
        return ev

    def close(self) -> None:
        if self._finished:
            return
        self._finished = True
        queues = _subscribers.get(self.search_id, [])
        if self._queue in queues:
            queues.remove(self._queue)
        if not queues:
            _subscribers.pop(self.search_id, None)
        logger.info("[search_events] subscriber removed search=%s", self.search_id)


def subscribe(search_id: str) -> Subscription:
    return Subscription(search_id)


def subscriber_count(search_id: str) -> int:
    return len(_subscribers.get(search_id, []))


def emit(search_id: str, event: str, message: str, context: Optional[Dict[str, Any]] = None) -> None:
    """Fan an event out to every listener of ``search_id``; a no-op without listeners."""
    queues = _subscribers.get(search_id)
    if not queues:
        return
    ctx = dict(context or {})
    ctx.setdefault("search_id", search_id)
    ev = Event(event=event, message=message, context=ctx)
    for q in list(queues):
        if q.full():
            # Drop oldest to keep recent progress visible
            try:
                q.get_nowait()
            except asyncio.QueueEmpty:
                pass
        q.put_nowait(ev)
