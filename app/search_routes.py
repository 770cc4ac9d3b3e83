from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterator

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Path, Request
from fastapi.responses import StreamingResponse

from app.search_runs import SearchRun, create_run, get_run
from leadscout import settings
from leadscout.errors import PipelineError
from leadscout.events import Event, subscribe
from leadscout.models import SearchRequest
from leadscout.pipeline import LeadPipeline, build_pipeline
from leadscout.troubleshoot_log import log_json
from schemas.search import LeadOut, SearchAccepted, SearchRequestIn, SearchStatusOut

router = APIRouter(prefix="/api/searches", tags=["searches"])
_lg = logging.getLogger("searches")

_pipeline: LeadPipeline | None = None


def get_pipeline() -> LeadPipeline:
    """Process-wide pipeline; its breaker and scheduler are shared by every search."""
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline()
    return _pipeline


async def _execute(pipeline: LeadPipeline, run: SearchRun, request: SearchRequest) -> None:
    try:
        leads = await pipeline.run(request, on_progress=run.on_progress)
    except PipelineError as exc:
        _lg.warning("search %s failed: %s", run.search_id, exc)
        run.fail(str(exc))
        return
    run.finish(leads)


def _status(run: SearchRun) -> SearchStatusOut:
    return SearchStatusOut(
        search_id=run.search_id,
        status=run.status,
        progress=run.progress,
        label=run.label,
        logs=list(run.logs),
        leads=[LeadOut(**lead.to_dict()) for lead in run.leads],
        error=run.error,
    )


@router.post("", response_model=SearchAccepted, status_code=202)
async def start_search(
    body: SearchRequestIn,
    background: BackgroundTasks,
    request: Request,
    pipeline: LeadPipeline = Depends(get_pipeline),
):
    try:
        search = SearchRequest(location=body.location.strip(), category=body.category, intensity=body.intensity)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    run = create_run()
    log_json("api", "info", "search accepted", {
        "search_id": run.search_id,
        "request_id": getattr(request.state, "request_id", None),
        "location": search.location,
        "category": search.category,
        "intensity": search.intensity,
    })
    background.add_task(_execute, pipeline, run, search)
    return SearchAccepted(search_id=run.search_id, status=run.status)


@router.get("/{search_id}", response_model=SearchStatusOut)
async def search_status(search_id: str = Path(..., min_length=1)):
    run = get_run(search_id)
    if run is None:
        raise HTTPException(status_code=404, detail="search not found")
    return _status(run)


def _frame(ev: Event) -> bytes:
    payload = {"event": ev.event, "message": ev.message, "context": ev.context}
    data = json.dumps(payload, ensure_ascii=False)
    return f"event: {ev.event}\ndata: {data}\n\n".encode("utf-8")


async def _merge_with_heartbeat(request: Request, iter_events: AsyncIterator[Event], *, interval_s: float):
    """Yield SSE chunks, inserting keepalive comments every interval."""
    ait = iter_events.__aiter__()
    next_ev_task = asyncio.create_task(ait.__anext__())
    hb_task = asyncio.create_task(asyncio.sleep(interval_s))
    try:
        while True:
            if await request.is_disconnected():
                break
            done, _pending = await asyncio.wait({next_ev_task, hb_task}, return_when=asyncio.FIRST_COMPLETED)
            if hb_task in done:
                yield b": keepalive\n\n"
                hb_task = asyncio.create_task(asyncio.sleep(interval_s))
            if next_ev_task in done:
                try:
                    ev = next_ev_task.result()
                except StopAsyncIteration:
                    break
                yield _frame(ev)
                next_ev_task = asyncio.create_task(ait.__anext__())
    finally:
        next_ev_task.cancel()
        hb_task.cancel()


@router.get("/{search_id}/stream")
async def stream_search(request: Request, search_id: str = Path(..., min_length=1)):
    """SSE stream of progress events for one search.

    A search that already finished replays its final state as a single terminal event.
    """
    run = get_run(search_id)
    if run is None:
        raise HTTPException(status_code=404, detail="search not found")

    # subscribe before reading status so a run finishing in between is not missed
    events = subscribe(search_id)
    if run.status != "running":
        events.close()
        final = Event(
            event="done" if run.status == "done" else "failed",
            message=run.error or run.label or "",
            context={"search_id": search_id, "progress": run.progress, "lead_count": len(run.leads)},
        )

        async def _replay():
            yield _frame(final)

        return StreamingResponse(_replay(), media_type="text/event-stream")

    async def _gen():
        try:
            async for chunk in _merge_with_heartbeat(request, events, interval_s=settings.SSE_HEARTBEAT_INTERVAL_S):
                yield chunk
        finally:
            events.close()

    return StreamingResponse(_gen(), media_type="text/event-stream")
