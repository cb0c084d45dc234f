"""Job queue endpoints and the job event stream."""

from __future__ import annotations

import asyncio
import logging
import time

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect

from textblocker.api.schemas.models import FileJobRequest, FolderJobRequest, JobSchema, UrlJobRequest
from textblocker.api.services.state import get_queue
from textblocker.core.errors import FetchError, InputError
from textblocker.core.jobs import Job

router = APIRouter()

logger = logging.getLogger(__name__)


def _schemas(jobs: list[Job]) -> list[JobSchema]:
    return [JobSchema.from_job(j) for j in jobs]


@router.get("/jobs", response_model=list[JobSchema])
def list_jobs() -> list[JobSchema]:
    return _schemas(get_queue().list_jobs())


@router.delete("/jobs/finished")
def clear_finished() -> dict[str, int]:
    """Remove completed, failed and cancelled jobs."""

    return {"removed": get_queue().clear_finished()}


@router.get("/jobs/{job_id}", response_model=JobSchema)
def get_job(job_id: str) -> JobSchema:
    machine = get_queue().get(job_id)
    if machine is None:
        raise HTTPException(status_code=404, detail="Unknown job")
    return JobSchema.from_job(machine.snapshot())


@router.post("/jobs/file", response_model=JobSchema)
def submit_file(req: FileJobRequest) -> JobSchema:
    try:
        job = get_queue().submit_file(req.path)
    except InputError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None
    return JobSchema.from_job(job)


@router.post("/jobs/folder", response_model=list[JobSchema])
def submit_folder(req: FolderJobRequest) -> list[JobSchema]:
    try:
        jobs = get_queue().submit_folder(req.path)
    except InputError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None
    return _schemas(jobs)


@router.post("/jobs/youtube", response_model=JobSchema)
def submit_youtube(req: UrlJobRequest) -> JobSchema:
    try:
        job = get_queue().submit_youtube(req.url)
    except InputError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None
    except FetchError as e:
        raise HTTPException(status_code=502, detail=str(e)) from None
    return JobSchema.from_job(job)


@router.post("/jobs/playlist", response_model=list[JobSchema])
def submit_playlist(req: UrlJobRequest) -> list[JobSchema]:
    try:
        jobs = get_queue().submit_playlist(req.url)
    except InputError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None
    except FetchError as e:
        raise HTTPException(status_code=502, detail=str(e)) from None
    return _schemas(jobs)


@router.post("/jobs/{job_id}/cancel")
def cancel_job(job_id: str) -> dict[str, bool]:
    try:
        accepted = get_queue().cancel(job_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Unknown job") from None
    return {"cancelled": accepted}


@router.delete("/jobs/{job_id}")
def delete_job(job_id: str) -> dict[str, bool]:
    try:
        removed = get_queue().remove(job_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Unknown job") from None
    if not removed:
        raise HTTPException(status_code=409, detail="Job is still processing")
    return {"removed": True}


@router.websocket("/jobs/events")
async def job_events(ws: WebSocket):
    """Push a snapshot of all jobs, then one message per job state change."""

    await ws.accept()
    queue = await asyncio.to_thread(get_queue)
    loop = asyncio.get_running_loop()
    events: asyncio.Queue[dict] = asyncio.Queue()

    def _on_change(job: Job) -> None:
        payload = {"type": "job", "job": JobSchema.from_job(job).model_dump()}
        loop.call_soon_threadsafe(events.put_nowait, payload)

    unsubscribe = queue.subscribe(_on_change)

    async def _pump() -> None:
        snapshot = [s.model_dump() for s in _schemas(queue.list_jobs())]
        await ws.send_json({"type": "snapshot", "jobs": snapshot})
        while True:
            await ws.send_json(await events.get())

    async def _receive() -> None:
        # Only pings are expected from clients; anything else is ignored.
        while True:
            try:
                msg = await ws.receive_json()
            except ValueError:
                continue
            if isinstance(msg, dict) and msg.get("type") == "ping":
                events.put_nowait({"type": "pong", "t": msg.get("t"), "server_time": time.time()})

    tasks = {asyncio.create_task(_pump()), asyncio.create_task(_receive())}
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.error("Job event websocket failed: %r", exc)
    finally:
        unsubscribe()
