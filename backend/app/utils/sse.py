"""
Server-Sent Events over a ProgressLog.

The generator re-reads the log on a fixed interval, forwards new events,
sends a `ping` when nothing happened for a while, and closes the stream
once a terminal event has gone out.
"""

import asyncio
import json
import time
from typing import AsyncIterator, Optional

from fastapi.responses import StreamingResponse

from app.config import STREAM_POLL_SECONDS, STREAM_HEARTBEAT_SECONDS
from app.models.progress import ProgressEvent
from app.services.progress import ProgressLog

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(payload: dict) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def format_event(event: ProgressEvent) -> str:
    return format_sse(event.model_dump(exclude_none=True))


async def event_generator(
    log: ProgressLog,
    job_id: str,
    since: Optional[int] = None,
    poll_seconds: float = STREAM_POLL_SECONDS,
    heartbeat_seconds: float = STREAM_HEARTBEAT_SECONDS,
) -> AsyncIterator[str]:
    last_time = since or 0
    idle = 0.0

    while True:
        events = log.read_since(job_id, last_time)
        for event in events:
            last_time = event.time
            yield format_event(event)
            if event.is_terminal:
                return

        if not log.has_job(job_id):
            # Discarded while we were streaming
            return

        if events:
            idle = 0.0
        else:
            idle += poll_seconds
            if idle >= heartbeat_seconds:
                idle = 0.0
                yield format_sse({"stage": "ping", "time": int(time.time() * 1000)})

        await asyncio.sleep(poll_seconds)


def progress_stream_response(log: ProgressLog, job_id: str, since: Optional[int] = None) -> StreamingResponse:
    return StreamingResponse(
        event_generator(log, job_id, since),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
