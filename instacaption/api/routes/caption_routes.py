"""
FastAPI routes for caption generation.

Endpoints:
    POST /caption - Caption an uploaded image (JSON, or NDJSON when streaming)
    GET /caption/state - Current caption, busy flag and selected-image flag
    POST /caption/cancel - Stop the streaming request in progress
"""

import json
import logging
from typing import Iterator

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import StreamingResponse

from instacaption.api.deps import get_caption_session
from instacaption.schemas.caption_schema import (
    CaptionResponse,
    CaptionState,
    ImageInput,
    RequestMode,
)
from instacaption.services.caption_service import drain
from instacaption.utils.caption_session import (
    CaptionInProgressError,
    CaptionRun,
    CaptionSession,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/caption", tags=["caption"])


def _ndjson_lines(updates: CaptionRun) -> Iterator[str]:
    """One line per accumulated caption, then a final line with the result."""
    while True:
        try:
            caption = next(updates)
        except StopIteration as stop:
            result = stop.value
            break
        yield json.dumps({"caption": caption}) + "\n"

    final = CaptionResponse.from_result(result).model_dump(mode="json")
    final["done"] = True
    yield json.dumps(final) + "\n"


class CaptionStreamResponse(StreamingResponse):
    """NDJSON caption stream that releases the session however the response ends."""

    def __init__(self, updates: CaptionRun):
        super().__init__(_ndjson_lines(updates), media_type="application/x-ndjson")
        self.updates = updates

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            # Client may disconnect before the body is iterated
            self.updates.close()


@router.post("", response_model=CaptionResponse)
def create_caption(
    file: UploadFile = File(...),
    stream: bool = Form(False),
    session: CaptionSession = Depends(get_caption_session)
):
    """
    Caption an uploaded image.

    Buffered requests return a CaptionResponse. Streaming requests return
    application/x-ndjson: {"caption": ...} after every token, then a final
    object carrying the result fields and "done": true.
    """
    image = ImageInput.from_bytes(
        file.file.read(),
        filename=file.filename,
        content_type=file.content_type
    )
    if image is None:
        logger.error("No file selected")
        raise HTTPException(status_code=400, detail="No image selected")

    mode = RequestMode.from_stream_flag(stream)
    try:
        updates = session.start(image=image, mode=mode)
    except CaptionInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))

    if mode == RequestMode.STREAMING:
        return CaptionStreamResponse(updates)

    try:
        result = drain(updates)
    finally:
        updates.close()
    logger.info(f"Caption request finished: status={result.status}")
    return CaptionResponse.from_result(result)


@router.get("/state", response_model=CaptionState)
def caption_state(session: CaptionSession = Depends(get_caption_session)):
    """Snapshot of the shared session, for polling progress."""
    return session.state()


@router.post("/cancel")
def cancel_caption(session: CaptionSession = Depends(get_caption_session)):
    """Stop the streaming request in progress, if any."""
    cancelled = session.cancel()
    return {"cancelled": cancelled}
