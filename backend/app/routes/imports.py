"""Question import routes - document / text upload and job progress."""

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from pydantic import BaseModel
from typing import Optional

from app.config import logger
from app.deps import get_extraction_service
from app.services.extraction import ExtractionService
from app.utils.sse import progress_stream_response

router = APIRouter(tags=["imports"])

MAX_UPLOAD_BYTES = 30 * 1024 * 1024


class TextImportRequest(BaseModel):
    text: str
    prompt: Optional[str] = None


def wants_stream(request: Request, stream: bool) -> bool:
    return stream or "text/event-stream" in request.headers.get("accept", "")


@router.post("/imports/pdf")
async def import_document(
    file: UploadFile = File(...),
    mode: Optional[str] = Form(None),
    prompt: Optional[str] = Form(None),
    service: ExtractionService = Depends(get_extraction_service),
):
    """Upload a PDF (or a page image) and start extracting its questions"""
    file_bytes = await file.read()
    if not file_bytes:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    if len(file_bytes) > MAX_UPLOAD_BYTES:
        size_mb = len(file_bytes) / (1024 * 1024)
        raise HTTPException(status_code=400, detail=f"File too large ({size_mb:.1f}MB). Maximum size is 30MB.")

    job_id = service.start_import(file_bytes, filename=file.filename or "", mode=mode, custom_prompt=prompt)
    logger.info(f"Import {job_id} started for {file.filename} ({len(file_bytes)} bytes, mode={mode or 'default'})")
    return {"job_id": job_id}


@router.post("/imports/text")
async def import_text(
    request: TextImportRequest,
    service: ExtractionService = Depends(get_extraction_service),
):
    if not request.text.strip():
        raise HTTPException(status_code=400, detail="Text is empty")
    job_id = service.start_text_import(request.text, custom_prompt=request.prompt)
    return {"job_id": job_id}


@router.get("/imports/{job_id}/progress")
async def get_import_progress(
    job_id: str,
    request: Request,
    since: Optional[int] = None,
    stream: bool = False,
    service: ExtractionService = Depends(get_extraction_service),
):
    """Progress events after `since`; SSE when `stream=true` or the client accepts text/event-stream"""
    if not service.progress.has_job(job_id):
        raise HTTPException(status_code=404, detail="Import job not found")

    if wants_stream(request, stream):
        return progress_stream_response(service.progress, job_id, since)

    return [e.model_dump(exclude_none=True) for e in service.progress.read_since(job_id, since)]


@router.delete("/imports/{job_id}/progress")
async def discard_import_progress(
    job_id: str,
    service: ExtractionService = Depends(get_extraction_service),
):
    service.progress.discard(job_id)
    return {"message": "Progress discarded"}
