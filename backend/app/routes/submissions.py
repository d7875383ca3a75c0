"""Exam submission routes - answer drafts, grading and grading progress."""

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from typing import Any, Dict, Optional

from app.deps import get_submission_service
from app.services.errors import AlreadySubmittedError, ExamNotFoundError
from app.services.submission import SubmissionService, stream_key
from app.utils.sse import progress_stream_response
from app.routes.imports import wants_stream

router = APIRouter(tags=["submissions"])


class AnswersRequest(BaseModel):
    answers: Dict[str, Any] = {}


@router.post("/exams/{exam_id}/students/{student_id}/submit")
async def submit_exam(
    exam_id: str,
    student_id: str,
    request: AnswersRequest,
    service: SubmissionService = Depends(get_submission_service),
):
    """Grade and store a submission in one request"""
    try:
        submission = await service.submit(exam_id, student_id, request.answers)
    except ExamNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AlreadySubmittedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return submission.model_dump(mode="json")


@router.post("/exams/{exam_id}/students/{student_id}/submit-async")
async def submit_exam_async(
    exam_id: str,
    student_id: str,
    request: AnswersRequest,
    service: SubmissionService = Depends(get_submission_service),
):
    """Start grading in the background; follow it on submission-progress"""
    try:
        key = service.submit_async(exam_id, student_id, request.answers)
    except AlreadySubmittedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"stream_key": key}


@router.get("/exams/{exam_id}/students/{student_id}/submission-progress")
async def get_submission_progress(
    exam_id: str,
    student_id: str,
    request: Request,
    since: Optional[int] = None,
    stream: bool = False,
    service: SubmissionService = Depends(get_submission_service),
):
    key = stream_key(exam_id, student_id)
    if not service.progress.has_job(key):
        raise HTTPException(status_code=404, detail="No grading in progress for this submission")

    if wants_stream(request, stream):
        return progress_stream_response(service.progress, key, since)

    return [e.model_dump(exclude_none=True) for e in service.progress.read_since(key, since)]


@router.get("/exams/{exam_id}/students/{student_id}/submission-status")
async def get_submission_status(
    exam_id: str,
    student_id: str,
    service: SubmissionService = Depends(get_submission_service),
):
    return await service.check_status(exam_id, student_id)


@router.post("/exams/{exam_id}/students/{student_id}/answers")
async def save_answers(
    exam_id: str,
    student_id: str,
    request: AnswersRequest,
    service: SubmissionService = Depends(get_submission_service),
):
    """Save in-progress answers as a draft"""
    try:
        draft = await service.save_draft(exam_id, student_id, request.answers)
    except ExamNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AlreadySubmittedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"message": "Answers saved", "submission_id": draft.submission_id}
