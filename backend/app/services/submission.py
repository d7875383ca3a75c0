"""
Submission service - grading of a learner's exam answers.

`submit_async` returns a stream key right away and grades in a background
task, reporting on the submission ProgressLog under `{exam_id}-{student_id}`.
Grading for one (exam, learner) pair is serialized by a keyed lock so a
double submit cannot produce two graded records.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set
import asyncio

from app.config import logger, SUBMISSION_TIMEOUT_SECONDS
from app.models.progress import SubmissionStage
from app.models.submission import Submission
from app.services.errors import AlreadySubmittedError, ExamNotFoundError, GradingError
from app.services.grading import GradingEngine
from app.services.progress import ProgressLog
from app.services.stores import ExamStore
from app.utils.concurrency import KeyedLocks


def stream_key(exam_id: str, student_id: str) -> str:
    return f"{exam_id}-{student_id}"


class SubmissionService:
    def __init__(
        self,
        exam_store: ExamStore,
        engine: GradingEngine,
        progress: ProgressLog,
        timeout_seconds: float = SUBMISSION_TIMEOUT_SECONDS,
    ):
        self.exam_store = exam_store
        self.engine = engine
        self.progress = progress
        self.timeout_seconds = timeout_seconds
        self._locks = KeyedLocks()
        self._tasks: Set[asyncio.Task] = set()

    # ============== ASYNC SUBMIT ==============

    def submit_async(self, exam_id: str, student_id: str, answers: Dict[str, Any]) -> str:
        """
        Open the grading channel, schedule grading, and return the channel key.

        Raises AlreadySubmittedError while an earlier submission for the same
        pair is still grading; its channel is left untouched.
        """
        key = stream_key(exam_id, student_id)

        last = self.progress.last_event(key)
        if self._locks.locked(key) or (last is not None and not last.is_terminal):
            logger.warning(f"Submission {key} rejected: grading already in progress")
            raise AlreadySubmittedError(exam_id, student_id)

        # A finished channel from an earlier attempt is replaced
        if last is not None:
            self.progress.discard(key)
        self.progress.create_job(key)
        self.progress.append(key, SubmissionStage.CONNECTED, "Submission received, grading queued")

        task = asyncio.create_task(self._run(key, exam_id, student_id, answers))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return key

    async def _run(self, key: str, exam_id: str, student_id: str, answers: Dict[str, Any]):
        timed_out = asyncio.Event()
        watchdog = asyncio.create_task(self._watchdog(key, timed_out))
        try:
            submission = await self._grade_and_save(
                exam_id, student_id, answers,
                on_progress=lambda current, total, message: self.progress.append(
                    key, SubmissionStage.PROGRESS, message, current=current, total=total
                ),
            )
        except GradingError as e:
            logger.warning(f"Submission {key} rejected: {e}")
            self._finish(key, timed_out, SubmissionStage.ERROR, str(e))
            return
        except Exception as e:
            logger.error(f"❌ Grading failed for {key}: {e}", exc_info=True)
            self._finish(key, timed_out, SubmissionStage.ERROR, f"Grading failed: {e}")
            return
        finally:
            watchdog.cancel()

        self._finish(
            key, timed_out, SubmissionStage.COMPLETE, "Grading complete",
            result={
                "submission": submission.model_dump(mode="json"),
                "grading_results": submission.grading_details.model_dump(mode="json"),
            },
        )

    async def _watchdog(self, key: str, timed_out: asyncio.Event):
        await asyncio.sleep(self.timeout_seconds)
        timed_out.set()
        logger.error(f"⏱️ Grading for {key} exceeded {self.timeout_seconds}s")
        self.progress.append(key, SubmissionStage.ERROR, "Grading timed out")

    def _finish(self, key: str, timed_out: asyncio.Event, stage: SubmissionStage, message: str,
                result: Optional[Dict[str, Any]] = None):
        if timed_out.is_set():
            # The watchdog already closed the channel; the graded record is still saved
            logger.info(f"Grading for {key} finished after it timed out: {message}")
            return
        self.progress.append(key, stage, message, result=result)

    # ============== SYNC OPERATIONS ==============

    async def submit(self, exam_id: str, student_id: str, answers: Dict[str, Any]) -> Submission:
        """Grade and store in one call; raises AlreadySubmittedError / ExamNotFoundError."""
        return await self._grade_and_save(exam_id, student_id, answers)

    async def _grade_and_save(self, exam_id: str, student_id: str, answers: Dict[str, Any],
                              on_progress=None) -> Submission:
        async with self._locks(stream_key(exam_id, student_id)):
            existing = await self.exam_store.find_submission(exam_id, student_id)
            if existing is not None and existing.is_graded:
                raise AlreadySubmittedError(exam_id, student_id)

            exam = await self.exam_store.find_exam(exam_id)
            if exam is None:
                raise ExamNotFoundError(exam_id)

            answers = answers or {}
            result = await self.engine.grade_submission(exam, answers, on_progress)

            submission = Submission(
                exam_id=exam_id,
                student_id=student_id,
                answers=answers,
                score=result.total_score,
                is_auto_graded=result.is_fully_auto_graded,
                grading_details=result,
                submitted_at=datetime.now(timezone.utc),
            )
            if existing is not None:
                # Upgrade the draft in place
                submission.submission_id = existing.submission_id
                submission.created_at = existing.created_at

            saved = await self.exam_store.upsert_submission(submission)
            logger.info(f"✅ Submission {saved.submission_id} graded: {result.total_score}/{result.max_total_score}")
            return saved

    async def check_status(self, exam_id: str, student_id: str) -> Dict[str, Any]:
        existing = await self.exam_store.find_submission(exam_id, student_id)
        return {
            "has_submitted": existing is not None and existing.is_graded,
            "submission": existing.model_dump(mode="json") if existing else None,
        }

    async def save_draft(self, exam_id: str, student_id: str, answers: Dict[str, Any]) -> Submission:
        """Store in-progress answers; refused once the exam has been submitted."""
        async with self._locks(stream_key(exam_id, student_id)):
            existing = await self.exam_store.find_submission(exam_id, student_id)
            if existing is not None and existing.is_graded:
                raise AlreadySubmittedError(exam_id, student_id)
            if await self.exam_store.find_exam(exam_id) is None:
                raise ExamNotFoundError(exam_id)

            draft = Submission(exam_id=exam_id, student_id=student_id, answers=answers or {})
            if existing is not None:
                draft.submission_id = existing.submission_id
                draft.created_at = existing.created_at
            return await self.exam_store.upsert_submission(draft)
