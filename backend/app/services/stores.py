"""
Persistence collaborators for the import pipeline and the grading flow.

The services depend only on the Protocols below; the Mongo implementations
are what the running API wires in.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol
import uuid

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from app.config import logger
from app.models.exam import Exam
from app.models.question import CanonicalQuestion
from app.models.submission import Submission
from app.services.errors import FatalImportError
from app.utils.answers import serialize_question_answer


class QuestionStore(Protocol):
    async def insert(self, question: CanonicalQuestion, owner_id: Optional[str] = None) -> str:
        ...

    async def delete_many(self, question_ids: List[str]) -> int:
        ...


class ExamStore(Protocol):
    async def find_exam(self, exam_id: str) -> Optional[Exam]:
        ...

    async def find_submission(self, exam_id: str, student_id: str) -> Optional[Submission]:
        ...

    async def upsert_submission(self, submission: Submission) -> Submission:
        ...


class ImportRecordStore(Protocol):
    async def create(self, record: Dict[str, Any]) -> None:
        ...

    async def update(self, job_id: str, fields: Dict[str, Any]) -> None:
        ...


# ============== MONGO IMPLEMENTATIONS ==============

class MongoQuestionStore:
    def __init__(self, db):
        self.collection = db.questions

    async def insert(self, question: CanonicalQuestion, owner_id: Optional[str] = None) -> str:
        question_id = f"q_{uuid.uuid4().hex[:12]}"
        doc = {
            "question_id": question_id,
            "content": question.content,
            "type": question.type.value,
            "options": [o.model_dump() for o in question.options] if question.options else None,
            "answer": serialize_question_answer(question.answer),
            "explanation": question.explanation,
            "tags": question.tags,
            "difficulty": question.difficulty,
            "knowledge_point": question.knowledge_point,
            "import_order": question.import_order,
            "status": "PUBLISHED",
            "owner_id": owner_id,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await self.collection.insert_one(doc)
        except PyMongoError as e:
            # The database being unreachable is not a per-question problem
            raise FatalImportError(f"Question store unavailable: {e}") from e
        return question_id

    async def delete_many(self, question_ids: List[str]) -> int:
        if not question_ids:
            return 0
        result = await self.collection.delete_many({"question_id": {"$in": question_ids}})
        return result.deleted_count


class MongoExamStore:
    def __init__(self, db):
        self.exams = db.exams
        self.submissions = db.submissions

    async def find_exam(self, exam_id: str) -> Optional[Exam]:
        doc = await self.exams.find_one({"exam_id": exam_id}, {"_id": 0})
        return Exam.model_validate(doc) if doc else None

    async def find_submission(self, exam_id: str, student_id: str) -> Optional[Submission]:
        doc = await self.submissions.find_one(
            {"exam_id": exam_id, "student_id": student_id}, {"_id": 0}
        )
        return Submission.model_validate(doc) if doc else None

    async def upsert_submission(self, submission: Submission) -> Submission:
        doc = submission.model_dump(mode="json")
        created_at = doc.pop("created_at")
        submission_id = doc.pop("submission_id")
        saved = await self.submissions.find_one_and_update(
            {"exam_id": submission.exam_id, "student_id": submission.student_id},
            {
                "$set": doc,
                "$setOnInsert": {"submission_id": submission_id, "created_at": created_at},
            },
            upsert=True,
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        return Submission.model_validate(saved)


class MongoImportRecordStore:
    def __init__(self, db):
        self.collection = db.import_records

    async def create(self, record: Dict[str, Any]) -> None:
        record = {**record, "created_at": datetime.now(timezone.utc).isoformat()}
        await self.collection.insert_one(record)

    async def update(self, job_id: str, fields: Dict[str, Any]) -> None:
        try:
            await self.collection.update_one(
                {"job_id": job_id},
                {"$set": {**fields, "updated_at": datetime.now(timezone.utc).isoformat()}},
            )
        except PyMongoError as e:
            logger.error(f"Failed to update import record {job_id}: {e}")
