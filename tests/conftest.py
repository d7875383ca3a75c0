"""
Shared fakes for the test suite: a scripted AI oracle and in-memory stores.

No network and no MongoDB are needed to run the tests.
"""

import json
from typing import Any, Dict, List, Optional

import pytest

from app.models.exam import Exam
from app.models.question import CanonicalQuestion
from app.models.submission import Submission
from app.services.errors import FatalImportError
from app.services.progress import ProgressLog


def questions_reply(*contents: str, qtype: str = "SINGLE_CHOICE") -> str:
    """A well-formed extraction reply with one question per content string."""
    return json.dumps({
        "questions": [
            {"content": c, "type": qtype, "options": ["yes", "no"], "answer": "A"}
            for c in contents
        ]
    })


class FakeOracle:
    """
    Scripted AIOracle. Each call pops the next reply; an Exception reply is
    raised, a callable reply is called with the user content (or image).
    """

    def __init__(self, replies=None, vision_replies=None, default: str = '{"questions": []}'):
        self.replies = list(replies or [])
        self.vision_replies = list(vision_replies or [])
        self.default = default
        self.calls: List[tuple] = []
        self.vision_calls: List[tuple] = []

    @staticmethod
    def _resolve(reply, arg):
        if callable(reply) and not isinstance(reply, Exception):
            reply = reply(arg)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def complete(self, system_prompt: str, user_content: str) -> str:
        self.calls.append((system_prompt, user_content))
        reply = self.replies.pop(0) if self.replies else self.default
        return self._resolve(reply, user_content)

    async def complete_vision(self, system_prompt: str, image_bytes: bytes) -> str:
        self.vision_calls.append((system_prompt, image_bytes))
        reply = self.vision_replies.pop(0) if self.vision_replies else self.default
        return self._resolve(reply, image_bytes)


class InMemoryQuestionStore:
    def __init__(self, fail_on_insert: Optional[int] = None, fatal: bool = True):
        self.questions: Dict[str, CanonicalQuestion] = {}
        self.inserts = 0
        self.fail_on_insert = fail_on_insert
        self.fatal = fatal

    async def insert(self, question: CanonicalQuestion, owner_id: Optional[str] = None) -> str:
        self.inserts += 1
        if self.fail_on_insert is not None and self.inserts == self.fail_on_insert:
            if self.fatal:
                raise FatalImportError("Question store unavailable: connection refused")
            raise ValueError("document too large")
        question_id = f"q_{self.inserts}"
        self.questions[question_id] = question
        return question_id

    async def delete_many(self, question_ids: List[str]) -> int:
        removed = 0
        for question_id in question_ids:
            if self.questions.pop(question_id, None) is not None:
                removed += 1
        return removed


class InMemoryExamStore:
    def __init__(self, exams: Optional[List[Exam]] = None):
        self.exams = {e.exam_id: e for e in exams or []}
        self.submissions: Dict[tuple, Submission] = {}
        self.upserts = 0

    async def find_exam(self, exam_id: str) -> Optional[Exam]:
        return self.exams.get(exam_id)

    async def find_submission(self, exam_id: str, student_id: str) -> Optional[Submission]:
        return self.submissions.get((exam_id, student_id))

    async def upsert_submission(self, submission: Submission) -> Submission:
        self.upserts += 1
        key = (submission.exam_id, submission.student_id)
        existing = self.submissions.get(key)
        if existing is not None:
            submission = submission.model_copy(update={
                "submission_id": existing.submission_id,
                "created_at": existing.created_at,
            })
        self.submissions[key] = submission
        return submission


class InMemoryImportRecordStore:
    def __init__(self):
        self.records: Dict[str, Dict[str, Any]] = {}

    async def create(self, record: Dict[str, Any]) -> None:
        self.records[record["job_id"]] = dict(record)

    async def update(self, job_id: str, fields: Dict[str, Any]) -> None:
        self.records.setdefault(job_id, {}).update(fields)


@pytest.fixture
def import_log():
    return ProgressLog("import", max_events=200)


@pytest.fixture
def submission_log():
    return ProgressLog("submission", max_events=100)


@pytest.fixture
def question_store():
    return InMemoryQuestionStore()


@pytest.fixture
def import_records():
    return InMemoryImportRecordStore()
