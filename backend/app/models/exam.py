"""Exam-related Pydantic models"""

from pydantic import BaseModel, ConfigDict
from typing import Optional, List, Any


class ExamQuestion(BaseModel):
    """A question as it appears on an exam, with its score weight"""
    model_config = ConfigDict(extra="ignore")

    question_id: str
    type: str
    content: str = ""
    options: Optional[List[Any]] = None  # QuestionOption dicts or plain strings
    answer: Optional[Any] = None
    max_score: float = 0


class Exam(BaseModel):
    model_config = ConfigDict(extra="ignore")

    exam_id: str
    title: str = ""
    total_score: float = 0
    questions: List[ExamQuestion] = []
