"""Submission Pydantic models"""

from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Dict, Any
from datetime import datetime, timezone
import uuid

from .grading import GradingResult


class Submission(BaseModel):
    """A learner's answers for one exam; a draft until grading_details is set"""
    model_config = ConfigDict(extra="ignore")

    submission_id: str = Field(default_factory=lambda: f"sub_{uuid.uuid4().hex[:12]}")
    exam_id: str
    student_id: str
    answers: Dict[str, Any] = {}
    score: float = 0
    is_auto_graded: bool = False
    grading_details: Optional[GradingResult] = None
    submitted_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_graded(self) -> bool:
        return self.grading_details is not None
