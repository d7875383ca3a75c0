"""Grading result Pydantic models"""

from pydantic import BaseModel
from typing import Optional, Dict, Any


class AIGradingSuggestion(BaseModel):
    suggested_score: float
    reasoning: str = ""
    suggestions: str = ""
    confidence: float = 0.5
    fallback: bool = False


class GradingDetail(BaseModel):
    type: str  # objective, subjective
    student_answer: Any = ""
    correct_answer: Optional[Any] = None
    reference_answer: Optional[Any] = None
    is_correct: Optional[bool] = None
    ai_grading: Optional[AIGradingSuggestion] = None
    score: float = 0
    max_score: float = 0
    feedback: str = ""
    needs_review: bool = False
    correct_count: Optional[int] = None
    total_count: Optional[int] = None


class GradingResult(BaseModel):
    details: Dict[str, GradingDetail] = {}
    total_score: float = 0
    max_total_score: float = 0
    is_fully_auto_graded: bool = True
