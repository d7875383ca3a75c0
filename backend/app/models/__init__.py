"""Pydantic models for the ExamForge application"""

from .progress import (
    ImportStage,
    SubmissionStage,
    ImportMode,
    ProgressEvent,
    ImportErrorRow,
    ImportSummary,
    TERMINAL_STAGES,
)
from .question import (
    QuestionType,
    QuestionOption,
    ExtractedQuestion,
    CanonicalQuestion,
    OBJECTIVE_TYPES,
    SUBJECTIVE_TYPES,
)
from .exam import ExamQuestion, Exam
from .grading import AIGradingSuggestion, GradingDetail, GradingResult
from .submission import Submission
