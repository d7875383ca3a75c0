"""
Error taxonomy for the import pipeline and the grading engine.
"""


class ImportInputError(Exception):
    """Malformed or empty input document; the job fails immediately without retry."""


class UnsupportedModeError(ImportInputError):
    """The requested mode / oracle combination cannot work (e.g. direct file upload)."""


class OracleError(Exception):
    """A single AI call failed (network, quota, empty reply). Retryable per unit."""


class AIResponseFormatError(Exception):
    """The AI reply could not be decoded into questions."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class FatalImportError(Exception):
    """Persistence or rendering failure; the job is aborted and rolled back."""


class GradingError(Exception):
    """Base class for errors surfaced on a submission channel."""


class ExamNotFoundError(GradingError):
    def __init__(self, exam_id: str):
        super().__init__(f"Exam not found: {exam_id}")
        self.exam_id = exam_id


class AlreadySubmittedError(GradingError):
    def __init__(self, exam_id: str, student_id: str):
        super().__init__("Exam already submitted; duplicate submissions are not allowed")
        self.exam_id = exam_id
        self.student_id = student_id
