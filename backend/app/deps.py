"""
FastAPI dependencies - one instance of each service per process.

Routes take these through `Depends`, so tests swap in fakes with
`app.dependency_overrides`.
"""

from functools import lru_cache

from .config import IMPORT_LOG_CAP, SUBMISSION_LOG_CAP
from .services.extraction import ExtractionService
from .services.grading import GradingEngine
from .services.llm import GeminiOracle
from .services.progress import ProgressLog
from .services.stores import MongoExamStore, MongoImportRecordStore, MongoQuestionStore
from .services.submission import SubmissionService


@lru_cache(maxsize=None)
def get_import_progress() -> ProgressLog:
    return ProgressLog("import", max_events=IMPORT_LOG_CAP)


@lru_cache(maxsize=None)
def get_submission_progress() -> ProgressLog:
    return ProgressLog("submission", max_events=SUBMISSION_LOG_CAP)


@lru_cache(maxsize=None)
def get_oracle() -> GeminiOracle:
    return GeminiOracle()


@lru_cache(maxsize=None)
def get_extraction_service() -> ExtractionService:
    from .database import db

    return ExtractionService(
        oracle=get_oracle(),
        question_store=MongoQuestionStore(db),
        progress=get_import_progress(),
        import_records=MongoImportRecordStore(db),
    )


@lru_cache(maxsize=None)
def get_submission_service() -> SubmissionService:
    from .database import db

    return SubmissionService(
        exam_store=MongoExamStore(db),
        engine=GradingEngine(get_oracle()),
        progress=get_submission_progress(),
    )
