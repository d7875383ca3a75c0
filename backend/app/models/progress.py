"""Progress log Pydantic models"""

from enum import Enum
from pydantic import BaseModel, ConfigDict
from typing import Optional, List, Dict, Any


class ImportStage(str, Enum):
    """Stages of an import job, in pipeline order"""
    RECEIVED = "received"
    EXTRACTING_TEXT = "extracting_text"
    CONVERTING_TO_IMAGES = "converting_to_images"
    CHUNKED_TEXT = "chunked_text"
    CALLING_AI = "calling_ai"
    AI_RESPONSE_RECEIVED = "ai_response_received"
    PARSING_AI_RESPONSE = "parsing_ai_response"
    MERGING_QUESTIONS = "merging_questions"
    SAVING_QUESTIONS = "saving_questions"
    DONE = "done"
    ERROR = "error"


class SubmissionStage(str, Enum):
    """Event types on a submission grading channel"""
    CONNECTED = "connected"
    PROGRESS = "progress"
    COMPLETE = "complete"
    ERROR = "error"
    PING = "ping"


TERMINAL_STAGES = frozenset({
    ImportStage.DONE.value,
    ImportStage.ERROR.value,
    SubmissionStage.COMPLETE.value,
})


class ImportMode(str, Enum):
    TEXT = "text"
    VISION = "vision"
    REJECTED = "rejected"


class ProgressEvent(BaseModel):
    """A single immutable entry in a job's progress log"""
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    time: int  # epoch milliseconds
    stage: str
    message: str = ""
    current: Optional[int] = None
    total: Optional[int] = None
    meta: Optional[Dict[str, Any]] = None
    result: Optional[Dict[str, Any]] = None

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES


class ImportErrorRow(BaseModel):
    row: int
    message: str


class ImportSummary(BaseModel):
    """Result payload of the terminal `done` event"""
    success: int = 0
    failed: int = 0
    errors: List[ImportErrorRow] = []
    question_ids: List[str] = []

    def add_error(self, row: int, message: str):
        self.errors.append(ImportErrorRow(row=row, message=message))
