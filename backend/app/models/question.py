"""Question-related Pydantic models"""

from enum import Enum
from pydantic import BaseModel, ConfigDict
from typing import Optional, List, Dict, Any, Union


class QuestionType(str, Enum):
    SINGLE_CHOICE = "SINGLE_CHOICE"
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
    TRUE_FALSE = "TRUE_FALSE"
    FILL_BLANK = "FILL_BLANK"
    MATCHING = "MATCHING"
    ESSAY = "ESSAY"


OBJECTIVE_TYPES = frozenset({
    QuestionType.SINGLE_CHOICE,
    QuestionType.MULTIPLE_CHOICE,
    QuestionType.TRUE_FALSE,
    QuestionType.MATCHING,
})

SUBJECTIVE_TYPES = frozenset({
    QuestionType.FILL_BLANK,
    QuestionType.ESSAY,
})


class QuestionOption(BaseModel):
    label: str
    content: str


class ExtractedQuestion(BaseModel):
    """
    Untrusted, unit-level question as decoded from an AI response.
    Every field may be missing; validation happens in the merge step.
    """
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    content: Optional[str] = None
    type: Optional[str] = None
    options: Optional[List[Any]] = None
    answer: Optional[Any] = None
    matching: Optional[Dict[str, Any]] = None
    explanation: Optional[str] = None
    tags: Optional[List[str]] = None
    difficulty: Optional[int] = None
    knowledge_point: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "ExtractedQuestion":
        """Build from an AI dict, tolerating camelCase keys and loose field types"""
        data = dict(raw)
        if "knowledgePoint" in data and "knowledge_point" not in data:
            data["knowledge_point"] = data.pop("knowledgePoint")
        for key in ("content", "type", "explanation", "knowledge_point"):
            if data.get(key) is not None and not isinstance(data[key], str):
                data[key] = str(data[key])
        tags = data.get("tags")
        if isinstance(tags, str):
            data["tags"] = [t.strip() for t in tags.split(",") if t.strip()]
        elif tags is not None and not isinstance(tags, list):
            data["tags"] = None
        elif isinstance(tags, list):
            data["tags"] = [str(t) for t in tags]
        try:
            data["difficulty"] = int(data["difficulty"]) if data.get("difficulty") is not None else None
        except (TypeError, ValueError):
            data["difficulty"] = None
        if data.get("options") is not None and not isinstance(data["options"], list):
            data["options"] = None
        if data.get("matching") is not None and not isinstance(data["matching"], dict):
            data["matching"] = None
        return cls.model_validate(data)


class CanonicalQuestion(BaseModel):
    """Deduplicated, type-normalized question ready for persistence"""
    content: str
    type: QuestionType
    options: Optional[List[QuestionOption]] = None
    answer: Optional[Union[str, List[str], List[Dict[str, Any]], Dict[str, Any]]] = None
    explanation: Optional[str] = None
    tags: List[str] = []
    difficulty: int = 1
    knowledge_point: Optional[str] = None
    import_order: Optional[int] = None

    @property
    def dedup_key(self):
        return (self.type.value, self.content.strip())
