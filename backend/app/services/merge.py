"""
Merge and dedup of unit-level extraction results.

Overlapping chunks and redundant pages make the AI report the same question
more than once. Entries are keyed by (normalized type, trimmed content); the
first occurrence wins and input order is preserved.
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import BaseModel

from app.config import logger
from app.models.progress import ImportErrorRow
from app.models.question import CanonicalQuestion, ExtractedQuestion, QuestionOption, QuestionType

QUESTION_TYPE_ALIASES: Dict[str, QuestionType] = {
    "单选题": QuestionType.SINGLE_CHOICE,
    "单选": QuestionType.SINGLE_CHOICE,
    "选择题": QuestionType.SINGLE_CHOICE,
    "single": QuestionType.SINGLE_CHOICE,
    "single_choice": QuestionType.SINGLE_CHOICE,
    "singlechoice": QuestionType.SINGLE_CHOICE,
    "single choice": QuestionType.SINGLE_CHOICE,
    "多选题": QuestionType.MULTIPLE_CHOICE,
    "多选": QuestionType.MULTIPLE_CHOICE,
    "multiple": QuestionType.MULTIPLE_CHOICE,
    "multiple_choice": QuestionType.MULTIPLE_CHOICE,
    "multiplechoice": QuestionType.MULTIPLE_CHOICE,
    "multiple choice": QuestionType.MULTIPLE_CHOICE,
    "multi_choice": QuestionType.MULTIPLE_CHOICE,
    "判断题": QuestionType.TRUE_FALSE,
    "判断": QuestionType.TRUE_FALSE,
    "true_false": QuestionType.TRUE_FALSE,
    "truefalse": QuestionType.TRUE_FALSE,
    "true/false": QuestionType.TRUE_FALSE,
    "填空题": QuestionType.FILL_BLANK,
    "填空": QuestionType.FILL_BLANK,
    "fill_blank": QuestionType.FILL_BLANK,
    "fillblank": QuestionType.FILL_BLANK,
    "fill_in_the_blank": QuestionType.FILL_BLANK,
    "连线题": QuestionType.MATCHING,
    "连线": QuestionType.MATCHING,
    "matching": QuestionType.MATCHING,
    "简答题": QuestionType.ESSAY,
    "简答": QuestionType.ESSAY,
    "问答题": QuestionType.ESSAY,
    "essay": QuestionType.ESSAY,
    "short_answer": QuestionType.ESSAY,
    "实践应用题": QuestionType.ESSAY,
    "应用题": QuestionType.ESSAY,
}

RawQuestion = Union[ExtractedQuestion, CanonicalQuestion, Dict[str, Any]]


def lookup_question_type(type_str: Any) -> Optional[QuestionType]:
    """Strict lookup: None for labels that are not a known alias or enum value."""
    raw = getattr(type_str, "value", type_str)
    normalized = str(raw or "").strip().lower()

    mapped = QUESTION_TYPE_ALIASES.get(normalized)
    if mapped is not None:
        return mapped
    for member in QuestionType:
        if member.value.lower() == normalized:
            return member
    return None


def normalize_question_type(type_str: Any) -> QuestionType:
    """Map an AI-declared type label to QuestionType; unknown labels fall back to SINGLE_CHOICE."""
    mapped = lookup_question_type(type_str)
    if mapped is not None:
        return mapped

    raw = getattr(type_str, "value", type_str)
    logger.warning(f"Unrecognized question type {raw!r}, defaulting to SINGLE_CHOICE")
    return QuestionType.SINGLE_CHOICE


def normalize_options(options: Optional[List[Any]]) -> Optional[List[QuestionOption]]:
    """Options may come back as `{label, content}` dicts or bare strings; label by position if missing."""
    if not options:
        return None

    normalized = []
    for idx, opt in enumerate(options):
        default_label = chr(65 + idx) if idx < 26 else str(idx + 1)
        if isinstance(opt, QuestionOption):
            normalized.append(opt)
        elif isinstance(opt, dict):
            content = str(opt.get("content", opt.get("text", ""))).strip()
            label = str(opt.get("label") or default_label).strip()
            normalized.append(QuestionOption(label=label, content=content))
        elif opt is not None:
            normalized.append(QuestionOption(label=default_label, content=str(opt).strip()))
    return normalized or None


def _coerce(item: RawQuestion) -> ExtractedQuestion:
    if isinstance(item, ExtractedQuestion):
        return item
    if isinstance(item, BaseModel):
        return ExtractedQuestion.from_raw(item.model_dump(mode="json"))
    if isinstance(item, dict):
        return ExtractedQuestion.from_raw(item)
    raise TypeError(f"Unsupported question payload: {type(item).__name__}")


def _normalize_answer(answer: Any) -> Any:
    if answer is None or isinstance(answer, (str, dict)):
        return answer
    if isinstance(answer, bool):
        return "true" if answer else "false"
    if isinstance(answer, list):
        if any(isinstance(a, dict) for a in answer):
            return [a for a in answer if isinstance(a, dict)]
        return [str(a) for a in answer]
    return str(answer)


def to_canonical(question: ExtractedQuestion) -> CanonicalQuestion:
    answer = _normalize_answer(question.answer if question.answer is not None else question.matching)
    difficulty = question.difficulty if question.difficulty and 1 <= question.difficulty <= 5 else 1
    return CanonicalQuestion(
        content=(question.content or "").strip(),
        type=normalize_question_type(question.type),
        options=normalize_options(question.options),
        answer=answer,
        explanation=question.explanation,
        tags=question.tags or [],
        difficulty=difficulty,
        knowledge_point=question.knowledge_point,
    )


def merge_and_dedupe_questions(
    items: Iterable[RawQuestion],
) -> Tuple[List[CanonicalQuestion], List[ImportErrorRow]]:
    """
    Collapse extraction results into an ordered, deduplicated question list.

    Returns the kept questions plus one error row per rejected entry (row is
    the 1-based position in the input).
    """
    kept: List[CanonicalQuestion] = []
    errors: List[ImportErrorRow] = []
    seen = set()

    total = 0
    for row, item in enumerate(items, start=1):
        total = row
        try:
            question = _coerce(item)
        except (TypeError, ValueError) as e:
            errors.append(ImportErrorRow(row=row, message=f"Malformed question entry: {e}"))
            continue

        content = (question.content or "").strip()
        declared_type = str(question.type or "").strip()
        if not content or not declared_type:
            errors.append(ImportErrorRow(row=row, message="Question is missing content or type"))
            continue

        try:
            canonical = to_canonical(question)
        except ValueError as e:
            errors.append(ImportErrorRow(row=row, message=f"Malformed question entry: {e}"))
            continue

        key = canonical.dedup_key
        if key in seen:
            continue
        seen.add(key)
        kept.append(canonical)

    if errors:
        logger.warning(f"Merge rejected {len(errors)} malformed question(s)")
    logger.info(f"Merged questions: {len(kept)} unique out of {total} extracted")
    return kept, errors
