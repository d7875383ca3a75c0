"""
Decoding of free-form AI replies.

Models wrap their JSON in prose or markdown fences, so the first balanced
JSON object or array is cut out of the raw text before parsing. Question
payloads are then decoded as a tagged union:
`{"questions": [...]}`, a bare array, a single question object, or `{}`.
"""

import json
import re
from typing import Any, Dict, List, Optional, Tuple

from app.config import logger
from app.models.grading import AIGradingSuggestion
from app.services.errors import AIResponseFormatError

# Replies that mean "nothing to extract here" rather than a parse failure
NO_QUESTION_PHRASES = (
    "no question",
    "no questions detected",
    "blank page",
    "cover page",
    "table of contents",
    "没有题目",
    "无题目",
    "无法识别",
    "空白",
    "封面",
    "目录",
)

# Full-width punctuation that some models emit as JSON syntax
_FULLWIDTH_JSON_CHARS = {
    "“": '"',
    "”": '"',
    "‘": "'",
    "’": "'",
    "，": ",",
    "：": ":",
    "；": ";",
    "（": "(",
    "）": ")",
}

_CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


def extract_first_json(text: str) -> Optional[Tuple[str, str]]:
    """
    Return ("object"|"array", json_text) for the first balanced JSON value in text.

    An unbalanced value (truncated reply) is returned up to the end of the text.
    """
    cleaned = _CODE_FENCE.sub("", text or "").strip()

    obj_start = cleaned.find("{")
    arr_start = cleaned.find("[")
    if obj_start == -1 and arr_start == -1:
        return None

    if obj_start == -1 or (arr_start != -1 and arr_start < obj_start):
        start, open_char, close_char, kind = arr_start, "[", "]", "array"
    else:
        start, open_char, close_char, kind = obj_start, "{", "}", "object"

    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(cleaned)):
        ch = cleaned[i]
        if escape:
            escape = False
            continue
        if ch == "\\":
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == open_char:
            depth += 1
        elif ch == close_char:
            depth -= 1
            if depth == 0:
                return kind, cleaned[start:i + 1]

    return kind, cleaned[start:]


def _says_no_questions(text: str) -> bool:
    lowered = (text or "").lower()
    return any(phrase in lowered for phrase in NO_QUESTION_PHRASES)


def _loads_lenient(json_text: str) -> Any:
    try:
        return json.loads(json_text)
    except json.JSONDecodeError:
        normalized = json_text
        for src, dst in _FULLWIDTH_JSON_CHARS.items():
            normalized = normalized.replace(src, dst)
        return json.loads(normalized)


def parse_questions_response(content: str) -> List[Dict[str, Any]]:
    """
    Decode an extraction reply into a list of raw question dicts.

    Raises AIResponseFormatError when the reply is neither decodable JSON of a
    known shape nor an explicit "nothing here" answer.
    """
    extracted = extract_first_json(content)
    if extracted is None:
        if _says_no_questions(content):
            return []
        raise AIResponseFormatError("No JSON found in AI response", raw=content)

    _, json_text = extracted
    try:
        parsed = _loads_lenient(json_text)
    except json.JSONDecodeError as e:
        if _says_no_questions(content):
            return []
        logger.warning(f"AI response JSON decode failed: {e}; head={content[:200]!r}")
        raise AIResponseFormatError(
            f'AI returned invalid format. Expected: {{"questions": [...]}}. Got: {content[:200]}',
            raw=content,
        )

    if isinstance(parsed, dict) and isinstance(parsed.get("questions"), list):
        items = parsed["questions"]
    elif isinstance(parsed, list):
        items = parsed
    elif isinstance(parsed, dict) and parsed.get("content") and parsed.get("type"):
        items = [parsed]
    elif isinstance(parsed, dict) and not parsed:
        items = []
    else:
        raise AIResponseFormatError("Unexpected JSON structure in AI response", raw=content)

    return [item for item in items if isinstance(item, dict)]


# ============== GRADING REPLIES ==============

_SCORE_IN_TEXT = re.compile(r"(?:score|分数|得分)\s*[:：]?\s*(\d+(?:\.\d+)?)", re.IGNORECASE)


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_grading_response(content: str) -> AIGradingSuggestion:
    """Decode a subjective-grading reply; falls back to scraping `score: N` from prose."""
    extracted = extract_first_json(content)
    if extracted is not None and extracted[0] == "object":
        try:
            data = _loads_lenient(extracted[1])
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict) and "score" in data:
            return AIGradingSuggestion(
                suggested_score=_as_float(data.get("score"), 0.0),
                reasoning=str(data.get("reasoning") or "No reasoning provided"),
                suggestions=str(data.get("suggestions") or "No suggestions provided"),
                confidence=_as_float(data.get("confidence"), 0.5),
            )

    match = _SCORE_IN_TEXT.search(content or "")
    if match is None:
        raise AIResponseFormatError("No score found in grading response", raw=content)

    return AIGradingSuggestion(
        suggested_score=float(match.group(1)),
        reasoning=content.strip(),
        suggestions="",
        confidence=0.7,
    )
