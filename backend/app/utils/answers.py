"""Question answer serialization helpers."""

import json
from typing import Any, Optional


def serialize_question_answer(answer: Any) -> Optional[str]:
    """Store any answer shape (letter, list of letters, matching pairs) as a single string."""
    if answer is None:
        return None

    if isinstance(answer, list):
        if any(isinstance(item, (dict, list)) for item in answer):
            return json.dumps(answer, ensure_ascii=False)
        return json.dumps([str(a) for a in answer], ensure_ascii=False)

    if isinstance(answer, str):
        trimmed = answer.strip()
        return trimmed or None

    if isinstance(answer, dict):
        return json.dumps(answer, ensure_ascii=False)

    if isinstance(answer, bool):
        return "true" if answer else "false"

    return str(answer)


def parse_question_answer(answer: Any) -> Any:
    """Inverse of serialize_question_answer; plain strings are returned trimmed."""
    if answer is None:
        return None
    if not isinstance(answer, str):
        return answer

    trimmed = answer.strip()
    if not trimmed:
        return None

    if trimmed[0] in "[{":
        try:
            parsed = json.loads(trimmed)
        except json.JSONDecodeError:
            return trimmed
        if isinstance(parsed, list):
            if any(isinstance(item, dict) for item in parsed):
                return parsed
            return [str(a) for a in parsed]
        if isinstance(parsed, dict):
            return parsed

    return trimmed
