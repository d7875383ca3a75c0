"""
Grading engine - scores a learner's answers against an exam.

Objective questions (single / multiple choice, true-false, matching) are
compared deterministically. Subjective questions (fill-blank, essay) go to
the AI oracle; when it fails a keyword heuristic produces a low-confidence
score flagged for manual review.
"""

from typing import Any, Callable, Dict, List, Optional, Tuple
import json
import math
import re

from app.config import (
    logger,
    GRADING_PROMPT_TEMPLATE,
    REVIEW_CONFIDENCE_THRESHOLD,
    AUTO_GRADE_CONFIDENCE_THRESHOLD,
    FALLBACK_CONFIDENCE,
)
from app.models.exam import Exam, ExamQuestion
from app.models.grading import AIGradingSuggestion, GradingDetail, GradingResult
from app.models.question import QuestionType, SUBJECTIVE_TYPES
from app.services.ai_response import parse_grading_response
from app.services.llm import AIOracle
from app.services.merge import lookup_question_type
from app.utils.answers import parse_question_answer

ProgressCallback = Callable[[int, int, str], Any]

NO_REFERENCE_ANSWER = "No reference answer; grade on how well the answer addresses the question"

DEFAULT_GRADING_PROMPT = """You are an experienced teacher. Grade the student's answer below.

**Question:**
{questionContent}

**Question type:** {questionType}

**Reference answer:**
{referenceAnswer}

**Student answer:**
{studentAnswer}

**Grading rules:**
- Full marks: {maxScore}
- Weigh these dimensions:
  1. Accuracy (40%): does the answer actually answer the question
  2. Completeness (30%): are the main points covered
  3. Logic (20%): is the reasoning clear and well organized
  4. Expression (10%): is the language clear and correct

**Return JSON only:**
{{
  "score": <number between 0 and {maxScore}>,
  "reasoning": "why this score",
  "suggestions": "how to improve",
  "confidence": <number between 0 and 1>
}}"""

TRUE_TOKENS = {"true", "正确", "对", "t", "yes", "√", "✓"}
FALSE_TOKENS = {"false", "错误", "错", "f", "no", "×", "✗"}

_LETTERS_ONLY = re.compile(r"^[A-Z]+$")
_LETTER_LIST = re.compile(r"[,，、;；\s]+")


def _round_half_up(value: float) -> int:
    # Half-up, not banker's rounding
    return int(math.floor(value + 0.5))


# ============== ANSWER NORMALIZATION ==============

def _option_contents(options: Optional[List[Any]]) -> List[str]:
    contents = []
    for opt in options or []:
        if isinstance(opt, dict):
            contents.append(str(opt.get("content", opt.get("text", ""))).strip())
        elif hasattr(opt, "content"):
            contents.append(str(opt.content).strip())
        else:
            contents.append(str(opt).strip())
    return contents


def _option_labels(options: Optional[List[Any]]) -> List[str]:
    labels = []
    for idx, opt in enumerate(options or []):
        label = opt.get("label") if isinstance(opt, dict) else getattr(opt, "label", None)
        labels.append(str(label or chr(65 + idx)).strip().upper())
    return labels


def resolve_option(token: Any, options: Optional[List[Any]]) -> str:
    """Map an option letter to its content; anything else is returned as trimmed text."""
    text = str(token if token is not None else "").strip()
    if not options:
        return text
    upper = text.upper().rstrip(".、")
    labels = _option_labels(options)
    if upper in labels:
        return _option_contents(options)[labels.index(upper)]
    return text


def _split_choice_tokens(answer: Any, labels: Optional[List[str]] = None) -> List[str]:
    """Split a multiple-choice answer into tokens; a run of option letters ("AB", "ab") becomes one per letter."""
    if answer is None:
        return []
    if isinstance(answer, (list, tuple, set)):
        return [str(a).strip() for a in answer if str(a).strip()]
    text = str(answer).strip()
    if not text:
        return []
    upper = text.upper()
    if _LETTERS_ONLY.match(upper) and (text.isupper() or (labels and all(c in labels for c in upper))):
        return list(upper)
    return [t for t in _LETTER_LIST.split(text) if t]


def normalize_true_false(answer: Any) -> str:
    """Fold the many spellings of true/false into `true` / `false`."""
    if answer is True:
        return "true"
    if answer is False:
        return "false"
    text = str(answer if answer is not None else "").strip()
    lowered = text.lower()
    if lowered in TRUE_TOKENS:
        return "true"
    if lowered in FALSE_TOKENS:
        return "false"
    return text


def parse_matching_pairs(answer: Any) -> List[Tuple[str, str]]:
    """Accept `[{left, right}, ...]`, `{"matches": {left: right}}`, or either as a JSON string."""
    if not answer:
        return []
    if isinstance(answer, str):
        try:
            answer = json.loads(answer)
        except json.JSONDecodeError:
            return []

    if isinstance(answer, list):
        pairs = []
        for pair in answer:
            if not isinstance(pair, dict):
                continue
            left = str(pair.get("left") or "").strip()
            right = str(pair.get("right") or "").strip()
            if left and right:
                pairs.append((left, right))
        return pairs

    if isinstance(answer, dict):
        matches = answer.get("matches") or {}
        if isinstance(matches, dict):
            return [(str(left), str(right)) for left, right in matches.items()]
    return []


def _answer_text(answer: Any) -> str:
    if answer is None:
        return ""
    if isinstance(answer, (list, tuple)):
        return "; ".join(str(a) for a in answer if a is not None)
    if isinstance(answer, dict):
        return json.dumps(answer, ensure_ascii=False)
    return str(answer)


# ============== FALLBACK HEURISTIC ==============

def is_valid_answer(answer: str) -> bool:
    """Reject blanks, digits-only, one repeated char, or text without a real word."""
    text = (answer or "").strip().lower()
    if len(text) < 3:
        return False
    if re.fullmatch(r"[0-9\s]+", text):
        return False
    if re.fullmatch(r"(.)\1{4,}", text):
        return False
    has_cjk_word = re.search(r"[一-龥]{2,}", text) is not None
    has_latin_word = re.search(r"[a-z]{3,}", text) is not None
    return has_cjk_word or has_latin_word


def keyword_overlap(answer: str, reference: str) -> float:
    """Share of reference words (longer than 2 chars) that appear in the answer."""
    if not reference:
        return 0.5
    student_words = answer.lower().split()
    reference_words = reference.lower().split()
    if not reference_words:
        return 0.0
    matched = 0
    for word in reference_words:
        if len(word) > 2 and any(sw in word or word in sw for sw in student_words):
            matched += 1
    return matched / len(reference_words)


def fallback_grade(answer: str, reference: str, max_score: float) -> AIGradingSuggestion:
    length = len(answer)
    overlap = keyword_overlap(answer, reference) if reference else 0.5

    ratio = 0.0
    if is_valid_answer(answer):
        ratio = 0.3
        if length > 20:
            ratio += 0.1
        if length > 50:
            ratio += 0.1
        if overlap > 0.3:
            ratio += 0.3
        if length > 100 and overlap > 0.5:
            ratio += 0.2
    ratio = min(ratio, 1.0)

    notes = []
    if ratio >= 0.9:
        notes.append("answer quality is excellent")
    elif ratio >= 0.7:
        notes.append("answer is mostly correct")
    elif ratio >= 0.5:
        notes.append("answer is partially correct")
    else:
        notes.append("answer needs improvement")
    if length < 20:
        notes.append("answer is too short")
    elif length > 100:
        notes.append("answer is detailed")
    if overlap > 0.5:
        notes.append("covers the main points")
    elif overlap < 0.3:
        notes.append("misses key points")

    return AIGradingSuggestion(
        suggested_score=_round_half_up(max_score * ratio),
        reasoning=f"AI grading unavailable, fallback scoring used: {', '.join(notes)}",
        suggestions="Please have a teacher review this score",
        confidence=FALLBACK_CONFIDENCE,
        fallback=True,
    )


# ============== ENGINE ==============

class GradingEngine:
    """Grades whole submissions; one GradingDetail per exam question."""

    def __init__(self, oracle: Optional[AIOracle] = None, prompt_template: str = GRADING_PROMPT_TEMPLATE):
        self.oracle = oracle
        self.prompt_template = prompt_template

    def build_grading_prompt(self, question: ExamQuestion, reference: str, student_answer: str) -> str:
        values = {
            "questionContent": question.content,
            "questionType": question.type,
            "referenceAnswer": reference or NO_REFERENCE_ANSWER,
            "studentAnswer": student_answer,
            "maxScore": f"{question.max_score:g}",
        }
        if self.prompt_template and self.prompt_template.strip():
            prompt = self.prompt_template
            for key, value in values.items():
                prompt = prompt.replace("{" + key + "}", value)
            return prompt
        return DEFAULT_GRADING_PROMPT.format(**values)

    async def grade_submission(
        self,
        exam: Exam,
        answers: Dict[str, Any],
        on_progress: Optional[ProgressCallback] = None,
    ) -> GradingResult:
        return await self._grade(exam, answers, on_progress, use_ai=True)

    async def grade_submission_without_ai(
        self,
        exam: Exam,
        answers: Dict[str, Any],
        on_progress: Optional[ProgressCallback] = None,
    ) -> GradingResult:
        """Regrade path: objective questions only; subjective ones are left for manual review."""
        return await self._grade(exam, answers, on_progress, use_ai=False)

    async def _grade(self, exam: Exam, answers: Dict[str, Any], on_progress, use_ai: bool) -> GradingResult:
        answers = answers or {}
        result = GradingResult()
        total = len(exam.questions)

        for index, question in enumerate(exam.questions):
            if on_progress:
                on_progress(index + 1, total, f"Grading question {index + 1}/{total} ({question.type})")

            student_answer = answers.get(question.question_id)
            qtype = lookup_question_type(question.type)
            if qtype is None:
                detail = self._grade_unknown(question, student_answer)
            else:
                detail = await self._grade_question(qtype, question, student_answer, use_ai)

            result.details[question.question_id] = detail
            result.total_score += detail.score
            result.max_total_score += question.max_score
            if detail.type == "subjective" and detail.ai_grading is not None \
                    and detail.ai_grading.confidence < AUTO_GRADE_CONFIDENCE_THRESHOLD:
                result.is_fully_auto_graded = False

        result.total_score = round(result.total_score, 2)
        # The exam's nominal maximum wins over the sum of question weights
        result.max_total_score = round(exam.total_score or result.max_total_score, 2)
        if on_progress:
            on_progress(total, total, "Grading complete")
        logger.info(f"Graded exam {exam.exam_id}: {result.total_score}/{result.max_total_score}"
                    f" (auto={result.is_fully_auto_graded})")
        return result

    async def _grade_question(self, qtype: QuestionType, question: ExamQuestion, student_answer: Any,
                              use_ai: bool) -> GradingDetail:
        correct = parse_question_answer(question.answer)
        if qtype == QuestionType.MATCHING:
            return self._grade_matching(question, student_answer, correct)
        if qtype in SUBJECTIVE_TYPES:
            return await self._grade_subjective(question, student_answer, correct, use_ai)
        return self._grade_objective(qtype, question, student_answer, correct)

    # ============== OBJECTIVE ==============

    def _grade_objective(self, qtype: QuestionType, question: ExamQuestion, student_answer: Any,
                         correct: Any) -> GradingDetail:
        options = question.options
        if qtype == QuestionType.TRUE_FALSE:
            correct_value = normalize_true_false(correct)
            student_value = normalize_true_false(student_answer)
            is_correct = bool(correct_value) and student_value == correct_value
        elif qtype == QuestionType.MULTIPLE_CHOICE:
            labels = _option_labels(options)
            correct_value = sorted(resolve_option(t, options) for t in _split_choice_tokens(correct, labels))
            student_value = sorted(resolve_option(t, options) for t in _split_choice_tokens(student_answer, labels))
            # All-or-nothing: a partial selection scores zero
            is_correct = bool(correct_value) and set(student_value) == set(correct_value)
        else:
            correct_value = resolve_option(correct, options) if correct is not None else ""
            student_value = resolve_option(student_answer, options) if student_answer is not None else ""
            is_correct = bool(correct_value) and student_value == correct_value

        shown = correct_value if not isinstance(correct_value, list) else ", ".join(correct_value)
        return GradingDetail(
            type="objective",
            student_answer=student_answer if student_answer is not None else "",
            correct_answer=correct_value,
            is_correct=is_correct,
            score=question.max_score if is_correct else 0,
            max_score=question.max_score,
            feedback="Correct" if is_correct else f"Correct answer: {shown}",
        )

    def _grade_matching(self, question: ExamQuestion, student_answer: Any, correct: Any) -> GradingDetail:
        correct_pairs = parse_matching_pairs(correct)
        student_pairs = set(parse_matching_pairs(student_answer))

        if not correct_pairs:
            return GradingDetail(
                type="objective",
                student_answer=student_answer if student_answer is not None else "",
                correct_answer=correct,
                is_correct=False,
                score=0,
                max_score=question.max_score,
                feedback="No correct answer defined for this question",
                correct_count=0,
                total_count=0,
            )

        total = len(correct_pairs)
        correct_count = sum(1 for pair in correct_pairs if pair in student_pairs)
        score = round(question.max_score * correct_count / total, 2)
        fully_correct = correct_count == total
        return GradingDetail(
            type="objective",
            student_answer=student_answer if student_answer is not None else "",
            correct_answer=correct,
            is_correct=fully_correct,
            score=score,
            max_score=question.max_score,
            feedback="Correct" if fully_correct
            else f"{correct_count}/{total} pairs correct, score {score:g}/{question.max_score:g}",
            correct_count=correct_count,
            total_count=total,
        )

    def _grade_unknown(self, question: ExamQuestion, student_answer: Any) -> GradingDetail:
        logger.warning(f"Question {question.question_id} has unsupported type {question.type!r}; scored 0")
        return GradingDetail(
            type="objective",
            student_answer=student_answer if student_answer is not None else "",
            correct_answer=question.answer,
            is_correct=False,
            score=0,
            max_score=question.max_score,
            feedback=f"Unsupported question type: {question.type}",
        )

    # ============== SUBJECTIVE ==============

    async def _grade_subjective(self, question: ExamQuestion, student_answer: Any, correct: Any,
                                use_ai: bool) -> GradingDetail:
        answer_text = _answer_text(student_answer).strip()
        reference = _answer_text(correct).strip()

        if not answer_text:
            suggestion = AIGradingSuggestion(
                suggested_score=0,
                reasoning="No answer given",
                suggestions="Please complete this question",
                confidence=1.0,
            )
        elif not use_ai:
            return GradingDetail(
                type="subjective",
                student_answer=student_answer,
                reference_answer=reference,
                score=0,
                max_score=question.max_score,
                feedback="Awaiting manual grading",
                needs_review=True,
                ai_grading=AIGradingSuggestion(suggested_score=0, reasoning="Not graded by AI", confidence=0.0),
            )
        else:
            suggestion = await self.ai_grade(question, reference, answer_text)

        score = min(max(suggestion.suggested_score, 0), question.max_score)
        suggestion = suggestion.model_copy(update={"suggested_score": score})
        return GradingDetail(
            type="subjective",
            student_answer=student_answer if student_answer is not None else "",
            reference_answer=reference,
            ai_grading=suggestion,
            score=score,
            max_score=question.max_score,
            feedback=suggestion.reasoning,
            needs_review=suggestion.confidence < REVIEW_CONFIDENCE_THRESHOLD,
        )

    async def ai_grade(self, question: ExamQuestion, reference: str, answer_text: str) -> AIGradingSuggestion:
        """Ask the oracle for a score; any failure degrades to the keyword heuristic."""
        if self.oracle is None:
            return fallback_grade(answer_text, reference, question.max_score)

        prompt = self.build_grading_prompt(question, reference, answer_text)
        try:
            raw = await self.oracle.complete(
                "You are a fair, rigorous teacher grading exam answers. Reply with JSON only.",
                prompt,
            )
            return parse_grading_response(raw)
        except Exception as e:
            logger.warning(f"AI grading failed for question {question.question_id}, using fallback: {e}")
            return fallback_grade(answer_text, reference, question.max_score)
