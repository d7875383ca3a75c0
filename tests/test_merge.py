"""
Tests for the merge / dedup reducer and question-type mapping.

Run with: pytest tests/test_merge.py -v
"""
import pytest

from app.models.question import QuestionType
from app.services.merge import (
    lookup_question_type,
    merge_and_dedupe_questions,
    normalize_options,
    normalize_question_type,
)


def q(content, qtype="SINGLE_CHOICE", **extra):
    return {"content": content, "type": qtype, **extra}


class TestQuestionTypes:
    @pytest.mark.parametrize("label,expected", [
        ("single", QuestionType.SINGLE_CHOICE),
        ("SINGLE_CHOICE", QuestionType.SINGLE_CHOICE),
        ("单选题", QuestionType.SINGLE_CHOICE),
        ("multiple", QuestionType.MULTIPLE_CHOICE),
        ("判断题", QuestionType.TRUE_FALSE),
        ("fill_blank", QuestionType.FILL_BLANK),
        ("填空题", QuestionType.FILL_BLANK),
        ("连线题", QuestionType.MATCHING),
        ("matching", QuestionType.MATCHING),
        ("简答题", QuestionType.ESSAY),
        ("essay", QuestionType.ESSAY),
        ("应用题", QuestionType.ESSAY),
    ])
    def test_aliases(self, label, expected):
        assert normalize_question_type(label) == expected

    def test_unknown_defaults_to_single_choice(self):
        assert normalize_question_type("crossword") == QuestionType.SINGLE_CHOICE
        assert lookup_question_type("crossword") is None


class TestOptions:
    def test_plain_strings_get_letter_labels(self):
        options = normalize_options(["red", "green", "blue"])
        assert [(o.label, o.content) for o in options] == [("A", "red"), ("B", "green"), ("C", "blue")]

    def test_dicts_keep_labels(self):
        options = normalize_options([{"label": "X", "content": "one"}, {"content": "two"}])
        assert [(o.label, o.content) for o in options] == [("X", "one"), ("B", "two")]

    def test_empty(self):
        assert normalize_options([]) is None


class TestMergeAndDedupe:
    def test_keeps_order_and_drops_duplicates(self):
        items = [q("Q1"), q("Q2"), q("Q1 "), q("Q3"), q("Q2")]
        merged, errors = merge_and_dedupe_questions(items)
        assert [m.content for m in merged] == ["Q1", "Q2", "Q3"]
        assert errors == []

    def test_first_occurrence_wins(self):
        merged, _ = merge_and_dedupe_questions([q("Q1", answer="A"), q("Q1", answer="B")])
        assert len(merged) == 1
        assert merged[0].answer == "A"

    def test_same_content_different_type_is_kept(self):
        merged, _ = merge_and_dedupe_questions([q("Q1"), q("Q1", "ESSAY")])
        assert len(merged) == 2

    def test_idempotent(self):
        items = [q("Q1", options=["a", "b"], answer="A"), q("Q2", "essay"), q("Q1")]
        once, _ = merge_and_dedupe_questions(items)
        twice, _ = merge_and_dedupe_questions(once)
        assert [m.model_dump() for m in twice] == [m.model_dump() for m in once]

    def test_rejects_entries_without_content_or_type(self):
        items = [q("Q1"), {"type": "ESSAY"}, {"content": "Q3"}, "not a question", q("Q5")]
        merged, errors = merge_and_dedupe_questions(items)
        assert [m.content for m in merged] == ["Q1", "Q5"]
        assert [e.row for e in errors] == [2, 3, 4]

    def test_answer_and_fields_are_normalized(self):
        merged, _ = merge_and_dedupe_questions([
            q("Is water wet?", "判断题", answer=True, knowledgePoint="physics", tags="a, b", difficulty="9"),
            q("Match them", "matching", matching={"matches": {"cat": "meow"}}),
            q("Pick two", "多选题", answer=["A", "C"]),
        ])
        tf, matching, multi = merged
        assert tf.type == QuestionType.TRUE_FALSE
        assert tf.answer == "true"
        assert tf.knowledge_point == "physics"
        assert tf.tags == ["a", "b"]
        assert tf.difficulty == 1
        assert matching.answer == {"matches": {"cat": "meow"}}
        assert multi.answer == ["A", "C"]
