"""Scoring: eligibility filter, marking arithmetic, overrides."""
from decimal import Decimal

from examcore.models import Exam, Question
from examcore.scoring import CORRECT, SKIPPED, WRONG, answer_outcome, eligible_questions, is_correct, score


def q(qid, subject=None, answer=0, marks=None):
    return Question(id=qid, options=["a", "b", "c", "d"], answer=answer, subject=subject, marks_override=marks)


def test_marking_arithmetic():
    exam = Exam(id="e", marks_per_question=1, negative_marks_per_wrong=0.25)
    questions = [q(f"q{i}") for i in range(10)]
    answers = {f"q{i}": 0 for i in range(6)}
    answers.update({"q6": 1, "q7": 2, "q8": 3})

    result = score(exam, questions, answers)

    assert (result.correct, result.wrong, result.unattempted) == (6, 3, 1)
    assert result.score == Decimal("5.25")
    assert result.valid_question_count == 10
    assert result.marks_from_correct == Decimal("6")
    assert result.negative_marks == Decimal("0.75")


def test_score_is_deterministic():
    exam = Exam(id="e", marks_per_question=1.5, negative_marks_per_wrong=0.5)
    questions = [q("a"), q("b"), q("c", answer=2)]
    answers = {"a": 0, "b": 3}
    assert score(exam, questions, answers).model_dump_json() == score(exam, questions, answers).model_dump_json()


def test_marks_override():
    exam = Exam(id="e", marks_per_question=1)
    result = score(exam, [q("a", marks=2), q("b")], {"a": 0, "b": 0})
    assert result.score == Decimal("3")


def test_zero_marks_stay_zero():
    exam = Exam(id="e", marks_per_question=0)
    assert score(exam, [q("a")], {"a": 0}).score == Decimal("0")


def test_missing_marks_default_to_one():
    exam = Exam.model_validate({"id": "e", "marks_per_question": "", "negative_marks_per_wrong": None})
    result = score(exam, [q("a"), q("b")], {"a": 0, "b": 1})
    assert result.score == Decimal("1")


def test_unknown_answer_never_matches():
    question = q("a", answer=-1)
    assert not is_correct(question, -1)
    assert not is_correct(question, 0)
    assert answer_outcome(question, {"a": 0}) == WRONG


def test_strict_type_match():
    question = q("a", answer=1)
    assert not is_correct(question, "1")
    assert not is_correct(question, True)
    assert is_correct(question, 1)


def test_outcomes():
    question = q("a", answer=1)
    assert answer_outcome(question, {}) == SKIPPED
    assert answer_outcome(question, {"a": 1}) == CORRECT


def test_untouched_optional_subject_is_excluded():
    exam = Exam.model_validate({
        "id": "e",
        "total_subjects": 2,
        "mandatory_subjects": [{"id": "p"}],
        "optional_subjects": [{"id": "c"}, {"id": "b"}],
    })
    questions = [q("p1", "Physics"), q("b1", "Biology"), q("b2", "Biology"), q("b3", "Biology")]

    result = score(exam, questions, {"p1": 0})

    assert result.valid_question_count == 1
    assert result.unattempted == 0
    assert [x.id for x in eligible_questions(exam, questions, {"p1": 0})] == ["p1"]


def test_touched_optional_subject_counts_fully():
    exam = Exam.model_validate({
        "id": "e",
        "total_subjects": 2,
        "mandatory_subjects": [{"id": "p"}],
        "optional_subjects": [{"id": "b"}],
    })
    questions = [q("p1", "Physics"), q("b1", "Biology"), q("b2", "Biology")]
    result = score(exam, questions, {"b1": 0})
    assert result.valid_question_count == 3
    assert (result.correct, result.unattempted) == (1, 2)


def test_unconfigured_subject_counts():
    exam = Exam.model_validate({"id": "e", "mandatory_subjects": [{"id": "p"}]})
    result = score(exam, [q("x1", "Geography"), q("x2")], {})
    assert result.valid_question_count == 2


def test_no_subject_config_counts_everything():
    result = score(Exam(id="e"), [q("a", "Biology"), q("b", "Chemistry")], {})
    assert result.valid_question_count == 2
    assert result.unattempted == 2


def test_rounded_score():
    exam = Exam(id="e", marks_per_question=1, negative_marks_per_wrong=1 / 3)
    result = score(exam, [q("a"), q("b")], {"a": 0, "b": 1})
    assert result.rounded_score == Decimal("0.67")
