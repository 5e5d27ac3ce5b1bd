"""
Scoring: eligibility filtering + per-question marking. Pure and deterministic.
The same functions run at submit time and at review/leaderboard time.
"""
from decimal import Decimal
from typing import Any, List, Mapping, Optional, Set

from engine import DEFAULT_MARKS_PER_QUESTION, DEFAULT_NEGATIVE_MARKS
from examcore.models import Exam, Question, ScoreResult
from examcore.resolver import subject_labels

CORRECT = "correct"
WRONG = "wrong"
SKIPPED = "skipped"


def _decimal(value: Optional[float], default: float) -> Decimal:
    return Decimal(str(default if value is None else value))


def question_marks(exam: Exam, question: Question) -> Decimal:
    """Per-question override if present, else the exam default, else 1."""
    if question.marks_override is not None:
        return _decimal(question.marks_override, DEFAULT_MARKS_PER_QUESTION)
    return _decimal(exam.marks_per_question, DEFAULT_MARKS_PER_QUESTION)


def wrong_penalty(exam: Exam) -> Decimal:
    return _decimal(exam.negative_marks_per_wrong, DEFAULT_NEGATIVE_MARKS)


def recorded_answer(answers: Mapping[str, Any], question: Question) -> Optional[Any]:
    return answers.get(question.id)


def is_correct(question: Question, selected: Any) -> bool:
    """Strict integer match. An answer of -1 never matches anything."""
    if question.answer < 0 or selected is None or isinstance(selected, bool):
        return False
    return isinstance(selected, int) and selected == question.answer


def answer_outcome(question: Question, answers: Mapping[str, Any]) -> str:
    selected = recorded_answer(answers, question)
    if selected is None:
        return SKIPPED
    return CORRECT if is_correct(question, selected) else WRONG


def attempted_subjects(questions: List[Question], answers: Mapping[str, Any]) -> Set[str]:
    return {q.subject for q in questions if q.subject and recorded_answer(answers, q) is not None}


def eligible_questions(exam: Exam, questions: List[Question], answers: Mapping[str, Any]) -> List[Question]:
    """
    Questions that count toward the score.

    Mandatory-subject questions always count. Optional-subject questions count only when
    the student answered at least one question of that subject. Questions matching no
    configured subject count (unstructured data).
    """
    if not exam.has_subject_config:
        return list(questions)

    mandatory: Set[str] = set()
    for config in exam.mandatory_subjects:
        mandatory |= subject_labels(config)
    optional: Set[str] = set()
    for config in exam.optional_subjects:
        optional |= subject_labels(config)

    attempted = attempted_subjects(questions, answers)
    valid = []
    for q in questions:
        if q.subject in mandatory:
            valid.append(q)
        elif q.subject in optional:
            if q.subject in attempted:
                valid.append(q)
        else:
            valid.append(q)
    return valid


def score(exam: Exam, questions: List[Question], answers: Mapping[str, Any]) -> ScoreResult:
    """Count correct/wrong/unattempted over eligible questions and accumulate the signed score."""
    valid = eligible_questions(exam, questions, answers)
    penalty = wrong_penalty(exam)

    correct = wrong = 0
    earned = Decimal("0")
    lost = Decimal("0")
    for q in valid:
        outcome = answer_outcome(q, answers)
        if outcome == CORRECT:
            correct += 1
            earned += question_marks(exam, q)
        elif outcome == WRONG:
            wrong += 1
            lost += penalty

    return ScoreResult(
        correct=correct,
        wrong=wrong,
        unattempted=len(valid) - correct - wrong,
        score=earned - lost,
        valid_question_count=len(valid),
        marks_from_correct=earned,
        negative_marks=lost,
    )
