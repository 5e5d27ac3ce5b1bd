"""
Review-time reconciliation: re-derive an attempt's figures from persisted answers.
Uses the same eligibility and marking rules as submission so the counts always agree.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from examcore.errors import StoreError
from examcore.models import AttemptResult, Exam, PriorAttempt, Question, Student
from examcore.scoring import CORRECT, SKIPPED, WRONG, answer_outcome, eligible_questions, question_marks, \
    score, wrong_penalty
from examcore.snapshots import AttemptSnapshots

logger = logging.getLogger(__name__)

REMOTE = "remote"
LOCAL = "local"
NONE = "none"

FILTERS = ("all", CORRECT, WRONG, SKIPPED)


class ReviewItem(BaseModel):
    question: Question
    selected: Optional[int] = None
    outcome: str
    marks: float = 0.0


class ReviewReport(BaseModel):
    items: List[ReviewItem] = Field(default_factory=list)
    correct: int = 0
    wrong: int = 0
    unattempted: int = 0
    valid_question_count: int = 0
    computed_score: Decimal = Decimal("0")
    display_score: float = 0.0
    marks_from_correct: Decimal = Decimal("0")
    negative_marks: Decimal = Decimal("0")
    is_practice: bool = False
    source: str = NONE


def _local_attempt(snapshots: AttemptSnapshots) -> Optional[PriorAttempt]:
    saved = snapshots.load_result()
    if not saved:
        return None
    answers = {}
    for qid, selected in (saved.get("answers") or {}).items():
        try:
            answers[str(qid)] = int(selected)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring unreadable local answer for {qid}")
    return PriorAttempt(answers=answers, result=AttemptResult.model_validate(saved))


def load_prior_answers(
    store, snapshots: AttemptSnapshots, exam_id: str, student: Student
) -> Tuple[Optional[PriorAttempt], str]:
    """
    Remote attempt first; the local result snapshot when the remote lookup fails,
    returns nothing, or returns a row with neither answers nor a score.
    A remote row with a score but no saved responses takes its answers from the
    local snapshot and keeps the remote result for display.
    """
    remote = None
    if not student.is_guest:
        try:
            remote = store.fetch_prior_attempt(exam_id, student.uid)
        except StoreError as e:
            logger.error(f"Remote attempt lookup failed for exam {exam_id}: {e}")

    if remote is not None and remote.answers:
        return remote, REMOTE

    local = _local_attempt(snapshots)
    if remote is not None and remote.result is not None and remote.result.score is not None:
        if local is not None and local.answers:
            logger.warning(f"Remote attempt for exam {exam_id} has no responses; using local answers")
            return PriorAttempt(answers=local.answers, result=remote.result), LOCAL
        return remote, REMOTE

    if local is not None:
        logger.info(f"Using local answers for exam {exam_id}")
        return local, LOCAL
    return None, NONE


def reconcile(
    exam: Exam,
    questions: List[Question],
    answers,
    persisted_result: Optional[AttemptResult] = None,
    now: Optional[datetime] = None,
    source: str = NONE,
) -> ReviewReport:
    """
    Recompute counts and score. A persisted score is shown in place of the recomputed one;
    the breakdown is always recomputed.
    """
    result = score(exam, questions, answers)
    penalty = float(wrong_penalty(exam))

    items = []
    for q in eligible_questions(exam, questions, answers):
        outcome = answer_outcome(q, answers)
        marks = 0.0
        if outcome == CORRECT:
            marks = float(question_marks(exam, q))
        elif outcome == WRONG:
            marks = -penalty
        items.append(ReviewItem(question=q, selected=answers.get(q.id), outcome=outcome, marks=marks))

    display_score = float(result.rounded_score)
    if persisted_result is not None and persisted_result.score is not None:
        display_score = persisted_result.score

    return ReviewReport(
        items=items,
        correct=result.correct,
        wrong=result.wrong,
        unattempted=result.unattempted,
        valid_question_count=result.valid_question_count,
        computed_score=result.rounded_score,
        display_score=display_score,
        marks_from_correct=result.marks_from_correct,
        negative_marks=result.negative_marks,
        is_practice=exam.is_practice_at(now) if now else exam.is_practice,
        source=source,
    )


def filter_items(report: ReviewReport, kind: str = "all") -> List[ReviewItem]:
    if kind not in FILTERS:
        raise ValueError(f"Unknown review filter {kind!r}; expected one of {', '.join(FILTERS)}")
    if kind == "all":
        return list(report.items)
    return [item for item in report.items if item.outcome == kind]


def review_attempt(
    exam: Exam,
    questions: List[Question],
    student: Student,
    store,
    snapshots: AttemptSnapshots,
    now: Optional[datetime] = None,
) -> ReviewReport:
    prior, source = load_prior_answers(store, snapshots, exam.id, student)
    if prior is None:
        return reconcile(exam, questions, {}, now=now, source=NONE)
    return reconcile(exam, questions, prior.answers, prior.result, now=now, source=source)
