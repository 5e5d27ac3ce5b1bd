"""
Exam session: one student's attempt at one exam.
Owns subject selection, answer locking, review flags, subject-aware pagination,
the countdown and the single submit path. No UI; clock and stores are injected.
"""
import logging
import math
import random
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Set
from uuid import uuid4

from engine import GENERAL_SUBJECT, QUESTIONS_PER_PAGE
from examcore.access import check_attempt_quota, check_start_window, is_authorized
from examcore.database import exam_question_bank
from examcore.errors import InvalidTransitionError, StoreError, SubjectSelectionError, UnauthorizedError
from examcore.models import Exam, Notice, Question, ScoreResult, Student, parse_timestamp
from examcore.resolver import resolve_custom, resolve_plain, selected_subject_ids
from examcore.scoring import CORRECT, WRONG, answer_outcome, question_marks, score, wrong_penalty
from examcore.snapshots import AttemptSnapshots
from examcore.timer import CRITICAL, CountdownTimer, TimerTick, remaining_seconds

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    UNAUTHORIZED = "unauthorized"
    AWAITING_SUBJECT_SELECTION = "awaiting_subject_selection"
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExamSession:
    """Drives a single attempt from authorization to submission."""

    def __init__(
        self,
        exam: Exam,
        student: Student,
        store,
        snapshots: AttemptSnapshots,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
        questions_per_page: int = QUESTIONS_PER_PAGE,
    ):
        """
        Args:
            exam: Exam configuration (read-only for the whole attempt).
            student: The student taking the exam.
            store: Persistence collaborator (DatabaseClient or a test double).
            snapshots: Local progress slots for this (student, exam).
            clock: Returns the current aware UTC datetime.
            rng: Randomness for shuffling.
            questions_per_page: Page size inside a subject section.
        """
        self.session_id = uuid4()
        self.exam = exam
        self.student = student
        self.store = store
        self.snapshots = snapshots
        self.clock = clock
        self.rng = rng or random.Random()
        self.questions_per_page = questions_per_page

        self.state = SessionState.UNAUTHORIZED
        self.bank: List[Question] = []
        self.questions: List[Question] = []
        self.subject_order: List[str] = []
        self.selected_subjects: List[str] = []

        self.answers: Dict[str, int] = {}
        self.marked_for_review: Set[str] = set()

        self.started_at: Optional[datetime] = None
        self.deadline: Optional[datetime] = None
        self.submitted_at: Optional[datetime] = None
        self.timer: Optional[CountdownTimer] = None

        self.current_subject: Optional[str] = None
        self.page_index = 0

        self.notices: List[Notice] = []
        self.result: Optional[ScoreResult] = None
        self.remote_saved = False

        self._submit_lock = threading.Lock()
        self._submit_claimed = False

    # ============= Lifecycle =============

    def open(self) -> SessionState:
        """Authorize, load the question bank and resume any saved progress."""
        if not is_authorized(self.exam, self.student, self.store):
            self.state = SessionState.UNAUTHORIZED
            logger.warning(f"Student {self.student.uid} is not authorized for exam {self.exam.id}")
            return self.state

        self.state = SessionState.AWAITING_SUBJECT_SELECTION if self.exam.is_custom else SessionState.NOT_STARTED
        self.load_questions()
        self.restore()
        return self.state

    def load_questions(self):
        try:
            self.bank = exam_question_bank(self.exam, self.store)
        except StoreError as e:
            logger.error(f"Question bank unavailable for exam {self.exam.id}: {e}")
            self._notify("error", "Problem loading questions", "Please try again later.")
            self.bank = []

        if not self.exam.is_custom:
            resolved = resolve_plain(self.exam, self.bank, self.rng)
            self.questions = resolved.questions
            self.subject_order = resolved.subject_order

    def validate_choices(self, optional_choices: Sequence[str]) -> List[str]:
        choices = list(optional_choices)
        required = self.exam.required_optional_count
        known = {c.id for c in self.exam.optional_subjects}
        if len(set(choices)) != len(choices):
            raise SubjectSelectionError("Each optional subject can be chosen only once.")
        unknown = [c for c in choices if c not in known]
        if unknown:
            raise SubjectSelectionError(f"Unknown optional subjects: {', '.join(unknown)}")
        if len(choices) != required:
            raise SubjectSelectionError(f"Choose exactly {required} optional subject(s); got {len(choices)}.")
        return choices

    def start(self, optional_choices: Sequence[str] = ()) -> SessionState:
        """
        Begin the attempt. Guards run before any state changes:
        time window (unless practice), one-time attempt quota, optional subject picks.
        """
        if self.state == SessionState.UNAUTHORIZED:
            raise UnauthorizedError("You are not allowed to take this exam.")
        if self.state not in (SessionState.NOT_STARTED, SessionState.AWAITING_SUBJECT_SELECTION):
            raise InvalidTransitionError(f"Cannot start an attempt in state {self.state.value}")

        now = self.clock()
        check_start_window(self.exam, now)
        check_attempt_quota(self.exam, self.student, self.store)

        if self.exam.is_custom:
            choices = self.validate_choices(optional_choices)
            resolved = resolve_custom(self.exam, self.bank, choices, self.rng)
            questions, subject_order = resolved.questions, resolved.subject_order
            self.selected_subjects = selected_subject_ids(self.exam, choices)
        else:
            questions, subject_order = self.questions, self.subject_order

        if not questions:
            raise InvalidTransitionError("No questions are available for this exam.")

        self.questions = questions
        self.subject_order = subject_order
        self.current_subject = subject_order[0] if self.exam.is_custom and subject_order else None
        self.page_index = 0
        self.started_at = now
        if self.deadline is None:
            self.deadline = self.exam.deadline_from(now)
        self._arm_timer()
        self.state = SessionState.IN_PROGRESS

        self._save_shape()
        self._save_progress()
        self._record_start()
        logger.info(
            f"Session {self.session_id}: student {self.student.uid} started exam {self.exam.id} "
            f"with {len(self.questions)} questions"
        )
        return self.state

    def restore(self) -> bool:
        """Resume from local snapshots. A deadline already in the past submits immediately."""
        shape = self.snapshots.load_shape()
        if not shape or not shape.get("exam_started"):
            return False
        try:
            questions = [Question.model_validate(q) for q in shape.get("questions") or []]
            progress = self.snapshots.load_progress() or {}
            answers = {str(k): int(v) for k, v in (progress.get("answers") or {}).items()}
            marked = {str(q) for q in progress.get("marked_for_review") or []}
        except (ValueError, TypeError) as e:
            logger.error(f"Failed to restore progress for exam {self.exam.id}: {e}")
            return False

        self.questions = questions
        self.subject_order = list(shape.get("subject_order") or [])
        self.selected_subjects = list(shape.get("selected_subjects") or [])
        self.current_subject = shape.get("current_subject")
        self.started_at = parse_timestamp(shape.get("started_at"))
        self.deadline = parse_timestamp(shape.get("deadline"))
        self.answers = answers
        self.marked_for_review = marked
        self.page_index = 0

        submitted_at = parse_timestamp(shape.get("submitted_at"))
        if submitted_at is not None:
            return self._retry_pending_submit(submitted_at)

        self._arm_timer(set(shape.get("warnings_fired") or []))
        self.state = SessionState.IN_PROGRESS

        logger.info(f"Session {self.session_id}: restored {len(answers)} answers for exam {self.exam.id}")
        self._notify("info", "Exam progress restored")

        if self.deadline is not None and self.clock() >= self.deadline:
            self.submit(reason="timeout")
        return True

    # ============= Answering =============

    def _find_question(self, question_id: str) -> Optional[Question]:
        return next((q for q in self.questions if q.id == question_id), None)

    def _expire_if_overdue(self) -> bool:
        """Submit on the spot when the deadline has passed without a tick noticing."""
        if self.deadline is not None and self.clock() >= self.deadline:
            self.submit(reason="timeout")
            return True
        return False

    def answer(self, question_id: str, option_index: int) -> bool:
        """Record an answer. First answer wins; later calls for the same question are ignored."""
        if self.state != SessionState.IN_PROGRESS:
            logger.debug(f"Answer for {question_id} ignored in state {self.state.value}")
            return False
        if self._expire_if_overdue():
            logger.info(f"Answer for {question_id} arrived after the deadline")
            return False
        if question_id in self.answers:
            return False
        question = self._find_question(question_id)
        if question is None:
            logger.warning(f"Question {question_id} not found in session {self.session_id}")
            return False
        if isinstance(option_index, bool) or not isinstance(option_index, int) \
                or not 0 <= option_index < len(question.options):
            logger.warning(f"Option {option_index!r} out of range for question {question_id}")
            return False

        self.answers[question_id] = option_index
        self.marked_for_review.discard(question_id)
        self._save_progress()
        return True

    def toggle_review(self, question_id: str) -> bool:
        """Flip the review flag. Returns whether the question is now flagged."""
        if self.state != SessionState.IN_PROGRESS:
            return question_id in self.marked_for_review
        if self._expire_if_overdue():
            return question_id in self.marked_for_review
        if question_id in self.marked_for_review:
            self.marked_for_review.remove(question_id)
        else:
            self.marked_for_review.add(question_id)
        self._save_progress()
        return question_id in self.marked_for_review

    def answer_status(self, question_id: str) -> str:
        if question_id in self.marked_for_review:
            return "marked"
        if question_id in self.answers:
            return "attempted"
        return "unattempted"

    @property
    def attempted_count(self) -> int:
        """Answered questions in the current section."""
        return sum(1 for q in self.section_questions() if q.id in self.answers)

    @property
    def unattempted_count(self) -> int:
        return len(self.section_questions()) - self.attempted_count

    # ============= Pagination =============

    def section_questions(self, subject: Optional[str] = None) -> List[Question]:
        subject = subject if subject is not None else self.current_subject
        if subject is None:
            return list(self.questions)
        return [q for q in self.questions if (q.subject or GENERAL_SUBJECT) == subject]

    @property
    def total_pages(self) -> int:
        return math.ceil(len(self.section_questions()) / self.questions_per_page)

    def page_questions(self) -> List[Question]:
        start = self.page_index * self.questions_per_page
        return self.section_questions()[start:start + self.questions_per_page]

    def select_subject(self, subject: Optional[str]):
        if subject is not None and subject not in self.subject_order:
            raise ValueError(f"Unknown subject {subject!r}")
        self.current_subject = subject
        self.page_index = 0
        self._save_shape()

    def _subject_position(self) -> int:
        if self.current_subject is None:
            return -1
        return self.subject_order.index(self.current_subject) if self.current_subject in self.subject_order else -1

    def next_page(self) -> bool:
        """Next page in this subject, else the first page of the next subject."""
        if self.page_index < self.total_pages - 1:
            self.page_index += 1
            return True
        position = self._subject_position()
        if position != -1 and position < len(self.subject_order) - 1:
            next_subject = self.subject_order[position + 1]
            self.select_subject(next_subject)
            self._notify("info", "Subject changed", f"Next subject: {next_subject}")
            return True
        return False

    def previous_page(self) -> bool:
        """Previous page in this subject, else page 0 of the previous subject."""
        if self.page_index > 0:
            self.page_index -= 1
            return True
        position = self._subject_position()
        if position > 0:
            self.select_subject(self.subject_order[position - 1])
            return True
        return False

    @property
    def is_last_page_of_exam(self) -> bool:
        last_page = self.page_index >= self.total_pages - 1
        position = self._subject_position()
        return last_page and (self.current_subject is None or position == len(self.subject_order) - 1)

    # ============= Timer =============

    def _arm_timer(self, fired: Optional[Set[str]] = None):
        self.timer = CountdownTimer(self.deadline, self.exam.duration_seconds, fired) if self.deadline else None

    @property
    def remaining_seconds(self) -> Optional[int]:
        if self.deadline is None or self.state != SessionState.IN_PROGRESS:
            return None
        return remaining_seconds(self.deadline, self.clock())

    def tick(self) -> Optional[TimerTick]:
        """Re-derive remaining time from the deadline; fires warnings once and auto-submits at zero."""
        if self.state != SessionState.IN_PROGRESS or self.timer is None:
            return None
        result = self.timer.tick(self.clock())
        for warning in result.warnings:
            if warning == CRITICAL:
                self._notify("error", "Time is almost up", "Only one minute left. The exam will submit automatically.")
            else:
                self._notify("warning", "Time warning", "Only 10% of the time is left.")
        if result.warnings:
            self._save_shape()
        if result.expired:
            self.submit(reason="timeout")
        return result

    # ============= Submission =============

    def _claim_submit(self) -> bool:
        with self._submit_lock:
            if self._submit_claimed:
                return False
            self._submit_claimed = True
            return True

    def submit(self, reason: str = "user") -> Optional[ScoreResult]:
        """
        Score and persist the attempt. Only the first caller does any work;
        timer expiry and user confirmation share this path.
        """
        if self.state != SessionState.IN_PROGRESS and not self._submit_claimed:
            raise InvalidTransitionError(f"Cannot submit in state {self.state.value}")
        if not self._claim_submit():
            logger.debug(f"Duplicate submit ({reason}) ignored for session {self.session_id}")
            return self.result

        self.state = SessionState.SUBMITTING
        self.timer = None
        self.submitted_at = self.clock()
        self.result = score(self.exam, self.questions, self.answers)

        self.remote_saved = self._persist_result()
        try:
            self._save_local_result()
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Error saving local result for exam {self.exam.id}: {e}")
            self._notify("error", "Could not save answers on this device", str(e))
        finally:
            self.state = SessionState.SUBMITTED

        logger.info(
            f"Session {self.session_id} submitted ({reason}): score={self.result.rounded_score} "
            f"correct={self.result.correct} wrong={self.result.wrong} unattempted={self.result.unattempted}"
        )
        return self.result

    def _save_local_result(self):
        self.snapshots.save_result({
            "answers": self.answers,
            "score": float(self.result.rounded_score),
            "correct_answers": self.result.correct,
            "wrong_answers": self.result.wrong,
            "unattempted": self.result.unattempted,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "submitted_at": self.submitted_at.isoformat(),
        })
        if self.remote_saved:
            self.snapshots.clear_progress()
        else:
            shape = self.snapshots.load_shape() or {}
            self.snapshots.save_shape({**shape, "submitted_at": self.submitted_at.isoformat()})

    def _retry_pending_submit(self, submitted_at: datetime) -> bool:
        """A submit whose remote write failed earlier: stay submitted and try the write again."""
        self._submit_claimed = True
        self.submitted_at = submitted_at
        self.result = score(self.exam, self.questions, self.answers)
        logger.info(f"Session {self.session_id}: retrying pending submit for exam {self.exam.id}")
        self.remote_saved = self._persist_result()
        if self.remote_saved:
            self.snapshots.clear_progress()
        self.state = SessionState.SUBMITTED
        return True

    def responses(self) -> List[Dict]:
        """One response row per question in the attempt."""
        penalty = wrong_penalty(self.exam)
        rows = []
        for q in self.questions:
            outcome = answer_outcome(q, self.answers)
            marks = 0.0
            if outcome == CORRECT:
                marks = float(question_marks(self.exam, q))
            elif outcome == WRONG:
                marks = -float(penalty)
            selected = self.answers.get(q.id)
            rows.append({
                "question_id": q.id,
                "selected_option": str(selected) if selected is not None else None,
                "is_correct": outcome == CORRECT,
                "marks_obtained": marks,
            })
        return rows

    def _persist_result(self) -> bool:
        if self.student.is_guest:
            self._notify("info", "Exam finished", "You are not logged in, so your score was not saved.")
            return False
        payload = {
            "score": float(self.result.rounded_score),
            "correct": self.result.correct,
            "wrong": self.result.wrong,
            "unattempted": self.result.unattempted,
            "started_at": self.started_at,
            "submitted_at": self.submitted_at,
        }
        try:
            attempt_id = self.store.record_attempt_result(self.exam.id, self.student.uid, payload)
            if attempt_id:
                self.store.record_answers(attempt_id, self.responses())
        except StoreError as e:
            logger.error(f"Error submitting exam {self.exam.id} for {self.student.uid}: {e}")
            self._notify("error", "Submit failed", f"Your answers are saved on this device. {e}")
            return False
        self._notify("info", "Exam submitted")
        return True

    # ============= Persistence helpers =============

    def _record_start(self):
        if self.student.is_guest:
            return
        try:
            self.store.record_attempt_start(self.exam.id, self.student.uid, self.started_at)
        except StoreError as e:
            logger.error(f"Error recording exam start: {e}")
            self._notify("warning", "Could not record exam start", "You can continue the exam.")

    def _save_shape(self):
        if self.state not in (SessionState.IN_PROGRESS,):
            return
        self.snapshots.save_shape({
            "exam_started": True,
            "questions": [q.model_dump(mode="json") for q in self.questions],
            "subject_order": self.subject_order,
            "selected_subjects": self.selected_subjects,
            "current_subject": self.current_subject,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "warnings_fired": sorted(self.timer.fired) if self.timer else [],
        })

    def _save_progress(self):
        if self.state != SessionState.IN_PROGRESS:
            return
        self.snapshots.save_progress(self.answers, self.marked_for_review)

    def _notify(self, level: str, title: str, message: str = ""):
        self.notices.append(Notice(level=level, title=title, message=message))

    def drain_notices(self) -> List[Notice]:
        notices, self.notices = self.notices, []
        return notices

    @property
    def elapsed_seconds(self) -> Optional[float]:
        if not self.started_at:
            return None
        end = self.submitted_at or self.clock()
        return (end - self.started_at).total_seconds()
