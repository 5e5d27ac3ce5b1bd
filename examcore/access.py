"""Start guards: who may take an exam, and when."""
import logging
from datetime import datetime

from examcore.errors import ExamWindowError, StoreError
from examcore.models import Exam, Student

logger = logging.getLogger(__name__)


def is_authorized(exam: Exam, student: Student, store) -> bool:
    """
    Logged-in, non-guest students may take practice exams, batch-less exams and exams of
    public batches; private batches require enrollment. Lookup failures deny access.
    """
    if student.is_guest:
        return False
    if exam.is_practice or not exam.batch_id:
        return True
    try:
        if store.fetch_batch_visibility(exam.batch_id):
            return True
        enrolled = store.fetch_enrollment(student.uid)
    except StoreError as e:
        logger.error(f"Authorization lookup failed for {student.uid} on exam {exam.id}: {e}")
        return False
    return exam.batch_id in enrolled


def check_start_window(exam: Exam, now: datetime):
    """Raise ExamWindowError unless the exam may be started at `now`. Practice exams skip the window."""
    if exam.status and exam.status != "live":
        raise ExamWindowError(ExamWindowError.DISABLED, "This exam is currently closed.")
    if exam.is_practice:
        return
    if exam.start_at and now < exam.start_at:
        raise ExamWindowError(
            ExamWindowError.NOT_STARTED,
            f"The exam has not started yet. It opens at {exam.start_at:%d %B %Y, %I:%M %p} UTC.",
        )
    if exam.end_at and now > exam.end_at:
        raise ExamWindowError(
            ExamWindowError.ENDED,
            f"The exam window closed at {exam.end_at:%d %B %Y, %I:%M %p} UTC.",
        )


def check_attempt_quota(exam: Exam, student: Student, store):
    """One-time live exams reject a second submission. Lookup errors do not block the student."""
    if exam.is_practice or exam.number_of_attempts != "one_time" or student.is_guest:
        return
    try:
        prior = store.fetch_prior_attempt(exam.id, student.uid)
    except StoreError as e:
        logger.error(f"Error checking previous attempts for {student.uid} on exam {exam.id}: {e}")
        return
    if prior is not None and prior.result is not None and prior.result.submitted_at is not None:
        raise ExamWindowError(
            ExamWindowError.ALREADY_ATTEMPTED,
            "You have already taken this exam and only one attempt is allowed.",
        )
