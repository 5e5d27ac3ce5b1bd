#!/usr/bin/env python3
"""
Integration test: Session + Database + Review + Leaderboard workflow.
Demonstrates:
1. Custom exam with mandatory and optional subjects
2. Answering, auto-submit at the deadline, persistence
3. Review recomputation and leaderboard ranking from stored rows
"""
import logging
import random
from decimal import Decimal

from conftest import T0, FakeClock, FakeSupabase
from examcore.database import DatabaseClient, exam_question_bank
from examcore.leaderboard import build_leaderboard, summarize
from examcore.models import Student
from examcore.reconciler import REMOTE, review_attempt
from examcore.session import ExamSession, SessionState
from examcore.snapshots import AttemptSnapshots, MemorySnapshotStore

logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger(__name__)


def bank_rows():
    rows = []
    for subject, n in (("p", 3), ("c", 2), ("b", 2)):
        for i in range(n):
            rows.append({
                "id": f"{subject}{i}",
                "file_id": "file-1",
                "question_text": f"{subject.upper()} question {i}",
                "option1": "alpha",
                "option2": "beta",
                "option3": "gamma",
                "option4": "delta",
                "answer": "B",
                "subject": subject,
            })
    return rows


def test_full_exam_workflow():
    """Full end-to-end run: start, answer, time out, review, rank."""

    logger.info("=" * 70)
    logger.info("Exam Engine - Integration Test")
    logger.info("=" * 70)

    fake = FakeSupabase({
        "exams": [{
            "id": "exam-7",
            "name": "Admission Mock 7",
            "status": "live",
            "batch_id": "batch-1",
            "file_id": "file-1",
            "duration_minutes": 30,
            "marks_per_question": 1,
            "negative_marks_per_wrong": "0.25",
            "start_at": "2025-03-01T08:00:00Z",
            "end_at": "2025-03-01T12:00:00Z",
            "total_subjects": 2,
            "mandatory_subjects": [{"id": "p", "name": "Physics"}],
            "optional_subjects": ["c", "b"],
        }],
        "batches": [{"id": "batch-1", "is_public": False}],
        "users": [
            {"uid": "stu-1", "name": "Rafi", "roll": "101", "enrolled_batches": ["batch-1"]},
            {"uid": "stu-2", "name": "Nila", "roll": "102", "enrolled_batches": ["batch-1"]},
        ],
        "questions": bank_rows(),
    })
    db = DatabaseClient(fake)
    exam = db.fetch_exam_config("exam-7")
    logger.info(f"\n✓ Loaded exam: {exam.name} ({exam.duration_minutes:g} min)")

    clock = FakeClock(T0)
    local = MemorySnapshotStore()
    student = Student(uid="stu-1", name="Rafi")
    snapshots = AttemptSnapshots(local, student.uid, exam.id)

    session = ExamSession(exam, student, db, snapshots, clock=clock, rng=random.Random(11))
    assert session.open() == SessionState.AWAITING_SUBJECT_SELECTION
    session.start(["b"])
    logger.info(f"✓ Started session {session.session_id} with {len(session.questions)} questions")
    assert session.subject_order == ["Physics", "Biology"]
    assert fake.tables["student_exams"][0]["started_at"] == T0.isoformat()

    # Answering
    logger.info("\n--- Answering Questions ---")
    for qid, choice in (("p0", 1), ("p1", 1), ("p2", 0), ("b0", 1)):
        session.answer(qid, choice)
        logger.info(f"  {qid} -> {choice} ({session.answer_status(qid)})")

    # Run out the clock
    clock.advance(30 * 60)
    session.tick()
    assert session.state == SessionState.SUBMITTED
    result = session.result
    logger.info(f"\n✓ Auto-submitted: score={result.rounded_score} correct={result.correct} wrong={result.wrong}")
    assert (result.correct, result.wrong, result.unattempted) == (3, 1, 1)
    assert result.score == Decimal("2.75")
    assert session.remote_saved
    assert snapshots.load_progress() is None

    # Review from the stored rows
    bank = exam_question_bank(exam, db)
    report = review_attempt(exam, bank, student, db, snapshots, now=clock())
    logger.info("\n--- Review ---")
    logger.info(f"  Source: {report.source} | Display score: {report.display_score}")
    assert report.source == REMOTE
    assert report.display_score == 2.75
    # Chemistry was never chosen, so none of its questions count
    assert {item.question.subject for item in report.items} == {"Physics", "Biology"}

    # A second student, submitting after the window closed
    clock.advance(3 * 3600)
    other = Student(uid="stu-2", name="Nila")
    late = ExamSession(
        exam.model_copy(update={"is_practice": True}), other, db,
        AttemptSnapshots(local, other.uid, exam.id), clock=clock, rng=random.Random(5),
    )
    late.open()
    late.start(["c"])
    for q in late.questions:
        late.answer(q.id, 1)
    late.submit()
    logger.info(f"✓ Late practice submission: {late.result.rounded_score}")

    board = build_leaderboard(exam, db.fetch_results(exam.id))
    logger.info("\n--- Leaderboard ---")
    for entry in board.everyone:
        logger.info(f"  #{entry.rank:<3} {entry.name:<10} {entry.score:>6} {entry.time_taken}")
    assert [e.name for e in board.everyone] == ["Nila", "Rafi"]
    assert [e.name for e in board.official] == ["Rafi"]
    assert summarize(board.everyone).highest == 5.0
    assert db.fetch_live_rank(exam.id, "stu-1") == {"rank": 2, "total": 2}

    logger.info("\n" + "=" * 70)
    logger.info("✓ Integration test completed successfully")
    logger.info("=" * 70)


if __name__ == "__main__":
    test_full_exam_workflow()


def test_retake_review_matches_latest_submit():
    """A second attempt at a multiple-attempt exam is reviewed on its own answers only."""

    fake = FakeSupabase({
        "exams": [{
            "id": "exam-8",
            "name": "Open Mock 8",
            "status": "live",
            "file_id": "file-1",
            "number_of_attempts": "multiple",
            "duration_minutes": 30,
            "total_subjects": 2,
            "mandatory_subjects": ["p"],
            "optional_subjects": ["c", "b"],
        }],
        "questions": bank_rows(),
    })
    db = DatabaseClient(fake)
    exam = db.fetch_exam_config("exam-8")
    clock = FakeClock(T0)
    local = MemorySnapshotStore()
    student = Student(uid="stu-1", name="Rafi")

    results = []
    for choice, qid in (("c", "c0"), ("b", "b0")):
        snapshots = AttemptSnapshots(local, student.uid, exam.id)
        session = ExamSession(exam, student, db, snapshots, clock=clock, rng=random.Random(2))
        assert session.open() == SessionState.AWAITING_SUBJECT_SELECTION
        session.start([choice])
        session.answer(qid, 1)
        results.append(session.submit())
        logger.info(f"✓ Attempt with {choice}: valid={results[-1].valid_question_count}")
        clock.advance(3600)

    latest = results[-1]
    report = review_attempt(exam, exam_question_bank(exam, db), student, db, snapshots, now=clock())
    logger.info(f"  Review: valid={report.valid_question_count} source={report.source}")
    assert report.source == REMOTE
    assert (report.correct, report.wrong, report.unattempted, report.valid_question_count) == (
        latest.correct, latest.wrong, latest.unattempted, latest.valid_question_count,
    )
    assert {item.question.subject for item in report.items} == {"Physics", "Biology"}
