"""
Database operations for the exam engine.
Handles Supabase reads/writes for exams, question banks, enrollment, attempts and responses.
"""
import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field
from supabase import create_client, Client

from examcore.errors import StoreError
from examcore.leaderboard import live_rank
from examcore.models import AttemptResult, Exam, PriorAttempt, Question
from examcore.normalizer import normalize_all

logger = logging.getLogger(__name__)

load_dotenv()

PAGE_SIZE = 1000
ID_CHUNK_SIZE = 200


class QuestionCriteria(BaseModel):
    """Question bank filter. Precedence: explicit ids, then exam id (falling back to file id), then file id."""
    file_id: Optional[str] = None
    exam_id: Optional[str] = None
    ids: List[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.file_id or self.exam_id or self.ids)

    @classmethod
    def for_exam(cls, exam: Exam) -> "QuestionCriteria":
        return cls(file_id=exam.file_id, exam_id=exam.id or None, ids=exam.pinned_question_ids())


def exam_question_bank(exam: Exam, store) -> List[Question]:
    """Questions embedded in the exam row, otherwise the bank fetched through `store`."""
    names = exam.subject_names()
    if exam.questions:
        return normalize_all(exam.questions, names)
    return store.fetch_question_bank(QuestionCriteria.for_exam(exam), names)


def env_client() -> Client:
    url = os.environ.get("SUPABASE_URL")
    key = os.environ.get("SUPABASE_KEY")
    if not url or not key:
        raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set")
    return create_client(url, key)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class DatabaseClient:
    """Wrapper around the Supabase client with exam-engine operations."""

    def __init__(self, client: Optional[Client] = None):
        self.client: Client = client or env_client()

    # ============= Questions =============

    def _fetch_paged(self, column: str, value: str) -> List[Dict]:
        rows: List[Dict] = []
        offset = 0
        while True:
            r = (
                self.client.table("questions")
                .select("*")
                .eq(column, value)
                .range(offset, offset + PAGE_SIZE - 1)
                .execute()
            )
            data = r.data or []
            rows.extend(data)
            if len(data) < PAGE_SIZE:
                break
            offset += PAGE_SIZE
        return rows

    def _fetch_by_ids(self, ids: List[str]) -> List[Dict]:
        rows: List[Dict] = []
        seen = set()
        for i in range(0, len(ids), ID_CHUNK_SIZE):
            chunk = ids[i:i + ID_CHUNK_SIZE]
            r = self.client.table("questions").select("*").in_("id", chunk).execute()
            for row in r.data or []:
                if str(row.get("id")) not in seen:
                    seen.add(str(row.get("id")))
                    rows.append(row)
        return rows

    def fetch_question_bank(
        self, criteria: QuestionCriteria, subject_names: Optional[Mapping[str, str]] = None
    ) -> List[Question]:
        """
        Fetch and normalize questions.
        No criteria returns nothing rather than the whole bank.
        """
        if criteria.is_empty:
            logger.warning("fetch_question_bank called without any filters; returning no questions")
            return []
        try:
            if criteria.ids:
                rows = self._fetch_by_ids(criteria.ids)
            elif criteria.exam_id:
                rows = self._fetch_paged("exam_id", criteria.exam_id)
                if not rows and criteria.file_id:
                    logger.info(f"No questions linked to exam {criteria.exam_id}; falling back to file {criteria.file_id}")
                    rows = self._fetch_paged("file_id", criteria.file_id)
            else:
                rows = self._fetch_paged("file_id", criteria.file_id)
        except Exception as e:
            logger.error(f"Error fetching questions for {criteria.model_dump()}: {e}")
            raise StoreError(f"Could not load questions: {e}") from e
        logger.info(f"Fetched {len(rows)} questions")
        return normalize_all(rows, subject_names)

    # ============= Exams & access =============

    def fetch_exam_config(self, exam_id: str) -> Exam:
        try:
            r = self.client.table("exams").select("*").eq("id", exam_id).limit(1).execute()
        except Exception as e:
            logger.error(f"Error fetching exam {exam_id}: {e}")
            raise StoreError(f"Could not load exam: {e}") from e
        if not r.data:
            raise StoreError(f"Exam {exam_id} not found")
        return Exam.model_validate(r.data[0])

    def fetch_enrollment(self, student_id: str) -> List[str]:
        try:
            r = self.client.table("users").select("enrolled_batches").eq("uid", student_id).limit(1).execute()
        except Exception as e:
            logger.error(f"Error fetching enrollment for {student_id}: {e}")
            raise StoreError(str(e)) from e
        if not r.data:
            raise StoreError(f"User {student_id} not found")
        return [str(b) for b in (r.data[0].get("enrolled_batches") or [])]

    def fetch_batch_visibility(self, batch_id: str) -> bool:
        try:
            r = self.client.table("batches").select("is_public").eq("id", batch_id).limit(1).execute()
        except Exception as e:
            logger.error(f"Error fetching batch {batch_id}: {e}")
            raise StoreError(str(e)) from e
        return bool(r.data and r.data[0].get("is_public"))

    # ============= Attempts =============

    def record_attempt_start(self, exam_id: str, student_id: str, started_at: datetime):
        row = {"exam_id": str(exam_id), "student_id": student_id, "started_at": _iso(started_at)}
        try:
            self.client.table("student_exams").upsert(row, on_conflict="student_id,exam_id").execute()
        except Exception as e:
            logger.error(f"Error recording exam start: {e}")
            raise StoreError(str(e)) from e

    def record_attempt_result(self, exam_id: str, student_id: str, result: Mapping[str, Any]) -> Optional[str]:
        """Upsert the attempt's outcome. Returns the student_exams row id."""
        row = {
            "exam_id": str(exam_id),
            "student_id": student_id,
            "score": result["score"],
            "correct_answers": result["correct"],
            "wrong_answers": result["wrong"],
            "unattempted": result["unattempted"],
            "started_at": _iso(result.get("started_at")),
            "submitted_at": _iso(result.get("submitted_at")),
        }
        try:
            r = self.client.table("student_exams").upsert(row, on_conflict="student_id,exam_id").execute()
        except Exception as e:
            logger.error(f"Error submitting exam: {e}")
            raise StoreError(str(e)) from e
        if not r.data:
            return None
        return str(r.data[0].get("id"))

    def record_answers(self, attempt_id: str, responses: List[Dict[str, Any]]):
        """Replace the attempt's response rows. A retake must not inherit rows from an earlier attempt."""
        rows = [{**resp, "student_exam_id": attempt_id} for resp in responses]
        try:
            self.client.table("student_responses").delete().eq("student_exam_id", attempt_id).execute()
            if rows:
                (
                    self.client.table("student_responses")
                    .upsert(rows, on_conflict="student_exam_id,question_id")
                    .execute()
                )
        except Exception as e:
            logger.error(f"Error saving responses: {e}")
            raise StoreError(str(e)) from e

    def fetch_prior_attempt(self, exam_id: str, student_id: str) -> Optional[PriorAttempt]:
        try:
            r = (
                self.client.table("student_exams")
                .select("*, student_responses(*)")
                .eq("exam_id", str(exam_id))
                .eq("student_id", student_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error(f"Failed to fetch result for {student_id} on exam {exam_id}: {e}")
            raise StoreError(str(e)) from e
        if not r.data:
            return None

        row = r.data[0]
        answers: Dict[str, int] = {}
        for resp in row.get("student_responses") or []:
            selected = resp.get("selected_option")
            if selected is None or selected == "":
                continue
            try:
                answers[str(resp["question_id"])] = int(selected)
            except (TypeError, ValueError):
                logger.warning(f"Ignoring unreadable response {resp!r}")
        return PriorAttempt(answers=answers, result=AttemptResult.model_validate(row))

    # ============= Leaderboard =============

    def fetch_results(self, exam_id: str) -> List[Dict]:
        """All attempt rows for an exam with student name/roll, best score first."""
        try:
            r = (
                self.client.table("student_exams")
                .select("*, users!inner(name, roll)")
                .eq("exam_id", str(exam_id))
                .order("score", desc=True)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error fetching leaderboard for exam {exam_id}: {e}")
            raise StoreError(str(e)) from e
        return r.data or []

    def fetch_live_rank(self, exam_id: str, student_id: str) -> Optional[Dict[str, Any]]:
        """{rank, total} for one student, or None. Display only; failures are swallowed after logging."""
        try:
            r = (
                self.client.table("student_exams")
                .select("student_id, score")
                .eq("exam_id", str(exam_id))
                .order("score", desc=True)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error fetching live rank: {e}")
            return None
        return live_rank(r.data or [], student_id)
