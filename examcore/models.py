"""
Data model for the exam engine.
Raw Supabase rows validate straight into these models; unknown columns are ignored.
"""
import math
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from engine import SCORE_DECIMAL_PLACES


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse ISO-8601 (with or without 'Z') or MySQL 'YYYY-MM-DD HH:MM:SS' into an aware UTC datetime.
    Naive values are read as UTC. Empty or unparseable values return None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        # epoch milliseconds, as browsers store them
        parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_number(value: Any) -> Optional[float]:
    """Lenient float parse: '', None, NaN and garbage all become None."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return number


class SubjectConfig(BaseModel):
    """One section of a subject-structured exam."""
    model_config = ConfigDict(extra="ignore")

    id: str
    name: Optional[str] = None
    count: Optional[int] = None
    question_ids: List[str] = Field(default_factory=list)
    kind: Literal["mandatory", "optional"] = "mandatory"

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value):
        return str(value)

    @field_validator("count", mode="before")
    @classmethod
    def _count(cls, value):
        number = parse_number(value)
        if number is None or number <= 0:
            return None
        return int(number)

    @field_validator("question_ids", mode="before")
    @classmethod
    def _question_ids(cls, value):
        return [str(v) for v in (value or [])]


class Question(BaseModel):
    """Canonical question. `answer` is a valid index into `options` or -1."""
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    text: str = ""
    options: List[str] = Field(default_factory=list)
    answer: int = -1
    subject: Optional[str] = None
    marks_override: Optional[float] = None
    explanation: str = ""
    images: List[str] = Field(default_factory=list)
    file_id: Optional[str] = None


class Exam(BaseModel):
    """Configuration for one assessable unit."""
    model_config = ConfigDict(extra="ignore")

    id: str = ""
    name: str = ""
    batch_id: Optional[str] = None
    file_id: Optional[str] = None
    status: Optional[str] = None
    duration_minutes: Optional[float] = None
    marks_per_question: Optional[float] = None
    negative_marks_per_wrong: Optional[float] = None
    is_practice: bool = False
    shuffle_questions: bool = False
    number_of_attempts: Literal["one_time", "multiple"] = "one_time"
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    total_subjects: Optional[int] = None
    mandatory_subjects: List[SubjectConfig] = Field(default_factory=list)
    optional_subjects: List[SubjectConfig] = Field(default_factory=list)
    questions: List[Dict[str, Any]] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _legacy_type(cls, data):
        # older rows mark practice exams with type="practice" instead of the flag
        if isinstance(data, dict) and data.get("type") == "practice" and not data.get("is_practice"):
            data = {**data, "is_practice": True}
        return data

    @field_validator("id", "name", mode="before")
    @classmethod
    def _text(cls, value):
        return "" if value is None else str(value)

    @field_validator("batch_id", "file_id", "status", mode="before")
    @classmethod
    def _optional_text(cls, value):
        return None if value in (None, "") else str(value)

    @field_validator("duration_minutes", "marks_per_question", "negative_marks_per_wrong", mode="before")
    @classmethod
    def _numbers(cls, value):
        return parse_number(value)

    @field_validator("total_subjects", mode="before")
    @classmethod
    def _total_subjects(cls, value):
        number = parse_number(value)
        return None if number is None else int(number)

    @field_validator("is_practice", "shuffle_questions", mode="before")
    @classmethod
    def _flags(cls, value):
        return bool(value)

    @field_validator("number_of_attempts", mode="before")
    @classmethod
    def _attempts(cls, value):
        return value or "one_time"

    @field_validator("start_at", "end_at", mode="before")
    @classmethod
    def _dates(cls, value):
        return parse_timestamp(value)

    @field_validator("questions", mode="before")
    @classmethod
    def _embedded(cls, value):
        return [q for q in (value or []) if isinstance(q, dict)]

    @field_validator("mandatory_subjects", "optional_subjects", mode="before")
    @classmethod
    def _lift_subjects(cls, value, info):
        kind = "mandatory" if info.field_name == "mandatory_subjects" else "optional"
        configs = []
        for item in value or []:
            if isinstance(item, SubjectConfig):
                item = item.model_dump()
            elif isinstance(item, str):
                item = {"id": item}
            elif not isinstance(item, dict) or item.get("id") in (None, ""):
                continue
            configs.append({**item, "kind": kind})
        return configs

    @property
    def is_custom(self) -> bool:
        return bool(self.total_subjects and self.total_subjects > 0)

    @property
    def subject_configs(self) -> List[SubjectConfig]:
        return [*self.mandatory_subjects, *self.optional_subjects]

    @property
    def has_subject_config(self) -> bool:
        return bool(self.mandatory_subjects or self.optional_subjects)

    @property
    def required_optional_count(self) -> int:
        return max(0, (self.total_subjects or 0) - len(self.mandatory_subjects))

    @property
    def duration_seconds(self) -> int:
        return int((self.duration_minutes or 0) * 60)

    @property
    def is_timed(self) -> bool:
        return self.duration_seconds > 0

    def find_subject(self, subject_id: str) -> Optional[SubjectConfig]:
        for config in self.subject_configs:
            if config.id == subject_id:
                return config
        return None

    def subject_names(self) -> Dict[str, str]:
        """Custom display names keyed by subject id."""
        return {c.id: c.name for c in self.subject_configs if c.name}

    def pinned_question_ids(self) -> List[str]:
        ids: List[str] = []
        for config in self.subject_configs:
            ids.extend(config.question_ids)
        return ids

    def deadline_from(self, started_at: datetime) -> Optional[datetime]:
        if not self.is_timed:
            return None
        return started_at + timedelta(seconds=self.duration_seconds)

    def is_practice_at(self, now: datetime) -> bool:
        """Practice flag, or a live exam whose scheduled window has elapsed."""
        if self.is_practice:
            return True
        return self.end_at is not None and now > self.end_at


class Student(BaseModel):
    uid: Optional[str] = None
    name: str = ""

    @property
    def is_guest(self) -> bool:
        return not self.uid or self.uid.startswith("guest_")


class AttemptResult(BaseModel):
    """Persisted outcome of an attempt (a student_exams row)."""
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    student_id: Optional[str] = None
    score: Optional[float] = None
    correct_answers: int = 0
    wrong_answers: int = 0
    unattempted: int = 0
    started_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None

    @field_validator("id", "student_id", mode="before")
    @classmethod
    def _ids(cls, value):
        return None if value in (None, "") else str(value)

    @field_validator("score", mode="before")
    @classmethod
    def _score(cls, value):
        return parse_number(value)

    @field_validator("correct_answers", "wrong_answers", "unattempted", mode="before")
    @classmethod
    def _counts(cls, value):
        number = parse_number(value)
        return 0 if number is None else int(number)

    @field_validator("started_at", "submitted_at", mode="before")
    @classmethod
    def _dates(cls, value):
        return parse_timestamp(value)


class PriorAttempt(BaseModel):
    answers: Dict[str, int] = Field(default_factory=dict)
    result: Optional[AttemptResult] = None


class ScoreResult(BaseModel):
    correct: int = 0
    wrong: int = 0
    unattempted: int = 0
    score: Decimal = Decimal("0")
    valid_question_count: int = 0
    marks_from_correct: Decimal = Decimal("0")
    negative_marks: Decimal = Decimal("0")

    @property
    def rounded_score(self) -> Decimal:
        return self.score.quantize(Decimal(1).scaleb(-SCORE_DECIMAL_PLACES), rounding=ROUND_HALF_UP)


class Notice(BaseModel):
    """User-facing, non-blocking notification (rendered as a toast)."""
    level: Literal["info", "warning", "error"] = "info"
    title: str
    message: str = ""
