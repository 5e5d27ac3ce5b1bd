"""
Leaderboard ranking over persisted attempt results.
Official ranking keeps only submissions made inside the exam window; the full ranking keeps all.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from examcore.models import Exam, parse_number, parse_timestamp
from examcore.timer import format_duration


class LeaderboardEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    student_id: Optional[str] = None
    name: str = ""
    roll: str = ""
    score: float = 0.0
    correct_answers: int = 0
    wrong_answers: int = 0
    unattempted: int = 0
    started_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    rank: int = 0

    @model_validator(mode="before")
    @classmethod
    def _flatten_user(cls, data):
        if isinstance(data, dict) and isinstance(data.get("users"), dict):
            user = data["users"]
            data = {**data, "name": user.get("name") or "", "roll": user.get("roll") or ""}
        return data

    @field_validator("id", "student_id", mode="before")
    @classmethod
    def _ids(cls, value):
        return None if value in (None, "") else str(value)

    @field_validator("name", "roll", mode="before")
    @classmethod
    def _text(cls, value):
        return "" if value is None else str(value)

    @field_validator("score", mode="before")
    @classmethod
    def _score(cls, value):
        return parse_number(value) or 0.0

    @field_validator("correct_answers", "wrong_answers", "unattempted", mode="before")
    @classmethod
    def _counts(cls, value):
        number = parse_number(value)
        return 0 if number is None else int(number)

    @field_validator("started_at", "submitted_at", mode="before")
    @classmethod
    def _dates(cls, value):
        return parse_timestamp(value)

    @property
    def time_taken(self) -> str:
        if not self.started_at or not self.submitted_at:
            return "N/A"
        return format_duration((self.submitted_at - self.started_at).total_seconds())


class LeaderboardSummary(BaseModel):
    participants: int = 0
    average: float = 0.0
    highest: float = 0.0
    lowest: float = 0.0


class Leaderboard(BaseModel):
    official: List[LeaderboardEntry] = Field(default_factory=list)
    everyone: List[LeaderboardEntry] = Field(default_factory=list)


def parse_entries(rows: List[Dict[str, Any]]) -> List[LeaderboardEntry]:
    entries = [LeaderboardEntry.model_validate(row) for row in rows or []]
    # stable: equal scores keep store order
    return sorted(entries, key=lambda e: -e.score)


def ranked(entries: List[LeaderboardEntry]) -> List[LeaderboardEntry]:
    return [e.model_copy(update={"rank": i + 1}) for i, e in enumerate(entries)]


def official_entries(exam: Exam, entries: List[LeaderboardEntry]) -> List[LeaderboardEntry]:
    """Submissions made at or before end_at. Without an end time everything is official."""
    if exam.end_at is None:
        return list(entries)
    return [e for e in entries if e.submitted_at is not None and e.submitted_at <= exam.end_at]


def build_leaderboard(exam: Exam, rows: List[Dict[str, Any]]) -> Leaderboard:
    entries = parse_entries(rows)
    return Leaderboard(official=ranked(official_entries(exam, entries)), everyone=ranked(entries))


def summarize(entries: List[LeaderboardEntry]) -> LeaderboardSummary:
    if not entries:
        return LeaderboardSummary()
    scores = [e.score for e in entries]
    return LeaderboardSummary(
        participants=len(entries),
        average=round(sum(scores) / len(scores), 2),
        highest=round(max(scores), 2),
        lowest=round(min(scores), 2),
    )


def live_rank(rows: List[Dict[str, Any]], student_id: str) -> Dict[str, Any]:
    """Position of one student among rows already ordered best-first."""
    rank = None
    for i, row in enumerate(rows):
        if row.get("student_id") == student_id:
            rank = i + 1
            break
    return {"rank": rank, "total": len(rows)}
