"""
Question normalization: heterogeneous raw rows -> canonical Question.
Answer encodings handled: 0-based int, 1-based digit string ("0" stays index 0), single letter A-H.
Never raises; anything unparseable degrades to an empty value or answer -1.
"""
import logging
import string
from typing import Any, Dict, List, Mapping, Optional
from uuid import uuid5, NAMESPACE_DNS

from examcore.models import Question, parse_number

logger = logging.getLogger(__name__)

SUBJECT_CODES = {
    "p": "Physics",
    "c": "Chemistry",
    "m": "Higher Math",
    "b": "Biology",
    "bm": "Biology + Higher Math",
    "bn": "Bangla",
    "e": "English",
    "i": "ICT",
    "gk": "GK",
    "iq": "IQ",
}

LEGACY_OPTION_FIELDS = ("option1", "option2", "option3", "option4", "option5")
ANSWER_LETTERS = "ABCDEFGH"
UNKNOWN_ANSWER = -1


def subject_display_name(subject_id: str, custom_names: Optional[Mapping[str, str]] = None) -> str:
    """Custom exam name, then the code table, then the id itself."""
    if custom_names and subject_id in custom_names:
        return custom_names[subject_id]
    return SUBJECT_CODES.get(subject_id, subject_id)


def parse_answer_index(raw: Any) -> int:
    """Resolve a raw answer encoding to a 0-based index, or -1."""
    if isinstance(raw, int) and not isinstance(raw, bool):
        return raw if raw >= 0 else UNKNOWN_ANSWER
    if raw is None:
        return UNKNOWN_ANSWER
    text = str(raw).strip()
    if text.isdigit() and text.isascii():
        number = int(text)
        return number - 1 if number > 0 else 0
    if len(text) == 1 and text in string.ascii_letters:
        letter = text.upper()
        if letter in ANSWER_LETTERS:
            return ANSWER_LETTERS.index(letter)
    return UNKNOWN_ANSWER


def normalize_options(raw: Mapping[str, Any]) -> List[str]:
    """Explicit options list (or mapping) if non-empty, else the legacy option1..option5 fields. Blanks dropped."""
    explicit = raw.get("options")
    if isinstance(explicit, Mapping):
        explicit = list(explicit.values())
    if isinstance(explicit, (list, tuple)) and len(explicit) > 0:
        candidates = list(explicit)
    else:
        candidates = [raw.get(field) for field in LEGACY_OPTION_FIELDS]
    return [opt for opt in candidates if isinstance(opt, str) and opt.strip()]


def _raw_answer(raw: Mapping[str, Any]) -> Any:
    answer = raw.get("answer")
    if answer is None or answer == "":
        answer = raw.get("correct")
    return answer


def _fallback_id(text: str, options: List[str]) -> str:
    return str(uuid5(NAMESPACE_DNS, text + "|" + "|".join(options)))


def normalize(raw: Mapping[str, Any], subject_names: Optional[Mapping[str, str]] = None) -> Question:
    """
    Build a canonical Question from a raw record.

    Args:
        raw: Question row from the bank or embedded in an exam.
        subject_names: Exam-specific subject display names keyed by subject id.
            These win over both the raw subject and SUBJECT_CODES.
    """
    if not isinstance(raw, Mapping):
        raw = {}

    text = str(raw.get("question_text") or raw.get("question") or raw.get("text") or "")
    options = normalize_options(raw)

    answer = parse_answer_index(_raw_answer(raw))
    if answer >= len(options):
        answer = UNKNOWN_ANSWER

    raw_subject = raw.get("subject")
    subject = subject_display_name(str(raw_subject), subject_names) if raw_subject else None

    images = [
        str(raw[key]) for key in ("question_image_url", "explanation_image_url", "question_image", "explanation_image")
        if raw.get(key)
    ]

    marks = raw.get("marks_override")
    if marks is None:
        marks = raw.get("question_marks")

    raw_id = raw.get("id")
    question_id = str(raw_id) if raw_id not in (None, "") else _fallback_id(text, options)

    return Question(
        id=question_id,
        text=text,
        options=options,
        answer=answer,
        subject=subject,
        marks_override=parse_number(marks),
        explanation=str(raw.get("explanation") or ""),
        images=images,
        file_id=str(raw["file_id"]) if raw.get("file_id") not in (None, "") else None,
    )


def normalize_all(rows: List[Dict[str, Any]], subject_names: Optional[Mapping[str, str]] = None) -> List[Question]:
    questions = [normalize(row, subject_names) for row in rows or []]
    unresolved = sum(1 for q in questions if q.answer == UNKNOWN_ANSWER)
    if unresolved:
        logger.warning("%d of %d questions have no resolvable answer", unresolved, len(questions))
    return questions
