"""
Subject selection: turns an exam's subject configuration plus a student's optional picks
into the ordered question list for one attempt. Runs once, at attempt start.
"""
import logging
import random
from typing import Dict, List, Optional, Sequence, Set

from pydantic import BaseModel, Field

from engine import GENERAL_SUBJECT
from examcore.models import Exam, Question, SubjectConfig
from examcore.normalizer import SUBJECT_CODES

logger = logging.getLogger(__name__)


class ResolvedQuestions(BaseModel):
    questions: List[Question] = Field(default_factory=list)
    subject_order: List[str] = Field(default_factory=list)


def section_name(config: SubjectConfig) -> str:
    """Label every question of this subject is rewritten to."""
    return config.name or SUBJECT_CODES.get(config.id, config.id)


def subject_labels(config: SubjectConfig) -> Set[str]:
    """All tags a question may carry and still belong to this subject."""
    labels = {config.id, SUBJECT_CODES.get(config.id, config.id)}
    if config.name:
        labels.add(config.name)
    return labels


def selected_subject_ids(exam: Exam, optional_choices: Sequence[str]) -> List[str]:
    """Mandatory subjects in config order, then the optional picks in the order they were made."""
    return [c.id for c in exam.mandatory_subjects] + list(optional_choices)


def _subject_slice(
    config: SubjectConfig, bank: List[Question], shuffle: bool, rng: random.Random
) -> List[Question]:
    if config.question_ids:
        pinned = set(config.question_ids)
        picked = [q for q in bank if q.id in pinned]
        if shuffle:
            rng.shuffle(picked)
        return picked

    labels = subject_labels(config)
    picked = [q for q in bank if q.subject in labels]
    if shuffle:
        rng.shuffle(picked)
    if config.count:
        picked = picked[: config.count]
    return picked


def resolve_custom(
    exam: Exam,
    bank: List[Question],
    optional_choices: Sequence[str],
    rng: Optional[random.Random] = None,
) -> ResolvedQuestions:
    """
    Build the attempt's question list for a subject-structured exam.
    Assumes the optional pick count has already been validated.
    """
    rng = rng or random.Random()
    ordered: List[Question] = []
    subject_order: List[str] = []

    for subject_id in selected_subject_ids(exam, optional_choices):
        config = exam.find_subject(subject_id) or SubjectConfig(id=subject_id)
        picked = _subject_slice(config, bank, exam.shuffle_questions, rng)
        if not picked:
            logger.warning(f"Subject {subject_id} matched no questions; skipped")
            continue

        label = section_name(config)
        ordered.extend(q.model_copy(update={"subject": label}) for q in picked)
        if label not in subject_order:
            subject_order.append(label)

    logger.info(f"Resolved {len(ordered)} questions across {len(subject_order)} subjects for exam {exam.id}")
    return ResolvedQuestions(questions=ordered, subject_order=subject_order)


def resolve_plain(exam: Exam, bank: List[Question], rng: Optional[random.Random] = None) -> ResolvedQuestions:
    """
    Non-custom exams take the whole bank. Shuffling stays inside each subject group;
    groups keep first-seen order so subjects are never interleaved.
    """
    if not exam.shuffle_questions:
        order: List[str] = []
        for q in bank:
            if q.subject and q.subject not in order:
                order.append(q.subject)
        return ResolvedQuestions(questions=list(bank), subject_order=order)

    rng = rng or random.Random()
    groups: Dict[str, List[Question]] = {}
    for q in bank:
        groups.setdefault(q.subject or GENERAL_SUBJECT, []).append(q)

    ordered: List[Question] = []
    for group in groups.values():
        group = list(group)
        rng.shuffle(group)
        ordered.extend(group)
    return ResolvedQuestions(questions=ordered, subject_order=list(groups))


def resolve(
    exam: Exam,
    bank: List[Question],
    optional_choices: Sequence[str] = (),
    rng: Optional[random.Random] = None,
) -> ResolvedQuestions:
    if exam.is_custom:
        return resolve_custom(exam, bank, optional_choices, rng)
    return resolve_plain(exam, bank, rng)
