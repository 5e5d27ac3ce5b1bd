"""Exam engine tunables: paging, timer thresholds, default marking. No UI."""
# Scoring defaults: a question is worth marks_per_question unless it carries its own marks
# Timer warnings: once at 10% of the duration left, once at the final minute

DEFAULT_MARKS_PER_QUESTION = 1.0
DEFAULT_NEGATIVE_MARKS = 0.0
SCORE_DECIMAL_PLACES = 2

QUESTIONS_PER_PAGE = 50
RESULTS_PER_PAGE = 50

TICK_INTERVAL_SECONDS = 1
WARNING_TIME_FRACTION = 0.1
CRITICAL_TIME_THRESHOLD = 60  # seconds

GENERAL_SUBJECT = "General"
