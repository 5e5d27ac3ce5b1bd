"""Exception types raised by the exam engine."""


class ExamError(Exception):
    """Base class for exam engine errors."""


class UnauthorizedError(ExamError):
    """Student may not take this exam (guest, not enrolled, private batch)."""


class ExamWindowError(ExamError):
    """Exam cannot be started right now."""

    NOT_STARTED = "not_started"
    ENDED = "ended"
    ALREADY_ATTEMPTED = "already_attempted"
    DISABLED = "disabled"

    def __init__(self, reason: str, message: str = ""):
        super().__init__(message or reason)
        self.reason = reason


class SubjectSelectionError(ExamError):
    """Optional subject picks do not satisfy the exam configuration."""


class InvalidTransitionError(ExamError):
    """Operation is not allowed in the session's current state."""


class StoreError(ExamError):
    """Persistence layer call failed."""
