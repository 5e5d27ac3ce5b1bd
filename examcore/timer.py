"""Countdown derived from an absolute deadline. Remaining time is always deadline - now."""
import math
from datetime import datetime
from typing import List, Optional, Set

from pydantic import BaseModel, Field

from engine import CRITICAL_TIME_THRESHOLD, WARNING_TIME_FRACTION

WARNING = "warning"
CRITICAL = "critical"


def remaining_seconds(deadline: datetime, now: datetime) -> int:
    return max(0, math.floor((deadline - now).total_seconds()))


def is_expired(deadline: datetime, now: datetime) -> bool:
    return now >= deadline


def format_duration(seconds: Optional[float]) -> str:
    if seconds is None or seconds < 0:
        return "N/A"
    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    return f"{minutes}m {secs}s"


class TimerTick(BaseModel):
    remaining: int
    expired: bool
    warnings: List[str] = Field(default_factory=list)


class CountdownTimer:
    """
    Stateless apart from which warnings already fired.
    Ticking any number of times never changes the remaining time for a given `now`.
    """

    def __init__(self, deadline: datetime, duration_seconds: int, fired: Optional[Set[str]] = None):
        self.deadline = deadline
        self.duration_seconds = duration_seconds
        self.fired: Set[str] = set(fired or ())

    def tick(self, now: datetime) -> TimerTick:
        remaining = remaining_seconds(self.deadline, now)
        warnings = []
        if remaining <= CRITICAL_TIME_THRESHOLD:
            if CRITICAL not in self.fired:
                warnings.append(CRITICAL)
        elif remaining <= self.duration_seconds * WARNING_TIME_FRACTION:
            if WARNING not in self.fired:
                warnings.append(WARNING)
        self.fired.update(warnings)
        return TimerTick(remaining=remaining, expired=is_expired(self.deadline, now), warnings=warnings)
