"""
Authoritative exam clock
Remaining time is always derived from the persisted deadline, never decremented
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from sqlalchemy.orm import Session

from app.config import settings
from app.exceptions import NotStarted
from app.models import ExamAttempt
from app.utils.timefmt import format_remaining

logger = logging.getLogger(__name__)

STATE_RUNNING = "running"
STATE_EXPIRED = "expired"
STATE_FINALIZED = "finalized"


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the TIMESTAMP columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class RemainingTime:
    """Clock reading for one attempt"""
    remaining_seconds: int
    deadline_state: str
    started_at: datetime
    deadline: datetime
    finalized: bool
    finalize_closes_at: datetime
    finalize_open: bool

    @property
    def remaining_formatted(self) -> str:
        return format_remaining(self.remaining_seconds)


class ClockService:
    """
    Single source of truth for "how much time is left"

    - remaining = max(0, ceil(deadline - now)), so 0 means now >= deadline
    - Expiry is a function of time: an unfinalized attempt past its deadline
      reads as expired even though nothing was written
    - Finalize stays open for grace_seconds past the deadline
    - Pure read, no side effects
    """

    def __init__(
        self,
        now: Optional[Callable[[], datetime]] = None,
        grace_seconds: Optional[int] = None,
    ):
        self.now = now or utcnow
        self.grace_seconds = (
            settings.FINALIZE_GRACE_SECONDS if grace_seconds is None else grace_seconds
        )

    def remaining_for(self, attempt: ExamAttempt) -> RemainingTime:
        """
        Compute the clock reading for a loaded attempt

        Args:
            attempt: Started attempt row

        Returns:
            RemainingTime for the current instant
        """
        now = self.now()
        delta = (attempt.deadline - now).total_seconds()
        remaining = max(0, math.ceil(delta))

        if attempt.finalized:
            state = STATE_FINALIZED
        elif remaining == 0:
            state = STATE_EXPIRED
        else:
            state = STATE_RUNNING

        return RemainingTime(
            remaining_seconds=remaining,
            deadline_state=state,
            started_at=attempt.started_at,
            deadline=attempt.deadline,
            finalized=bool(attempt.finalized),
            finalize_closes_at=attempt.deadline + timedelta(seconds=self.grace_seconds),
            finalize_open=not attempt.finalized and not self._past(attempt, now, self.grace_seconds),
        )

    def compute_remaining(self, db: Session, student_id: int, exam_id: int) -> RemainingTime:
        """
        Compute remaining time for a (student, exam) pair

        Raises:
            NotStarted: no attempt exists for the pair
        """
        attempt = db.query(ExamAttempt).filter(
            ExamAttempt.student_id == student_id,
            ExamAttempt.exam_id == exam_id,
        ).first()

        if attempt is None:
            raise NotStarted()

        reading = self.remaining_for(attempt)
        logger.debug(
            f"Clock for student={student_id} exam={exam_id}: "
            f"{reading.remaining_seconds}s ({reading.deadline_state})"
        )
        return reading

    def past_grace(self, attempt: ExamAttempt, grace_seconds: Optional[int] = None) -> bool:
        """True once now is strictly later than deadline + grace"""
        if grace_seconds is None:
            grace_seconds = self.grace_seconds
        return self._past(attempt, self.now(), grace_seconds)

    @staticmethod
    def _past(attempt: ExamAttempt, now: datetime, grace_seconds: int) -> bool:
        return (now - attempt.deadline).total_seconds() > grace_seconds


# Global instance
clock_service = ClockService()
