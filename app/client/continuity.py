"""
Local continuity cache: survives reloads by remembering the active attempt

Two records are kept, one active-attempt pointer per device and a remaining
seconds counter per exam. The counter is only a starting display value; the
exam session reconciles against the server clock right after loading it.
"""
import logging
from dataclasses import dataclass, asdict
from typing import Optional

from app.client.storage import KeyValueStore

logger = logging.getLogger(__name__)

ACTIVE_ATTEMPT_KEY = "active_exam"
REMAINING_KEY_PREFIX = "exam_remaining:"


@dataclass(frozen=True)
class AttemptIdentity:
    """Pointer to the attempt in progress on this device"""
    student_id: int
    exam_id: int
    duration_minutes: int

    def matches(self, student_id: int, exam_id: int) -> bool:
        return self.student_id == student_id and self.exam_id == exam_id


class ContinuityCache:
    """Reads and writes the active attempt through a KeyValueStore"""

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def remaining_key(exam_id: int) -> str:
        return f"{REMAINING_KEY_PREFIX}{exam_id}"

    def save(self, identity: AttemptIdentity, remaining_seconds: Optional[int] = None) -> None:
        """
        Persist the active attempt and, when given, its last displayed remaining time

        Args:
            identity: Attempt in progress
            remaining_seconds: Last remaining time shown to the student
        """
        self.store.set(ACTIVE_ATTEMPT_KEY, asdict(identity))
        if remaining_seconds is not None:
            self.store.set(self.remaining_key(identity.exam_id), max(0, int(remaining_seconds)))

    def load(self) -> Optional[AttemptIdentity]:
        """Active attempt pointer, or None when absent or malformed"""
        raw = self.store.get(ACTIVE_ATTEMPT_KEY)
        if not raw:
            return None
        try:
            return AttemptIdentity(
                student_id=int(raw["student_id"]),
                exam_id=int(raw["exam_id"]),
                duration_minutes=int(raw["duration_minutes"]),
            )
        except (KeyError, TypeError, ValueError):
            logger.warning(f"Discarding malformed continuity record: {raw!r}")
            self.store.delete(ACTIVE_ATTEMPT_KEY)
            return None

    def load_remaining(self, exam_id: int) -> Optional[int]:
        raw = self.store.get(self.remaining_key(exam_id))
        try:
            return None if raw is None else max(0, int(raw))
        except (TypeError, ValueError):
            return None

    def clear(self, exam_id: Optional[int] = None) -> None:
        """
        Forget the active attempt

        Args:
            exam_id: Exam whose counter to drop; defaults to the cached attempt's exam
        """
        if exam_id is None:
            identity = self.load()
            exam_id = identity.exam_id if identity else None

        current = self.load()
        if current is None or exam_id is None or current.exam_id == exam_id:
            self.store.delete(ACTIVE_ATTEMPT_KEY)
        if exam_id is not None:
            self.store.delete(self.remaining_key(exam_id))

        logger.info(f"Continuity cache cleared for exam {exam_id}")
