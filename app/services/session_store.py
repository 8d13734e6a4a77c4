"""
Session Store - owner of the ExamAttempt row

start() is get-or-create (never resets the clock) and finalize() is single-winner.
Both are serialized per (student, exam) pair in-process, and backed in the
database by the unique constraint (start) and a conditional update (finalize)
for callers living in other processes.
"""
import logging
import threading
from contextlib import contextmanager
from datetime import timedelta
from typing import Dict, Optional, Tuple
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.exceptions import (
    AlreadyFinalized,
    ExamNotFound,
    ExamUnavailable,
    Expired,
    NotStarted,
)
from app.models import Exam, ExamAttempt, Question
from app.services.clock_service import ClockService, clock_service, STATE_EXPIRED
from app.services.grading_service import GradeResult, GradingService, grading_service

logger = logging.getLogger(__name__)

AttemptKey = Tuple[int, int]


class AttemptLockRegistry:
    """
    Per-attempt mutexes, created on demand and dropped when unused
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[AttemptKey, list] = {}  # {key: [lock, holders]}

    @contextmanager
    def hold(self, key: AttemptKey):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        lock = entry[0]

        if lock.locked():
            logger.info(f"Waiting for concurrent request on attempt {key}")

        try:
            with lock:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(key, None)

    def __len__(self):
        return len(self._locks)


class SessionStore:
    """Persists and guards exam attempts"""

    def __init__(
        self,
        clock: ClockService,
        grader: GradingService,
        grace_seconds: Optional[int] = None,
    ):
        self.clock = clock
        self.grader = grader
        self.grace_seconds = clock.grace_seconds if grace_seconds is None else grace_seconds
        self.locks = AttemptLockRegistry()

    def get_attempt(self, db: Session, student_id: int, exam_id: int) -> Optional[ExamAttempt]:
        """Load the attempt for a (student, exam) pair, if any"""
        return db.query(ExamAttempt).filter(
            ExamAttempt.student_id == student_id,
            ExamAttempt.exam_id == exam_id,
        ).first()

    def status_for(self, attempt: Optional[ExamAttempt]) -> str:
        """Lifecycle status: not_started | in_progress | expired | finalized"""
        if attempt is None:
            return "not_started"
        if attempt.finalized:
            return "finalized"
        if self.clock.remaining_for(attempt).deadline_state == STATE_EXPIRED:
            return "expired"
        return "in_progress"

    def start(self, db: Session, student_id: int, exam_id: int) -> Tuple[ExamAttempt, bool]:
        """
        Start an attempt, or return the one already in progress

        Args:
            db: Database session
            student_id: Student identifier
            exam_id: Exam identifier

        Returns:
            Tuple of (attempt, resumed)

        Raises:
            ExamNotFound, ExamUnavailable, AlreadyFinalized, Expired
        """
        exam = db.query(Exam).filter(Exam.id == exam_id).first()
        if exam is None:
            raise ExamNotFound()

        with self.locks.hold((student_id, exam_id)):
            attempt = self.get_attempt(db, student_id, exam_id)
            if attempt is not None:
                self._ensure_resumable(attempt)
                logger.info(f"Resuming attempt student={student_id} exam={exam_id}")
                return attempt, True

            if not exam.is_active:
                raise ExamUnavailable()

            started_at = self.clock.now()
            attempt = ExamAttempt(
                student_id=student_id,
                exam_id=exam_id,
                started_at=started_at,
                deadline=started_at + timedelta(minutes=exam.duration_minutes),
                finalized=False,
                answers={},
            )
            db.add(attempt)

            try:
                db.commit()
            except IntegrityError:
                # Another process created the row first; adopt it
                db.rollback()
                attempt = self.get_attempt(db, student_id, exam_id)
                if attempt is None:
                    raise
                self._ensure_resumable(attempt)
                logger.info(f"Adopted concurrently created attempt student={student_id} exam={exam_id}")
                return attempt, True

            db.refresh(attempt)
            logger.info(
                f"Attempt started student={student_id} exam={exam_id} "
                f"deadline={attempt.deadline.isoformat()}"
            )
            return attempt, False

    def finalize(
        self,
        db: Session,
        student_id: int,
        exam_id: int,
        answers: Dict[int, Optional[int]],
    ) -> GradeResult:
        """
        Grade and close an attempt exactly once

        Args:
            db: Database session
            student_id: Student identifier
            exam_id: Exam identifier
            answers: Selected option per question id (None = unanswered);
                replaces any previously stored answers

        Returns:
            GradeResult of the accepted submission

        Raises:
            NotStarted, AlreadyFinalized, Expired
        """
        with self.locks.hold((student_id, exam_id)):
            attempt = self.get_attempt(db, student_id, exam_id)
            if attempt is None:
                raise NotStarted()
            if attempt.finalized:
                raise AlreadyFinalized()
            if self.clock.past_grace(attempt, self.grace_seconds):
                logger.warning(
                    f"Late finalize rejected student={student_id} exam={exam_id} "
                    f"deadline={attempt.deadline.isoformat()}"
                )
                raise Expired()

            questions = (
                db.query(Question)
                .options(selectinload(Question.options))
                .filter(Question.exam_id == exam_id)
                .order_by(Question.position, Question.id)
                .all()
            )
            result = self.grader.grade(questions, answers)

            stored_answers = {str(q.id): answers.get(q.id) for q in questions}
            outcome = db.execute(
                update(ExamAttempt)
                .where(
                    ExamAttempt.id == attempt.id,
                    ExamAttempt.finalized.is_(False),
                )
                .values(
                    finalized=True,
                    finalized_at=self.clock.now(),
                    answers=stored_answers,
                    correct_count=result.correct_count,
                    total_questions=result.total_questions,
                    score=result.score,
                )
                .execution_options(synchronize_session=False)
            )

            if outcome.rowcount != 1:
                db.rollback()
                logger.warning(f"Finalize lost race student={student_id} exam={exam_id}")
                raise AlreadyFinalized()

            db.commit()
            db.expire(attempt)

            logger.info(
                f"Attempt finalized student={student_id} exam={exam_id} "
                f"score={result.score} ({result.correct_count}/{result.total_questions})"
            )
            return result

    def _ensure_resumable(self, attempt: ExamAttempt) -> None:
        if attempt.finalized:
            raise AlreadyFinalized()
        if self.clock.remaining_for(attempt).deadline_state == STATE_EXPIRED:
            raise Expired()


# Global instance
session_store = SessionStore(clock=clock_service, grader=grading_service)
