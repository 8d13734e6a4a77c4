"""
Exam catalog service: student-facing content, course listings, admin toggles
and results summaries
"""
import logging
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session, selectinload

from app.config import settings
from app.exceptions import ExamLocked, ExamNotFound
from app.models import Exam, ExamAttempt, Question
from app.schemas.exam import ExamContent
from app.services.session_store import SessionStore, session_store
from app.utils.cache import CacheService, cache_service

logger = logging.getLogger(__name__)


class ExamService:
    """Read side of exams plus the few admin mutations the exam flow needs"""

    def __init__(self, store: SessionStore, cache: CacheService):
        self.store = store
        self.cache = cache

    def _get_exam(self, db: Session, exam_id: int) -> Exam:
        exam = db.query(Exam).filter(Exam.id == exam_id).first()
        if exam is None:
            raise ExamNotFound()
        return exam

    def get_content(self, db: Session, exam_id: int) -> ExamContent:
        """
        Exam content without correct-answer markers

        Checks Redis first; the serialized schema has no is_correct field, so
        neither the response nor the cache ever carries correctness.
        """
        cache_key = self.cache.exam_content_key(exam_id)
        cached = self.cache.get(cache_key)
        if cached:
            return ExamContent(**cached)

        exam = (
            db.query(Exam)
            .options(selectinload(Exam.questions).selectinload(Question.options))
            .filter(Exam.id == exam_id)
            .first()
        )
        if exam is None:
            raise ExamNotFound()

        content = ExamContent.model_validate(exam)
        self.cache.set(cache_key, content.model_dump())
        return content

    def list_course_exams(
        self, db: Session, course_id: int, student_id: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        Active exams of a course, each with the student's attempt status

        Args:
            db: Database session
            course_id: Course identifier
            student_id: Student whose attempts decide the status (optional)

        Returns:
            List of CourseExam dictionaries
        """
        exams = (
            db.query(Exam)
            .filter(Exam.course_id == course_id, Exam.is_active.is_(True))
            .order_by(Exam.id)
            .all()
        )

        attempts = {}
        if student_id is not None and exams:
            rows = db.query(ExamAttempt).filter(
                ExamAttempt.student_id == student_id,
                ExamAttempt.exam_id.in_([e.id for e in exams]),
            ).all()
            attempts = {a.exam_id: a for a in rows}

        return [
            {
                "id": exam.id,
                "title": exam.title,
                "subject_name": exam.subject_name,
                "teacher_name": exam.teacher_name,
                "duration_minutes": exam.duration_minutes,
                "attempt_status": self.store.status_for(attempts.get(exam.id)),
            }
            for exam in exams
        ]

    def set_active(self, db: Session, exam_id: int, is_active: bool) -> Exam:
        """Activate or deactivate an exam; only affects new attempts"""
        exam = self._get_exam(db, exam_id)
        exam.is_active = is_active
        db.commit()
        db.refresh(exam)
        logger.info(f"Exam {exam_id} {'activated' if is_active else 'deactivated'}")
        return exam

    def set_duration(self, db: Session, exam_id: int, duration_minutes: int) -> Exam:
        """
        Change an exam's duration

        Raises:
            ExamLocked: an attempt already exists, so deadlines are fixed
        """
        exam = self._get_exam(db, exam_id)

        has_attempts = db.query(ExamAttempt.id).filter(
            ExamAttempt.exam_id == exam_id
        ).first() is not None
        if has_attempts:
            raise ExamLocked()

        exam.duration_minutes = duration_minutes
        db.commit()
        db.refresh(exam)
        self.cache.delete(self.cache.exam_content_key(exam_id))

        logger.info(f"Exam {exam_id} duration set to {duration_minutes} minutes")
        return exam

    def get_results(self, db: Session, exam_id: int) -> Dict[str, Any]:
        """
        Finalized scores of an exam with summary statistics

        Returns:
            ExamResults dictionary
        """
        exam = self._get_exam(db, exam_id)

        attempts = db.query(ExamAttempt).filter(
            ExamAttempt.exam_id == exam_id
        ).order_by(ExamAttempt.student_id).all()

        finalized = [a for a in attempts if a.finalized]
        scores = [float(a.score) for a in finalized]

        average = sum(scores) / len(scores) if scores else 0.0
        passed = sum(1 for s in scores if s >= settings.PASSING_SCORE)
        pass_rate = (passed / len(scores) * 100) if scores else 0.0

        return {
            "exam_id": exam.id,
            "exam_title": exam.title,
            "total_attempts": len(attempts),
            "finalized_attempts": len(finalized),
            "pending_attempts": len(attempts) - len(finalized),
            "average_score": round(average, 2),
            "pass_rate": round(pass_rate, 2),
            "results": [
                {
                    "student_id": a.student_id,
                    "correct_count": a.correct_count,
                    "total_questions": a.total_questions,
                    "score": float(a.score),
                    "started_at": a.started_at,
                    "finalized_at": a.finalized_at,
                }
                for a in finalized
            ],
        }


# Global instance
exam_service = ExamService(store=session_store, cache=cache_service)
