"""
ExamAttempt model - one timed attempt per (student, exam) pair
"""
from sqlalchemy import (
    Column, Integer, Boolean, TIMESTAMP, DECIMAL, JSON, ForeignKey, UniqueConstraint
)
from app.database import Base


class ExamAttempt(Base):
    """
    Exam attempts table - start/deadline clock anchor, submitted answers and score

    Rows are written only by the Session Store: created on the first start call,
    updated once on finalize.
    """
    __tablename__ = "exam_attempts"
    __table_args__ = (
        UniqueConstraint("student_id", "exam_id", name="uq_exam_attempt_student_exam"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(Integer, nullable=False, index=True)
    exam_id = Column(Integer, ForeignKey("exams.id"), nullable=False, index=True)
    started_at = Column(TIMESTAMP, nullable=False)
    deadline = Column(TIMESTAMP, nullable=False)
    finalized = Column(Boolean, nullable=False, default=False)
    finalized_at = Column(TIMESTAMP)
    answers = Column(JSON)  # {"question_id": option_id | null}
    correct_count = Column(Integer)
    total_questions = Column(Integer)
    score = Column(DECIMAL(5, 2))

    def __repr__(self):
        return (
            f"<ExamAttempt(student_id={self.student_id}, exam_id={self.exam_id}, "
            f"finalized={self.finalized}, score={self.score})>"
        )
