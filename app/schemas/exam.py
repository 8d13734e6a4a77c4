"""
Pydantic schemas for exam content and catalog endpoints
"""
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


class OptionOut(BaseModel):
    """Answer choice as shown to students (no correctness flag)"""
    id: int
    label: str

    class Config:
        from_attributes = True


class QuestionOut(BaseModel):
    """Question as shown to students"""
    id: int
    prompt: Optional[str] = None
    image_url: Optional[str] = None
    options: List[OptionOut]

    class Config:
        from_attributes = True


class ExamContent(BaseModel):
    """Exam definition delivered to the exam view"""
    id: int
    title: str
    duration_minutes: int
    questions: List[QuestionOut]

    class Config:
        from_attributes = True

    @property
    def question_ids(self) -> List[int]:
        return [q.id for q in self.questions]


class CourseExam(BaseModel):
    """Exam row of a course listing with the student's attempt status"""
    id: int
    title: str
    subject_name: Optional[str] = None
    teacher_name: Optional[str] = None
    duration_minutes: int
    attempt_status: str  # not_started | in_progress | expired | finalized


class StatusUpdate(BaseModel):
    """Request schema for activating/deactivating an exam"""
    is_active: bool


class DurationUpdate(BaseModel):
    """Request schema for changing an exam's duration"""
    duration_minutes: int = Field(..., ge=1, le=600, description="Exam duration in minutes")


class ExamAdminView(BaseModel):
    """Exam metadata returned by the admin endpoints"""
    id: int
    title: str
    duration_minutes: int
    is_active: bool

    class Config:
        from_attributes = True


class AttemptResult(BaseModel):
    """Finalized attempt of one student"""
    student_id: int
    correct_count: int
    total_questions: int
    score: float
    started_at: datetime
    finalized_at: Optional[datetime] = None


class ExamResults(BaseModel):
    """Results summary for an exam"""
    exam_id: int
    exam_title: str
    total_attempts: int
    finalized_attempts: int
    pending_attempts: int
    average_score: float
    pass_rate: float
    results: List[AttemptResult]
