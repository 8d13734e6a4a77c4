"""
Pydantic schemas for the attempt lifecycle: start, clock, submission
"""
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


class AttemptRequest(BaseModel):
    """Identifies an attempt by its (student, exam) pair"""
    student_id: int = Field(..., ge=1)
    exam_id: int = Field(..., ge=1)


class AttemptStarted(BaseModel):
    """Response after starting (or resuming) an attempt"""
    student_id: int
    exam_id: int
    started_at: datetime
    deadline: datetime
    duration_minutes: int
    resumed: bool = False


class RemainingTimeResponse(BaseModel):
    """Server-computed clock for an attempt"""
    remaining_seconds: int
    remaining_formatted: str
    finalized: bool
    state: str  # running | expired | finalized
    started_at: datetime
    deadline: datetime
    finalize_closes_at: Optional[datetime] = None
    finalize_open: bool = True  # false once a submission can only be rejected

    @property
    def expired(self) -> bool:
        return self.state == "expired"


class AnswerEntry(BaseModel):
    """One answer; option_id null is the explicit unanswered sentinel"""
    question_id: int
    option_id: Optional[int] = None


class SubmissionRequest(BaseModel):
    """Schema for finalizing an attempt"""
    student_id: int = Field(..., ge=1)
    exam_id: int = Field(..., ge=1)
    answers: List[AnswerEntry]


class SubmissionResult(BaseModel):
    """Response after finalizing an attempt"""
    message: str
    correct_count: int
    total_questions: int
    score: float
