"""
Exam catalog API endpoints
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from app.database import get_db
from app.exceptions import ExamError
from app.schemas.exam import (
    CourseExam,
    DurationUpdate,
    ExamAdminView,
    ExamContent,
    ExamResults,
    StatusUpdate,
)
from app.api.errors import to_http_exception
from app.services.exam_service import exam_service

router = APIRouter(prefix="/api/evaluacion", tags=["exams"])
logger = logging.getLogger(__name__)


@router.get("/curso/{course_id}", response_model=List[CourseExam])
async def list_course_exams(
    course_id: int,
    student_id: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db)
):
    """
    List the active exams of a course

    With student_id, each exam carries the student's attempt status so
    finalized or expired exams can be shown as locked.
    """
    exams = exam_service.list_course_exams(db, course_id, student_id)
    return [CourseExam(**e) for e in exams]


@router.get("/{exam_id}", response_model=ExamContent)
async def get_exam_content(exam_id: int, db: Session = Depends(get_db)):
    """
    Exam content for the exam view

    Questions and options only; correct answers never leave the server.
    """
    try:
        return exam_service.get_content(db, exam_id)
    except ExamError as e:
        raise to_http_exception(e)


@router.patch("/{exam_id}/estado", response_model=ExamAdminView)
async def update_exam_status(
    exam_id: int,
    update: StatusUpdate,
    db: Session = Depends(get_db)
):
    """Activate or deactivate an exam"""
    try:
        exam = exam_service.set_active(db, exam_id, update.is_active)
    except ExamError as e:
        raise to_http_exception(e)
    return ExamAdminView.model_validate(exam)


@router.patch("/{exam_id}/duracion", response_model=ExamAdminView)
async def update_exam_duration(
    exam_id: int,
    update: DurationUpdate,
    db: Session = Depends(get_db)
):
    """
    Change the duration of an exam

    Rejected with 409 once any attempt exists: deadlines already issued
    are final.
    """
    try:
        exam = exam_service.set_duration(db, exam_id, update.duration_minutes)
    except ExamError as e:
        db.rollback()
        raise to_http_exception(e)
    return ExamAdminView.model_validate(exam)


@router.get("/{exam_id}/resultados", response_model=ExamResults)
async def get_exam_results(exam_id: int, db: Session = Depends(get_db)):
    """
    Results of an exam

    Returns:
    - Finalized attempts with scores
    - Attempt counts, average score and pass rate
    """
    try:
        logger.info(f"Fetching results for exam {exam_id}")
        results = exam_service.get_results(db, exam_id)
    except ExamError as e:
        raise to_http_exception(e)
    return ExamResults(**results)
