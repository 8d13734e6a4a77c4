"""
Attempt lifecycle API endpoints: start, clock, submission

Routes are plain functions so FastAPI runs them in its threadpool; concurrent
requests for one attempt then meet the Session Store's per-attempt lock.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging
from app.database import get_db
from app.exceptions import ExamError, InvalidSubmission
from app.schemas.attempt import (
    AttemptRequest,
    AttemptStarted,
    RemainingTimeResponse,
    SubmissionRequest,
    SubmissionResult,
)
from app.schemas.exam import ExamContent
from app.api.errors import to_http_exception
from app.services.clock_service import clock_service
from app.services.exam_service import exam_service
from app.services.session_store import session_store


router = APIRouter(prefix="/api", tags=["attempts"])
logger = logging.getLogger(__name__)


@router.post("/examen/empezar", response_model=AttemptStarted)
def start_attempt(request: AttemptRequest, db: Session = Depends(get_db)):
    """
    Start an exam attempt, or resume the one in progress

    - Get-or-create: repeated calls return the same started_at/deadline
    - 409 already_finalized, 410 expired once the attempt is over
    - 403 exam_unavailable for inactive exams (new attempts only)
    """
    try:
        attempt, resumed = session_store.start(db, request.student_id, request.exam_id)
    except ExamError as e:
        logger.info(
            f"Start rejected student={request.student_id} exam={request.exam_id}: {e.code}"
        )
        raise to_http_exception(e)

    duration = int((attempt.deadline - attempt.started_at).total_seconds() // 60)

    return AttemptStarted(
        student_id=attempt.student_id,
        exam_id=attempt.exam_id,
        started_at=attempt.started_at,
        deadline=attempt.deadline,
        duration_minutes=duration,
        resumed=resumed,
    )


@router.post("/examen/cronometro", response_model=RemainingTimeResponse)
def get_remaining_time(request: AttemptRequest, db: Session = Depends(get_db)):
    """
    Server-computed remaining time for an attempt

    Clients reconcile their countdown against this; it never writes.
    """
    try:
        reading = clock_service.compute_remaining(db, request.student_id, request.exam_id)
    except ExamError as e:
        raise to_http_exception(e)

    return RemainingTimeResponse(
        remaining_seconds=reading.remaining_seconds,
        remaining_formatted=reading.remaining_formatted,
        finalized=reading.finalized,
        state=reading.deadline_state,
        started_at=reading.started_at,
        deadline=reading.deadline,
        finalize_closes_at=reading.finalize_closes_at,
        finalize_open=reading.finalize_open,
    )


@router.post("/respuestas/subir", response_model=SubmissionResult)
def submit_answers(submission: SubmissionRequest, db: Session = Depends(get_db)):
    """
    Submit answers and finalize the attempt

    Validation:
    - Exactly one entry per exam question (null option_id = unanswered)
    - Each selected option must belong to its question

    Returns:
    - Correct count, total questions and score percentage
    """
    try:
        content = exam_service.get_content(db, submission.exam_id)
        answers = validate_submission(content, submission)
        result = session_store.finalize(
            db, submission.student_id, submission.exam_id, answers
        )
    except ExamError as e:
        db.rollback()
        logger.info(
            f"Submission rejected student={submission.student_id} "
            f"exam={submission.exam_id}: {e.code}"
        )
        raise to_http_exception(e)

    return SubmissionResult(
        message=result.message,
        correct_count=result.correct_count,
        total_questions=result.total_questions,
        score=float(result.score),
    )


def validate_submission(content: ExamContent, submission: SubmissionRequest) -> dict:
    """
    Check a submission against the exam and convert it to {question_id: option_id}

    Raises:
        InvalidSubmission: missing, duplicate or unknown entries
    """
    options_by_question = {
        q.id: {o.id for o in q.options} for q in content.questions
    }

    answers = {}
    for entry in submission.answers:
        if entry.question_id not in options_by_question:
            raise InvalidSubmission(f"Unknown question {entry.question_id}")
        if entry.question_id in answers:
            raise InvalidSubmission(f"Duplicate answer for question {entry.question_id}")
        if entry.option_id is not None and entry.option_id not in options_by_question[entry.question_id]:
            raise InvalidSubmission(
                f"Option {entry.option_id} does not belong to question {entry.question_id}"
            )
        answers[entry.question_id] = entry.option_id

    missing = set(options_by_question) - set(answers)
    if missing:
        raise InvalidSubmission(
            f"Missing entries for questions {sorted(missing)}; send null for unanswered"
        )

    return answers
