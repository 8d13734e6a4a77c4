"""
Domain errors for the exam lifecycle

Shared by the server services (raised) and the client gateway (re-raised from
error bodies), so both halves speak the same error codes.
"""
from typing import Dict, Optional, Type


class ExamError(Exception):
    """Base class for exam domain errors"""

    code = "exam_error"
    status_code = 400
    default_message = "Exam operation failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_detail(self) -> Dict[str, str]:
        return {"error": self.code, "message": self.message}


class ExamNotFound(ExamError):
    code = "exam_not_found"
    status_code = 404
    default_message = "Exam not found"


class ExamUnavailable(ExamError):
    code = "exam_unavailable"
    status_code = 403
    default_message = "Exam is not active"


class ExamLocked(ExamError):
    code = "exam_locked"
    status_code = 409
    default_message = "Exam already has attempts and can no longer be modified"


class NotStarted(ExamError):
    code = "not_started"
    status_code = 404
    default_message = "No attempt has been started for this exam"


class AlreadyStarted(ExamError):
    code = "already_started"
    status_code = 409
    default_message = "Attempt already in progress"


class AlreadyFinalized(ExamError):
    code = "already_finalized"
    status_code = 409
    default_message = "Attempt has already been finalized"


class Expired(ExamError):
    code = "expired"
    status_code = 410
    default_message = "Exam time has expired"


class InvalidSubmission(ExamError):
    code = "invalid_submission"
    status_code = 422
    default_message = "Submission does not match the exam questions"


ERRORS_BY_CODE: Dict[str, Type[ExamError]] = {
    cls.code: cls
    for cls in (
        ExamNotFound,
        ExamUnavailable,
        ExamLocked,
        NotStarted,
        AlreadyStarted,
        AlreadyFinalized,
        Expired,
        InvalidSubmission,
    )
}
