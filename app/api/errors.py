"""
Translation of domain errors into HTTP errors
"""
from fastapi import HTTPException

from app.exceptions import ExamError


def to_http_exception(exc: ExamError) -> HTTPException:
    """Map a domain error onto its HTTP status with a coded body"""
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())
