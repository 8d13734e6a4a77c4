"""
Submission Gateway - HTTP client for the exam service

Transport problems (network, timeouts, 5xx, garbage bodies) raise TransportError
and are retryable by the user. Coded error bodies are re-raised as the matching
domain error from app.exceptions and are terminal for the attempt.
"""
import logging
from typing import Any, Dict, List, Optional

import requests

from app.client.config import client_settings
from app.exceptions import ERRORS_BY_CODE, ExamError, InvalidSubmission
from app.schemas.attempt import AttemptStarted, RemainingTimeResponse, SubmissionResult
from app.schemas.exam import ExamContent

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Request never produced a usable answer from the exam service"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class SubmissionGateway:
    """Remote operations the exam session depends on"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        session: Optional[Any] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = (base_url or client_settings.API_BASE_URL).rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout or client_settings.REQUEST_TIMEOUT

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            if method == "GET":
                response = self.session.get(url, timeout=self.timeout)
            else:
                response = self.session.post(url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning(f"{method} {path} failed: {str(e)}")
            raise TransportError(f"Could not reach exam service: {str(e)}") from e

        if response.status_code >= 500:
            logger.warning(f"{method} {path} returned {response.status_code}")
            raise TransportError(
                f"Exam service error ({response.status_code})",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise TransportError(
                f"Unreadable response from exam service ({response.status_code})",
                status_code=response.status_code,
            ) from e

        if response.status_code >= 400:
            raise self._domain_error(response.status_code, body)

        return body

    @staticmethod
    def _domain_error(status_code: int, body: Any) -> ExamError:
        code = body.get("error") if isinstance(body, dict) else None
        message = body.get("message") if isinstance(body, dict) else None

        error_cls = ERRORS_BY_CODE.get(code)
        if error_cls is not None:
            return error_cls(message if isinstance(message, str) else None)
        if status_code == 422:
            return InvalidSubmission(str(body))

        error = ExamError(f"Unexpected response ({status_code}): {body}")
        error.status_code = status_code
        return error

    def fetch_exam_content(self, exam_id: int) -> ExamContent:
        """Exam questions and options, without correct-answer markers"""
        body = self._request("GET", f"/evaluacion/{exam_id}")
        return ExamContent(**body)

    def start_attempt(self, student_id: int, exam_id: int) -> AttemptStarted:
        """Start or resume the attempt; same started_at on every call"""
        body = self._request(
            "POST", "/examen/empezar", {"student_id": student_id, "exam_id": exam_id}
        )
        return AttemptStarted(**body)

    def poll_remaining(self, student_id: int, exam_id: int) -> RemainingTimeResponse:
        """Authoritative remaining time and finalized flag"""
        body = self._request(
            "POST", "/examen/cronometro", {"student_id": student_id, "exam_id": exam_id}
        )
        return RemainingTimeResponse(**body)

    def submit_answers(
        self,
        student_id: int,
        exam_id: int,
        answers: List[Dict[str, Optional[int]]],
    ) -> SubmissionResult:
        """
        Finalize the attempt

        Args:
            student_id: Student identifier
            exam_id: Exam identifier
            answers: One {question_id, option_id} entry per question,
                option_id None for unanswered
        """
        body = self._request(
            "POST",
            "/respuestas/subir",
            {"student_id": student_id, "exam_id": exam_id, "answers": answers},
        )
        return SubmissionResult(**body)
