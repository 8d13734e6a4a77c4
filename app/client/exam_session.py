"""
Exam Session State Machine - drives one attempt on the client

LOADING -> ACTIVE -> FINALIZING -> FINALIZED, with "expired" derived from ACTIVE
when the countdown reads zero. Everything a view renders follows from `state`
(plus `terminal_reason` once FINALIZED).

The countdown is anchored: every reconciliation stores the server's remaining
seconds together with the local monotonic time, and the displayed value is
recomputed from that anchor on each tick.
"""
import logging
import math
import time
from enum import Enum
from typing import Callable, Dict, List, Optional

from app.client.continuity import AttemptIdentity, ContinuityCache
from app.client.gateway import SubmissionGateway, TransportError
from app.client.session_context import SessionContext
from app.exceptions import AlreadyFinalized, ExamError, Expired
from app.schemas.attempt import SubmissionResult
from app.schemas.exam import ExamContent, QuestionOut
from app.utils.timefmt import format_remaining

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    LOADING = "loading"
    ACTIVE = "active"
    FINALIZING = "finalizing"
    FINALIZED = "finalized"


class TerminalReason(str, Enum):
    SUBMITTED = "submitted"
    ALREADY_FINALIZED = "already_finalized"
    EXPIRED = "expired"
    REJECTED = "rejected"


class ExamLoadError(Exception):
    """The exam view cannot be entered; return the student to a safe screen"""


class SubmissionFailed(Exception):
    """Finalize did not reach the server; answers are kept for a manual retry"""


class ExamSession:
    """One student's attempt at one exam, as seen by the client"""

    def __init__(
        self,
        gateway: SubmissionGateway,
        cache: ContinuityCache,
        student_id: int,
        exam_id: int,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.gateway = gateway
        self.cache = cache
        self.student_id = student_id
        self.exam_id = exam_id
        self._monotonic = monotonic

        self.state = SessionState.LOADING
        self.terminal_reason: Optional[TerminalReason] = None
        self.exam: Optional[ExamContent] = None
        self.identity: Optional[AttemptIdentity] = None
        self.answers: Dict[int, Optional[int]] = {}
        self.current_index = 0
        self.result: Optional[SubmissionResult] = None
        self.retry_required = False
        self.last_error: Optional[Exception] = None
        self.closed = False

        self._anchor_at: Optional[float] = None
        self._anchor_remaining: Optional[int] = None
        self._auto_finalize_attempted = False

    @classmethod
    def for_current_user(
        cls,
        context: SessionContext,
        gateway: SubmissionGateway,
        cache: ContinuityCache,
        exam_id: int,
        **kwargs,
    ) -> "ExamSession":
        """Build a session for the student logged into `context`"""
        return cls(gateway, cache, context.require_student(), exam_id, **kwargs)

    # ------------------------------------------------------------------ views

    @property
    def is_terminal(self) -> bool:
        return self.state == SessionState.FINALIZED

    @property
    def remaining_seconds(self) -> Optional[int]:
        """Displayed remaining time, recomputed from the last server anchor"""
        if self._anchor_at is None:
            return None
        elapsed = self._monotonic() - self._anchor_at
        return max(0, math.ceil(self._anchor_remaining - elapsed))

    @property
    def remaining_formatted(self) -> str:
        remaining = self.remaining_seconds
        return format_remaining(remaining) if remaining is not None else "--:--:--"

    @property
    def is_expired(self) -> bool:
        return self.state == SessionState.ACTIVE and self.remaining_seconds == 0

    @property
    def questions(self) -> List[QuestionOut]:
        return self.exam.questions if self.exam else []

    @property
    def current_question(self) -> Optional[QuestionOut]:
        questions = self.questions
        return questions[self.current_index] if questions else None

    @property
    def answered_count(self) -> int:
        return sum(1 for option_id in self.answers.values() if option_id is not None)

    # -------------------------------------------------------------- lifecycle

    def load(self) -> SessionState:
        """
        Fetch content, start or resume the attempt, and sync the clock

        Returns:
            ACTIVE, or FINALIZED when the attempt is already over

        Raises:
            ExamLoadError: transport failure or unexpected domain error;
                the session stays LOADING
        """
        if self.state != SessionState.LOADING:
            return self.state

        cached = self.cache.load()
        if cached is not None and cached.matches(self.student_id, self.exam_id):
            cached_remaining = self.cache.load_remaining(self.exam_id)
            if cached_remaining is not None:
                self._set_anchor(cached_remaining)
            logger.info(
                f"Resuming exam {self.exam_id} from continuity cache "
                f"(cached remaining {cached_remaining})"
            )

        try:
            exam = self.gateway.fetch_exam_content(self.exam_id)
            started = self.gateway.start_attempt(self.student_id, self.exam_id)
            reading = self.gateway.poll_remaining(self.student_id, self.exam_id)
        except AlreadyFinalized:
            self._enter_terminal(TerminalReason.ALREADY_FINALIZED)
            return self.state
        except Expired:
            self._enter_terminal(TerminalReason.EXPIRED)
            return self.state
        except TransportError as e:
            self._reset_anchor()
            logger.warning(f"Exam {self.exam_id} could not be loaded: {str(e)}")
            raise ExamLoadError(str(e)) from e
        except ExamError as e:
            self._reset_anchor()
            logger.error(f"Exam {self.exam_id} rejected during load: {e.code}")
            raise ExamLoadError(e.message) from e

        if reading.finalized:
            self._enter_terminal(TerminalReason.ALREADY_FINALIZED)
            return self.state
        if not reading.finalize_open:
            self._enter_terminal(TerminalReason.EXPIRED)
            return self.state

        self.exam = exam
        self.answers = {q.id: None for q in exam.questions}
        self.current_index = 0
        self.identity = AttemptIdentity(
            student_id=self.student_id,
            exam_id=self.exam_id,
            duration_minutes=started.duration_minutes,
        )
        self._set_anchor(reading.remaining_seconds)
        self.cache.save(self.identity, reading.remaining_seconds)
        self.state = SessionState.ACTIVE

        logger.info(
            f"Exam {self.exam_id} active for student {self.student_id}: "
            f"{reading.remaining_seconds}s left (resumed={started.resumed})"
        )

        if reading.remaining_seconds == 0:
            self._auto_finalize()

        return self.state

    def select(self, question_id: int, option_id: Optional[int]) -> bool:
        """
        Record an answer locally (last write wins); None clears it

        Returns:
            True if recorded, False when the session no longer accepts answers
        """
        if self.state != SessionState.ACTIVE or self.is_expired:
            return False

        question = next((q for q in self.questions if q.id == question_id), None)
        if question is None:
            raise ValueError(f"Question {question_id} is not part of exam {self.exam_id}")
        if option_id is not None and option_id not in {o.id for o in question.options}:
            raise ValueError(f"Option {option_id} does not belong to question {question_id}")

        self.answers[question_id] = option_id
        return True

    def go_to(self, index: int) -> int:
        """Move to a question index, clamped to the exam bounds"""
        if self.state == SessionState.FINALIZED or not self.questions:
            return self.current_index
        self.current_index = min(max(index, 0), len(self.questions) - 1)
        return self.current_index

    def next(self) -> int:
        return self.go_to(self.current_index + 1)

    def previous(self) -> int:
        return self.go_to(self.current_index - 1)

    def tick(self) -> Optional[int]:
        """
        One-second display refresh

        Persists the displayed value and finalizes automatically at zero.
        """
        if self.closed or self.state != SessionState.ACTIVE:
            return self.remaining_seconds

        remaining = self.remaining_seconds
        self.cache.save(self.identity, remaining)

        if remaining == 0 and not self._auto_finalize_attempted:
            logger.info(f"Countdown reached zero for exam {self.exam_id}")
            self._auto_finalize()

        return self.remaining_seconds

    def reconcile(self) -> Optional[int]:
        """
        Re-anchor the countdown on the server clock

        Best effort: a failed poll is logged and the countdown keeps running on
        the previous anchor.
        """
        if self.closed or self.state != SessionState.ACTIVE:
            return self.remaining_seconds

        try:
            reading = self.gateway.poll_remaining(self.student_id, self.exam_id)
        except TransportError as e:
            logger.warning(f"Clock reconciliation failed for exam {self.exam_id}: {str(e)}")
            return self.remaining_seconds
        except ExamError as e:
            logger.error(f"Clock reconciliation rejected for exam {self.exam_id}: {e.code}")
            return self.remaining_seconds

        if self.state != SessionState.ACTIVE:
            return self.remaining_seconds

        if reading.finalized:
            logger.info(f"Server reports exam {self.exam_id} already finalized")
            self._enter_terminal(TerminalReason.ALREADY_FINALIZED)
            return self.remaining_seconds

        if not reading.finalize_open:
            logger.info(f"Finalize window closed for exam {self.exam_id} at {reading.finalize_closes_at}")
            self._enter_terminal(TerminalReason.EXPIRED)
            return self.remaining_seconds

        drift = (self.remaining_seconds or 0) - reading.remaining_seconds
        if drift:
            logger.debug(f"Countdown drift of {drift}s corrected for exam {self.exam_id}")
        self._set_anchor(reading.remaining_seconds)
        self.cache.save(self.identity, reading.remaining_seconds)

        if reading.remaining_seconds == 0 and not self._auto_finalize_attempted:
            self._auto_finalize()

        return self.remaining_seconds

    def submit(self, confirm: Optional[Callable[[], bool]] = None) -> Optional[SubmissionResult]:
        """
        Manual finalize ("submit now"), also the retry after a failed finalize

        Args:
            confirm: Asked before submitting; returning False keeps the exam open

        Raises:
            SubmissionFailed: the request did not reach the server
        """
        if self.state == SessionState.FINALIZING:
            logger.info(f"Finalize already in flight for exam {self.exam_id}")
            return None
        if self.state != SessionState.ACTIVE:
            return self.result
        if confirm is not None and not confirm():
            return None
        return self._finalize(auto=False)

    def close(self) -> None:
        """Stop local timers; the attempt keeps running on the server"""
        if not self.closed:
            self.closed = True
            logger.info(f"Exam view closed for exam {self.exam_id} in state {self.state.value}")

    # -------------------------------------------------------------- internals

    def _set_anchor(self, remaining_seconds: int) -> None:
        self._anchor_at = self._monotonic()
        self._anchor_remaining = max(0, int(remaining_seconds))

    def _reset_anchor(self) -> None:
        self._anchor_at = None
        self._anchor_remaining = None

    def _answer_payload(self) -> List[Dict[str, Optional[int]]]:
        return [
            {"question_id": q.id, "option_id": self.answers.get(q.id)}
            for q in self.questions
        ]

    def _auto_finalize(self) -> None:
        self._auto_finalize_attempted = True
        try:
            self._finalize(auto=True)
        except SubmissionFailed:
            # recorded in retry_required/last_error; retry only via submit()
            logger.warning(f"Automatic finalize for exam {self.exam_id} awaits manual retry")

    def _finalize(self, auto: bool) -> Optional[SubmissionResult]:
        self.state = SessionState.FINALIZING
        logger.info(f"Finalizing exam {self.exam_id} ({'automatic' if auto else 'manual'})")

        try:
            result = self.gateway.submit_answers(
                self.student_id, self.exam_id, self._answer_payload()
            )
        except AlreadyFinalized:
            self._enter_terminal(TerminalReason.ALREADY_FINALIZED)
            return None
        except Expired:
            self._enter_terminal(TerminalReason.EXPIRED)
            return None
        except TransportError as e:
            self.state = SessionState.ACTIVE
            self.retry_required = True
            self.last_error = e
            logger.warning(f"Finalize failed for exam {self.exam_id}: {str(e)}")
            raise SubmissionFailed(str(e)) from e
        except ExamError as e:
            # NotStarted, InvalidSubmission, ...: not retryable
            self.last_error = e
            logger.error(f"Finalize rejected for exam {self.exam_id}: {e.code} ({e.message})")
            self._enter_terminal(TerminalReason.REJECTED)
            return None

        self.result = result
        self._enter_terminal(TerminalReason.SUBMITTED)
        return result

    def _enter_terminal(self, reason: TerminalReason) -> None:
        self.state = SessionState.FINALIZED
        self.terminal_reason = reason
        self.retry_required = False
        self.cache.clear(self.exam_id)
        logger.info(f"Exam {self.exam_id} finalized on client ({reason.value})")
