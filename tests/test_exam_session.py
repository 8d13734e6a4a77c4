from datetime import datetime, timedelta

import pytest

from conftest import FakeMonotonic
from app.client.continuity import AttemptIdentity, ContinuityCache
from app.client.exam_session import (
    ExamLoadError,
    ExamSession,
    SessionState,
    SubmissionFailed,
    TerminalReason,
)
from app.client.gateway import TransportError
from app.client.session_context import NotAuthenticated, SessionContext, UserRecord
from app.client.storage import MemoryStore
from app.exceptions import AlreadyFinalized, Expired, InvalidSubmission, NotStarted
from app.schemas.attempt import AttemptStarted, RemainingTimeResponse, SubmissionResult
from app.schemas.exam import ExamContent

STUDENT_ID = 24
EXAM_ID = 7
STARTED_AT = datetime(2025, 3, 10, 9, 0, 0)


def make_content(num_questions=4, duration_minutes=1):
    return ExamContent(
        id=EXAM_ID,
        title="Biology",
        duration_minutes=duration_minutes,
        questions=[
            {
                "id": 100 + q,
                "prompt": f"Question {q + 1}",
                "options": [{"id": 1000 + q * 10 + o, "label": f"Choice {o + 1}"} for o in range(3)],
            }
            for q in range(num_questions)
        ],
    )


class FakeGateway:
    """Scriptable stand-in for SubmissionGateway"""

    def __init__(self, remaining=60, duration_minutes=1):
        self.content = make_content(duration_minutes=duration_minutes)
        self.remaining = remaining
        self.finalized = False
        self.finalize_open = True
        self.calls = []
        self.submitted = []
        self.fail_fetch = None
        self.fail_start = None
        self.fail_poll = None
        self.fail_submit = None
        self.during_submit = None

    def fetch_exam_content(self, exam_id):
        self.calls.append("fetch")
        if self.fail_fetch:
            raise self.fail_fetch
        return self.content

    def start_attempt(self, student_id, exam_id):
        self.calls.append("start")
        if self.fail_start:
            raise self.fail_start
        return AttemptStarted(
            student_id=student_id,
            exam_id=exam_id,
            started_at=STARTED_AT,
            deadline=STARTED_AT + timedelta(minutes=self.content.duration_minutes),
            duration_minutes=self.content.duration_minutes,
            resumed=False,
        )

    def poll_remaining(self, student_id, exam_id):
        self.calls.append("poll")
        if self.fail_poll:
            raise self.fail_poll
        state = "finalized" if self.finalized else ("expired" if self.remaining == 0 else "running")
        return RemainingTimeResponse(
            remaining_seconds=self.remaining,
            remaining_formatted="",
            finalized=self.finalized,
            state=state,
            started_at=STARTED_AT,
            deadline=STARTED_AT + timedelta(minutes=self.content.duration_minutes),
            finalize_open=self.finalize_open and not self.finalized,
        )

    def submit_answers(self, student_id, exam_id, answers):
        self.calls.append("submit")
        self.submitted.append([dict(a) for a in answers])
        if self.during_submit:
            self.during_submit()
        if self.fail_submit:
            raise self.fail_submit
        self.finalized = True
        correct = sum(1 for a in answers if a["option_id"] is not None and a["option_id"] % 10 == 1)
        return SubmissionResult(
            message="Exam submitted successfully.",
            correct_count=correct,
            total_questions=len(answers),
            score=round(correct / len(answers) * 100, 2),
        )


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def cache(store):
    return ContinuityCache(store)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def session(gateway, cache, monotonic):
    return ExamSession(gateway, cache, STUDENT_ID, EXAM_ID, monotonic=monotonic)


def test_load_enters_active_and_caches_identity(session, gateway, cache):
    state = session.load()

    assert state == SessionState.ACTIVE
    assert gateway.calls == ["fetch", "start", "poll"]
    assert session.remaining_seconds == 60
    assert session.answers == {100: None, 101: None, 102: None, 103: None}
    assert cache.load() == AttemptIdentity(STUDENT_ID, EXAM_ID, 1)
    assert cache.load_remaining(EXAM_ID) == 60


def test_load_transport_failure_is_fatal(session, gateway):
    gateway.fail_start = TransportError("connection refused")

    with pytest.raises(ExamLoadError):
        session.load()

    assert session.state == SessionState.LOADING
    assert session.remaining_seconds is None


def test_load_not_started_is_fatal(session, gateway):
    gateway.fail_poll = NotStarted()

    with pytest.raises(ExamLoadError):
        session.load()

    assert session.state == SessionState.LOADING


@pytest.mark.parametrize("error, reason", [
    (AlreadyFinalized(), TerminalReason.ALREADY_FINALIZED),
    (Expired(), TerminalReason.EXPIRED),
])
def test_load_of_finished_attempt_renders_terminal_state(session, gateway, cache, error, reason):
    cache.save(AttemptIdentity(STUDENT_ID, EXAM_ID, 1), 42)
    gateway.fail_start = error

    assert session.load() == SessionState.FINALIZED

    assert session.terminal_reason == reason
    assert session.result is None
    assert cache.load() is None
    assert cache.load_remaining(EXAM_ID) is None
    assert "submit" not in gateway.calls


def test_reload_adopts_server_remaining_over_cached_value(gateway, cache, monotonic):
    cache.save(AttemptIdentity(STUDENT_ID, EXAM_ID, 1), 50)
    gateway.remaining = 38

    session = ExamSession(gateway, cache, STUDENT_ID, EXAM_ID, monotonic=monotonic)
    session.load()

    assert session.remaining_seconds == 38
    assert cache.load_remaining(EXAM_ID) == 38


def test_stale_cache_for_finalized_attempt_goes_terminal(gateway, cache, monotonic):
    cache.save(AttemptIdentity(STUDENT_ID, EXAM_ID, 1), 50)
    gateway.finalized = True

    session = ExamSession(gateway, cache, STUDENT_ID, EXAM_ID, monotonic=monotonic)

    assert session.load() == SessionState.FINALIZED
    assert session.terminal_reason == TerminalReason.ALREADY_FINALIZED
    assert cache.load() is None


def test_tick_counts_down_from_anchor(session, monotonic, cache):
    session.load()

    monotonic.advance(1)
    assert session.tick() == 59
    monotonic.advance(0.5)
    assert session.tick() == 59
    monotonic.advance(10.5)
    assert session.tick() == 48
    assert cache.load_remaining(EXAM_ID) == 48


def test_selection_is_local_and_last_write_wins(session, gateway):
    session.load()

    assert session.select(100, 1001) is True
    assert session.select(100, 1002) is True
    assert session.select(101, 1011) is True
    session.select(101, None)

    assert session.answers[100] == 1002
    assert session.answers[101] is None
    assert session.answered_count == 1
    assert gateway.calls == ["fetch", "start", "poll"]


def test_selection_validates_ids(session):
    session.load()

    with pytest.raises(ValueError):
        session.select(999, 1001)
    with pytest.raises(ValueError):
        session.select(100, 1011)


def test_navigation_clamps(session):
    session.load()

    assert session.previous() == 0
    assert session.go_to(2) == 2
    assert session.current_question.id == 102
    assert session.go_to(10) == 3
    assert session.next() == 3
    assert session.go_to(-4) == 0


def test_manual_submit_sends_one_entry_per_question(session, gateway, cache):
    session.load()
    session.select(100, 1001)
    session.select(102, 1020)

    result = session.submit(confirm=lambda: True)

    assert gateway.submitted == [[
        {"question_id": 100, "option_id": 1001},
        {"question_id": 101, "option_id": None},
        {"question_id": 102, "option_id": 1020},
        {"question_id": 103, "option_id": None},
    ]]
    assert result.correct_count == 1
    assert session.state == SessionState.FINALIZED
    assert session.terminal_reason == TerminalReason.SUBMITTED
    assert cache.load() is None


def test_declined_confirmation_keeps_exam_open(session, gateway):
    session.load()

    assert session.submit(confirm=lambda: False) is None

    assert session.state == SessionState.ACTIVE
    assert "submit" not in gateway.calls


def test_finalized_session_ignores_further_events(session, gateway):
    session.load()
    session.select(100, 1001)
    session.submit()

    assert session.select(101, 1011) is False
    assert session.go_to(3) == 0
    assert session.submit() is session.result
    session.tick()
    assert session.state == SessionState.FINALIZED
    assert gateway.calls.count("submit") == 1


def test_duration_exhaustion_auto_finalizes_exactly_once(session, gateway, monotonic):
    session.load()
    session.select(100, 1001)
    monotonic.advance(30)
    session.tick()
    session.select(101, 1011)

    monotonic.advance(30)
    session.tick()
    monotonic.advance(1)
    session.tick()
    session.reconcile()

    assert gateway.calls.count("submit") == 1
    assert gateway.submitted[0][0] == {"question_id": 100, "option_id": 1001}
    assert gateway.submitted[0][1] == {"question_id": 101, "option_id": 1011}
    assert session.terminal_reason == TerminalReason.SUBMITTED
    assert session.result.correct_count == 2


def test_countdown_hitting_zero_during_finalize_is_suppressed(session, gateway, monotonic):
    session.load()
    monotonic.advance(59)

    def timer_fires_mid_request():
        monotonic.advance(5)
        assert session.state == SessionState.FINALIZING
        session.tick()
        session.submit()

    gateway.during_submit = timer_fires_mid_request
    session.submit()

    assert gateway.calls.count("submit") == 1
    assert session.state == SessionState.FINALIZED


def test_submit_transport_failure_preserves_answers_for_retry(session, gateway):
    session.load()
    session.select(100, 1001)
    gateway.fail_submit = TransportError("timeout")

    with pytest.raises(SubmissionFailed):
        session.submit()

    assert session.state == SessionState.ACTIVE
    assert session.retry_required is True
    assert session.answers[100] == 1001

    gateway.fail_submit = None
    result = session.submit()

    assert result is not None
    assert session.state == SessionState.FINALIZED
    assert gateway.calls.count("submit") == 2


def test_failed_auto_finalize_waits_until_finalize_window_closes(session, gateway, cache, monotonic):
    session.load()
    gateway.fail_submit = TransportError("offline")

    monotonic.advance(60)
    session.tick()
    monotonic.advance(1)
    session.tick()
    gateway.remaining = 0
    session.reconcile()

    assert gateway.calls.count("submit") == 1
    assert session.state == SessionState.ACTIVE
    assert session.retry_required is True
    assert session.is_expired is True
    assert session.select(100, 1001) is False

    # grace window closes on the server: stop waiting and lock the view
    gateway.finalize_open = False
    session.reconcile()

    assert session.state == SessionState.FINALIZED
    assert session.terminal_reason == TerminalReason.EXPIRED
    assert gateway.calls.count("submit") == 1
    assert cache.load() is None
    assert cache.load_remaining(EXAM_ID) is None


@pytest.mark.parametrize("error, reason", [
    (AlreadyFinalized(), TerminalReason.ALREADY_FINALIZED),
    (Expired(), TerminalReason.EXPIRED),
])
def test_domain_error_on_submit_is_terminal(session, gateway, error, reason):
    session.load()
    gateway.fail_submit = error

    assert session.submit() is None

    assert session.state == SessionState.FINALIZED
    assert session.terminal_reason == reason


@pytest.mark.parametrize("error", [NotStarted(), InvalidSubmission("Missing entries")])
def test_rejected_submission_is_terminal_without_retry(session, gateway, cache, error):
    session.load()
    gateway.fail_submit = error

    assert session.submit() is None

    assert session.state == SessionState.FINALIZED
    assert session.terminal_reason == TerminalReason.REJECTED
    assert session.retry_required is False
    assert session.last_error is error
    assert cache.load() is None
    assert session.submit() is None
    assert gateway.calls.count("submit") == 1


def test_load_after_finalize_window_closed_is_expired(session, gateway, cache):
    gateway.remaining = 0
    gateway.finalize_open = False

    assert session.load() == SessionState.FINALIZED
    assert session.terminal_reason == TerminalReason.EXPIRED
    assert "submit" not in gateway.calls
    assert cache.load() is None


def test_reconcile_failure_keeps_local_countdown(session, gateway, monotonic):
    session.load()
    gateway.fail_poll = TransportError("flaky network")
    monotonic.advance(20)

    assert session.reconcile() == 40
    assert session.state == SessionState.ACTIVE
    monotonic.advance(1)
    assert session.tick() == 39


def test_reconcile_corrects_drift(session, gateway, monotonic):
    session.load()
    monotonic.advance(10)
    gateway.remaining = 45

    assert session.reconcile() == 45
    monotonic.advance(1)
    assert session.tick() == 44


def test_reconcile_forces_terminal_when_finalized_elsewhere(session, gateway):
    session.load()
    gateway.finalized = True

    session.reconcile()

    assert session.state == SessionState.FINALIZED
    assert session.terminal_reason == TerminalReason.ALREADY_FINALIZED
    assert "submit" not in gateway.calls


def test_reconcile_reporting_expiry_finalizes_even_if_local_timer_disagrees(session, gateway, monotonic):
    session.load()
    monotonic.advance(5)
    gateway.remaining = 0

    session.reconcile()

    assert gateway.calls.count("submit") == 1
    assert session.terminal_reason == TerminalReason.SUBMITTED


def test_closed_session_stops_ticking(session, gateway, monotonic):
    session.load()
    session.close()
    monotonic.advance(120)

    session.tick()
    session.reconcile()

    assert "submit" not in gateway.calls
    assert session.state == SessionState.ACTIVE


def test_session_for_current_user_requires_student(gateway, cache):
    class Provider:
        def login(self, credentials):
            return "token-1", UserRecord(id=1, name="Admin User", role="admin")

        def profile(self, token):
            raise AssertionError("not used")

    context = SessionContext(Provider(), MemoryStore())
    with pytest.raises(NotAuthenticated):
        ExamSession.for_current_user(context, gateway, cache, EXAM_ID)

    context.login({"email": "admin@example.com"})
    with pytest.raises(NotAuthenticated):
        ExamSession.for_current_user(context, gateway, cache, EXAM_ID)

    context.user = UserRecord(id=STUDENT_ID, name="Alumno Prueba", role="student")
    session = ExamSession.for_current_user(context, gateway, cache, EXAM_ID)
    assert session.student_id == STUDENT_ID
