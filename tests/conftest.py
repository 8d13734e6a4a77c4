import os
import sys
import tempfile
from datetime import datetime, timedelta
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Settings are read at import time, so point them at a throwaway database first
_TEST_DIR = tempfile.mkdtemp(prefix="exam-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DIR}/exams.db"
os.environ["REDIS_URL"] = ""
os.environ["LOG_LEVEL"] = "WARNING"

from fastapi.testclient import TestClient

from app.database import Base, SessionLocal, engine
from app.main import app
from app.models import Exam, Option, Question
from app.services.clock_service import clock_service


class FakeClock:
    """Server wall clock under test control"""

    def __init__(self, start):
        self.current = start

    def __call__(self):
        return self.current

    def advance(self, seconds):
        self.current += timedelta(seconds=seconds)


class FakeMonotonic:
    """Client monotonic clock under test control"""

    def __init__(self, start=1000.0):
        self.current = start

    def __call__(self):
        return self.current

    def advance(self, seconds):
        self.current += seconds


@pytest.fixture
def fake_clock(monkeypatch):
    clock = FakeClock(datetime(2025, 3, 10, 9, 0, 0))
    monkeypatch.setattr(clock_service, "now", clock)
    return clock


@pytest.fixture
def db_session():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client(db_session):
    with TestClient(app) as test_client:
        yield test_client


def create_exam(
    db,
    num_questions=4,
    duration_minutes=60,
    course_id=17,
    is_active=True,
    title="Algebra I",
):
    """
    Persist an exam whose questions each have three options; the middle one is correct
    """
    exam = Exam(
        title=title,
        course_id=course_id,
        subject_name="Mathematics",
        teacher_name="R. Quispe",
        duration_minutes=duration_minutes,
        is_active=is_active,
    )
    for q_pos in range(num_questions):
        question = Question(position=q_pos, prompt=f"Question {q_pos + 1}")
        for o_pos in range(3):
            question.options.append(
                Option(position=o_pos, label=f"Choice {o_pos + 1}", is_correct=(o_pos == 1))
            )
        exam.questions.append(question)

    db.add(exam)
    db.commit()
    db.refresh(exam)
    return exam


def correct_answers(exam):
    return {q.id: q.correct_option_id for q in exam.questions}


def wrong_option(question):
    return next(o.id for o in question.options if not o.is_correct)


@pytest.fixture
def exam(db_session):
    return create_exam(db_session)
