"""
Shared fixtures: in-memory database, frozen clock, API client and seeded tests.
"""

import os
from datetime import datetime, timedelta

# Must be set before exam_engine.database / exam_engine.config are imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["EXPIRY_SWEEP_ENABLED"] = "0"

import pytest
from fastapi.testclient import TestClient

from exam_engine.database import SessionLocal, create_tables, drop_tables
from exam_engine.dependencies import get_clock
from exam_engine.main import app
from helpers import add_test
from load_catalog import expand_sections

T0 = datetime(2026, 1, 5, 9, 0, 0)


class FrozenClock:
    """Stands in for utcnow; moves only when a test says so."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture(autouse=True)
def fresh_database():
    create_tables()
    yield
    drop_tables()


@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def clock():
    frozen = FrozenClock(T0)
    app.dependency_overrides[get_clock] = lambda: frozen
    yield frozen
    app.dependency_overrides.pop(get_clock, None)


@pytest.fixture
def client(clock):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth_headers():
    return {"X-Student-ID": "student-1"}


@pytest.fixture
def other_headers():
    return {"X-Student-ID": "student-2"}


@pytest.fixture
def mock_test(db_session):
    """Three 40-minute sections: VARC (24q), DILR (20q), QA (22q)."""
    sections = expand_sections([
        {"name": "VARC", "duration": 40, "question_count": 24},
        {"name": "DILR", "duration": 40, "question_count": 20},
        {"name": "QA", "duration": 40, "question_count": 22},
    ])
    add_test(db_session, "cat-mock", sections, name="CAT Mock")
    return "cat-mock"


@pytest.fixture
def five_question_test(db_session):
    """One section, answer key [A, B, C, D, A]."""
    questions = [
        {"id": "q{}".format(n), "text": "Question {}".format(n),
         "options": ["A", "B", "C", "D"], "correct_answer": answer}
        for n, answer in enumerate(["A", "B", "C", "D", "A"], start=1)
    ]
    add_test(db_session, "five-q", [{"name": "Quant", "duration": 10, "questions": questions}])
    return "five-q"


@pytest.fixture
def start(client, auth_headers):
    """Start (or resume) an attempt and return the response body."""
    def _start(test_id, headers=None, attempt_id=None):
        response = client.post(
            "/api/attempt/start",
            json={"test_id": test_id, "attempt_id": attempt_id},
            headers=headers or auth_headers,
        )
        assert response.status_code == 200, response.text
        return response.json()
    return _start
