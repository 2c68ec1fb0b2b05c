"""
Attempt API routes - the student-facing surface of the exam session engine.

Provides endpoints for:
- Starting or resuming an attempt
- Periodic / event-driven sync of client state
- Writing a single response
- Moving between sections (early submit, reported expiry)
- Submitting the test and reading the result

Every endpoint checks that the caller is the student who owns the attempt.
"""

import time
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from exam_engine.catalog import TestCatalog
from exam_engine.database import get_db
from exam_engine.dependencies import get_caller_id, get_catalog, get_clock
from exam_engine.errors import SectionLocked
from exam_engine.logging_config import get_logger, log_with_context
from exam_engine.models.attempt import Attempt, SUBMITTED
from exam_engine.services import scoring, section_clock, session_store, sync, transitions

router = APIRouter()
logger = get_logger("http")


# ── Pydantic schemas ─────────────────────────────────────────

class StartRequest(BaseModel):
    """Start a new attempt or resume an open one."""
    test_id: str
    attempt_id: Optional[str] = Field(None, description="Resume this specific attempt")


class ResponseIn(BaseModel):
    question_id: str
    selected_answer: Optional[str] = None
    is_marked_for_review: bool = False


class SectionBeliefIn(BaseModel):
    index: int
    remaining_seconds: Optional[int] = None
    is_locked: Optional[bool] = None
    is_completed: Optional[bool] = None


class SyncRequest(BaseModel):
    current_section_index: int = Field(..., ge=0)
    current_question_index: int = Field(0, ge=0)
    section_states: List[SectionBeliefIn] = Field(default_factory=list)
    responses: List[ResponseIn] = Field(default_factory=list)

    def to_payload(self) -> sync.SyncPayload:
        return sync.SyncPayload(
            current_section_index=self.current_section_index,
            current_question_index=self.current_question_index,
            responses=[sync.ClientResponse(**r.model_dump()) for r in self.responses],
            section_states=[sync.ClientSectionBelief(**s.model_dump()) for s in self.section_states],
        )


class TransitionRequest(BaseModel):
    from_section: int = Field(..., ge=0)
    to_section: Optional[int] = Field(None, ge=0, description="Next section, or null after the last")


class SectionExpiredRequest(BaseModel):
    section_index: int = Field(..., ge=0)


# ── Serialization ────────────────────────────────────────────

def _iso(value):
    return value.isoformat() if value else None


def serialize_section_states(attempt: Attempt, now) -> list:
    return [
        {
            "index": s.position,
            "name": s.name,
            "status": s.status,
            "is_locked": s.is_locked,
            "is_completed": s.is_completed,
            "started_at": _iso(s.started_at),
            "completed_at": _iso(s.completed_at),
            "duration_seconds": s.duration_seconds,
            "remaining_seconds": section_clock.current_remaining(s, now),
            "visited_questions": s.visited,
        }
        for s in attempt.section_states
    ]


def serialize_attempt(attempt: Attempt, now) -> dict:
    """Serialize an Attempt ORM object to a dict for API response."""
    responses = {
        r.question_id: {
            "question_id": r.question_id,
            "section_index": r.section_index,
            "selected_answer": r.selected_answer,
            "is_answered": r.is_answered,
            "is_marked_for_review": bool(r.is_marked_for_review),
        }
        for r in attempt.responses
    }
    return {
        "id": str(attempt.id),
        "test_id": str(attempt.test_id),
        "student_id": str(attempt.student_id),
        "status": attempt.status,
        "phase": transitions.phase_of(attempt).to_dict(),
        "current_section_index": attempt.current_section_index,
        "current_question_index": attempt.current_question_index,
        "started_at": _iso(attempt.started_at),
        "submitted_at": _iso(attempt.submitted_at),
        "last_synced_at": _iso(attempt.last_synced_at),
        "section_states": serialize_section_states(attempt, now),
        "responses": responses,
        "answered_count": len([r for r in responses.values() if r["is_answered"]]),
    }


def _with_result(body: dict, attempt: Attempt) -> dict:
    if attempt.status == SUBMITTED and attempt.result is not None:
        body["results"] = attempt.result.explanation_dict
    return body


# ── Endpoints ────────────────────────────────────────────────

@router.post("/api/attempt/start")
def start_attempt(
    request: StartRequest,
    db: Session = Depends(get_db),
    catalog: TestCatalog = Depends(get_catalog),
    student_id: str = Depends(get_caller_id),
    clock: Callable = Depends(get_clock),
):
    """Create a fresh attempt or resume the student's open one."""
    start_time = time.time()
    now = clock()

    attempt, definition, resuming = session_store.create_or_resume(
        db, catalog, request.test_id, student_id, now, attempt_id=request.attempt_id
    )

    with session_store.attempt_transaction(db, attempt.id, student_id) as attempt:
        events = transitions.run_clock(db, attempt, definition, now) if resuming else []
        body = _with_result({
            "attempt": serialize_attempt(attempt, now),
            "test": definition.public_dict(),
            "resuming": resuming,
            "events": [e.to_dict() for e in events],
            "server_time": _iso(now),
        }, attempt)

    duration_ms = (time.time() - start_time) * 1000
    log_with_context(logger, "INFO",
        "Attempt {} {}".format(body["attempt"]["id"], "resumed" if resuming else "started"),
        context={"attempt_id": body["attempt"]["id"], "test_id": request.test_id, "student_id": student_id},
        extra_data={"duration_ms": round(duration_ms, 2)})
    return body


@router.get("/api/attempt/{attempt_id}")
def get_attempt(
    attempt_id: str,
    db: Session = Depends(get_db),
    catalog: TestCatalog = Depends(get_catalog),
    student_id: str = Depends(get_caller_id),
    clock: Callable = Depends(get_clock),
):
    """Current authoritative state of an attempt, with the clock brought up to date."""
    now = clock()
    with session_store.attempt_transaction(db, attempt_id, student_id) as attempt:
        definition = catalog.get_test(attempt.test_id)
        transitions.run_clock(db, attempt, definition, now)
        return _with_result({
            "attempt": serialize_attempt(attempt, now),
            "test": definition.public_dict(),
            "server_time": _iso(now),
        }, attempt)


@router.post("/api/attempt/{attempt_id}/sync")
def sync_attempt(
    attempt_id: str,
    request: SyncRequest,
    db: Session = Depends(get_db),
    catalog: TestCatalog = Depends(get_catalog),
    student_id: str = Depends(get_caller_id),
    clock: Callable = Depends(get_clock),
):
    """Merge the client's state; return the server's section states."""
    now = clock()
    with session_store.attempt_transaction(db, attempt_id, student_id) as attempt:
        definition = catalog.get_test(attempt.test_id)
        outcome = sync.reconcile(db, attempt, definition, request.to_payload(), now)
        return _with_result({
            "attempt_id": str(attempt.id),
            "status": attempt.status,
            "phase": transitions.phase_of(attempt).to_dict(),
            "current_section_index": attempt.current_section_index,
            "current_question_index": attempt.current_question_index,
            "cursor_accepted": outcome.cursor_accepted,
            "section_states": serialize_section_states(attempt, now),
            "rejected": outcome.rejected,
            "events": [e.to_dict() for e in outcome.events],
            "server_time": _iso(now),
        }, attempt)


@router.put("/api/attempt/{attempt_id}/response")
def put_response(
    attempt_id: str,
    request: ResponseIn,
    db: Session = Depends(get_db),
    catalog: TestCatalog = Depends(get_catalog),
    student_id: str = Depends(get_caller_id),
    clock: Callable = Depends(get_clock),
):
    """Save one answer. 423 section_locked when its section is closed."""
    now = clock()
    with session_store.attempt_transaction(db, attempt_id, student_id) as attempt:
        definition = catalog.get_test(attempt.test_id)
        try:
            changed = sync.write_response(
                db, attempt, definition, sync.ClientResponse(**request.model_dump()), now
            )
        except SectionLocked as e:
            e.extra["section_states"] = serialize_section_states(attempt, now)
            e.extra["current_section_index"] = attempt.current_section_index
            raise

        stored = attempt.responses_by_question()[request.question_id]
        return {
            "ok": True,
            "changed": changed,
            "response": {
                "question_id": stored.question_id,
                "section_index": stored.section_index,
                "selected_answer": stored.selected_answer,
                "is_answered": stored.is_answered,
                "is_marked_for_review": bool(stored.is_marked_for_review),
            },
            "section_states": serialize_section_states(attempt, now),
        }


@router.post("/api/attempt/{attempt_id}/transition-section")
def transition_section(
    attempt_id: str,
    request: TransitionRequest,
    db: Session = Depends(get_db),
    catalog: TestCatalog = Depends(get_catalog),
    student_id: str = Depends(get_caller_id),
    clock: Callable = Depends(get_clock),
):
    """Finish a section early and move to the next one."""
    now = clock()
    with session_store.attempt_transaction(db, attempt_id, student_id) as attempt:
        definition = catalog.get_test(attempt.test_id)
        events = transitions.submit_section(
            db, attempt, definition, request.from_section, request.to_section, now
        )
        return _with_result({
            "attempt": serialize_attempt(attempt, now),
            "events": [e.to_dict() for e in events],
        }, attempt)


@router.post("/api/attempt/{attempt_id}/section-expired")
def section_expired(
    attempt_id: str,
    request: SectionExpiredRequest,
    db: Session = Depends(get_db),
    catalog: TestCatalog = Depends(get_catalog),
    student_id: str = Depends(get_caller_id),
    clock: Callable = Depends(get_clock),
):
    """Client countdown reached zero; the server decides with its own clock."""
    now = clock()
    with session_store.attempt_transaction(db, attempt_id, student_id) as attempt:
        definition = catalog.get_test(attempt.test_id)
        events = transitions.expire_section(db, attempt, definition, request.section_index, now)
        return _with_result({
            "attempt": serialize_attempt(attempt, now),
            "events": [e.to_dict() for e in events],
        }, attempt)


@router.post("/api/attempt/{attempt_id}/submit")
def submit_attempt(
    attempt_id: str,
    db: Session = Depends(get_db),
    catalog: TestCatalog = Depends(get_catalog),
    student_id: str = Depends(get_caller_id),
    clock: Callable = Depends(get_clock),
):
    """Submit the whole test, score it and freeze the attempt."""
    start_time = time.time()
    now = clock()
    with session_store.attempt_transaction(db, attempt_id, student_id) as attempt:
        definition = catalog.get_test(attempt.test_id)
        events = transitions.submit_attempt(db, attempt, definition, now)
        results = scoring.stored_result(attempt)

    duration_ms = (time.time() - start_time) * 1000
    log_with_context(logger, "INFO",
        "Attempt {} submitted: {}".format(attempt_id, results["totals"]["total_score"]),
        context={"attempt_id": attempt_id, "student_id": student_id},
        extra_data={"duration_ms": round(duration_ms, 2)})

    return {
        "success": True,
        "attempt_id": attempt_id,
        "events": [e.to_dict() for e in events],
        "results": results,
    }


@router.get("/api/attempt/{attempt_id}/results")
def get_results(
    attempt_id: str,
    db: Session = Depends(get_db),
    student_id: str = Depends(get_caller_id),
):
    """Stored result of a submitted attempt."""
    attempt = session_store.get(db, attempt_id)
    session_store.check_owner(attempt, student_id)
    return {"attempt_id": attempt_id, "results": scoring.stored_result(attempt)}
