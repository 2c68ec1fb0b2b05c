"""
Session Store - persistence of attempts, section states and responses.

Holds no timing or transition rules of its own. Callers that mutate an
attempt hold ``attempt_locks.hold(attempt_id)`` and load it through
``load_for_update`` so the lock check and the write see the same row.
All writes are idempotent: applying the same values twice changes nothing
the second time.
"""

import json
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session, selectinload

from exam_engine.catalog import TestCatalog, TestDefinition
from exam_engine.errors import Conflict, EngineError, Forbidden, NotFound, SectionLocked, Transient
from exam_engine.logging_config import get_logger, log_with_context
from exam_engine.models.attempt import Attempt, IN_PROGRESS, SUBMITTED
from exam_engine.models.attempt_result import AttemptResult
from exam_engine.models.response import Response
from exam_engine.models.section_state import ACTIVE, PENDING, SectionState
from exam_engine.services.locks import attempt_locks

logger = get_logger("db")


@dataclass
class ResponseWrite:
    question_id: str
    section_index: int
    selected_answer: Optional[str]
    is_marked_for_review: bool = False


@dataclass
class SectionPatch:
    """Server-computed values for one section; None leaves a field alone."""
    index: int
    remaining_seconds: Optional[int] = None


def _attempt_query(db: Session):
    return db.query(Attempt).options(
        selectinload(Attempt.section_states),
        selectinload(Attempt.responses),
        selectinload(Attempt.result),
    )


def get(db: Session, attempt_id: str) -> Attempt:
    attempt = _attempt_query(db).filter(Attempt.id == attempt_id).first()
    if not attempt:
        raise NotFound("Attempt not found", extra={"attempt_id": attempt_id})
    return attempt


def load_for_update(db: Session, attempt_id: str) -> Attempt:
    """Load an attempt with a row lock, discarding any stale identity-map copy."""
    attempt = (
        _attempt_query(db)
        .filter(Attempt.id == attempt_id)
        .with_for_update(of=Attempt)
        .populate_existing()
        .first()
    )
    if not attempt:
        raise NotFound("Attempt not found", extra={"attempt_id": attempt_id})
    return attempt


def check_owner(attempt: Attempt, student_id: str) -> None:
    if str(attempt.student_id) != str(student_id):
        log_with_context(logger, "WARNING", "Cross-student access rejected",
            context={"attempt_id": str(attempt.id), "student_id": str(student_id)})
        raise Forbidden("Attempt belongs to another student",
                        extra={"attempt_id": str(attempt.id)})


def ensure_open(attempt: Attempt) -> None:
    if attempt.status == SUBMITTED:
        raise Conflict("Attempt has already been submitted",
                       extra={"attempt_id": str(attempt.id), "status": attempt.status})


def _open_attempt(db: Session, test_id: str, student_id: str) -> Optional[Attempt]:
    return _attempt_query(db).filter(
        Attempt.test_id == test_id,
        Attempt.student_id == student_id,
        Attempt.status != SUBMITTED,
    ).first()


def _seed(definition: TestDefinition, student_id: str, now: datetime) -> Attempt:
    attempt = Attempt(
        id=str(uuid.uuid4()),
        student_id=student_id,
        test_id=definition.id,
        status=IN_PROGRESS,
        current_section_index=0,
        current_question_index=0,
        started_at=now,
    )
    for index, section in enumerate(definition.sections):
        attempt.section_states.append(SectionState(
            position=index,
            name=section.name,
            status=ACTIVE if index == 0 else PENDING,
            duration_seconds=section.duration_seconds,
            remaining_seconds=section.duration_seconds,
            started_at=now if index == 0 else None,
            visited_questions="[0]" if index == 0 else "[]",
        ))
    return attempt


def create_or_resume(db: Session, catalog: TestCatalog, test_id: str, student_id: str,
                     now: datetime, attempt_id: str = None) -> Tuple[Attempt, TestDefinition, bool]:
    """
    Return the student's open attempt for the test, or start a fresh one.

    With ``attempt_id`` the caller asks to resume that specific attempt;
    resuming a submitted one is a Conflict (start a new attempt instead).
    Returns (attempt, definition, resuming).
    """
    definition = catalog.get_test(test_id)

    if attempt_id:
        attempt = get(db, attempt_id)
        check_owner(attempt, student_id)
        if str(attempt.test_id) != str(test_id):
            raise Conflict("Attempt belongs to a different test",
                           extra={"attempt_id": attempt_id, "test_id": test_id})
        ensure_open(attempt)
        return attempt, definition, True

    existing = _open_attempt(db, test_id, student_id)
    if existing:
        log_with_context(logger, "INFO", "Resuming attempt",
            context={"attempt_id": str(existing.id), "test_id": test_id, "student_id": student_id})
        return existing, definition, True

    attempt = _seed(definition, student_id, now)
    db.add(attempt)
    try:
        db.commit()
    except IntegrityError:
        # Another request created the open attempt first
        db.rollback()
        existing = _open_attempt(db, test_id, student_id)
        if existing is None:
            raise
        return existing, definition, True

    log_with_context(logger, "INFO", "Created attempt with {} sections".format(len(definition.sections)),
        context={"attempt_id": str(attempt.id), "test_id": test_id, "student_id": student_id},
        extra_data={"total_questions": definition.total_questions})
    return get(db, attempt.id), definition, False


def upsert_response(attempt: Attempt, write: ResponseWrite, now: datetime) -> bool:
    """
    Write one response. The section's status is read right here, in the same
    locked transaction as the write. Returns True when something changed.
    """
    section = attempt.section_states[write.section_index]
    if section.status != ACTIVE:
        raise SectionLocked(
            "Section {} is locked".format(section.name),
            extra={"question_id": write.question_id, "section_index": write.section_index},
        )

    existing = attempt.responses_by_question().get(write.question_id)
    if existing is None:
        attempt.responses.append(Response(
            attempt_id=attempt.id,
            question_id=write.question_id,
            section_index=write.section_index,
            selected_answer=write.selected_answer,
            is_marked_for_review=bool(write.is_marked_for_review),
            updated_at=now,
        ))
        return True

    if (existing.selected_answer == write.selected_answer
            and bool(existing.is_marked_for_review) == bool(write.is_marked_for_review)):
        return False
    existing.selected_answer = write.selected_answer
    existing.is_marked_for_review = bool(write.is_marked_for_review)
    existing.updated_at = now
    return True


def apply_server_state(attempt: Attempt, section_patches: Iterable[SectionPatch],
                       responses: Iterable[ResponseWrite], now: datetime) -> List[dict]:
    """
    Apply server-computed section values, then client responses.

    Remaining time only moves down. Status changes belong to the clock and
    the transition controller, so a patch never carries one. Responses aimed
    at a non-active section are skipped and reported back as
    ``{"question_id", "section_index", "error"}``.
    """
    ensure_open(attempt)

    for patch in section_patches:
        section = attempt.section_states[patch.index]
        if patch.remaining_seconds is not None:
            section.remaining_seconds = min(section.remaining_seconds, max(0, patch.remaining_seconds))

    rejected = []
    for write in responses:
        try:
            upsert_response(attempt, write, now)
        except SectionLocked as e:
            rejected.append({"question_id": write.question_id,
                             "section_index": write.section_index,
                             "error": e.code})
    return rejected


def finalize(db: Session, attempt: Attempt, result: dict, now: datetime) -> AttemptResult:
    """Persist the result and freeze the attempt. A second call is a Conflict."""
    ensure_open(attempt)
    if attempt.result is not None:
        raise Conflict("Attempt already has a result", extra={"attempt_id": str(attempt.id)})

    totals = result["totals"]
    record = AttemptResult(
        attempt_id=attempt.id,
        total_questions=totals["total_questions"],
        total_answered=totals["total_answered"],
        total_not_answered=totals["total_not_answered"],
        total_correct=totals["total_correct"],
        total_incorrect=totals["total_incorrect"],
        total_score=totals["total_score"],
        max_score=totals["max_score"],
        percentage=result["percentage"],
        computed_at=now,
        explanation=json.dumps(result),
    )
    attempt.result = record
    attempt.status = SUBMITTED
    attempt.submitted_at = now

    log_with_context(logger, "INFO", "Attempt frozen with result",
        context={"attempt_id": str(attempt.id), "test_id": str(attempt.test_id),
                 "student_id": str(attempt.student_id)},
        extra_data={"total_score": totals["total_score"], "percentage": result["percentage"]})
    return record


@contextmanager
def attempt_transaction(db: Session, attempt_id: str, student_id: str):
    """
    Serialized read-modify-write of one attempt.

    Holds the attempt's lock, loads it FOR UPDATE and checks ownership.
    Commits on success and also when a domain error is raised, so clock
    updates made before a rejection (e.g. the expiry that causes a
    SectionLocked) are kept. Storage failures roll back and surface as
    Transient.
    """
    with attempt_locks.hold(attempt_id):
        try:
            attempt = load_for_update(db, attempt_id)
            check_owner(attempt, student_id)
            try:
                yield attempt
            except EngineError:
                db.commit()
                raise
            db.commit()
        except DBAPIError as e:
            db.rollback()
            log_with_context(logger, "ERROR", "Storage failure while updating attempt",
                context={"attempt_id": attempt_id}, extra_data={"error": str(e.orig)})
            raise Transient("Progress could not be saved, please retry",
                            extra={"attempt_id": attempt_id})
        except Exception:
            db.rollback()
            raise
