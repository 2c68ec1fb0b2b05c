"""
Sync Protocol (server side) - reconciles a client's optimistic view with
the stored attempt.

For every sync the server:
1. runs the section clock (expiry, auto-advance, auto-submit)
2. applies the client's responses, rejecting those aimed at a section
   that is no longer active
3. accepts the client's cursor if it is inside the current section
4. returns its own section states, which overwrite the client's
   remaining_seconds / is_locked / is_completed unconditionally

The client's beliefs about time and locks are never written; they are only
compared with the server's values for drift logging.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from exam_engine.catalog import TestDefinition
from exam_engine.errors import Conflict, NotFound
from exam_engine.logging_config import get_logger, log_with_context
from exam_engine.models.attempt import Attempt, SUBMITTED
from exam_engine.models.section_state import ACTIVE
from exam_engine.services import section_clock, session_store, transitions
from exam_engine.services.session_store import ResponseWrite, SectionPatch

logger = get_logger("sync")

# Client/server remaining-time difference worth a log line
DRIFT_LOG_THRESHOLD_SECONDS = 10


@dataclass
class ClientResponse:
    question_id: str
    selected_answer: Optional[str] = None
    is_marked_for_review: bool = False


@dataclass
class ClientSectionBelief:
    index: int
    remaining_seconds: Optional[int] = None
    is_locked: Optional[bool] = None
    is_completed: Optional[bool] = None


@dataclass
class SyncPayload:
    current_section_index: int
    current_question_index: int
    responses: List[ClientResponse] = field(default_factory=list)
    section_states: List[ClientSectionBelief] = field(default_factory=list)


@dataclass
class SyncOutcome:
    attempt: Attempt
    events: List[transitions.TransitionEvent]
    rejected: List[dict]
    cursor_accepted: bool


def _log_drift(attempt: Attempt, beliefs: List[ClientSectionBelief]) -> None:
    for belief in beliefs:
        if belief.remaining_seconds is None or not 0 <= belief.index < len(attempt.section_states):
            continue
        server = attempt.section_states[belief.index]
        drift = belief.remaining_seconds - server.remaining_seconds
        if abs(drift) >= DRIFT_LOG_THRESHOLD_SECONDS or (belief.is_locked is False and server.is_locked):
            log_with_context(logger, "INFO", "Client clock differs from server",
                context={"attempt_id": str(attempt.id), "section_index": belief.index},
                extra_data={"client_remaining": belief.remaining_seconds,
                            "server_remaining": server.remaining_seconds,
                            "drift_seconds": drift,
                            "server_locked": server.is_locked})


def _resolve_writes(definition: TestDefinition, responses: List[ClientResponse]):
    writes, unknown = [], []
    for response in responses:
        question_id = str(response.question_id)
        section_index = definition.section_index_of(question_id)
        if section_index is None:
            unknown.append({"question_id": question_id, "section_index": None,
                            "error": NotFound.code})
            continue
        writes.append(ResponseWrite(
            question_id=question_id,
            section_index=section_index,
            selected_answer=response.selected_answer,
            is_marked_for_review=response.is_marked_for_review,
        ))
    return writes, unknown


def _apply_cursor(attempt: Attempt, definition: TestDefinition,
                  section_index: int, question_index: int) -> bool:
    """Take the client's cursor when it points into the current section."""
    if attempt.status == SUBMITTED or section_index != attempt.current_section_index:
        return False
    question_count = len(definition.sections[section_index].questions)
    question_index = max(0, min(question_index, max(question_count - 1, 0)))
    attempt.current_question_index = question_index
    attempt.current_section.mark_visited(question_index)
    return True


def reconcile(db: Session, attempt: Attempt, definition: TestDefinition,
              payload: SyncPayload, now: datetime) -> SyncOutcome:
    """Merge one client sync into the attempt. Replaying a payload is harmless."""
    session_store.ensure_open(attempt)

    events = transitions.run_clock(db, attempt, definition, now)
    if attempt.status == SUBMITTED:
        # The clock just finished the test; nothing from this payload is kept
        rejected = [{"question_id": str(r.question_id), "section_index": None, "error": Conflict.code}
                    for r in payload.responses]
        return SyncOutcome(attempt, events, rejected, cursor_accepted=False)

    writes, rejected = _resolve_writes(definition, payload.responses)
    current = attempt.current_section
    patches = []
    if current is not None and current.status == ACTIVE:
        patches.append(SectionPatch(index=current.position,
                                    remaining_seconds=section_clock.current_remaining(current, now)))
    rejected += session_store.apply_server_state(attempt, patches, writes, now)

    cursor_accepted = _apply_cursor(attempt, definition,
                                    payload.current_section_index, payload.current_question_index)
    attempt.last_synced_at = now

    _log_drift(attempt, payload.section_states)
    log_with_context(logger, "DEBUG" if not rejected else "INFO",
        "Sync applied: {} responses, {} rejected".format(len(payload.responses), len(rejected)),
        context={"attempt_id": str(attempt.id), "section_index": attempt.current_section_index},
        extra_data={"events": [e.kind for e in events], "cursor_accepted": cursor_accepted})

    return SyncOutcome(attempt, events, rejected, cursor_accepted)


def write_response(db: Session, attempt: Attempt, definition: TestDefinition,
                   response: ClientResponse, now: datetime) -> bool:
    """
    Single response write. Runs the clock first so a section whose time is
    up rejects the write with SectionLocked even if the client still shows
    time left.
    """
    session_store.ensure_open(attempt)
    transitions.run_clock(db, attempt, definition, now)
    session_store.ensure_open(attempt)

    writes, unknown = _resolve_writes(definition, [response])
    if unknown:
        raise NotFound("Question not found in this test",
                       extra={"question_id": str(response.question_id)})
    return session_store.upsert_response(attempt, writes[0], now)
