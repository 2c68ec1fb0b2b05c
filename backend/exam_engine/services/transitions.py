"""
Transition Controller - moves an attempt between sections and into submission.

Attempt phases, derived from stored state:

    InSection(i) --expiry / early submit--> SectionLocked(i)
    SectionLocked(i) --------------------> InSection(i + 1)
    SectionLocked(last) -----------------> AllSectionsDone --> Submitted

Sections are taken strictly in order. Moving on always locks the section
left behind, so there is no way back. Every operation first runs the
section clock, so a section whose server time is up is locked before any
client request is considered. Repeating an operation that already
happened is a no-op.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy.orm import Session

from exam_engine.catalog import TestDefinition
from exam_engine.errors import Conflict
from exam_engine.logging_config import get_logger, log_with_context
from exam_engine.models.attempt import Attempt, ALL_SECTIONS_DONE, SUBMITTED
from exam_engine.models.section_state import ACTIVE, COMPLETED, LOCKED, PENDING, TERMINAL_STATUSES
from exam_engine.services import scoring, section_clock, session_store

logger = get_logger("transition")


class Phase(str, Enum):
    IN_SECTION = "IN_SECTION"
    SECTION_LOCKED = "SECTION_LOCKED"
    ALL_SECTIONS_DONE = "ALL_SECTIONS_DONE"
    SUBMITTED = "SUBMITTED"


@dataclass(frozen=True)
class AttemptPhase:
    kind: Phase
    section_index: Optional[int] = None

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "section_index": self.section_index}


@dataclass(frozen=True)
class TransitionEvent:
    kind: str  # expired | submitted_section | advanced | forfeited | all_sections_done | submitted
    section_index: Optional[int] = None

    def to_dict(self) -> dict:
        return {"kind": self.kind, "section_index": self.section_index}


def phase_of(attempt: Attempt) -> AttemptPhase:
    if attempt.status == SUBMITTED:
        return AttemptPhase(Phase.SUBMITTED)
    if attempt.status == ALL_SECTIONS_DONE or all(
            s.status in TERMINAL_STATUSES for s in attempt.section_states):
        return AttemptPhase(Phase.ALL_SECTIONS_DONE)
    current = attempt.current_section
    if current is not None and current.status in TERMINAL_STATUSES:
        return AttemptPhase(Phase.SECTION_LOCKED, attempt.current_section_index)
    return AttemptPhase(Phase.IN_SECTION, attempt.current_section_index)


def _context(attempt: Attempt, section_index: int = None) -> dict:
    context = {"attempt_id": str(attempt.id), "student_id": str(attempt.student_id),
               "test_id": str(attempt.test_id)}
    if section_index is not None:
        context["section_index"] = section_index
    return context


def _finish(db: Session, attempt: Attempt, definition: TestDefinition, now: datetime,
            events: List[TransitionEvent]) -> None:
    attempt.status = ALL_SECTIONS_DONE
    events.append(TransitionEvent("all_sections_done"))
    scoring.score_attempt(db, attempt, definition, now)
    events.append(TransitionEvent("submitted"))
    log_with_context(logger, "INFO", "Attempt submitted", context=_context(attempt))


def _advance(db: Session, attempt: Attempt, definition: TestDefinition, now: datetime,
             events: List[TransitionEvent], starts_at: datetime = None) -> None:
    """
    Leave the (now locked) current section for the next one, or finish.

    The next section's clock starts at ``starts_at``, the moment the
    previous one ended, which is earlier than ``now`` when nobody was
    looking at the attempt.
    """
    index = attempt.current_section_index
    next_index = index + 1

    if next_index >= len(attempt.section_states):
        _finish(db, attempt, definition, now, events)
        return

    next_section = attempt.section_states[next_index]
    next_section.move_to(ACTIVE, starts_at or now)
    next_section.mark_visited(0)
    attempt.current_section_index = next_index
    attempt.current_question_index = 0
    events.append(TransitionEvent("advanced", next_index))

    log_with_context(logger, "INFO",
        "Advanced from section {} to {} ({})".format(index, next_index, next_section.name),
        context=_context(attempt, next_index),
        extra_data={"remaining_seconds": next_section.remaining_seconds})


def run_clock(db: Session, attempt: Attempt, definition: TestDefinition,
              now: datetime) -> List[TransitionEvent]:
    """
    Evaluate the current section's clock; on expiry lock it and move on.

    An attempt left alone for longer than a section can run through several
    expiries in one call: each following section starts when the previous
    one ran out, so the clock stops on the section that is actually running
    now, or the attempt gets submitted. Also finishes an attempt left in
    ALL_SECTIONS_DONE without a result.
    """
    events: List[TransitionEvent] = []
    if attempt.status == SUBMITTED:
        return events

    if attempt.status == ALL_SECTIONS_DONE:
        _finish(db, attempt, definition, now, events)
        return events

    while attempt.status != SUBMITTED:
        current = attempt.current_section
        if current is None or not section_clock.tick(current, now):
            break
        events.append(TransitionEvent("expired", current.position))
        _advance(db, attempt, definition, now, events, starts_at=current.completed_at)
    return events


def submit_section(db: Session, attempt: Attempt, definition: TestDefinition,
                   from_index: int, to_index: Optional[int], now: datetime) -> List[TransitionEvent]:
    """
    Explicitly finish section ``from_index`` and move to ``to_index``.

    An early submit is always accepted; the section keeps whatever time it
    had left. If the section was already left behind (duplicate request, or
    expiry got there first) nothing happens, even once the attempt has
    been submitted.
    """
    if attempt.status == SUBMITTED:
        return []
    section_count = len(attempt.section_states)
    if not 0 <= from_index < section_count:
        raise Conflict("Section {} does not exist".format(from_index),
                       extra={"section_index": from_index})

    expected_to = from_index + 1 if from_index + 1 < section_count else None
    if to_index is not None and to_index != expected_to:
        raise Conflict(
            "Sections are taken in order: cannot move from {} to {}".format(from_index, to_index),
            extra={"from_section": from_index, "to_section": to_index},
        )

    events = run_clock(db, attempt, definition, now)
    if attempt.status == SUBMITTED:
        return events

    current_index = attempt.current_section_index
    if from_index > current_index:
        raise Conflict("Section {} has not started yet".format(from_index),
                       extra={"from_section": from_index, "current_section": current_index})

    section = attempt.section_states[from_index]
    if from_index < current_index or section.status in TERMINAL_STATUSES:
        log_with_context(logger, "INFO", "Section {} already left; ignoring transition".format(from_index),
                         context=_context(attempt, from_index))
        return events

    section.move_to(COMPLETED, now)
    events.append(TransitionEvent("submitted_section", from_index))
    log_with_context(logger, "INFO",
        "Section {} ({}) submitted early".format(from_index, section.name),
        context=_context(attempt, from_index),
        extra_data={"remaining_seconds": section.remaining_seconds})

    _advance(db, attempt, definition, now, events)
    return events


def expire_section(db: Session, attempt: Attempt, definition: TestDefinition,
                   section_index: int, now: datetime) -> List[TransitionEvent]:
    """
    A client reports that its countdown for ``section_index`` hit zero.

    The claim only triggers a clock evaluation: the section locks if the
    server's own remaining time is zero. Repeats are no-ops, including
    after the attempt has been submitted.
    """
    if attempt.status == SUBMITTED:
        return []

    events = run_clock(db, attempt, definition, now)
    if not events and 0 <= section_index < len(attempt.section_states):
        section = attempt.section_states[section_index]
        if section.status == ACTIVE:
            log_with_context(logger, "WARNING",
                "Client reported expiry but server has {}s left".format(section.remaining_seconds),
                context=_context(attempt, section_index))
    return events


def submit_attempt(db: Session, attempt: Attempt, definition: TestDefinition,
                   now: datetime) -> List[TransitionEvent]:
    """
    Submit the whole test.

    The active section is completed with its remaining time kept, sections
    never reached are locked, then the attempt is scored and frozen.
    Submitting a submitted attempt is a Conflict.
    """
    session_store.ensure_open(attempt)
    events = run_clock(db, attempt, definition, now)
    if attempt.status == SUBMITTED:
        return events

    for section in attempt.section_states:
        if section.status == ACTIVE:
            section.move_to(COMPLETED, now)
            events.append(TransitionEvent("submitted_section", section.position))
        elif section.status == PENDING:
            section.move_to(LOCKED, now)
            events.append(TransitionEvent("forfeited", section.position))

    _finish(db, attempt, definition, now, events)
    return events
