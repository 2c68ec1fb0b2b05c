"""
Section Clock - the server's authority on section time.

Remaining time is never counted from client ticks. It is recomputed from
the section's stored started_at and configured duration every time the
server looks at the section:

    remaining = max(0, duration - (now - started_at))

and the stored value only ever moves down. A client that was suspended or
throttled therefore gets the true remaining time on its next sync, which
may already be zero.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from exam_engine.errors import NotFound
from exam_engine.logging_config import get_logger, log_with_context
from exam_engine.models.section_state import ACTIVE, COMPLETED, SectionState

logger = get_logger("clock")


def utcnow() -> datetime:
    """Naive UTC now, matching the naive UTC datetimes stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def compute_remaining(started_at: Optional[datetime], duration_seconds: int, now: datetime) -> int:
    """Seconds left in a section that started at ``started_at``. Never negative."""
    if started_at is None:
        return duration_seconds
    elapsed = (now - started_at).total_seconds()
    return max(0, int(duration_seconds - elapsed))


def current_remaining(section: SectionState, now: datetime) -> int:
    """Authoritative remaining time without modifying the section."""
    if section.status != ACTIVE:
        return section.remaining_seconds
    computed = compute_remaining(section.started_at, section.duration_seconds, now)
    return min(section.remaining_seconds, computed)


def expired_at(section: SectionState, now: datetime) -> datetime:
    """When the section's time ran out, which is never later than ``now``."""
    if section.started_at is None:
        return now
    return min(now, section.started_at + timedelta(seconds=section.duration_seconds))


def tick(section: SectionState, now: datetime) -> bool:
    """
    Bring an active section's stored remaining time up to date.

    When the time has run out the section is completed (and so locked),
    stamped with the moment it actually ran out rather than the moment
    the server noticed. Returns True only on the call that expired it.
    """
    if section.status != ACTIVE:
        return False

    section.remaining_seconds = current_remaining(section, now)
    if section.remaining_seconds > 0:
        return False

    section.move_to(COMPLETED, expired_at(section, now))
    log_with_context(logger, "INFO",
        "Section {} ({}) expired".format(section.position, section.name),
        context={"attempt_id": str(section.attempt_id), "section_index": section.position},
        extra_data={"started_at": section.started_at, "completed_at": section.completed_at,
                    "noticed_at": now})
    return True


def _section(db: Session, attempt_id: str, section_index: int) -> Optional[SectionState]:
    return db.query(SectionState).filter(
        SectionState.attempt_id == attempt_id,
        SectionState.position == section_index
    ).first()


def remaining_seconds(db: Session, attempt_id: str, section_index: int, now: datetime = None) -> int:
    """Reporting helper: remaining seconds of one section of an attempt."""
    section = _section(db, attempt_id, section_index)
    if section is None:
        raise NotFound("Section not found",
                       extra={"attempt_id": attempt_id, "section_index": section_index})
    return current_remaining(section, now or utcnow())


def is_expired(db: Session, attempt_id: str, section_index: int, now: datetime = None) -> bool:
    """True when the section has no time left or was completed by expiry."""
    section = _section(db, attempt_id, section_index)
    if section is None:
        raise NotFound("Section not found",
                       extra={"attempt_id": attempt_id, "section_index": section_index})
    if section.status == COMPLETED:
        return section.remaining_seconds <= 0
    if section.status == ACTIVE:
        return current_remaining(section, now or utcnow()) <= 0
    return False
