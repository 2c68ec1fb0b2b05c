"""
SectionState model - per-section timing and lock state of an attempt.

A section is in exactly one status at a time:
- PENDING: not reached yet, clock not running
- ACTIVE: the section being worked on, clock running
- COMPLETED: finished by expiry or by an early submit (also locked)
- LOCKED: closed without being worked, e.g. skipped by a whole-test submit

LOCKED and COMPLETED are terminal. Status changes go through
``SectionState.move_to`` which rejects anything outside SECTION_TRANSITIONS.
"""

import json
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from exam_engine.database import Base
from exam_engine.errors import Conflict

PENDING = "PENDING"
ACTIVE = "ACTIVE"
LOCKED = "LOCKED"
COMPLETED = "COMPLETED"

SECTION_TRANSITIONS = {
    PENDING: {ACTIVE, LOCKED},
    ACTIVE: {COMPLETED},
    LOCKED: set(),
    COMPLETED: set(),
}

TERMINAL_STATUSES = {LOCKED, COMPLETED}


class SectionState(Base):
    """SQLAlchemy model for the section_states table."""
    __tablename__ = "section_states"

    id = Column(Integer, primary_key=True, autoincrement=True)
    attempt_id = Column(String(36), ForeignKey("attempts.id"), nullable=False,
                        doc="Owning attempt")
    position = Column(Integer, nullable=False,
                      doc="Zero-based section index within the test")
    name = Column(Text, nullable=False,
                  doc="Section name copied from the test definition")
    status = Column(Text, nullable=False, default=PENDING,
                    doc="PENDING | ACTIVE | LOCKED | COMPLETED")
    duration_seconds = Column(Integer, nullable=False,
                              doc="Configured section length")
    remaining_seconds = Column(Integer, nullable=False,
                               doc="Server-computed time left; never increases")
    started_at = Column(DateTime, nullable=True,
                        doc="When the section became active")
    completed_at = Column(DateTime, nullable=True,
                          doc="When the section reached a terminal status")
    visited_questions = Column(Text, nullable=False, default="[]",
                               doc="Question indices the student has opened, as JSON")

    attempt = relationship("Attempt", back_populates="section_states")

    __table_args__ = (
        UniqueConstraint("attempt_id", "position", name="uq_section_states_attempt_position"),
    )

    @property
    def is_locked(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_completed(self) -> bool:
        return self.status == COMPLETED

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE

    @property
    def visited(self) -> list:
        try:
            return json.loads(self.visited_questions) if self.visited_questions else []
        except (json.JSONDecodeError, TypeError):
            return []

    def mark_visited(self, question_index: int) -> bool:
        visited = self.visited
        if question_index in visited:
            return False
        visited.append(question_index)
        self.visited_questions = json.dumps(sorted(visited))
        return True

    def move_to(self, target: str, now) -> bool:
        """
        Change status, stamping started_at / completed_at.

        Returns False when the section is already in ``target``.
        Raises Conflict for a transition outside SECTION_TRANSITIONS.
        """
        if self.status == target:
            return False
        if target not in SECTION_TRANSITIONS.get(self.status, set()):
            raise Conflict(
                "Section {} cannot move from {} to {}".format(self.position, self.status, target),
                extra={"section_index": self.position, "status": self.status},
            )
        self.status = target
        if target == ACTIVE:
            self.started_at = now
            self.remaining_seconds = self.duration_seconds
        elif target in TERMINAL_STATUSES:
            self.completed_at = now
        return True

    def __repr__(self):
        return (f"<SectionState(attempt={self.attempt_id}, position={self.position}, "
                f"status='{self.status}', remaining={self.remaining_seconds})>")
