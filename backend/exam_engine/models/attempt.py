"""
Attempt model - one student's run through one test.

The attempt owns its ordered section states, its responses and the
navigation cursor. It is mutable while IN_PROGRESS and frozen once
SUBMITTED; the stored result is attached at submission.
"""

import uuid
from sqlalchemy import Column, Text, DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import relationship
from exam_engine.database import Base

IN_PROGRESS = "IN_PROGRESS"
ALL_SECTIONS_DONE = "ALL_SECTIONS_DONE"
SUBMITTED = "SUBMITTED"


class Attempt(Base):
    """
    SQLAlchemy model for the attempts table.

    Lifecycle statuses:
    - IN_PROGRESS: a section is active or about to be
    - ALL_SECTIONS_DONE: every section is terminal, scoring pending
    - SUBMITTED: scored and frozen
    """
    __tablename__ = "attempts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()),
                doc="Unique attempt identifier")
    student_id = Column(String(64), nullable=False,
                        doc="Opaque student identity supplied by the auth service")
    test_id = Column(String(36), ForeignKey("tests.id"), nullable=False,
                     doc="Reference to the test being attempted")
    status = Column(Text, nullable=False, default=IN_PROGRESS,
                    doc="IN_PROGRESS | ALL_SECTIONS_DONE | SUBMITTED")
    current_section_index = Column(Integer, nullable=False, default=0,
                                   doc="Navigation cursor: section")
    current_question_index = Column(Integer, nullable=False, default=0,
                                    doc="Navigation cursor: question within the section")
    started_at = Column(DateTime, nullable=False,
                        doc="When the attempt was created")
    submitted_at = Column(DateTime, nullable=True,
                          doc="When the attempt was scored and frozen")
    last_synced_at = Column(DateTime, nullable=True,
                            doc="Server time of the last accepted sync")

    test = relationship("Test", back_populates="attempts")
    section_states = relationship("SectionState", back_populates="attempt",
                                  order_by="SectionState.position",
                                  cascade="all, delete-orphan")
    responses = relationship("Response", back_populates="attempt",
                             cascade="all, delete-orphan")
    result = relationship("AttemptResult", back_populates="attempt", uselist=False,
                          cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_attempts_student_id", "student_id"),
        Index("ix_attempts_test_id", "test_id"),
        Index("ix_attempts_status", "status"),
        # At most one open attempt per (student, test)
        Index("uq_attempts_open_per_student_test", "student_id", "test_id",
              unique=True,
              postgresql_where=text("status <> 'SUBMITTED'"),
              sqlite_where=text("status <> 'SUBMITTED'")),
    )

    @property
    def is_submitted(self) -> bool:
        return self.status == SUBMITTED

    @property
    def current_section(self):
        if 0 <= self.current_section_index < len(self.section_states):
            return self.section_states[self.current_section_index]
        return None

    def responses_by_question(self) -> dict:
        return {r.question_id: r for r in self.responses}

    def __repr__(self):
        return (f"<Attempt(id={self.id}, student={self.student_id}, test={self.test_id}, "
                f"status='{self.status}', section={self.current_section_index})>")
