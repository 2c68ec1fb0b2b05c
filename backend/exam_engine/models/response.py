"""
Response model - the student's answer to one question of an attempt.

Responses are written only while their section is ACTIVE.
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from exam_engine.database import Base


class Response(Base):
    """SQLAlchemy model for the responses table."""
    __tablename__ = "responses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    attempt_id = Column(String(36), ForeignKey("attempts.id"), nullable=False,
                        doc="Owning attempt")
    question_id = Column(String(64), nullable=False,
                         doc="Question identifier from the test definition")
    section_index = Column(Integer, nullable=False,
                           doc="Section the question belongs to")
    selected_answer = Column(Text, nullable=True,
                             doc="Chosen option, NULL when cleared")
    is_marked_for_review = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime, nullable=True,
                        doc="Server time of the last change")

    attempt = relationship("Attempt", back_populates="responses")

    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_responses_attempt_question"),
    )

    @property
    def is_answered(self) -> bool:
        return self.selected_answer is not None and str(self.selected_answer).strip() != ""

    def __repr__(self):
        return f"<Response(attempt={self.attempt_id}, question={self.question_id}, answer={self.selected_answer!r})>"
