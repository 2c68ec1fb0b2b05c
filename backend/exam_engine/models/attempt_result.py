"""
AttemptResult model - the scored outcome of a submitted attempt.

Written exactly once, at submission. Totals are columns so they can be
queried; the per-section breakdown lives in the explanation JSON.
"""

import json
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, Float, DateTime, ForeignKey, Text, String
from sqlalchemy.orm import relationship
from exam_engine.database import Base


class AttemptResult(Base):
    """
    SQLAlchemy model for the attempt_results table.

    One-to-one with Attempt (attempt_id is both PK and FK).
    """
    __tablename__ = "attempt_results"

    attempt_id = Column(String(36), ForeignKey("attempts.id"), primary_key=True,
                        doc="Reference to the scored attempt (also serves as PK)")
    total_questions = Column(Integer, nullable=False, default=0)
    total_answered = Column(Integer, nullable=False, default=0)
    total_not_answered = Column(Integer, nullable=False, default=0)
    total_correct = Column(Integer, nullable=False, default=0)
    total_incorrect = Column(Integer, nullable=False, default=0)
    total_score = Column(Float, nullable=False, default=0,
                         doc="Final score with negative marking applied")
    max_score = Column(Float, nullable=False, default=0)
    percentage = Column(Float, nullable=False, default=0,
                        doc="total_score / max_score * 100")
    computed_at = Column(DateTime, default=lambda: datetime.now(timezone.utc),
                         doc="When this result was computed")
    explanation = Column(Text, nullable=True,
                         doc="Full result payload (per-section breakdown) as JSON")

    attempt = relationship("Attempt", back_populates="result")

    @property
    def explanation_dict(self):
        """Parse explanation JSON string to dict."""
        if isinstance(self.explanation, dict):
            return self.explanation
        try:
            return json.loads(self.explanation) if self.explanation else {}
        except (json.JSONDecodeError, TypeError):
            return {}

    def __repr__(self):
        return f"<AttemptResult(attempt={self.attempt_id}, score={self.total_score}, percentage={self.percentage}%)>"
