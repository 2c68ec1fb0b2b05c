"""
Test model - catalog entry for a sectioned, timed test.

The catalog is owned by the course service; the engine only reads it.
The sections column holds the full JSON definition:
[{"name": "VARC", "duration": 40, "questions": [{"id", "text", "options", "correct_answer"}]}]
"""

import uuid
import json
from datetime import datetime, timezone
from sqlalchemy import Column, Text, Float, DateTime, String
from sqlalchemy.orm import relationship
from exam_engine.database import Base


class Test(Base):
    """
    SQLAlchemy model for the tests table.

    Marking is stored per test: marks_per_correct is added for a correct
    answer and negative_marks is subtracted for a wrong one.
    """
    __tablename__ = "tests"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()),
                doc="Unique test identifier")
    name = Column(Text, nullable=False,
                  doc="Test name/title")
    instructions = Column(Text, nullable=True,
                          doc="Instructions shown before the first section")
    sections = Column(Text, nullable=False, default="[]",
                      doc="Section definitions as JSON, in the order they are taken")
    marks_per_correct = Column(Float, nullable=False, default=3,
                               doc="Marks awarded for a correct answer")
    negative_marks = Column(Float, nullable=False, default=1,
                            doc="Marks deducted for an incorrect answer")
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc),
                        doc="Timestamp when test was created")

    attempts = relationship("Attempt", back_populates="test")

    @property
    def sections_list(self):
        """Parse the sections JSON string into a list."""
        if isinstance(self.sections, list):
            return self.sections
        try:
            return json.loads(self.sections) if self.sections else []
        except (json.JSONDecodeError, TypeError):
            return []

    def __repr__(self):
        return f"<Test(id={self.id}, name='{self.name}', sections={len(self.sections_list)})>"
