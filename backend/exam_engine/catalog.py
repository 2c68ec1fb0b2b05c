"""
Test catalog adapter.

The catalog belongs to the course service; the engine reads test
definitions through ``TestCatalog.get_test`` and never writes them.
``SqlTestCatalog`` reads the ``tests`` table shared with that service.
"""

from typing import List, Optional, Protocol

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from sqlalchemy.orm import Session

from exam_engine import config
from exam_engine.errors import ConfigurationError, NotFound
from exam_engine.logging_config import get_logger, log_with_context
from exam_engine.models.test import Test

logger = get_logger("db")


class QuestionDefinition(BaseModel):
    id: str
    text: str = ""
    options: List[str] = Field(default_factory=list)
    correct_answer: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v)

    def public_dict(self) -> dict:
        """Question as sent to the student: no answer key."""
        return {"id": self.id, "text": self.text, "options": list(self.options)}


class SectionDefinition(BaseModel):
    name: str = Field(..., min_length=1)
    duration: float = Field(..., gt=0, allow_inf_nan=False, description="Section length in minutes")
    questions: List[QuestionDefinition] = Field(default_factory=list)

    @field_validator("duration")
    @classmethod
    def duration_whole_seconds(cls, v: float) -> float:
        if round(v * 60) < 1:
            raise ValueError("duration must be at least one second")
        return v

    @property
    def duration_seconds(self) -> int:
        return int(round(self.duration * 60))


class TestDefinition(BaseModel):
    id: str
    name: str
    instructions: Optional[str] = None
    sections: List[SectionDefinition]
    marks_per_correct: float = config.DEFAULT_MARKS_PER_CORRECT
    negative_marks: float = config.DEFAULT_NEGATIVE_MARKS

    @field_validator("sections")
    @classmethod
    def has_sections(cls, v: List[SectionDefinition]) -> List[SectionDefinition]:
        if not v:
            raise ValueError("test has no sections")
        return v

    @model_validator(mode="after")
    def unique_question_ids(self) -> "TestDefinition":
        seen = set()
        for section in self.sections:
            for question in section.questions:
                if question.id in seen:
                    raise ValueError("question id {} appears more than once".format(question.id))
                seen.add(question.id)
        return self

    @property
    def total_questions(self) -> int:
        return sum(len(s.questions) for s in self.sections)

    def section_index_of(self, question_id: str) -> Optional[int]:
        for index, section in enumerate(self.sections):
            for question in section.questions:
                if question.id == question_id:
                    return index
        return None

    def answer_key(self) -> dict:
        return {
            q.id: q.correct_answer
            for section in self.sections
            for q in section.questions
        }

    def public_dict(self) -> dict:
        """Test as sent to the student before submission."""
        return {
            "id": self.id,
            "name": self.name,
            "instructions": self.instructions,
            "total_questions": self.total_questions,
            "marks_per_correct": self.marks_per_correct,
            "negative_marks": self.negative_marks,
            "sections": [
                {
                    "index": index,
                    "name": s.name,
                    "duration": s.duration,
                    "questions": [q.public_dict() for q in s.questions],
                }
                for index, s in enumerate(self.sections)
            ],
        }


class TestCatalog(Protocol):
    def get_test(self, test_id: str) -> TestDefinition:
        ...


def build_definition(test: Test) -> TestDefinition:
    """Validate a catalog row into a TestDefinition or raise ConfigurationError."""
    try:
        return TestDefinition(
            id=str(test.id),
            name=test.name,
            instructions=test.instructions,
            sections=test.sections_list,
            marks_per_correct=test.marks_per_correct if test.marks_per_correct is not None
            else config.DEFAULT_MARKS_PER_CORRECT,
            negative_marks=test.negative_marks if test.negative_marks is not None
            else config.DEFAULT_NEGATIVE_MARKS,
        )
    except ValidationError as e:
        log_with_context(logger, "ERROR", "Test {} has an invalid definition".format(test.id),
                         context={"test_id": str(test.id)},
                         extra_data={"errors": e.errors(include_url=False)})
        raise ConfigurationError(
            "Test '{}' cannot be started: {}".format(test.name, e.errors()[0]["msg"]),
            extra={"test_id": str(test.id)},
        )


class SqlTestCatalog:
    """Reads test definitions from the tests table."""

    def __init__(self, db: Session):
        self.db = db

    def get_test(self, test_id: str) -> TestDefinition:
        test = self.db.query(Test).filter(Test.id == test_id).first()
        if not test:
            raise NotFound("Test not found", extra={"test_id": test_id})
        return build_definition(test)
