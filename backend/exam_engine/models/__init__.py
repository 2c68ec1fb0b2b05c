from exam_engine.models.test import Test
from exam_engine.models.attempt import Attempt
from exam_engine.models.section_state import SectionState
from exam_engine.models.response import Response
from exam_engine.models.attempt_result import AttemptResult

__all__ = ["Test", "Attempt", "SectionState", "Response", "AttemptResult"]
