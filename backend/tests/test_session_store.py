"""
Tests for applying server-computed section values and client responses.
"""

from datetime import datetime

import pytest

from exam_engine.models.attempt import Attempt, IN_PROGRESS
from exam_engine.models.section_state import ACTIVE, COMPLETED, SectionState
from exam_engine.services.session_store import ResponseWrite, SectionPatch, apply_server_state

NOW = datetime(2026, 1, 5, 10, 0, 0)


def make_attempt():
    attempt = Attempt(id="a1", test_id="t1", student_id="s1", status=IN_PROGRESS,
                      current_section_index=1, current_question_index=0, started_at=NOW)
    attempt.section_states.append(SectionState(
        position=0, name="VARC", status=COMPLETED, duration_seconds=2400,
        remaining_seconds=0, visited_questions="[0]",
    ))
    attempt.section_states.append(SectionState(
        position=1, name="DILR", status=ACTIVE, duration_seconds=2400,
        remaining_seconds=300, started_at=NOW, visited_questions="[0]",
    ))
    return attempt


class TestApplyServerState:

    def test_remaining_time_only_moves_down(self):
        attempt = make_attempt()

        apply_server_state(attempt, [SectionPatch(index=1, remaining_seconds=900)], [], NOW)
        assert attempt.section_states[1].remaining_seconds == 300

        apply_server_state(attempt, [SectionPatch(index=1, remaining_seconds=-5)], [], NOW)
        assert attempt.section_states[1].remaining_seconds == 0
        assert attempt.section_states[1].status == ACTIVE

    def test_patch_cannot_change_status(self):
        with pytest.raises(TypeError):
            SectionPatch(index=1, status=COMPLETED)

    def test_writes_to_closed_section_are_rejected(self):
        attempt = make_attempt()

        rejected = apply_server_state(attempt, [], [
            ResponseWrite(question_id="varc-q1", section_index=0, selected_answer="A",
                          is_marked_for_review=False),
            ResponseWrite(question_id="dilr-q1", section_index=1, selected_answer="B",
                          is_marked_for_review=False),
        ], NOW)

        assert rejected == [{"question_id": "varc-q1", "section_index": 0, "error": "section_locked"}]
        assert [r.question_id for r in attempt.responses] == ["dilr-q1"]
