"""
Tests for the section clock and the section status machine.
"""

from datetime import datetime, timedelta

import pytest

from exam_engine.errors import Conflict, NotFound
from exam_engine.models.section_state import ACTIVE, COMPLETED, LOCKED, PENDING, SectionState
from exam_engine.services import section_clock

T0 = datetime(2026, 1, 5, 9, 0, 0)


def make_section(status=ACTIVE, duration=2400, remaining=None, started_at=T0):
    return SectionState(
        position=0,
        name="VARC",
        status=status,
        duration_seconds=duration,
        remaining_seconds=duration if remaining is None else remaining,
        started_at=started_at if status == ACTIVE else None,
        visited_questions="[]",
    )


class TestComputeRemaining:

    def test_counts_down_from_start(self):
        assert section_clock.compute_remaining(T0, 2400, T0 + timedelta(seconds=100)) == 2300

    def test_truncates_partial_seconds(self):
        assert section_clock.compute_remaining(T0, 2400, T0 + timedelta(seconds=0.4)) == 2399

    def test_never_negative(self):
        assert section_clock.compute_remaining(T0, 2400, T0 + timedelta(hours=5)) == 0

    def test_not_started(self):
        assert section_clock.compute_remaining(None, 2400, T0) == 2400

    def test_long_suspend_is_caught_up_in_one_step(self):
        # A client that slept for 30 minutes gets the true value, not 30 minutes of ticks
        assert section_clock.compute_remaining(T0, 2400, T0 + timedelta(minutes=30)) == 600


class TestTick:

    def test_tick_updates_stored_value(self):
        section = make_section()

        expired = section_clock.tick(section, T0 + timedelta(seconds=90))

        assert expired is False
        assert section.remaining_seconds == 2310
        assert section.status == ACTIVE

    def test_tick_expires_section(self):
        section = make_section()
        now = T0 + timedelta(seconds=2400)

        assert section_clock.tick(section, now) is True
        assert section.status == COMPLETED
        assert section.is_locked and section.is_completed
        assert section.remaining_seconds == 0
        assert section.completed_at == now

    def test_expiry_reported_once(self):
        section = make_section()
        now = T0 + timedelta(seconds=2500)

        assert section_clock.tick(section, now) is True
        assert section_clock.tick(section, now) is False

    def test_late_notice_stamps_true_expiry(self):
        section = make_section()

        section_clock.tick(section, T0 + timedelta(hours=3))

        assert section.completed_at == T0 + timedelta(seconds=2400)

    def test_expired_at_never_after_now(self):
        section = make_section(remaining=0)
        now = T0 + timedelta(seconds=10)

        assert section_clock.expired_at(section, now) == now
        assert section_clock.tick(section, now) is True
        assert section.completed_at == now

    def test_stored_value_never_increases(self):
        section = make_section(remaining=100)

        section_clock.tick(section, T0 + timedelta(seconds=10))

        assert section.remaining_seconds == 100

    def test_pending_section_does_not_run(self):
        section = make_section(status=PENDING)

        assert section_clock.tick(section, T0 + timedelta(hours=1)) is False
        assert section.remaining_seconds == 2400

    def test_completed_section_keeps_time_left(self):
        section = make_section(status=COMPLETED, remaining=500)

        assert section_clock.current_remaining(section, T0 + timedelta(hours=1)) == 500


class TestSectionStatusMachine:

    def test_activate_stamps_start(self):
        section = make_section(status=PENDING, remaining=2400)

        assert section.move_to(ACTIVE, T0) is True
        assert section.started_at == T0
        assert section.remaining_seconds == 2400

    def test_same_status_is_noop(self):
        section = make_section()

        assert section.move_to(ACTIVE, T0 + timedelta(seconds=5)) is False
        assert section.started_at == T0

    def test_pending_can_be_forfeited(self):
        section = make_section(status=PENDING)

        section.move_to(LOCKED, T0)

        assert section.is_locked is True
        assert section.is_completed is False

    @pytest.mark.parametrize("start,target", [
        (COMPLETED, ACTIVE),
        (LOCKED, ACTIVE),
        (COMPLETED, LOCKED),
        (PENDING, COMPLETED),
        (ACTIVE, PENDING),
        (ACTIVE, LOCKED),
    ])
    def test_illegal_moves(self, start, target):
        section = make_section(status=start)

        with pytest.raises(Conflict):
            section.move_to(target, T0)

    def test_mark_visited_is_idempotent(self):
        section = make_section()

        assert section.mark_visited(3) is True
        assert section.mark_visited(1) is True
        assert section.mark_visited(3) is False
        assert section.visited == [1, 3]


class TestStoredSectionQueries:

    def test_remaining_and_expiry_of_stored_section(self, start, mock_test, db_session, clock):
        attempt_id = start(mock_test)["attempt"]["id"]

        assert section_clock.remaining_seconds(db_session, attempt_id, 0, clock.now + timedelta(seconds=40)) == 2360
        assert section_clock.is_expired(db_session, attempt_id, 0, clock.now + timedelta(seconds=2400)) is True
        assert section_clock.is_expired(db_session, attempt_id, 1, clock.now + timedelta(seconds=9999)) is False

    def test_unknown_section(self, db_session):
        with pytest.raises(NotFound):
            section_clock.remaining_seconds(db_session, "missing", 0, T0)
        with pytest.raises(NotFound):
            section_clock.is_expired(db_session, "missing", 0, T0)
