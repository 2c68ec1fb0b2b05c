"""
Expiry sweeper - keeps section clocks running when no client is connected.

Once per tick the sweeper runs the transition controller's clock over
every open attempt, so sections lock, advance and submit on time even for
a student who closed the tab.
"""

import threading
import time

from exam_engine import config
from exam_engine.catalog import SqlTestCatalog
from exam_engine.database import session_scope
from exam_engine.errors import EngineError
from exam_engine.logging_config import get_logger, log_with_context
from exam_engine.models.attempt import Attempt, SUBMITTED
from exam_engine.services import section_clock, session_store, transitions

logger = get_logger("clock")


def sweep_once(session_factory, now=None) -> int:
    """Run the clock over all open attempts. Returns how many changed phase."""
    now = now or section_clock.utcnow()
    changed = 0

    with session_scope(session_factory) as db:
        rows = db.query(Attempt.id, Attempt.student_id).filter(Attempt.status != SUBMITTED).all()
        for attempt_id, student_id in rows:
            try:
                with session_store.attempt_transaction(db, attempt_id, student_id) as attempt:
                    definition = SqlTestCatalog(db).get_test(attempt.test_id)
                    if transitions.run_clock(db, attempt, definition, now):
                        changed += 1
            except EngineError as e:
                log_with_context(logger, "WARNING", "Sweep skipped attempt: {}".format(e.detail),
                                 context={"attempt_id": str(attempt_id)},
                                 extra_data={"error": e.code})

    if changed:
        log_with_context(logger, "INFO", "Sweep moved {} attempts".format(changed))
    return changed


class ExpirySweeper:
    """Daemon thread calling sweep_once every CLOCK_TICK_SECONDS."""

    def __init__(self, session_factory, interval: float = None):
        self.session_factory = session_factory
        self.interval = interval or config.CLOCK_TICK_SECONDS
        self._stop = threading.Event()
        self._thread = None

    def _loop(self):
        while not self._stop.is_set():
            started = time.monotonic()
            try:
                sweep_once(self.session_factory)
            except Exception:
                logger.exception("Expiry sweep failed")
            self._stop.wait(max(0.0, self.interval - (time.monotonic() - started)))

    def start(self):
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._loop, name="expiry-sweeper", daemon=True)
        self._thread.start()
        log_with_context(logger, "INFO", "Expiry sweeper started",
                         extra_data={"interval_seconds": self.interval})

    def stop(self, timeout: float = 5.0):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
