"""
Client half of the sync protocol, for Python front ends and load drivers.

The client answers optimistically against its local state and keeps a
cosmetic 1-second countdown. Every SYNC_INTERVAL_SECONDS (and before
navigation, section changes and shutdown) it pushes its state to the
server and merges the reply with ``reconcile``. Network failures never
block answering: the client keeps its state, retries on the next sync and
reports "unsaved" after UNSAVED_AFTER_FAILURES failures in a row.
"""

import threading
import time
from typing import Optional

import httpx

from exam_engine import config
from exam_engine.client.reconcile import LocalAttemptState, LocalResponse, from_start, reconcile
from exam_engine.errors import (
    Conflict, EngineError, Forbidden, NotFound, SectionLocked, Transient, Unauthenticated
)
from exam_engine.logging_config import get_logger, log_with_context

logger = get_logger("client")

SAVED = "saved"
UNSAVED = "unsaved"

ERRORS_BY_CODE = {cls.code: cls for cls in (
    Unauthenticated, NotFound, Forbidden, SectionLocked, Conflict, Transient
)}


def _engine_error(response: httpx.Response) -> EngineError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    cls = ERRORS_BY_CODE.get(body.get("error"), Transient if response.status_code >= 500 else Conflict)
    extra = {k: v for k, v in body.items() if k not in ("error", "detail")}
    return cls(body.get("detail") or response.text or "HTTP {}".format(response.status_code), extra=extra)


class AttemptSyncClient:
    def __init__(self, base_url: str, student_id: str, http: Optional[httpx.Client] = None,
                 sync_interval: float = None, unsaved_after: int = None):
        self.http = http or httpx.Client(base_url=base_url, timeout=10.0)
        self.student_id = student_id
        self.sync_interval = sync_interval or config.SYNC_INTERVAL_SECONDS
        self.unsaved_after = unsaved_after or config.UNSAVED_AFTER_FAILURES
        self.state: Optional[LocalAttemptState] = None
        self.test: Optional[dict] = None
        self.consecutive_failures = 0
        self.save_status = SAVED
        self.notices = []
        self._lock = threading.RLock()

    # ── transport ────────────────────────────────────────────

    def _request(self, method: str, path: str, json: dict = None) -> dict:
        try:
            response = self.http.request(method, path, json=json,
                                         headers={config.STUDENT_ID_HEADER: self.student_id})
        except httpx.TransportError as e:
            raise Transient("Network error: {}".format(e))
        if response.status_code >= 400:
            raise _engine_error(response)
        return response.json()

    def _context(self) -> dict:
        return {"attempt_id": self.state.attempt_id if self.state else None,
                "student_id": self.student_id}

    def _notice(self, error: EngineError) -> None:
        self.notices.append({"error": error.code, "detail": error.detail})
        log_with_context(logger, "INFO", "Server notice: {}".format(error.detail),
                         context=self._context(), extra_data={"error": error.code})

    def _path(self, suffix: str = "") -> str:
        return "/api/attempt/{}{}".format(self.state.attempt_id, suffix)

    # ── lifecycle ────────────────────────────────────────────

    def start(self, test_id: str, attempt_id: str = None) -> dict:
        body = self._request("POST", "/api/attempt/start",
                             json={"test_id": test_id, "attempt_id": attempt_id})
        with self._lock:
            self.test = body["test"]
            self.state = from_start(body)
        return body

    def refresh(self) -> LocalAttemptState:
        body = self._request("GET", self._path())
        with self._lock:
            self.state = reconcile(self.state, body)
        return self.state

    # ── local, optimistic ────────────────────────────────────

    def tick(self, seconds: int = 1) -> bool:
        """
        Cosmetic countdown of the current section. Returns True when it
        reaches zero; the server still decides whether the section is over.
        """
        with self._lock:
            section = self.state.current_section if self.state else None
            if section is None or not section.is_writable or section.remaining_seconds <= 0:
                return False
            section.remaining_seconds = max(0, section.remaining_seconds - seconds)
            return section.remaining_seconds == 0

    def answer(self, question_id: str, selected_answer: Optional[str]) -> LocalResponse:
        with self._lock:
            section = self.state.section_of(question_id)
            if section is None:
                raise NotFound("Question not in this test", extra={"question_id": question_id})
            if not section.is_writable:
                raise SectionLocked("Section {} is locked".format(section.name),
                                    extra={"question_id": question_id})
            previous = self.state.responses.get(question_id)
            response = LocalResponse(
                question_id=question_id,
                selected_answer=selected_answer,
                is_marked_for_review=previous.is_marked_for_review if previous else False,
            )
            self.state.responses[question_id] = response
            return response

    def clear(self, question_id: str) -> LocalResponse:
        return self.answer(question_id, None)

    def toggle_review(self, question_id: str) -> LocalResponse:
        with self._lock:
            section = self.state.section_of(question_id)
            if section is None or not section.is_writable:
                raise SectionLocked("Question {} cannot be changed".format(question_id))
            previous = self.state.responses.get(question_id) or LocalResponse(question_id)
            response = LocalResponse(question_id, previous.selected_answer,
                                     not previous.is_marked_for_review)
            self.state.responses[question_id] = response
            return response

    def navigate(self, question_index: int) -> None:
        with self._lock:
            self.state.current_question_index = max(0, question_index)
        self.sync()

    # ── server round trips ───────────────────────────────────

    def _payload(self):
        sent = [LocalResponse(r.question_id, r.selected_answer, r.is_marked_for_review)
                for r in self.state.dirty_responses()]
        payload = {
            "current_section_index": self.state.current_section_index,
            "current_question_index": self.state.current_question_index,
            "section_states": [
                {"index": s.index, "remaining_seconds": s.remaining_seconds,
                 "is_locked": s.is_locked, "is_completed": s.is_completed}
                for s in self.state.sections
            ],
            "responses": [r.as_payload() for r in sent],
        }
        return payload, sent

    def _sync_failed(self, error: Transient) -> None:
        self.consecutive_failures += 1
        if self.consecutive_failures >= self.unsaved_after:
            self.save_status = UNSAVED
        log_with_context(logger, "WARNING", "Sync failed: {}".format(error.detail),
                         context=self._context(),
                         extra_data={"consecutive_failures": self.consecutive_failures,
                                     "save_status": self.save_status})

    def sync(self) -> bool:
        """
        Push local state and merge the reply. Returns False when the sync
        did not go through; local state is kept for the next try.
        """
        if self.state is None or self.state.is_submitted:
            return False
        with self._lock:
            payload, sent = self._payload()
        try:
            body = self._request("POST", self._path("/sync"), json=payload)
        except Transient as e:
            self._sync_failed(e)
            return False
        except (Conflict, SectionLocked) as e:
            self._notice(e)
            try:
                self.refresh()
            except Transient as refresh_error:
                self._sync_failed(refresh_error)
            return False

        with self._lock:
            self.state = reconcile(self.state, body, sent=sent)
        self.consecutive_failures = 0
        self.save_status = SAVED
        if body.get("rejected"):
            self._notice(SectionLocked("{} answers were not saved".format(len(body["rejected"]))))
        return True

    def final_sync(self) -> bool:
        """Best-effort sync before the client goes away."""
        try:
            return self.sync()
        except EngineError as e:
            log_with_context(logger, "WARNING", "Final sync failed: {}".format(e.detail),
                             context=self._context(), extra_data={"error": e.code})
            return False

    def save_response(self, question_id: str) -> bool:
        """Write one response immediately; rolls back locally if the server refuses."""
        with self._lock:
            response = self.state.responses.get(question_id) or LocalResponse(question_id)
        try:
            body = self._request("PUT", self._path("/response"), json=response.as_payload())
        except SectionLocked as e:
            self._notice(e)
            with self._lock:
                self.state = reconcile(self.state, {**e.extra, "rejected": [{"question_id": question_id}]})
            return False
        except Transient:
            # The next periodic sync carries it
            return False
        with self._lock:
            self.state = reconcile(self.state, body, sent=[response])
        return True

    def submit_section(self) -> dict:
        self.sync()
        with self._lock:
            index = self.state.current_section_index
            to_index = index + 1 if index + 1 < len(self.state.sections) else None
        body = self._request("POST", self._path("/transition-section"),
                             json={"from_section": index, "to_section": to_index})
        with self._lock:
            self.state = reconcile(self.state, body)
        return body

    def report_expiry(self) -> dict:
        with self._lock:
            index = self.state.current_section_index
        body = self._request("POST", self._path("/section-expired"), json={"section_index": index})
        with self._lock:
            self.state = reconcile(self.state, body)
        return body

    def submit(self) -> dict:
        self.final_sync()
        try:
            body = self._request("POST", self._path("/submit"))
        except Conflict:
            # Already submitted, e.g. the last section expired on the server
            body = self._request("GET", self._path("/results"))
        with self._lock:
            self.state.status = "SUBMITTED"
            self.state.results = body["results"]
        return body["results"]

    # ── loop ─────────────────────────────────────────────────

    def run(self, stop: threading.Event, tick_seconds: float = None) -> None:
        """Countdown and periodic sync until ``stop`` is set or the test is over."""
        tick_seconds = tick_seconds or config.CLOCK_TICK_SECONDS
        last_sync = time.monotonic()
        while not stop.wait(tick_seconds):
            if self.state is None or self.state.is_submitted:
                break
            if self.tick():
                try:
                    self.report_expiry()
                except EngineError as e:
                    # the next sync carries the server verdict
                    self._notice(e)
            if time.monotonic() - last_sync >= self.sync_interval:
                try:
                    self.sync()
                except EngineError as e:
                    self._notice(e)
                last_sync = time.monotonic()
        self.final_sync()

    def close(self):
        self.http.close()
