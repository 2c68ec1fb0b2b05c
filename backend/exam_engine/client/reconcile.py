"""
Client-side view of an attempt and the one function that merges server
replies into it.

Every server reply (start, sync, response write, transition, expiry,
error bodies carrying section states) goes through ``reconcile``. Time and
lock fields always come from the server. Responses the server rejected go
back to the last value it confirmed.
"""

import copy
from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class LocalSection:
    index: int
    name: str
    remaining_seconds: int
    is_locked: bool = False
    is_completed: bool = False
    status: str = "PENDING"

    @property
    def is_writable(self) -> bool:
        return not self.is_locked and not self.is_completed and self.status == "ACTIVE"


@dataclass
class LocalResponse:
    question_id: str
    selected_answer: Optional[str] = None
    is_marked_for_review: bool = False

    def as_payload(self) -> dict:
        return {
            "question_id": self.question_id,
            "selected_answer": self.selected_answer,
            "is_marked_for_review": self.is_marked_for_review,
        }


@dataclass
class LocalAttemptState:
    attempt_id: str
    current_section_index: int
    current_question_index: int
    sections: List[LocalSection]
    question_sections: Dict[str, int]
    responses: Dict[str, LocalResponse] = field(default_factory=dict)
    confirmed: Dict[str, LocalResponse] = field(default_factory=dict)
    status: str = "IN_PROGRESS"
    results: Optional[dict] = None

    @property
    def current_section(self) -> Optional[LocalSection]:
        if 0 <= self.current_section_index < len(self.sections):
            return self.sections[self.current_section_index]
        return None

    @property
    def is_submitted(self) -> bool:
        return self.status == "SUBMITTED"

    def section_of(self, question_id: str) -> Optional[LocalSection]:
        index = self.question_sections.get(question_id)
        return self.sections[index] if index is not None else None

    def dirty_responses(self) -> List[LocalResponse]:
        """Local responses that differ from what the server last confirmed."""
        return [r for qid, r in self.responses.items() if self.confirmed.get(qid) != r]


def _responses_from_server(raw: dict) -> Dict[str, LocalResponse]:
    return {
        qid: LocalResponse(
            question_id=qid,
            selected_answer=r.get("selected_answer"),
            is_marked_for_review=bool(r.get("is_marked_for_review")),
        )
        for qid, r in (raw or {}).items()
    }


def from_start(body: dict) -> LocalAttemptState:
    """Build the local state from a start / get-attempt reply."""
    attempt = body["attempt"]
    test = body["test"]
    question_sections = {
        str(q["id"]): section["index"]
        for section in test["sections"]
        for q in section["questions"]
    }
    local = LocalAttemptState(
        attempt_id=attempt["id"],
        current_section_index=attempt["current_section_index"],
        current_question_index=attempt["current_question_index"],
        sections=[
            LocalSection(index=s["index"], name=s["name"], remaining_seconds=s["remaining_seconds"])
            for s in attempt["section_states"]
        ],
        question_sections=question_sections,
    )
    return reconcile(local, body)


def reconcile(local: LocalAttemptState, server: dict,
              sent: Optional[List[LocalResponse]] = None) -> LocalAttemptState:
    """
    Merge a server reply into the local state and return the merged copy.

    ``sent`` are the responses included in the request being answered; the
    ones not listed in the reply's ``rejected`` become confirmed.
    """
    merged = copy.deepcopy(local)
    body = server.get("attempt", server)

    for state in body.get("section_states") or server.get("section_states") or []:
        index = state["index"]
        if not 0 <= index < len(merged.sections):
            continue
        section = merged.sections[index]
        section.remaining_seconds = state["remaining_seconds"]
        section.is_locked = state["is_locked"]
        section.is_completed = state["is_completed"]
        section.status = state.get("status", section.status)

    if "status" in body:
        merged.status = body["status"]

    server_section = body.get("current_section_index")
    if server_section is not None and server_section != merged.current_section_index:
        merged.current_section_index = server_section
        merged.current_question_index = body.get("current_question_index", 0)

    if "responses" in body and isinstance(body["responses"], dict):
        confirmed = _responses_from_server(body["responses"])
        merged.confirmed = confirmed
        for qid, response in confirmed.items():
            section = merged.section_of(qid)
            if qid not in merged.responses or section is None or not section.is_writable:
                merged.responses[qid] = copy.deepcopy(response)

    rejected = {r["question_id"] for r in server.get("rejected", [])}
    for response in sent or []:
        if response.question_id not in rejected:
            merged.confirmed[response.question_id] = copy.deepcopy(response)

    for qid in rejected:
        _roll_back(merged, qid)

    # Drafts for sections the server has closed can never be saved
    for qid in list(merged.responses):
        section = merged.section_of(qid)
        if section is not None and not section.is_writable and merged.responses[qid] != merged.confirmed.get(qid):
            _roll_back(merged, qid)

    if server.get("results") is not None:
        merged.results = server["results"]
    return merged


def _roll_back(state: LocalAttemptState, question_id: str) -> None:
    confirmed = state.confirmed.get(question_id)
    if confirmed is None:
        state.responses.pop(question_id, None)
    else:
        state.responses[question_id] = copy.deepcopy(confirmed)
