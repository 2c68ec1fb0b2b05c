"""
Scoring Service - computes the final result of an attempt with negative marking.

Per section:
1. Classify every question as correct, incorrect or not answered
2. score = correct * marks_per_correct - incorrect * negative_marks
3. max_score = total_questions * marks_per_correct

Totals add the sections up; percentage = total_score / max_score * 100.
The result is computed once, at submission, and stored with the attempt.
"""

import time
from datetime import datetime

from sqlalchemy.orm import Session

from exam_engine.catalog import TestDefinition
from exam_engine.errors import Conflict
from exam_engine.logging_config import get_logger, log_with_context
from exam_engine.models.attempt import Attempt
from exam_engine.models.section_state import TERMINAL_STATUSES
from exam_engine.services import session_store

# Channel logger for scoring operations
logger = get_logger("scoring")


def _normalize(answer) -> str:
    return str(answer).upper().strip()


def _score_section(index, section_def, state, responses, marking):
    correct = incorrect = not_answered = marked = 0

    for question in section_def.questions:
        response = responses.get(question.id)
        if response is not None and response.is_marked_for_review:
            marked += 1
        if response is None or not response.is_answered:
            not_answered += 1
        elif (question.correct_answer is not None
              and _normalize(response.selected_answer) == _normalize(question.correct_answer)):
            correct += 1
        else:
            incorrect += 1

    total = len(section_def.questions)
    positive = correct * marking["marks_per_correct"]
    negative = incorrect * marking["negative_marks"]
    visited = len([i for i in (state.visited if state is not None else []) if 0 <= i < total])

    return {
        "index": index,
        "section_name": section_def.name,
        "status": state.status if state is not None else None,
        "remaining_seconds": state.remaining_seconds if state is not None else None,
        "total_questions": total,
        "answered": correct + incorrect,
        "not_answered": not_answered,
        "correct": correct,
        "incorrect": incorrect,
        "marked_for_review": marked,
        "visited": visited,
        "not_visited": total - visited,
        "positive_marks": positive,
        "negative_marks": negative,
        "score": positive - negative,
        "max_score": total * marking["marks_per_correct"],
    }


def compute_result(definition: TestDefinition, attempt: Attempt) -> dict:
    """
    Build the result breakdown from stored responses and the answer key.

    Deterministic: the same responses and key always give the same dict.
    """
    marking = {
        "marks_per_correct": definition.marks_per_correct,
        "negative_marks": definition.negative_marks,
    }
    responses = attempt.responses_by_question()
    states = {s.position: s for s in attempt.section_states}

    sections = [
        _score_section(index, section_def, states.get(index), responses, marking)
        for index, section_def in enumerate(definition.sections)
    ]

    total_correct = sum(s["correct"] for s in sections)
    total_incorrect = sum(s["incorrect"] for s in sections)
    total_score = sum(s["score"] for s in sections)
    max_score = sum(s["max_score"] for s in sections)
    total_answered = total_correct + total_incorrect

    totals = {
        "total_questions": sum(s["total_questions"] for s in sections),
        "total_answered": total_answered,
        "total_not_answered": sum(s["not_answered"] for s in sections),
        "total_correct": total_correct,
        "total_incorrect": total_incorrect,
        "total_marked_for_review": sum(s["marked_for_review"] for s in sections),
        "positive_marks": sum(s["positive_marks"] for s in sections),
        "negative_marks": sum(s["negative_marks"] for s in sections),
        "total_score": total_score,
        "max_score": max_score,
    }

    return {
        "attempt_id": str(attempt.id),
        "test_id": str(attempt.test_id),
        "marking_scheme": marking,
        "sections": sections,
        "totals": totals,
        "percentage": round(total_score / max_score * 100, 2) if max_score else 0.0,
        "accuracy": round(total_correct / total_answered * 100, 2) if total_answered else 0.0,
    }


def score_attempt(db: Session, attempt: Attempt, definition: TestDefinition, now: datetime) -> dict:
    """
    Score a finished attempt and freeze it.

    Every section must already be LOCKED or COMPLETED. The result is
    persisted through the session store; a submitted attempt is never
    re-scored.
    """
    start_time = time.time()

    session_store.ensure_open(attempt)
    open_sections = [s.position for s in attempt.section_states if s.status not in TERMINAL_STATUSES]
    if open_sections:
        raise Conflict("Sections still open: {}".format(open_sections),
                       extra={"attempt_id": str(attempt.id), "open_sections": open_sections})

    result = compute_result(definition, attempt)
    session_store.finalize(db, attempt, result, now)

    duration_ms = (time.time() - start_time) * 1000
    totals = result["totals"]
    log_with_context(logger, "INFO",
        "Score computed: {} (correct={}, incorrect={}, not_answered={}, percentage={:.2f}%)".format(
            totals["total_score"], totals["total_correct"], totals["total_incorrect"],
            totals["total_not_answered"], result["percentage"]),
        context={
            "attempt_id": str(attempt.id),
            "student_id": str(attempt.student_id),
            "test_id": str(attempt.test_id)
        },
        extra_data={
            "duration_ms": round(duration_ms, 2),
            "score": float(totals["total_score"]),
            "percentage": result["percentage"]
        })

    return result


def stored_result(attempt: Attempt) -> dict:
    """The result persisted at submission."""
    if attempt.result is None:
        raise Conflict("Attempt has not been submitted yet",
                       extra={"attempt_id": str(attempt.id), "status": attempt.status})
    return attempt.result.explanation_dict
