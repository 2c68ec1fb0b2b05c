"""Small helpers shared by the test modules."""

import json

from exam_engine import models


def add_test(db, test_id, sections, name=None, marks_per_correct=3, negative_marks=1):
    """Insert a catalog row and commit it."""
    row = models.Test(
        id=test_id,
        name=name or test_id,
        sections=json.dumps(sections),
        marks_per_correct=marks_per_correct,
        negative_marks=negative_marks,
    )
    db.add(row)
    db.commit()
    return row


def answer(client, attempt_id, question_id, selected_answer, headers, marked=False):
    return client.put(f"/api/attempt/{attempt_id}/response", headers=headers, json={
        "question_id": question_id,
        "selected_answer": selected_answer,
        "is_marked_for_review": marked,
    })


def section(attempt, index):
    return attempt["section_states"][index]
