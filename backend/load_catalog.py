"""
Catalog Loader Script - seeds test definitions into the tests table.

The course service owns the catalog in production; this script fills it
for local development and demos. Each entry either lists its questions or
gives a ``question_count``, in which case placeholder questions with
options A-D and a repeating A, B, C, D answer key are generated.

Usage:
    python load_catalog.py                        # Loads sample_catalog.json
    python load_catalog.py path/to/catalog.json   # Custom catalog file
"""

import json
import os
import sys

from exam_engine.catalog import build_definition
from exam_engine.database import create_tables, session_scope
from exam_engine.errors import ConfigurationError
from exam_engine.models.test import Test

DEFAULT_ANSWERS = ["A", "B", "C", "D"]
DEFAULT_CATALOG = os.path.join(os.path.dirname(os.path.abspath(__file__)), "sample_catalog.json")


def expand_sections(sections):
    """Generate placeholder questions for sections given as a count."""
    expanded = []
    for section in sections:
        section = dict(section)
        if "questions" not in section:
            count = int(section.pop("question_count", 0))
            section["questions"] = [
                {
                    "id": "{}-q{}".format(section["name"].lower(), n),
                    "text": "{} question {}".format(section["name"], n),
                    "options": list(DEFAULT_ANSWERS),
                    "correct_answer": DEFAULT_ANSWERS[(n - 1) % 4],
                }
                for n in range(1, count + 1)
            ]
        expanded.append(section)
    return expanded


def load(entries, db):
    loaded, failed = 0, 0
    for entry in entries:
        test = Test(id=entry["id"])
        test.name = entry["name"]
        test.instructions = entry.get("instructions")
        test.marks_per_correct = entry.get("marks_per_correct", 3)
        test.negative_marks = entry.get("negative_marks", 1)
        test.sections = json.dumps(expand_sections(entry.get("sections", [])))

        try:
            definition = build_definition(test)
        except ConfigurationError as e:
            print(f"  ❌ {entry['id']}: {e.detail}")
            failed += 1
            continue

        db.merge(test)
        loaded += 1
        print(f"  ✅ {definition.id}: {definition.name} "
              f"({len(definition.sections)} sections, {definition.total_questions} questions)")
    db.commit()
    return loaded, failed


def main():
    catalog_file = sys.argv[1] if len(sys.argv) > 1 else DEFAULT_CATALOG

    if not os.path.exists(catalog_file):
        print(f"Error: Could not find {catalog_file}")
        sys.exit(1)

    print(f"Loading catalog from: {catalog_file}")
    with open(catalog_file, "r") as f:
        entries = json.load(f)

    import exam_engine.models  # noqa: F401
    create_tables()

    with session_scope() as db:
        loaded, failed = load(entries, db)

    print("=" * 60)
    print(f"  Loaded: {loaded}   Rejected: {failed}")
    print("=" * 60)
    if failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
