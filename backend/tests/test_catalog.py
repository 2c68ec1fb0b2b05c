"""
Tests for test definition validation, the SQL catalog and the catalog loader.
"""

import json

import pytest

import load_catalog
from exam_engine import catalog, models
from exam_engine.errors import ConfigurationError, NotFound

from helpers import add_test


def row(sections, **kwargs):
    return models.Test(id="t1", name="Mock", sections=json.dumps(sections), **kwargs)


class TestBuildDefinition:

    def test_valid_definition(self):
        definition = catalog.build_definition(row([
            {"name": "VARC", "duration": 40, "questions": [{"id": 1, "correct_answer": "A"}]},
            {"name": "QA", "duration": 0.5, "questions": [{"id": "x7", "correct_answer": "B"}]},
        ], marks_per_correct=4, negative_marks=2))

        assert definition.sections[0].duration_seconds == 2400
        assert definition.sections[1].duration_seconds == 30
        assert definition.section_index_of("1") == 0
        assert definition.section_index_of("x7") == 1
        assert definition.section_index_of("nope") is None
        assert definition.answer_key() == {"1": "A", "x7": "B"}
        assert definition.marks_per_correct == 4

    def test_public_view_has_no_answers(self):
        definition = catalog.build_definition(row([
            {"name": "VARC", "duration": 40, "questions": [{"id": "q1", "options": ["A", "B"],
                                                            "correct_answer": "A"}]},
        ]))

        public = definition.public_dict()

        assert public["sections"][0]["index"] == 0
        assert public["sections"][0]["questions"] == [{"id": "q1", "text": "", "options": ["A", "B"]}]

    @pytest.mark.parametrize("sections", [
        [],
        [{"name": "VARC", "duration": 0}],
        [{"name": "VARC", "duration": -1}],
        [{"name": "VARC", "duration": float("nan")}],
        [{"name": "VARC", "duration": float("inf")}],
        [{"name": "VARC", "duration": 0.001}],
        [{"name": "", "duration": 40}],
        [{"name": "VARC", "duration": 40, "questions": [{"id": "q1"}]},
         {"name": "QA", "duration": 40, "questions": [{"id": "q1"}]}],
    ])
    def test_invalid_definitions(self, sections):
        with pytest.raises(ConfigurationError):
            catalog.build_definition(row(sections))

    def test_unreadable_sections_json(self):
        broken = models.Test(id="t1", name="Mock", sections="{not json")

        with pytest.raises(ConfigurationError):
            catalog.build_definition(broken)


class TestSqlTestCatalog:

    def test_get_test(self, db_session):
        add_test(db_session, "t-sql", [{"name": "VARC", "duration": 40, "questions": []}])

        definition = catalog.SqlTestCatalog(db_session).get_test("t-sql")

        assert definition.id == "t-sql"
        assert definition.total_questions == 0

    def test_missing_test(self, db_session):
        with pytest.raises(NotFound):
            catalog.SqlTestCatalog(db_session).get_test("missing")


class TestCatalogLoader:

    def test_placeholder_questions(self):
        sections = load_catalog.expand_sections([{"name": "DILR", "duration": 40, "question_count": 5}])

        questions = sections[0]["questions"]
        assert [q["id"] for q in questions] == ["dilr-q1", "dilr-q2", "dilr-q3", "dilr-q4", "dilr-q5"]
        assert [q["correct_answer"] for q in questions] == ["A", "B", "C", "D", "A"]
        assert "question_count" not in sections[0]

    def test_load_sample_catalog(self, db_session):
        with open(load_catalog.DEFAULT_CATALOG) as f:
            entries = json.load(f)

        assert load_catalog.load(entries, db_session) == (1, 0)
        # Loading again updates in place
        assert load_catalog.load(entries, db_session) == (1, 0)

        definition = catalog.SqlTestCatalog(db_session).get_test("cat-mock-01")
        assert [s.name for s in definition.sections] == ["VARC", "DILR", "QA"]
        assert definition.total_questions == 66

    def test_invalid_entry_rejected(self, db_session):
        entries = [{"id": "bad", "name": "Bad", "sections": [{"name": "VARC", "duration": 0}]}]

        assert load_catalog.load(entries, db_session) == (0, 1)
        with pytest.raises(NotFound):
            catalog.SqlTestCatalog(db_session).get_test("bad")
