#!/usr/bin/env python3
"""
Tests for conversation context: entity extraction, context updates, context
injection into follow-up questions and answer formatting.
"""

import unittest

from context_applicator import apply_context
from conversation_context import (
    ConversationContext,
    QueryResult,
    extract_entities,
    format_answer,
    update_context,
)


class TestExtractEntities(unittest.TestCase):

    def test_district_id_from_sql(self):
        result = QueryResult(sql="SELECT * FROM institutions WHERE district_id = 7", rows=[{"id": 1}])
        self.assertEqual(extract_entities(result), {"district_id": 7})

    def test_school_from_note_and_sql(self):
        result = QueryResult(
            sql="SELECT COUNT(*) AS student_count FROM institutions_users WHERE institution_id = 12 AND deleted_at IS NULL",
            rows=[{"student_count": 40}],
            note="Count of students in Lincoln Elementary School (ID: 12)",
        )
        entities = extract_entities(result)
        self.assertEqual(entities["school_id"], 12)
        self.assertEqual(entities["school_name"], "Lincoln Elementary School")

    def test_quoted_school_name_in_note(self):
        result = QueryResult(
            sql="SELECT * FROM institutions WHERE id = 4",
            note='Found school "Roosevelt High" but could not determine student information.',
        )
        self.assertEqual(extract_entities(result)["school_name"], "Roosevelt High")

    def test_structured_entities_win(self):
        result = QueryResult(
            sql="SELECT * FROM institutions WHERE district_id = 3",
            entities={"district_id": 5, "district_name": "North Valley"},
        )
        self.assertEqual(extract_entities(result), {"district_id": 5, "district_name": "North Valley"})

    def test_existing_entities_are_kept_and_overwritten(self):
        existing = {"school_name": "Lincoln Elementary School", "district_id": 1}
        result = QueryResult(sql="SELECT * FROM institutions WHERE district_id = 2")
        self.assertEqual(
            extract_entities(result, existing),
            {"school_name": "Lincoln Elementary School", "district_id": 2},
        )
        self.assertEqual(existing["district_id"], 1)


class TestUpdateContext(unittest.TestCase):

    def test_turn_is_appended(self):
        context = ConversationContext()
        result = QueryResult(sql="SELECT * FROM institutions WHERE district_id = 7", rows=[{"id": 1}])
        updated = update_context(context, "show schools in district 7", result)

        self.assertEqual(updated.previous_questions, ("show schools in district 7",))
        self.assertEqual(updated.previous_results, (result,))
        self.assertEqual(updated.entities, {"district_id": 7})
        self.assertEqual(context.entities, {})

    def test_context_serialisation_drops_unknown_entities(self):
        data = {
            "previous_questions": ["show all districts"],
            "previous_results": [{"sql": "SELECT * FROM districts ORDER BY name", "rows": [{"id": 1}]}],
            "entities": {"district_id": 1, "favourite_colour": "blue"},
        }
        context = ConversationContext.from_dict(data)
        self.assertEqual(context.entities, {"district_id": 1})
        self.assertEqual(context.previous_results[0].rows, ({"id": 1},))
        self.assertEqual(ConversationContext.from_dict(context.to_dict()), context)


class TestApplyContext(unittest.TestCase):

    def test_student_question_gets_school_not_district(self):
        context = ConversationContext(entities={"school_name": "Lincoln Elementary School", "district_id": 3})
        self.assertEqual(
            apply_context("how many students are there", context),
            "how many students are there in school Lincoln Elementary School",
        )

    def test_institution_question_gets_remembered_district(self):
        context = ConversationContext(entities={"district_id": 7})
        self.assertEqual(
            apply_context("list institutions with more than 100 students", context),
            "list institutions with more than 100 students for district_id 7",
        )

    def test_explicit_district_is_left_alone(self):
        context = ConversationContext(entities={"district_id": 7})
        question = "show institutions in district 4"
        self.assertEqual(apply_context(question, context), question)

    def test_generic_follow_up_uses_school_first(self):
        context = ConversationContext(entities={"school_name": "Roosevelt High School", "district_id": 2})
        self.assertEqual(
            apply_context("what about attendance?", context),
            "what about attendance? for school Roosevelt High School",
        )

    def test_generic_follow_up_falls_back_to_district(self):
        context = ConversationContext(entities={"district_id": 2})
        self.assertEqual(
            apply_context("what about attendance?", context),
            "what about attendance? for district_id 2",
        )

    def test_specific_school_blocks_injection(self):
        context = ConversationContext(entities={"school_name": "Roosevelt High School", "district_id": 2})
        question = "how many students are in Lincoln Elementary School"
        self.assertEqual(apply_context(question, context), question)

    def test_elementary_school_overrides_inherited_district(self):
        context = ConversationContext(entities={"district_id": 3})
        normalized = "show institutions near the lincoln elementary institution"
        original = "show schools near the lincoln Elementary School"
        self.assertEqual(apply_context(normalized, context, original), normalized)

    def test_lowercase_elementary_schools_keep_inherited_district(self):
        context = ConversationContext(entities={"district_id": 3})
        normalized = "show elementary institutions"
        original = "show elementary schools"
        self.assertEqual(
            apply_context(normalized, context, original),
            "show elementary institutions for district_id 3",
        )

    def test_no_entities(self):
        question = "what about those?"
        self.assertEqual(apply_context(question, ConversationContext()), question)
        self.assertEqual(apply_context(question, None), question)


class TestFormatAnswer(unittest.TestCase):

    def test_error(self):
        self.assertEqual(format_answer(QueryResult(sql="SELECT 1", error="boom")), "Error: boom")

    def test_student_count(self):
        result = QueryResult(
            sql="SELECT COUNT(*) AS student_count FROM institutions_users WHERE institution_id = 1",
            rows=[{"student_count": 42}],
            note="Count of students in Lincoln Elementary School (ID: 1)",
        )
        self.assertEqual(
            format_answer(result),
            "Note: Count of students in Lincoln Elementary School (ID: 1)\n\nFound 42 students",
        )
        single = QueryResult(sql="SELECT 1", rows=[{"student_count": 1}])
        self.assertEqual(format_answer(single), "Found 1 student")

    def test_rows_render_as_markdown_table(self):
        answer = format_answer(QueryResult(sql="SELECT * FROM districts", rows=[{"id": 1, "name": "North"}]))
        self.assertIn("name", answer)
        self.assertIn("North", answer)
        self.assertIn("|", answer)

    def test_empty_rows(self):
        self.assertEqual(format_answer(QueryResult(sql="SELECT * FROM districts")), "No rows returned.")

    def test_conversational_reply(self):
        self.assertEqual(format_answer(QueryResult(sql="", note="Great!")), "Note: Great!")


if __name__ == '__main__':
    unittest.main()
