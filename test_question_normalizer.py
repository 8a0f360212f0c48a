#!/usr/bin/env python3
"""
Tests for question normalisation: conversational detection, school/institution
canonicalisation and follow-up detection.
"""

import random
import unittest

from question_normalizer import (
    CONVERSATIONAL_REPLIES,
    canonicalize_terms,
    conversational_reply,
    is_conversational,
    is_follow_up,
    normalize_question,
)


class TestConversational(unittest.TestCase):

    def test_acknowledgements_are_conversational(self):
        for text_value in ["thanks", "Thank you!", "ok.", "Great", "got it", "  cool!!  ", "No"]:
            with self.subTest(text_value=text_value):
                self.assertTrue(is_conversational(text_value))

    def test_questions_are_not_conversational(self):
        for text_value in ["thanks, now show all districts", "great schools in district 3", "show all districts"]:
            with self.subTest(text_value=text_value):
                self.assertFalse(is_conversational(text_value))

    def test_reply_comes_from_fixed_set(self):
        rng = random.Random(7)
        for _ in range(10):
            self.assertIn(conversational_reply(rng), CONVERSATIONAL_REPLIES)

    def test_normalize_marks_conversational(self):
        normalized = normalize_question("  Thanks!  ")
        self.assertTrue(normalized.is_conversational)
        self.assertFalse(normalized.is_follow_up)
        self.assertEqual(normalized.normalized, "Thanks!")


class TestCanonicalizeTerms(unittest.TestCase):

    def test_generic_school_words_become_institution(self):
        self.assertEqual(canonicalize_terms("show all schools in district 3"), "show all institutions in district 3")
        self.assertEqual(canonicalize_terms("students in school Roosevelt"), "students in institution Roosevelt")
        self.assertEqual(canonicalize_terms("which school has the most students"), "which institution has the most students")

    def test_proper_school_names_are_preserved(self):
        question = "how many students are in Lincoln Elementary School"
        self.assertEqual(canonicalize_terms(question), question)

    def test_mixed_proper_name_and_generic_word(self):
        self.assertEqual(
            canonicalize_terms("is Roosevelt High School the biggest school"),
            "is Roosevelt High School the biggest institution",
        )

    def test_lowercase_school_name_is_not_protected(self):
        self.assertEqual(
            canonicalize_terms("students at the lincoln elementary school"),
            "students at the lincoln elementary institution",
        )

    def test_normalization_is_idempotent(self):
        questions = [
            "how many students are in Lincoln Elementary School",
            "list schools in district 4",
            "show students in school Roosevelt",
            "what about the middle school?",
        ]
        for question in questions:
            with self.subTest(question=question):
                once = normalize_question(question).normalized
                self.assertEqual(normalize_question(once).normalized, once)


class TestFollowUp(unittest.TestCase):

    def test_follow_up_phrasings(self):
        for text_value in [
            "and in district 4?",
            "what about those?",
            "how many students are there",
            "show me them",
            "list the students from there",
        ]:
            with self.subTest(text_value=text_value):
                self.assertTrue(is_follow_up(text_value))

    def test_standalone_statements(self):
        for text_value in ["students enrolled in district 2", "district 3 institutions"]:
            with self.subTest(text_value=text_value):
                self.assertFalse(is_follow_up(text_value))

    def test_follow_up_flag_uses_original_wording(self):
        normalized = normalize_question("what about schools in district 2?")
        self.assertTrue(normalized.is_follow_up)
        self.assertEqual(normalized.normalized, "what about institutions in district 2?")
        self.assertEqual(normalized.original, "what about schools in district 2?")


if __name__ == '__main__':
    unittest.main()
