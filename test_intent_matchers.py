#!/usr/bin/env python3
"""
Tests for the intent matcher bank: detection, priority order, lookup
misses and the school-to-student join strategies.
"""

import unittest

from core.sql_utils import DatabaseQueryError, InfrastructureError
from matchers import MATCHER_REGISTRY, MatchContext, run_matchers
from matchers.intervention_matcher import detect_intervention_type, filter_condition
from question_normalizer import normalize_question
from schema_catalog import SchemaCatalog, TableEntry
from test_support import FakeExecutor, undefined_table

LINCOLN = [{"id": 12, "name": "Lincoln Elementary School"}]


def resolve(question, executor, catalog=None):
    normalized = normalize_question(question)
    ctx = MatchContext(
        executor=executor,
        catalog=catalog or SchemaCatalog.from_descriptions(),
        question=normalized.normalized,
        original=normalized.original,
    )
    return run_matchers(ctx)


def introspected_catalog(*tables):
    return SchemaCatalog([TableEntry(table_name=t) for t in tables], introspected=True)


class TestRegistry(unittest.TestCase):

    def test_priority_order(self):
        names = [m.name for m in MATCHER_REGISTRY]
        self.assertEqual(names[0], "absent_students_in_school_of_district")
        self.assertLess(names.index("students_in_school_with_district"), names.index("students_in_school"))
        self.assertLess(names.index("schools_in_district_direct"), names.index("schools_by_district"))
        self.assertEqual(names[-2:], ["entity_by_id", "related_to"])

    def test_unrecognised_question_issues_no_queries(self):
        executor = FakeExecutor()
        self.assertIsNone(resolve("what is the average grade", executor))
        self.assertEqual(executor.calls, [])


class TestDistrictAndSchoolMatchers(unittest.TestCase):

    def test_all_districts(self):
        executor = FakeExecutor([("FROM districts", [{"id": 1, "name": "North"}, {"id": 2, "name": "South"}])])
        result = resolve("show me all districts", executor)
        self.assertEqual(result.sql, "SELECT * FROM districts ORDER BY name")
        self.assertEqual(len(result.rows), 2)
        self.assertEqual(result.note, "Found 2 districts in the database")

    def test_schools_in_district_by_number(self):
        executor = FakeExecutor([("WHERE district_id = 5", [{"id": 1, "name": "Adams"}])])
        result = resolve("show schools in district 5", executor)
        self.assertEqual(result.sql, "SELECT * FROM institutions WHERE district_id = 5 ORDER BY name")
        self.assertEqual(result.entities, {"district_id": 5})

    def test_schools_in_district_without_ordering(self):
        executor = FakeExecutor([
            ("ORDER BY name", DatabaseQueryError('column "name" does not exist')),
            ("WHERE district_id = 5", [{"id": 1}]),
        ])
        result = resolve("show all institutions in district 5", executor)
        self.assertEqual(result.sql, "SELECT * FROM institutions WHERE district_id = 5")
        self.assertIn("(fallback query)", result.note)

    def test_schools_by_district_name(self):
        executor = FakeExecutor([
            ("FROM districts WHERE name ILIKE '%Springfield%'", [{"id": 8, "name": "Springfield"}]),
            ("FROM institutions WHERE district_id = 8", [{"id": 1}, {"id": 2}]),
        ])
        result = resolve("institutions belonging to district Springfield", executor)
        self.assertEqual(result.sql, "SELECT * FROM institutions WHERE district_id = 8")
        self.assertEqual(result.entities, {"district_id": 8, "district_name": "Springfield"})


class TestStudentsInSchool(unittest.TestCase):

    def test_student_count_for_named_school(self):
        executor = FakeExecutor([
            ("FROM institutions WHERE name ILIKE", LINCOLN),
            ("AS student_count FROM institutions_users", [{"student_count": 42}]),
        ])
        result = resolve("how many students are in Lincoln Elementary School", executor)

        self.assertEqual(
            executor.calls[0],
            "SELECT id, name FROM institutions WHERE name ILIKE '%Lincoln Elementary School%'",
        )
        self.assertEqual(
            result.sql,
            "SELECT COUNT(*) AS student_count FROM institutions_users WHERE institution_id = 12 AND deleted_at IS NULL",
        )
        self.assertEqual(result.rows, ({"student_count": 42},))
        self.assertEqual(result.note, "Count of students in Lincoln Elementary School (ID: 12)")
        self.assertEqual(result.entities, {"school_id": 12, "school_name": "Lincoln Elementary School"})

    def test_lookup_miss_returns_note(self):
        executor = FakeExecutor()
        result = resolve("list students in school Roosevelt", executor)
        self.assertTrue(result.succeeded)
        self.assertEqual(result.rows, ())
        self.assertEqual(result.note, "No institution found matching name: Roosevelt")
        self.assertEqual(len(executor.calls), 1)

    def test_with_district_scopes_lookup(self):
        executor = FakeExecutor([
            ("FROM institutions WHERE name ILIKE", LINCOLN),
            ("student_count", [{"student_count": 7}]),
        ])
        result = resolve("how many students are in Lincoln Elementary School for district_id 3", executor)
        self.assertTrue(executor.calls[0].endswith("AND district_id = 3"))
        self.assertEqual(result.note, "Count of students in Lincoln Elementary School (ID: 12) in district 3")
        self.assertEqual(result.entities["district_id"], 3)

    def test_join_strategies_cascade(self):
        executor = FakeExecutor([
            ("FROM institutions WHERE name ILIKE", LINCOLN),
            ("institutions_users", undefined_table("institutions_users")),
            ("schools_users", undefined_table("schools_users")),
            ("courses_users", [{"id": 1, "first_name": "Ann", "last_name": "Lee", "email": None}]),
        ])
        result = resolve("list students at Lincoln Elementary School", executor)
        self.assertIn("JOIN courses_users cu", result.sql)
        self.assertEqual(
            result.note,
            "List of students in Lincoln Elementary School (ID: 12) based on course enrollment",
        )
        self.assertEqual(len(executor.calls), 4)

    def test_introspected_catalog_skips_missing_link_tables(self):
        catalog = introspected_catalog("institutions", "users", "courses", "courses_users")
        executor = FakeExecutor([
            ("FROM institutions WHERE name ILIKE", LINCOLN),
            ("courses_users", [{"student_count": 3}]),
        ])
        result = resolve("how many students are in Lincoln Elementary School", executor, catalog)
        self.assertFalse(any("institutions_users" in sql or "schools_users" in sql for sql in executor.calls))
        self.assertEqual(len(executor.calls), 2)
        self.assertIn("COUNT(DISTINCT cu.user_id)", result.sql)

    def test_no_join_strategy_works(self):
        executor = FakeExecutor(
            [("FROM institutions WHERE name ILIKE", LINCOLN)],
            default=undefined_table("users"),
        )
        result = resolve("how many students are in Lincoln Elementary School", executor)
        self.assertEqual(
            result.note,
            'Found school "Lincoln Elementary School" but could not determine student information.',
        )
        self.assertEqual(result.rows, tuple(LINCOLN))

    def test_plural_schools_roster(self):
        executor = FakeExecutor([
            ("FROM institutions WHERE name ILIKE '%elementary%'", [{"id": 1}, {"id": 2}]),
            ("WHERE i.id IN \\(1, 2\\)", [{"id": 5, "first_name": "Ann"}]),
        ])
        result = resolve("list all students in elementary schools", executor)
        self.assertEqual(result.note, 'Students in schools named "elementary"')
        self.assertEqual(len(result.rows), 1)
        self.assertIn("JOIN institutions_users iu", result.sql)

    def test_plural_schools_roster_skips_missing_link_tables(self):
        catalog = introspected_catalog("institutions", "users", "courses", "courses_users")
        executor = FakeExecutor([
            ("FROM institutions WHERE name ILIKE '%elementary%'", [{"id": 1}, {"id": 2}]),
            ("JOIN courses_users cu", [{"id": 5, "first_name": "Ann", "school_name": "Adams Elementary"}]),
        ])
        result = resolve("list all students in elementary schools", executor, catalog)
        self.assertEqual(len(executor.calls), 2)
        self.assertFalse(any("institutions_users" in sql or "schools_users" in sql for sql in executor.calls))
        self.assertIn("WHERE i.id IN (1, 2)", result.sql)
        self.assertEqual(result.note, 'Students in schools named "elementary" based on course enrollment')

    def test_plural_schools_roster_falls_through_failing_paths(self):
        executor = FakeExecutor([
            ("FROM institutions WHERE name ILIKE '%elementary%'", [{"id": 1}, {"id": 2}]),
            ("institutions_users", undefined_table("institutions_users")),
            ("schools_users", [{"id": 7, "first_name": "Bo", "school_name": "Adams Elementary"}]),
        ])
        result = resolve("list all students in elementary schools", executor)
        self.assertIn("JOIN schools_users su", result.sql)
        self.assertEqual(len(executor.calls), 3)


class TestOtherStudentMatchers(unittest.TestCase):

    def test_absent_students_not_swallowed_by_district_matcher(self):
        executor = FakeExecutor([
            ("ILIKE '%Elementary School%' AND district_id = 5", [{"id": 9, "name": "Lincoln Elementary School"}]),
            ("JOIN attendances a", [{"id": 1, "first_name": "Ann", "absence_status": "absent"}]),
        ])
        result = resolve("which students were absent at Lincoln Elementary School in district 5", executor)
        self.assertEqual(
            result.note,
            'Found 1 absence records for students in "Lincoln Elementary School" (ID: 9) in district 5',
        )
        self.assertEqual(result.entities["district_id"], 5)
        self.assertEqual(result.entities["school_id"], 9)

    def test_absent_students_district_wide(self):
        executor = FakeExecutor([("JOIN attendances a", [])])
        result = resolve("show students absent in any school of district 4", executor)
        self.assertIn("WHERE i.district_id = 4", result.sql)
        self.assertEqual(result.note, "Found 0 absence records across all schools in district 4")

    def test_students_in_district(self):
        executor = FakeExecutor([
            ("FROM districts WHERE id = 5", [{"id": 5}]),
            ("FROM institutions WHERE district_id IN \\(5\\)", [{"id": 1}, {"id": 2}]),
            ("CONCAT", [{"name": "Ann Lee"}]),
        ])
        result = resolve("list students in district 5", executor)
        self.assertIn("WHERE iu.institution_id IN (1, 2)", result.sql)
        self.assertEqual(result.note, "Found 1 students in district(s): 5")
        self.assertEqual(result.entities, {"district_id": 5})

    def test_students_associated_with_school(self):
        executor = FakeExecutor([
            ("FROM institutions WHERE name ILIKE '%Lincoln%'", [{"id": 4, "name": "Lincoln High"}]),
            ("CONCAT", [{"name": "Ann Lee"}, {"name": "Bo Diaz"}]),
        ])
        result = resolve("students associated with school named Lincoln", executor)
        self.assertEqual(result.note, 'Found 2 students associated with schools named "Lincoln"')
        self.assertEqual(result.entities, {"school_id": 4, "school_name": "Lincoln High"})

    def test_reports_for_student(self):
        executor = FakeExecutor([
            ("FROM users WHERE first_name ILIKE '%Emma%'", [{"id": 3}]),
            ("FROM generated_reports gr", [{"id": 100}]),
        ])
        result = resolve("show reports for student Emma", executor)
        self.assertIn("WHERE u.id IN (3)", result.sql)
        self.assertEqual(result.note, 'Found 1 reports for student(s) named "Emma"')

    def test_student_details_comprehensive(self):
        executor = FakeExecutor([("LEFT JOIN grades g", [{"student_id": 1, "first_name": "Emma"}])])
        result = resolve("show all details of student Emma including grades", executor)
        self.assertEqual(result.note, 'Found details for student with first name "Emma"')

    def test_student_details_basic(self):
        executor = FakeExecutor([("FROM users WHERE first_name", [{"id": 2, "first_name": "Liam"}])])
        result = resolve("get info for user Liam", executor)
        self.assertEqual(result.sql, "SELECT * FROM users WHERE first_name ILIKE '%Liam%'")
        self.assertEqual(result.note, 'Basic information for student "Liam"')


class TestInterventionMatcher(unittest.TestCase):

    def test_detect_type(self):
        self.assertEqual(detect_intervention_type("give me only course attendance interventions"), "course")
        self.assertEqual(detect_intervention_type("list daily alerts"), "daily")
        self.assertEqual(detect_intervention_type("show interventions with period attendance"), "period")
        self.assertIsNone(detect_intervention_type("show attendance interventions"))
        self.assertEqual(
            filter_condition(None),
            "course_attendance_filters IS NOT NULL OR period_attendance_filters IS NOT NULL "
            "OR daily_attendance_filters IS NOT NULL",
        )

    def test_course_interventions(self):
        executor = FakeExecutor([("FROM interventions", [{"id": 1}, {"id": 2}])])
        result = resolve("give me only course attendance interventions", executor)
        self.assertEqual(
            result.sql,
            "SELECT * FROM interventions WHERE course_attendance_filters IS NOT NULL ORDER BY created_at DESC",
        )
        self.assertEqual(result.note, "Found 2 interventions with Course Attendance filters")

    def test_missing_intervention_table(self):
        executor = FakeExecutor()
        result = resolve("list daily alerts", executor, introspected_catalog("districts", "users"))
        self.assertEqual(result.sql, "")
        self.assertTrue(result.note.startswith("The 'interventions' table does not exist"))
        self.assertEqual(executor.calls, [])

    def test_every_attempt_fails(self):
        executor = FakeExecutor(
            [("SELECT 1 FROM districts_interventions", [])],
            default=undefined_table("interventions"),
        )
        result = resolve("list daily alerts", executor)
        self.assertIn(
            "SELECT * FROM interventions WHERE daily_attendance_filters IS NOT NULL", executor.calls
        )
        self.assertFalse(result.succeeded)
        self.assertEqual(result.error, "Could not retrieve intervention data after multiple attempts")


class TestListingMatchers(unittest.TestCase):

    def test_all_x(self):
        executor = FakeExecutor([("FROM courses", [{"id": 1}])])
        result = resolve("show all courses", executor)
        self.assertEqual(result.sql, "SELECT * FROM courses")
        self.assertEqual(result.note, "Direct query for all courses")

    def test_entity_by_id(self):
        executor = FakeExecutor([("FROM districts WHERE id = 3", [{"id": 3, "name": "East"}])])
        result = resolve("district 3", executor)
        self.assertEqual(result.sql, "SELECT * FROM districts WHERE id = 3")
        self.assertEqual(result.entities, {"district_id": 3})

    def test_entity_by_explicit_id(self):
        executor = FakeExecutor([("FROM users WHERE id = 5", [{"id": 5, "first_name": "Ann"}])])
        result = resolve("show the user with id 5", executor)
        self.assertEqual(result.sql, "SELECT * FROM users WHERE id = 5")
        self.assertEqual(result.note, "Direct query for users with id 5")

    def test_number_inside_a_question_is_not_an_entity_id(self):
        executor = FakeExecutor([("FROM districts WHERE id = 5", [{"id": 5, "name": "East"}])])
        self.assertIsNone(resolve("how many students are in district 5", executor))
        self.assertEqual(executor.calls, [])

    def test_related_to_by_name(self):
        executor = FakeExecutor([
            ("SELECT id FROM institutions WHERE name ILIKE '%Lincoln%'", [{"id": 4}]),
            ("JOIN institutions ON courses.institution_id = institutions.id", [{"id": 9}]),
        ])
        result = resolve("courses related to institution Lincoln", executor)
        self.assertEqual(
            result.note,
            'Join query for courses related to institutions with name: "Lincoln" (ID: 4)',
        )
        self.assertEqual(result.rows, ({"id": 9},))

    def test_database_error_hands_turn_to_next_matcher(self):
        executor = FakeExecutor(default=undefined_table("courses"))
        self.assertIsNone(resolve("show all courses", executor))
        self.assertIn("SELECT * FROM courses", executor.calls)

    def test_infrastructure_error_propagates(self):
        executor = FakeExecutor(default=InfrastructureError("database unavailable"))
        with self.assertRaises(InfrastructureError):
            resolve("show me all districts", executor)


if __name__ == '__main__':
    unittest.main()
