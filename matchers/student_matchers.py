#!/usr/bin/env python3
"""
Student-centred matchers: rosters and counts per school, students by
district, absences, reports and per-student details
"""

import logging
import re
from typing import Optional

from core.sql_utils import DatabaseQueryError, first_ids, like_pattern
from conversation_context import QueryResult
from .base_matcher import BaseMatcher, MatchContext, clean_term, is_numeric, wants_list
from .join_strategies import run_join_strategies, run_multi_school_strategies

LOGGER = logging.getLogger(__name__)

_PLURAL_SCHOOL_SUFFIX = re.compile(r"\s+(?:schools|institutions)$", re.IGNORECASE)


def _ids_csv(ids) -> str:
    return ", ".join(str(int(i)) for i in ids)


class _SchoolRosterMixin:
    """Shared recipe: look up one school, then walk the join strategies."""

    def _roster_or_count(
        self,
        ctx: MatchContext,
        school_name: str,
        district_id: Optional[int] = None,
    ) -> QueryResult:
        lookup_sql = self.school_lookup_sql(school_name, district_id)
        schools = self.query(ctx, lookup_sql)
        district_note = f" in district {district_id}" if district_id is not None else ""
        if not schools:
            return self.result(
                lookup_sql,
                [],
                f"No institution found matching name: {school_name}{district_note}",
                district_id=district_id,
            )

        school = schools[0]
        school_id = school["id"]
        resolved_name = school.get("name") or school_name
        roster = wants_list(ctx.question)
        outcome = run_join_strategies(ctx.executor, ctx.catalog, school_id, roster)
        if outcome is None:
            return self.result(
                lookup_sql,
                schools,
                f'Found school "{school_name}"{district_note} but could not determine student information.',
                school_id=school_id,
                school_name=resolved_name,
                district_id=district_id,
            )

        prefix = "List" if roster else "Count"
        note = f"{prefix} of students in {school_name} (ID: {school_id}){district_note}{outcome.strategy.note_suffix}"
        return self.result(
            outcome.sql,
            outcome.rows,
            note,
            school_id=school_id,
            school_name=resolved_name,
            district_id=district_id,
        )


class StudentsInSchoolWithDistrictMatcher(_SchoolRosterMixin, BaseMatcher):
    """'how many students in Lincoln Elementary School for district_id 3'"""

    name = "students_in_school_with_district"
    pattern = re.compile(
        r"\b(?:students|users)\b.*?\b(?:in|at|for|of|from)\s+(?:(?:school|institution)\s+)?[\"']?([^?\"']+?)[\"']?"
        r"\s+(?:for|with|where|in|and|of)\s+(?:district(?:_|\s*)?id|districtid|district)\s*(?:=|:)?\s*(\d+)",
        re.IGNORECASE,
    )

    def build(self, match, ctx):
        school_name = clean_term(match.group(1))
        if not school_name or school_name.lower().startswith("district"):
            return None
        return self._roster_or_count(ctx, school_name, int(match.group(2)))


class StudentsInSchoolMatcher(_SchoolRosterMixin, BaseMatcher):
    """'how many students are in Lincoln Elementary School', 'list students at institution X'.

    A trailing generic 'schools'/'institutions' ("all students in elementary
    schools") asks about every matching school, so the roster spans all of them.
    """

    name = "students_in_school"
    pattern = re.compile(
        r"\b(?:students|users)\b.*?\b(?:in|at|for|of|from)\s+(?:(?:school|institution)\s+)?[\"']?([^?\"']+?)[\"']?\s*[?.!]*$",
        re.IGNORECASE,
    )

    def build(self, match, ctx):
        school_name = clean_term(match.group(1))
        if not school_name or "district" in school_name.lower():
            return None
        if _PLURAL_SCHOOL_SUFFIX.search(school_name):
            return self._all_matching_schools(ctx, _PLURAL_SCHOOL_SUFFIX.sub("", school_name).strip())
        return self._roster_or_count(ctx, school_name)

    def _all_matching_schools(self, ctx: MatchContext, school_name: str) -> QueryResult:
        lookup_sql = self.school_lookup_sql(school_name)
        schools = self.query(ctx, lookup_sql)
        if not schools:
            return self.result(lookup_sql, [], f'No schools found matching name: "{school_name}"')
        outcome = run_multi_school_strategies(ctx.executor, ctx.catalog, first_ids(schools))
        if outcome is not None:
            return self.result(
                outcome.sql,
                outcome.rows,
                f'Students in schools named "{school_name}"{outcome.strategy.note_suffix}',
            )
        return self.result(
            lookup_sql,
            schools,
            f'Found {len(schools)} schools matching "{school_name}" but couldn\'t find associated students.',
        )


class StudentsAssociatedWithSchoolMatcher(BaseMatcher):
    """'students associated with school named X': distinct full names."""

    name = "students_associated_with_school"
    pattern = re.compile(
        r"\b(?:students|users)\s+(?:associated|connected|linked|related)\s+(?:with|to)\s+"
        r"(?:(?:institutions|schools|school|institution)\s+)?(?:(?:named|called|name)\s+)?[\"']?([^\"'?]+?)[\"']?\s*[?.!]*$",
        re.IGNORECASE,
    )

    def build(self, match, ctx):
        school_name = clean_term(match.group(1))
        if not school_name:
            return None
        lookup_sql = self.school_lookup_sql(school_name)
        schools = self.query(ctx, lookup_sql)
        if not schools:
            return self.result(lookup_sql, [], f'No schools found matching name: "{school_name}"')
        ids = first_ids(schools)
        LOGGER.info(f"Found {len(ids)} matching schools with IDs: {_ids_csv(ids)}")
        student_sql = f"""
            SELECT DISTINCT CONCAT(u.first_name, ' ', u.last_name) AS name
            FROM users u
            JOIN institutions_users iu ON u.id = iu.user_id
            WHERE iu.institution_id IN ({_ids_csv(ids)})
              AND iu.deleted_at IS NULL
            ORDER BY name
        """
        rows = self.query(ctx, student_sql)
        entities = {}
        if len(schools) == 1:
            entities = {"school_id": schools[0]["id"], "school_name": schools[0].get("name") or school_name}
        return self.result(
            student_sql,
            rows,
            f'Found {len(rows)} students associated with schools named "{school_name}"',
            **entities,
        )


class ReportsForStudentMatcher(BaseMatcher):
    """'show reports for student Emma'"""

    name = "reports_for_student"
    pattern = re.compile(
        r"\b(?:all|get|show|list|find)\s+(?:me\s+)?(?:all\s+)?(?:the\s+)?reports\s+(?:for|of|about)\s+(?:student|user)\s+"
        r"[\"']?([^\"'?]+?)[\"']?\s*[?.!]*$",
        re.IGNORECASE,
    )

    def build(self, match, ctx):
        student_name = clean_term(match.group(1))
        if not student_name:
            return None
        pattern = like_pattern(student_name)
        lookup_sql = f"SELECT id FROM users WHERE first_name ILIKE {pattern} OR last_name ILIKE {pattern}"
        students = self.query(ctx, lookup_sql)
        if not students:
            return self.result(lookup_sql, [], f'No students found matching name: "{student_name}"')
        ids = _ids_csv(first_ids(students))
        reports_sql = f"""
            SELECT gr.*
            FROM generated_reports gr
            JOIN users u ON gr.user_id = u.id
            WHERE u.id IN ({ids})
            ORDER BY gr.created_at DESC
        """
        rows = self.query(ctx, reports_sql)
        return self.result(reports_sql, rows, f'Found {len(rows)} reports for student(s) named "{student_name}"')


class StudentsInDistrictMatcher(BaseMatcher):
    """'list students in district 5' / 'show students in district Springfield'"""

    name = "students_in_district"
    pattern = re.compile(
        r"\b(?:all|get|show|list|find)\s+(?:me\s+)?(?:all\s+)?(?:the\s+)?(?:students|users)\s+(?:in|at|for|of|from)\s+"
        r"(?:district(?:_|\s*)?id|districtid|districts?)\s*(?:=|:)?\s*[\"']?([^\"'?]+?)[\"']?\s*[?.!]*$",
        re.IGNORECASE,
    )

    def build(self, match, ctx):
        identifier = clean_term(match.group(1))
        if not identifier:
            return None
        if is_numeric(identifier):
            lookup_sql = f"SELECT id FROM districts WHERE id = {int(identifier)}"
        else:
            lookup_sql = f"SELECT id FROM districts WHERE name ILIKE {like_pattern(identifier)}"
        districts = self.query(ctx, lookup_sql)
        if not districts:
            return self.result(lookup_sql, [], f'No districts found matching: "{identifier}"')

        district_ids = first_ids(districts)
        district_csv = _ids_csv(district_ids)
        entity = {"district_id": district_ids[0]} if len(district_ids) == 1 else {}
        if not is_numeric(identifier) and len(district_ids) == 1:
            entity["district_name"] = identifier

        institutions_sql = f"SELECT id FROM institutions WHERE district_id IN ({district_csv})"
        institutions = self.query(ctx, institutions_sql)
        if not institutions:
            return self.result(institutions_sql, [], f"No institutions found in district(s): {district_csv}", **entity)

        students_sql = f"""
            SELECT DISTINCT CONCAT(u.first_name, ' ', u.last_name) AS name
            FROM users u
            JOIN institutions_users iu ON u.id = iu.user_id
            WHERE iu.institution_id IN ({_ids_csv(first_ids(institutions))})
              AND iu.deleted_at IS NULL
            ORDER BY name
        """
        rows = self.query(ctx, students_sql)
        return self.result(students_sql, rows, f"Found {len(rows)} students in district(s): {district_csv}", **entity)


class AbsentStudentsMatcher(BaseMatcher):
    """'which students were absent in Lincoln Elementary School of district 5'.

    'any institution' / 'any class' as the school asks for the whole district.
    """

    name = "absent_students_in_school_of_district"
    pattern = re.compile(
        r"(?=.*\b(?:students?|users?)\b)(?=.*\b(?:absent|absence|absences|not present|missing|missed)\b)"
        r".*?\b(?:in|at|from)\s+([^\"']+?)(?:\s+(?:of|in|from|at|for|with))?\s+district\s*(\d+)",
        re.IGNORECASE,
    )

    def build(self, match, ctx):
        school_name = clean_term(match.group(1))
        district_id = int(match.group(2))
        lowered = school_name.lower()
        if "any" in lowered.split() or lowered in ("class", "classes"):
            return self._district_wide(ctx, district_id)

        if "elementary" in lowered:
            lookup_sql = self.school_lookup_sql("Elementary School", district_id)
        else:
            lookup_sql = self.school_lookup_sql(school_name, district_id)

        try:
            schools = self.query(ctx, lookup_sql)
            if schools:
                return self._school_absences(ctx, schools[0], district_id)
            broad_sql = f"SELECT id, name FROM institutions WHERE district_id = {district_id} AND name ILIKE '%School%'"
            broad = self.query(ctx, broad_sql)
        except DatabaseQueryError as e:
            LOGGER.warning(f"Absence lookup failed, retrying without attendance: {e.message}")
            return self._roster_without_attendance(ctx, school_name, district_id)

        if broad:
            return self.result(
                broad_sql,
                broad,
                f'No school found matching exactly "{school_name}" in district {district_id}, '
                f"but found {len(broad)} schools that might match. Please select a specific school.",
                district_id=district_id,
            )
        return self.result(
            lookup_sql, [], f'No school found matching "{school_name}" in district {district_id}', district_id=district_id
        )

    def _district_wide(self, ctx, district_id):
        sql = f"""
            SELECT DISTINCT u.id, u.first_name, u.last_name, u.email,
                   i.name AS school_name,
                   a.date AS absence_date, a.status AS absence_status
            FROM users u
            JOIN institutions_users iu ON u.id = iu.user_id
            JOIN institutions i ON iu.institution_id = i.id
            JOIN attendances a ON u.id = a.user_id
            WHERE i.district_id = {district_id}
              AND iu.deleted_at IS NULL
              AND a.status ILIKE '%absent%'
            ORDER BY school_name, u.last_name, u.first_name, absence_date DESC
        """
        rows = self.query(ctx, sql)
        return self.result(
            sql,
            rows,
            f"Found {len(rows)} absence records across all schools in district {district_id}",
            district_id=district_id,
        )

    def _school_absences(self, ctx, school, district_id):
        school_id = school["id"]
        actual_name = school.get("name") or ""
        absent_sql = f"""
            SELECT DISTINCT u.id, u.first_name, u.last_name, u.email,
                   a.date AS absence_date, a.status AS absence_status,
                   i.name AS school_name
            FROM users u
            JOIN institutions_users iu ON u.id = iu.user_id
            JOIN institutions i ON iu.institution_id = i.id
            JOIN attendances a ON u.id = a.user_id
            WHERE i.id = {school_id}
              AND i.district_id = {district_id}
              AND iu.deleted_at IS NULL
              AND a.status ILIKE '%absent%'
            ORDER BY u.last_name, u.first_name, absence_date DESC
        """
        entities = {"school_id": school_id, "school_name": actual_name or None, "district_id": district_id}
        rows = self.query(ctx, absent_sql)
        if rows:
            return self.result(
                absent_sql,
                rows,
                f'Found {len(rows)} absence records for students in "{actual_name}" (ID: {school_id}) in district {district_id}',
                **entities,
            )
        roster_sql = f"""
            SELECT u.id, u.first_name, u.last_name, u.email, i.name AS school_name
            FROM users u
            JOIN institutions_users iu ON u.id = iu.user_id
            JOIN institutions i ON iu.institution_id = i.id
            WHERE i.id = {school_id}
              AND i.district_id = {district_id}
              AND iu.deleted_at IS NULL
            ORDER BY u.last_name, u.first_name
        """
        roster = self.query(ctx, roster_sql)
        return self.result(
            roster_sql,
            roster,
            f'Found {len(roster)} students in "{actual_name}" (ID: {school_id}) in district {district_id}, '
            "but none have recorded absences",
            **entities,
        )

    def _roster_without_attendance(self, ctx, school_name, district_id):
        sql = f"""
            SELECT u.id, u.first_name, u.last_name
            FROM users u
            JOIN institutions_users iu ON u.id = iu.user_id
            JOIN institutions i ON iu.institution_id = i.id
            WHERE i.name ILIKE {like_pattern(school_name)}
              AND i.district_id = {district_id}
              AND iu.deleted_at IS NULL
            ORDER BY u.last_name, u.first_name
        """
        rows = self.query(ctx, sql)
        return self.result(
            sql,
            rows,
            f"Found {len(rows)} students in {school_name} of district {district_id}, but could not determine absence records",
            district_id=district_id,
        )


class StudentDetailsMatcher(BaseMatcher):
    """'show all details of student Emma including grades'"""

    name = "student_details"
    pattern = re.compile(
        r"\b(?:all|get|show|list|find|give me)\b.*?\b(?:details|info(?:rmation)?|data)\b.*?\b(?:student|user)s?\b"
        r"(?:\s+(?:with|having|where|whose|named|called))?(?:\s+(?:first[\s_]?name|name))?(?:\s+(?:is|=|:|like))?"
        r"\s*[\"']?([A-Za-z][A-Za-z-]*)",
        re.IGNORECASE,
    )
    comprehensive = re.compile(r"\b(?:grades?|attendance|schools?|institutions?|parents?|all\s+details)\b", re.IGNORECASE)
    _stop_words = {"and", "with", "in", "at", "for", "of", "from", "including", "who", "that"}

    def build(self, match, ctx):
        first_name = match.group(1).strip()
        if first_name.lower() in self._stop_words:
            return None
        basic_sql = f"SELECT * FROM users WHERE first_name ILIKE {like_pattern(first_name)}"
        if not self.comprehensive.search(ctx.question):
            rows = self.query(ctx, basic_sql)
            return self.result(basic_sql, rows, f'Basic information for student "{first_name}"')

        details_sql = f"""
            SELECT
              u.id AS student_id,
              u.first_name,
              u.last_name,
              u.email,
              u.gender,
              u.grade AS grade_level,
              u.birth_date,
              i.name AS school_name,
              d.name AS district_name,
              g.grade_value,
              c.name AS course_name,
              a.status AS attendance_status,
              a.date AS attendance_date,
              p.first_name AS parent_first_name,
              p.last_name AS parent_last_name
            FROM users u
            LEFT JOIN institutions_users iu ON u.id = iu.user_id AND iu.deleted_at IS NULL
            LEFT JOIN institutions i ON iu.institution_id = i.id
            LEFT JOIN districts d ON i.district_id = d.id
            LEFT JOIN guardians g2 ON u.id = g2.student_id
            LEFT JOIN users p ON g2.user_id = p.id
            LEFT JOIN grades g ON u.id = g.user_id
            LEFT JOIN courses c ON g.course_id = c.id
            LEFT JOIN attendances a ON u.id = a.user_id
            WHERE u.first_name ILIKE {like_pattern(first_name)}
        """
        rows = self.try_query(ctx, details_sql)
        if rows:
            return self.result(details_sql, rows, f'Found details for student with first name "{first_name}"')
        if rows is not None:
            basic = self.query(ctx, basic_sql)
            return self.result(
                basic_sql,
                basic,
                f'Found basic information for student "{first_name}". '
                "Additional details like grades, attendance may not be available.",
            )
        return self._separate_queries(ctx, first_name, basic_sql)

    def _separate_queries(self, ctx, first_name, basic_sql):
        users = self.query(ctx, basic_sql)
        if not users:
            return self.result(basic_sql, [], f'No student found with first name containing "{first_name}"')
        user_id = users[0]["id"]
        school_sql = f"""
            SELECT i.name AS school_name, d.name AS district_name
            FROM institutions i
            JOIN institutions_users iu ON i.id = iu.institution_id
            JOIN districts d ON i.district_id = d.id
            WHERE iu.user_id = {int(user_id)} AND iu.deleted_at IS NULL
        """
        school_info = self.try_query(ctx, school_sql)
        if school_info is None:
            return self.result(
                basic_sql,
                users,
                f'Basic information for student "{first_name}" (related information could not be retrieved)',
            )
        rows = [dict(users[0], school_info=school_info)] + list(users[1:])
        return self.result(
            f"{basic_sql}; {school_sql}",
            rows,
            f'Found basic information for student "{first_name}" with additional school details.',
        )
