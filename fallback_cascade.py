"""
Degraded-query strategies tried, in a fixed order, after the generated SQL
fails to execute.
"""

import logging
import re
from typing import Callable, List, Optional, Sequence

from core.sql_utils import DatabaseQueryError, FallbackNotApplicable, compact_sql, first_ids, like_pattern
from conversation_context import QueryResult

LOGGER = logging.getLogger(__name__)

_DISTRICT_NUMBER = re.compile(r"district\s+(\d+)", re.IGNORECASE)
_DISTRICT_ID = re.compile(r"district\s*(?:_|\s+)?id\s*(?:=|:)?\s*(\d+)", re.IGNORECASE)
_DISTRICT_NAME = re.compile(r"district\s+(?:called\s+|named\s+)?[\"']?([^\"']+)[\"']?", re.IGNORECASE)
_TRAILING_SCHOOL = re.compile(
    r"\b(?:in|at|for|of)\s+(?:(?:school|institution)\s+)?[\"']?([^?\"']+?)[\"']?\s*\??$", re.IGNORECASE
)
_FIRST_FROM_TABLE = re.compile(r"\bFROM\s+([a-z_]+)", re.IGNORECASE)
_EXACT_NAME = re.compile(r"\b((?:\w+\.)?(?:first_name|last_name|name))\s*=\s*'([^']*)'", re.IGNORECASE)


class FallbackCascade:
    """Runs the recovery strategies until one executes without error.

    Each strategy either returns a QueryResult, raises FallbackNotApplicable
    when its preconditions do not hold, or lets a DatabaseQueryError escape;
    both move the cascade on. InfrastructureError is not caught.
    """

    def __init__(self, executor, fallback_limit: int = 100) -> None:
        self.executor = executor
        self.fallback_limit = fallback_limit
        self.strategies: List[Callable[..., QueryResult]] = [
            self._elementary_school,
            self._school_student_count,
            self._district_institutions,
            self._strip_joins,
            self._fuzzy_names,
            self._relevant_table,
        ]

    def run(self, sql: str, error: str, question: str, relevant_tables: Optional[Sequence[str]] = None) -> QueryResult:
        relevant_tables = list(relevant_tables or [])
        for strategy in self.strategies:
            name = strategy.__name__.lstrip("_")
            try:
                result = strategy(sql, error, question, relevant_tables)
            except FallbackNotApplicable as e:
                LOGGER.debug(f"Fallback '{name}' not applicable: {e}")
                continue
            except DatabaseQueryError as e:
                LOGGER.warning(f"Fallback '{name}' failed: {e.message}")
                continue
            LOGGER.info(f"Fallback '{name}' succeeded")
            return result
        LOGGER.error(f"All fallbacks exhausted, returning original error: {error}")
        return QueryResult(sql=sql, error=error)

    def _query(self, sql: str):
        return self.executor.query(compact_sql(sql))

    def _elementary_school(self, sql, error, question, relevant_tables) -> QueryResult:
        if "elementary school" not in question.lower():
            raise FallbackNotApplicable("question does not mention an elementary school")
        m = _DISTRICT_NUMBER.search(question)
        district_id = int(m.group(1)) if m else None
        school_sql = "SELECT id, name FROM institutions WHERE name ILIKE '%Elementary School%'"
        if district_id is not None:
            school_sql += f" AND district_id = {district_id}"
        schools = self._query(school_sql)
        if not schools:
            raise FallbackNotApplicable("no elementary school found")

        district_note = f" in district {district_id}" if district_id is not None else ""
        ids = ", ".join(str(int(i)) for i in first_ids(schools))
        student_sql = compact_sql(
            f"""
            SELECT u.id, u.first_name, u.last_name, i.name AS school_name
            FROM users u
            JOIN institutions_users iu ON u.id = iu.user_id
            JOIN institutions i ON iu.institution_id = i.id
            WHERE iu.institution_id IN ({ids})
              AND iu.deleted_at IS NULL
            ORDER BY i.name, u.last_name, u.first_name
            """
        )
        entities = {"district_id": district_id} if district_id is not None else {}
        try:
            rows = self._query(student_sql)
        except DatabaseQueryError as e:
            LOGGER.warning(f"Elementary School fallback could not list students: {e.message}")
            return QueryResult(
                sql=school_sql,
                rows=schools,
                note=f"Elementary School fallback: Found schools{district_note} but couldn't retrieve students",
                entities=entities,
            )
        return QueryResult(
            sql=student_sql,
            rows=rows,
            note=f"Elementary School fallback: Found {len(rows)} students{district_note}",
            entities=entities,
        )

    def _school_student_count(self, sql, error, question, relevant_tables) -> QueryResult:
        lowered = question.lower()
        if "student" not in lowered or "school" not in lowered:
            raise FallbackNotApplicable("question is not about students in a school")
        m = _TRAILING_SCHOOL.search(question)
        if not m or not m.group(1).strip():
            raise FallbackNotApplicable("no school name in question")
        school_name = m.group(1).strip()
        schools = self._query(f"SELECT id, name FROM institutions WHERE name ILIKE {like_pattern(school_name)}")
        if not schools:
            raise FallbackNotApplicable(f"no institution matching {school_name}")
        school_id = int(schools[0]["id"])
        entities = {"school_id": school_id, "school_name": schools[0].get("name") or school_name}
        count_sql = f"SELECT COUNT(*) AS student_count FROM institutions_users WHERE institution_id = {school_id}"
        try:
            rows = self._query(count_sql)
        except DatabaseQueryError as e:
            LOGGER.warning(f"Fallback student count failed: {e.message}")
            school_sql = f"SELECT * FROM institutions WHERE id = {school_id}"
            return QueryResult(
                sql=school_sql,
                rows=self._query(school_sql),
                note=f'Found school "{school_name}" but could not count students',
                entities=entities,
            )
        return QueryResult(
            sql=count_sql,
            rows=rows,
            note=f"Fallback count of students in {school_name} (ID: {school_id})",
            entities=entities,
        )

    def _district_institutions(self, sql, error, question, relevant_tables) -> QueryResult:
        lowered = question.lower()
        if "district" not in lowered or ("school" not in lowered and "institution" not in lowered):
            raise FallbackNotApplicable("question is not about institutions in a district")

        m = _DISTRICT_ID.search(question) or _DISTRICT_NUMBER.search(question)
        if m:
            district_id = int(m.group(1))
            direct_sql = f"SELECT * FROM institutions WHERE district_id = {district_id}"
            return QueryResult(
                sql=direct_sql,
                rows=self._query(direct_sql),
                note=f"Fallback to direct district query with ID: {district_id}",
                entities={"district_id": district_id},
            )

        m = _DISTRICT_NAME.search(question)
        if not m:
            raise FallbackNotApplicable("no district id or name in question")
        district_name = m.group(1).strip().rstrip("?.!").strip()
        try:
            districts = self._query(f"SELECT id FROM districts WHERE name ILIKE {like_pattern(district_name)}")
        except DatabaseQueryError as e:
            raise FallbackNotApplicable(f"district lookup failed: {e.message}") from e
        if not districts:
            raise FallbackNotApplicable(f"no district matching {district_name}")
        district_id = int(districts[0]["id"])
        direct_sql = f"SELECT * FROM institutions WHERE district_id = {district_id}"
        return QueryResult(
            sql=direct_sql,
            rows=self._query(direct_sql),
            note=f"Fallback to direct district query with name: {district_name} (ID: {district_id})",
            entities={"district_id": district_id, "district_name": district_name},
        )

    def _strip_joins(self, sql, error, question, relevant_tables) -> QueryResult:
        if "join" not in sql.lower():
            raise FallbackNotApplicable("query has no JOIN")
        m = _FIRST_FROM_TABLE.search(sql)
        if not m:
            raise FallbackNotApplicable("no FROM table")
        simple_sql = f"SELECT * FROM {m.group(1)} LIMIT {self.fallback_limit}"
        return QueryResult(sql=simple_sql, rows=self._query(simple_sql), note="Simplified query - removed JOINs")

    def _fuzzy_names(self, sql, error, question, relevant_tables) -> QueryResult:
        fuzzy_sql = _EXACT_NAME.sub(lambda m: f"{m.group(1)} ILIKE '%{m.group(2)}%'", sql)
        if fuzzy_sql == sql:
            raise FallbackNotApplicable("no exact name comparisons")
        return QueryResult(sql=fuzzy_sql, rows=self._query(fuzzy_sql), note="Used fuzzy name matching")

    def _relevant_table(self, sql, error, question, relevant_tables) -> QueryResult:
        if not relevant_tables:
            raise FallbackNotApplicable("no relevant tables identified")
        main_table = relevant_tables[0]
        simple_sql = f"SELECT * FROM {main_table} LIMIT {self.fallback_limit}"
        return QueryResult(
            sql=simple_sql,
            rows=self._query(simple_sql),
            note=f"Fallback to simple query on most relevant table: {main_table}",
        )
