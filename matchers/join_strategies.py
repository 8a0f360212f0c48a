"""
Ordered join paths from a school to its students.

Each strategy names the linking tables it needs; when the catalog was
introspected from the live database a strategy whose tables are missing is
skipped without issuing a query.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from core.sql_utils import DatabaseQueryError, compact_sql

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class JoinStrategy:
    name: str
    required_tables: Tuple[str, ...]
    roster_sql: str
    count_sql: str
    multi_roster_sql: str
    note_suffix: str = ""

    def sql(self, school_id: int, roster: bool) -> str:
        template = self.roster_sql if roster else self.count_sql
        return compact_sql(template.format(school_id=int(school_id)))

    def multi_school_sql(self, school_ids: Sequence[int]) -> str:
        ids = ", ".join(str(int(i)) for i in school_ids)
        return compact_sql(self.multi_roster_sql.format(school_ids=ids))


@dataclass(frozen=True)
class JoinOutcome:
    strategy: JoinStrategy
    sql: str
    rows: List[Dict[str, Any]]


STUDENT_JOIN_STRATEGIES: Tuple[JoinStrategy, ...] = (
    JoinStrategy(
        name="institutions_users",
        required_tables=("institutions_users", "users"),
        roster_sql="""
            SELECT u.id, u.first_name, u.last_name, u.email
            FROM institutions_users iu
            JOIN users u ON iu.user_id = u.id
            WHERE iu.institution_id = {school_id}
              AND iu.deleted_at IS NULL
            ORDER BY u.last_name, u.first_name
        """,
        count_sql="""
            SELECT COUNT(*) AS student_count
            FROM institutions_users
            WHERE institution_id = {school_id} AND deleted_at IS NULL
        """,
        multi_roster_sql="""
            SELECT u.id, u.first_name, u.last_name, u.email, i.name AS school_name
            FROM users u
            JOIN institutions_users iu ON u.id = iu.user_id
            JOIN institutions i ON iu.institution_id = i.id
            WHERE i.id IN ({school_ids})
              AND iu.deleted_at IS NULL
            ORDER BY i.name, u.last_name, u.first_name
        """,
    ),
    JoinStrategy(
        name="schools_users",
        required_tables=("schools_users", "users"),
        roster_sql="""
            SELECT u.id, u.first_name, u.last_name, u.email
            FROM schools_users su
            JOIN users u ON su.user_id = u.id
            WHERE su.school_id = {school_id}
            ORDER BY u.last_name, u.first_name
        """,
        count_sql="""
            SELECT COUNT(*) AS student_count
            FROM schools_users
            WHERE school_id = {school_id}
        """,
        multi_roster_sql="""
            SELECT u.id, u.first_name, u.last_name, u.email, i.name AS school_name
            FROM users u
            JOIN schools_users su ON u.id = su.user_id
            JOIN institutions i ON su.school_id = i.id
            WHERE i.id IN ({school_ids})
            ORDER BY i.name, u.last_name, u.first_name
        """,
    ),
    JoinStrategy(
        name="course_enrollment",
        required_tables=("courses", "courses_users", "users"),
        roster_sql="""
            SELECT DISTINCT u.id, u.first_name, u.last_name, u.email
            FROM courses c
            JOIN courses_users cu ON c.id = cu.course_id
            JOIN users u ON cu.user_id = u.id
            WHERE c.institution_id = {school_id}
            ORDER BY u.last_name, u.first_name
        """,
        count_sql="""
            SELECT COUNT(DISTINCT cu.user_id) AS student_count
            FROM courses c
            JOIN courses_users cu ON c.id = cu.course_id
            WHERE c.institution_id = {school_id}
        """,
        multi_roster_sql="""
            SELECT DISTINCT u.id, u.first_name, u.last_name, u.email, i.name AS school_name
            FROM users u
            JOIN courses_users cu ON u.id = cu.user_id
            JOIN courses c ON cu.course_id = c.id
            JOIN institutions i ON c.institution_id = i.id
            WHERE i.id IN ({school_ids})
            ORDER BY i.name, u.last_name, u.first_name
        """,
        note_suffix=" based on course enrollment",
    ),
)


def applicable_strategies(catalog, strategies: Tuple[JoinStrategy, ...] = STUDENT_JOIN_STRATEGIES) -> List[JoinStrategy]:
    if not catalog.introspected:
        return list(strategies)
    usable = []
    for strategy in strategies:
        missing = [t for t in strategy.required_tables if not catalog.has_table(t)]
        if missing:
            LOGGER.info(f"Skipping join strategy '{strategy.name}', missing tables: {', '.join(missing)}")
            continue
        usable.append(strategy)
    return usable


def run_join_strategies(executor, catalog, school_id: int, roster: bool) -> Optional[JoinOutcome]:
    """Try each join path in order and return the first that executes."""
    return _first_working(executor, catalog, lambda strategy: strategy.sql(school_id, roster))


def run_multi_school_strategies(executor, catalog, school_ids: Sequence[int]) -> Optional[JoinOutcome]:
    """Roster across several schools, walking the same join paths."""
    return _first_working(executor, catalog, lambda strategy: strategy.multi_school_sql(school_ids))


def _first_working(executor, catalog, build_sql) -> Optional[JoinOutcome]:
    for strategy in applicable_strategies(catalog):
        sql = build_sql(strategy)
        try:
            rows = executor.query(sql)
        except DatabaseQueryError as e:
            LOGGER.warning(f"Join strategy '{strategy.name}' failed: {e.message}")
            continue
        return JoinOutcome(strategy=strategy, sql=sql, rows=rows)
    return None
