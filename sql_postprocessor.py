"""
Deterministic repairs applied to language-model SQL before execution.

Conditions are added to the top-level WHERE clause found by sqlparse; an
existing clause is parenthesised so an OR inside it keeps its meaning.
"""

import logging
import re
from typing import Optional

import sqlparse
from sqlparse.sql import Where
from sqlparse.tokens import Keyword

from core.sql_utils import compact_sql, like_pattern
from question_normalizer import PROPER_SCHOOL_NAME

LOGGER = logging.getLogger(__name__)

_CLAUSES_AFTER_WHERE = {"GROUP BY", "ORDER BY", "HAVING", "LIMIT", "OFFSET", "FETCH", "UNION", "UNION ALL"}
_NOT_AN_ALIAS = (
    "WHERE|JOIN|ON|LEFT|RIGHT|INNER|OUTER|FULL|CROSS|NATURAL|GROUP|ORDER|LIMIT|HAVING|UNION|USING|OFFSET"
)

_DISTRICT_ID_IN_QUESTION = re.compile(r"district\s*(?:_?\s*id)?\s*(?:=|:)?\s*(\d+)", re.IGNORECASE)
_DISTRICT_NAME_IN_QUESTION = re.compile(
    r"district\s+(?:named\s+|called\s+|with name\s+|name\s+)?[\"']?([^\"'?]+)[\"']?", re.IGNORECASE
)
_NAMED_SCHOOL = re.compile(r"(?i:\b(?:school|institution)\s+(?:named\s+|called\s+)?)[\"']?([A-Z][^\"'?]*)")
_OVER_NORMALIZED_LITERAL = re.compile(
    r"(name\s*(?:I?LIKE\s+|=\s*)'%?)([^%']*?)(institution)([^%']*%?')", re.IGNORECASE
)
_DANGLING_ON = re.compile(r"\bON\s+[a-z_.]+\s*$", re.IGNORECASE)


def table_reference(sql: str, table: str) -> Optional[str]:
    """Alias (or bare name) under which ``table`` appears in FROM/JOIN, else None."""
    pattern = re.compile(
        rf"\b(?:FROM|JOIN)\s+{re.escape(table)}\b(?:\s+(?:AS\s+)?(?!(?:{_NOT_AN_ALIAS})\b)([A-Za-z_]\w*))?",
        re.IGNORECASE,
    )
    m = pattern.search(sql)
    if not m:
        return None
    return m.group(1) or table


def inject_condition(sql: str, condition: str) -> str:
    """AND ``condition`` into the top-level WHERE, creating the clause if needed."""
    body = sql.strip()
    terminator = ""
    if body.endswith(";"):
        body, terminator = body[:-1].rstrip(), ";"
    parsed = sqlparse.parse(body)
    if not parsed:
        return sql
    statement = parsed[0]

    where = next((t for t in statement.tokens if isinstance(t, Where)), None)
    if where is not None:
        clause = str(where)[len("WHERE"):]
        existing = clause.strip()
        trailing = clause[len(clause.rstrip()):]
        replacement = f"WHERE {condition} AND ({existing}){trailing}"
        rebuilt = "".join(replacement if t is where else str(t) for t in statement.tokens)
        return rebuilt + terminator

    parts = []
    inserted = False
    for token in statement.tokens:
        if not inserted and token.ttype in Keyword and " ".join(token.normalized.split()) in _CLAUSES_AFTER_WHERE:
            parts.append(f"WHERE {condition} ")
            inserted = True
        parts.append(str(token))
    rebuilt = "".join(parts)
    if not inserted:
        rebuilt = f"{rebuilt.rstrip()} WHERE {condition}"
    return rebuilt + terminator


def extract_school_name(question: str, original: str) -> Optional[str]:
    m = PROPER_SCHOOL_NAME.search(original) or PROPER_SCHOOL_NAME.search(question)
    if m:
        return m.group(0).strip()
    m = _NAMED_SCHOOL.search(original) or _NAMED_SCHOOL.search(question)
    if m:
        return m.group(1).strip()
    return None


def _restore_school_case(word: str) -> str:
    if word.isupper():
        return "SCHOOL"
    if word[0].isupper():
        return "School"
    return "school"


class SqlPostProcessor:
    """Repairs known naming drift and incomplete clauses in generated SQL"""

    def process(self, sql: str, question: str, original: Optional[str] = None) -> str:
        original = original if original is not None else question
        repaired = sql.strip()
        repaired = self._map_school_tables(repaired)
        repaired = self._elementary_filter(repaired, original)
        repaired = self._school_name_filter(repaired, question, original)
        repaired = self._restore_school_literals(repaired, original)
        repaired = self._district_scope(repaired, question)
        repaired = self._complete_broken_join(repaired, question)
        if repaired != sql.strip():
            LOGGER.info(f"Post-processed SQL: {compact_sql(repaired)}")
        return repaired

    def _map_school_tables(self, sql: str) -> str:
        sql = re.sub(r"\bFROM\s+schools\b", "FROM institutions", sql, flags=re.IGNORECASE)
        return re.sub(r"\bJOIN\s+schools\b", "JOIN institutions", sql, flags=re.IGNORECASE)

    def _elementary_filter(self, sql: str, original: str) -> str:
        if "elementary school" not in original.lower() or "elementary" in sql.lower():
            return sql
        alias = table_reference(sql, "institutions")
        if alias is None:
            return sql
        LOGGER.info("Adding Elementary School name filter")
        return inject_condition(sql, f"{alias}.name ILIKE '%Elementary School%'")

    def _school_name_filter(self, sql: str, question: str, original: str) -> str:
        lowered_sql = sql.lower()
        if "like" in lowered_sql:
            return sql
        lowered_question = question.lower()
        if "school" not in lowered_question and "school" not in original.lower():
            return sql
        if re.search(r"\ball\b", lowered_question):
            return sql
        school_name = extract_school_name(question, original)
        alias = table_reference(sql, "institutions")
        if not school_name or alias is None:
            return sql
        LOGGER.info(f"Adding school name filter for '{school_name}'")
        return inject_condition(sql, f"{alias}.name ILIKE {like_pattern(school_name)}")

    def _restore_school_literals(self, sql: str, original: str) -> str:
        if "school" not in original.lower():
            return sql

        def _fix(m: re.Match) -> str:
            return f"{m.group(1)}{m.group(2)}{_restore_school_case(m.group(3))}{m.group(4)}"

        sql = _OVER_NORMALIZED_LITERAL.sub(_fix, sql)
        for m in PROPER_SCHOOL_NAME.finditer(original):
            school_name = m.group(0)
            rewritten = re.sub(r"School$", "Institution", school_name)
            sql = re.sub(re.escape(rewritten), lambda _: school_name, sql, flags=re.IGNORECASE)
        return sql

    def _district_scope(self, sql: str, question: str) -> str:
        lowered = question.lower()
        if "district" not in lowered or ("school" not in lowered and "institution" not in lowered):
            return sql

        id_match = _DISTRICT_ID_IN_QUESTION.search(question)
        if id_match:
            if "district_id" in sql.lower():
                return sql
            district_id = int(id_match.group(1))
            alias = table_reference(sql, "institutions")
            if alias is not None:
                return inject_condition(sql, f"{alias}.district_id = {district_id}")
            if " where " in f" {sql.lower()} ":
                return inject_condition(sql, f"district_id = {district_id}")
            return sql

        name_match = _DISTRICT_NAME_IN_QUESTION.search(question)
        if not name_match:
            return sql
        district_name = name_match.group(1).strip().rstrip("?.!").strip()
        if not district_name or "join districts" in sql.lower():
            return sql
        if table_reference(sql, "institutions") is None:
            return sql
        LOGGER.info(f"Replacing SQL with district-name join for '{district_name}'")
        return (
            "SELECT institutions.* FROM institutions JOIN districts ON institutions.district_id = districts.id "
            f"WHERE districts.name ILIKE {like_pattern(district_name)}"
        )

    def _complete_broken_join(self, sql: str, question: str) -> str:
        tail = sql.rstrip().rstrip(";").rstrip()
        broken = (
            re.search(r"\b(?:JOIN|ON)$", tail, re.IGNORECASE) is not None
            or bool(_DANGLING_ON.search(tail))
            or tail.endswith("=")
        )
        if not broken:
            return sql
        lowered = question.lower()
        if "student" not in lowered or "district" not in lowered:
            return sql
        m = _DISTRICT_ID_IN_QUESTION.search(question)
        if not m:
            return sql
        LOGGER.info("Replacing incomplete SQL with the students-in-district join")
        return compact_sql(
            f"""
            SELECT DISTINCT CONCAT(u.first_name, ' ', u.last_name) AS name, u.last_name, u.first_name
            FROM users u
            JOIN institutions_users iu ON u.id = iu.user_id
            JOIN institutions i ON iu.institution_id = i.id
            WHERE i.district_id = {int(m.group(1))}
              AND iu.deleted_at IS NULL
            ORDER BY u.last_name, u.first_name
            """
        )
