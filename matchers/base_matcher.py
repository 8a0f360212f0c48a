#!/usr/bin/env python3
"""
Base Matcher for the intent matcher bank
Abstract base class for the recognisers that answer a question shape
directly, without the language model
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Pattern

from core.sql_utils import DatabaseQueryError, compact_sql, like_pattern
from conversation_context import QueryResult
from schema_catalog import SchemaCatalog

LOGGER = logging.getLogger(__name__)

LISTING_VERBS = re.compile(r"\b(?:list|show|get|find)\b", re.IGNORECASE)


@dataclass
class MatchContext:
    """What a matcher may consult while answering one question."""
    executor: Any
    catalog: SchemaCatalog
    question: str
    original: str = ""


class BaseMatcher(ABC):
    """Abstract base class for all intent matchers"""

    name: str = "base"
    pattern: Optional[Pattern] = None

    def detect(self, question: str) -> Optional[re.Match]:
        """Return the detection match, or None when this matcher does not apply"""
        if self.pattern is None:
            return None
        return self.pattern.search(question)

    @abstractmethod
    def build(self, match: re.Match, ctx: MatchContext) -> Optional[QueryResult]:
        """Run the recipe for a detected question. None hands the turn on."""
        pass

    def process(self, ctx: MatchContext) -> Optional[QueryResult]:
        match = self.detect(ctx.question)
        if not match:
            return None
        LOGGER.info(f"Matcher '{self.name}' detected question: {ctx.question}")
        try:
            return self.build(match, ctx)
        except DatabaseQueryError as e:
            LOGGER.warning(f"Matcher '{self.name}' gave up after database error: {e.message}")
            return None

    # Helpers shared by the recipes

    def query(self, ctx: MatchContext, sql: str) -> List[Dict[str, Any]]:
        return ctx.executor.query(compact_sql(sql))

    def try_query(self, ctx: MatchContext, sql: str) -> Optional[List[Dict[str, Any]]]:
        """Run a query, returning None instead of raising on a database error"""
        try:
            return self.query(ctx, sql)
        except DatabaseQueryError as e:
            LOGGER.info(f"Matcher '{self.name}' query failed, trying next recipe: {e.message}")
            return None

    def result(self, sql: str, rows: List[Dict[str, Any]], note: Optional[str] = None, **entities) -> QueryResult:
        return QueryResult(
            sql=compact_sql(sql),
            rows=tuple(rows),
            note=note,
            entities={k: v for k, v in entities.items() if v is not None},
        )

    def school_lookup_sql(self, school_name: str, district_id: Optional[int] = None) -> str:
        sql = f"SELECT id, name FROM institutions WHERE name ILIKE {like_pattern(school_name)}"
        if district_id is not None:
            sql += f" AND district_id = {int(district_id)}"
        return sql

    def district_lookup_sql(self, district_name: str) -> str:
        return f"SELECT id, name FROM districts WHERE name ILIKE {like_pattern(district_name)}"


def wants_list(question: str) -> bool:
    return bool(LISTING_VERBS.search(question))


def clean_term(value: str) -> str:
    """Trim quotes, punctuation and filler words around a captured name."""
    value = value.strip().strip("\"'").strip()
    value = re.sub(r"[?.!]+$", "", value).strip()
    value = re.sub(r"^(?:named|called|name)\s+", "", value, flags=re.IGNORECASE)
    return value.strip().strip("\"'").strip()


def is_numeric(value: str) -> bool:
    return bool(re.fullmatch(r"\d+", value.strip()))
