#!/usr/bin/env python3
"""
Generic table matchers: 'all X', 'X 5' and 'X related to Y Z', resolved
against the catalog with plural/singular guessing
"""

import logging
import re

from core.sql_utils import DatabaseQueryError, like_pattern
from .base_matcher import BaseMatcher, clean_term, is_numeric

LOGGER = logging.getLogger(__name__)


def _singular(word: str) -> str:
    return re.sub(r"s$", "", word.lower())


class AllTableMatcher(BaseMatcher):
    """'show all courses', 'all the users in the database'"""

    name = "all_x"
    pattern = re.compile(
        r"\ball\s+(?:the\s+)?(\w+)(?:\s+(?:in|from|at)\s+(?:the\s+)?(?:database|db))?",
        re.IGNORECASE,
    )

    def build(self, match, ctx):
        table_name = ctx.catalog.resolve_table_name(match.group(1))
        if not table_name:
            return None
        sql = f"SELECT * FROM {table_name}"
        rows = self.query(ctx, sql)
        return self.result(sql, rows, f"Direct query for all {table_name}")


class EntityByIdMatcher(BaseMatcher):
    """'course 12', 'user with id 5', 'district id = 3'.

    A bare "<table> <n>" only counts when it is the whole question, so
    "how many students are in district 5" is left to the generator.
    """

    name = "entity_by_id"
    pattern = re.compile(
        r"^\s*(?:(?:show|get|find)\s+(?:me\s+)?(?:the\s+)?)?([A-Za-z_]+)\s+(\d+)\s*[?.!]*$"
        r"|\b([A-Za-z_]+)\s+(?:(?:with|having|where)\s+)?(?:id|number)\s*(?:is|=|:)?\s*(\d+)\b",
        re.IGNORECASE,
    )

    def build(self, match, ctx):
        entity_word = match.group(1) or match.group(3)
        table_name = ctx.catalog.resolve_table_name(entity_word)
        if not table_name:
            return None
        entity_id = int(match.group(2) or match.group(4))
        sql = f"SELECT * FROM {table_name} WHERE id = {entity_id}"
        rows = self.query(ctx, sql)
        entities = {}
        if table_name == "districts":
            entities["district_id"] = entity_id
        elif table_name == "institutions":
            entities["school_id"] = entity_id
            if rows and rows[0].get("name"):
                entities["school_name"] = rows[0]["name"]
        return self.result(sql, rows, f"Direct query for {table_name} with id {entity_id}", **entities)


class RelatedToMatcher(BaseMatcher):
    """'courses related to institution Lincoln', 'institutions in district 4'"""

    name = "related_to"
    pattern = re.compile(
        r"\b(\w+)(?:\s+related\s+to|\s+in|\s+for|\s+of|\s+from)\s+(\w+)\s+[\"']?([^\"'?]+?)[\"']?\s*[?.!]*$",
        re.IGNORECASE,
    )

    def build(self, match, ctx):
        target, related, identifier = match.group(1), match.group(2), clean_term(match.group(3))
        if not identifier:
            return None
        target_table = ctx.catalog.resolve_table_name(target)
        related_table = ctx.catalog.resolve_table_name(related)
        if not target_table or not related_table or target_table == related_table:
            return None

        if target_table == "institutions" and related_table == "districts":
            return self._schools_in_district(ctx, identifier)

        foreign_key = f"{_singular(related_table)}_id"
        if is_numeric(identifier):
            sql = f"SELECT * FROM {target_table} WHERE {foreign_key} = {int(identifier)}"
            try:
                rows = self.query(ctx, sql)
            except DatabaseQueryError as e:
                LOGGER.info(f"Direct foreign key query failed, trying join by name: {e.message}")
                return self._join_by_name(ctx, target_table, related_table, foreign_key, identifier)
            return self.result(
                sql, rows, f'Direct "related to" query for {target_table} related to {related_table} {identifier}'
            )

        lookup_sql = f"SELECT id FROM {related_table} WHERE name ILIKE {like_pattern(identifier)}"
        lookup = self.try_query(ctx, lookup_sql)
        if lookup is None:
            return None
        if not lookup:
            return self.result(lookup_sql, [], f'No {related_table} found with name similar to "{identifier}"')
        related_id = int(lookup[0]["id"])
        join_sql = f"""
            SELECT {target_table}.*
            FROM {target_table}
            JOIN {related_table} ON {target_table}.{foreign_key} = {related_table}.id
            WHERE {related_table}.id = {related_id}
        """
        rows = self.query(ctx, join_sql)
        return self.result(
            join_sql,
            rows,
            f'Join query for {target_table} related to {related_table} with name: "{identifier}" (ID: {related_id})',
        )

    def _join_by_name(self, ctx, target_table, related_table, foreign_key, identifier):
        join_sql = f"""
            SELECT {target_table}.*
            FROM {target_table}
            JOIN {related_table} ON {target_table}.{foreign_key} = {related_table}.id
            WHERE {related_table}.name ILIKE {like_pattern(identifier)}
        """
        rows = self.query(ctx, join_sql)
        return self.result(
            join_sql, rows, f'Join query for {target_table} related to {related_table} with name: "{identifier}"'
        )

    def _schools_in_district(self, ctx, identifier):
        if is_numeric(identifier):
            district_id = int(identifier)
            sql = f"SELECT * FROM institutions WHERE district_id = {district_id}"
            rows = self.query(ctx, sql)
            return self.result(sql, rows, f"Schools/institutions in district ID: {identifier}", district_id=district_id)

        lookup_sql = self.district_lookup_sql(identifier)
        districts = self.query(ctx, lookup_sql)
        if not districts:
            return self.result(lookup_sql, [], f"No district found matching name: {identifier}")
        district_id = int(districts[0]["id"])
        sql = f"SELECT * FROM institutions WHERE district_id = {district_id}"
        rows = self.query(ctx, sql)
        return self.result(
            sql,
            rows,
            f"Schools/institutions in district name: {identifier}",
            district_id=district_id,
            district_name=districts[0].get("name") or identifier,
        )
