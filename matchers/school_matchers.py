#!/usr/bin/env python3
"""
School and district listing matchers
"""

import logging
import re

from .base_matcher import BaseMatcher, clean_term, is_numeric

LOGGER = logging.getLogger(__name__)


class SchoolsInDistrictDirectMatcher(BaseMatcher):
    """'show all institutions in district 5' (numeric id only)"""

    name = "schools_in_district_direct"
    pattern = re.compile(
        r"\b(?:all|get|show|list|find|give me)\s+(?:me\s+)?(?:all\s+)?(?:the\s+)?(?:schools?|institutions?)\s+"
        r"(?:associated|connected|linked|related|present|in|for|of|from)\s+(?:(?:with|to|in)\s+)?"
        r"(?:district(?:_|\s*)?id|districtid|districts?)\s*(?:=|:)?\s*(\d+)",
        re.IGNORECASE,
    )

    def build(self, match, ctx):
        district_id = int(match.group(1))
        sql = f"SELECT * FROM institutions WHERE district_id = {district_id} ORDER BY name"
        rows = self.try_query(ctx, sql)
        if rows is not None:
            return self.result(
                sql, rows, f"Found {len(rows)} schools/institutions in district {district_id}", district_id=district_id
            )
        fallback_sql = f"SELECT * FROM institutions WHERE district_id = {district_id}"
        rows = self.query(ctx, fallback_sql)
        return self.result(
            fallback_sql,
            rows,
            f"Found {len(rows)} schools/institutions in district {district_id} (fallback query)",
            district_id=district_id,
        )


class SchoolsByDistrictMatcher(BaseMatcher):
    """'institutions belonging to district Springfield' / 'institutions with district_id = 3'"""

    name = "schools_by_district"
    pattern = re.compile(
        r"\b(?:schools?|institutions?)\b.*?\b(?:district(?:_|\s+)?id|districtid|district)\b\s*(?:=|:)?\s*"
        r"[\"']?([\w\s-]+?)[\"']?\s*[?.!]*$",
        re.IGNORECASE,
    )

    def build(self, match, ctx):
        identifier = clean_term(match.group(1))
        if not identifier:
            return None
        if is_numeric(identifier):
            district_id = int(identifier)
            sql = f"SELECT * FROM institutions WHERE district_id = {district_id}"
            rows = self.query(ctx, sql)
            return self.result(
                sql,
                rows,
                f"Query for institutions associated with district ID: {identifier}",
                district_id=district_id,
            )

        lookup_sql = self.district_lookup_sql(identifier)
        districts = self.query(ctx, lookup_sql)
        if not districts:
            return self.result(lookup_sql, [], f"No district found matching name: {identifier}")
        district_id = districts[0]["id"]
        sql = f"SELECT * FROM institutions WHERE district_id = {int(district_id)}"
        rows = self.query(ctx, sql)
        return self.result(
            sql,
            rows,
            f"Query for institutions associated with district name: {identifier}",
            district_id=district_id,
            district_name=districts[0].get("name") or identifier,
        )


class AllDistrictsMatcher(BaseMatcher):
    """'show me all districts', 'list the districts in the database'"""

    name = "all_districts"
    pattern = re.compile(
        r"\b(?:all|get|show|list|find|give me)\s+(?:me\s+)?(?:all\s+)?(?:the\s+)?districts?\b"
        r"(?:\s+(?:present|available|existing|located|found))?"
        r"(?:\s+(?:in|within|from|at)\s+(?:the\s+)?(?:database|db|system))?\s*[?.!]*$",
        re.IGNORECASE,
    )

    def build(self, match, ctx):
        sql = "SELECT * FROM districts ORDER BY name"
        rows = self.query(ctx, sql)
        return self.result(sql, rows, f"Found {len(rows)} districts in the database")
