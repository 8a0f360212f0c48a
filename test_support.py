"""
Scripted stand-in for SqlExecutor used by the test modules.
"""

import re
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from core.sql_utils import DatabaseQueryError, compact_sql

Response = Union[List[Dict[str, Any]], Exception]


class FakeExecutor:
    """Maps SQL regular expressions to rows or errors and records every call.

    Rules are checked in the order they were added; the first whose pattern
    matches the whitespace-compacted SQL answers. Unmatched SQL returns
    ``default`` (empty rows unless told otherwise).
    """

    def __init__(self, rules: Optional[Sequence[Tuple[str, Response]]] = None, default: Optional[Response] = None):
        self.rules: List[Tuple[re.Pattern, Response]] = []
        self.default: Response = [] if default is None else default
        self.calls: List[str] = []
        for pattern, response in rules or ():
            self.add(pattern, response)

    def add(self, pattern: str, response: Response) -> "FakeExecutor":
        self.rules.append((re.compile(pattern, re.IGNORECASE | re.DOTALL), response))
        return self

    def query(self, sql: str, params=None) -> List[Dict[str, Any]]:
        sql = compact_sql(sql)
        self.calls.append(sql)
        for pattern, response in self.rules:
            if pattern.search(sql):
                return self._answer(response, sql)
        return self._answer(self.default, sql)

    def _answer(self, response: Response, sql: str) -> List[Dict[str, Any]]:
        if isinstance(response, DatabaseQueryError):
            raise DatabaseQueryError(response.message, sql)
        if isinstance(response, Exception):
            raise response
        return [dict(row) for row in response]


def undefined_table(name: str) -> DatabaseQueryError:
    return DatabaseQueryError(f'relation "{name}" does not exist')
