"""
SQL helpers, the error taxonomy and the SqlExecutor used by every stage
that talks to the database.
"""

import json
import logging
import re
import time
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

LOGGER = logging.getLogger(__name__)


class DatabaseQueryError(Exception):
    """The database rejected a statement (undefined table/column, syntax error, ...)."""

    def __init__(self, message: str, sql: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.sql = sql


class InfrastructureError(Exception):
    """A collaborator (database, LLM, vector store) is unavailable."""
    pass


class FallbackNotApplicable(Exception):
    """Raised by a recovery strategy whose preconditions do not hold."""
    pass


def _strip_code_fences(text_value: str) -> str:
    """Remove code fence markers from text."""
    fenced = re.sub(
        r"^```(?:sql|json|\w+)?\n|\n```$",
        "",
        text_value.strip(),
        flags=re.IGNORECASE | re.MULTILINE,
    )
    if fenced != text_value:
        return fenced.strip()
    return text_value.strip()


def _extract_sql_from_text(text_value: str) -> Optional[str]:
    """Extract SQL from text, handling code fences and fallback patterns."""
    pattern = re.compile(r"```sql\s*(.*?)\s*```", re.IGNORECASE | re.DOTALL)
    m = pattern.search(text_value)
    if m:
        return m.group(1).strip()
    # fallback: look for SELECT start
    start = re.search(r"\bSELECT\b", text_value, flags=re.IGNORECASE)
    if start:
        return text_value[start.start() :].strip().rstrip("`")
    return None


def _stringify_llm_content(value: Any) -> str:
    """Convert LLM response content into a plain string for parsing."""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        parts: List[str] = []
        for item in value:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
            else:
                parts.append(str(item))
        return "\n".join(parts)
    if isinstance(value, dict):
        if "text" in value and isinstance(value["text"], str):
            return value["text"]
        try:
            return json.dumps(value)
        except (TypeError, ValueError):
            return str(value)
    return str(value)


def sql_string(value: str) -> str:
    """Escape a user-supplied term for use inside a single-quoted SQL literal.

    Colons are dropped because SQLAlchemy's text() reads ``:word`` as a bind
    parameter.
    """
    return value.replace("'", "''").replace(":", " ").strip()


def like_pattern(term: str) -> str:
    """Quoted ``'%term%'`` literal for ILIKE comparisons."""
    return f"'%{sql_string(term)}%'"


def compact_sql(sql: str) -> str:
    """Collapse whitespace so multi-line recipes log and compare on one line."""
    return re.sub(r"\s+", " ", sql).strip()


def _error_message(exc: SQLAlchemyError) -> str:
    orig = getattr(exc, "orig", None)
    message = str(orig) if orig is not None else str(exc)
    return message.strip().splitlines()[0] if message.strip() else type(exc).__name__


def _is_connection_failure(exc: SQLAlchemyError) -> bool:
    if isinstance(exc, InterfaceError):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    if isinstance(exc, OperationalError):
        message = str(exc).lower()
        return any(
            marker in message
            for marker in ("could not connect", "connection refused", "server closed", "timeout expired", "terminating connection")
        )
    return False


class _TransientConnectionError(Exception):
    pass


class SqlExecutor:
    """Runs one statement at a time on a pooled connection.

    Statement errors become DatabaseQueryError (the pipeline branches on the
    message); connection failures are retried and then raised as
    InfrastructureError.
    """

    def __init__(self, engine: Engine, max_attempts: int = 3) -> None:
        self.engine = engine
        self.max_attempts = max_attempts
        self.statements_executed = 0

    def query(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Execute a statement and return its rows as dicts."""
        start_time = time.time()
        try:
            rows = self._query_with_retry(sql, params)
        except _TransientConnectionError as e:
            LOGGER.error(f"Database unavailable after {self.max_attempts} attempts: {e}")
            raise InfrastructureError(f"Database unavailable: {e}") from e
        except SQLAlchemyError as e:
            message = _error_message(e)
            LOGGER.warning(f"SQL execution failed after {time.time() - start_time:.2f}s: {message}")
            raise DatabaseQueryError(message, sql) from e

        self.statements_executed += 1
        LOGGER.info(f"SQL executed in {time.time() - start_time:.2f}s ({len(rows)} rows): {compact_sql(sql)[:200]}")
        return rows

    def _query_with_retry(self, sql: str, params: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
        runner = retry(
            retry=retry_if_exception_type(_TransientConnectionError),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=0.5, max=4),
            reraise=True,
        )(self._execute_once)
        return runner(sql, params)

    def _execute_once(self, sql: str, params: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
        try:
            with self.engine.connect() as conn:
                result = conn.execute(text(sql), params or {})
                if not result.returns_rows:
                    return []
                return [dict(row._mapping) for row in result]
        except SQLAlchemyError as e:
            if _is_connection_failure(e):
                raise _TransientConnectionError(_error_message(e)) from e
            raise


def first_ids(rows: Sequence[Dict[str, Any]]) -> List[int]:
    """Collect the ``id`` column of lookup rows, preserving order."""
    return [row["id"] for row in rows if row.get("id") is not None]
