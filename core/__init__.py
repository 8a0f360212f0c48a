"""
Core utilities shared by the resolution pipeline: settings, engine
construction, the SQL executor and the error taxonomy.
"""

from .config import Settings, setup_logging
from .database import create_engine_from_url, create_engine_from_env
from .sql_utils import (
    SqlExecutor,
    DatabaseQueryError,
    InfrastructureError,
    FallbackNotApplicable,
    _strip_code_fences,
    _extract_sql_from_text,
    _stringify_llm_content,
    sql_string,
    like_pattern,
    compact_sql,
    first_ids,
)

__all__ = [
    'Settings',
    'setup_logging',
    'create_engine_from_url',
    'create_engine_from_env',
    'SqlExecutor',
    'DatabaseQueryError',
    'InfrastructureError',
    'FallbackNotApplicable',
    '_strip_code_fences',
    '_extract_sql_from_text',
    '_stringify_llm_content',
    'sql_string',
    'like_pattern',
    'compact_sql',
    'first_ids',
]
