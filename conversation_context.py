"""
Per-session conversation state: the QueryResult of each turn, the
ConversationContext carried between turns and the entity extraction that
links them.
"""

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

LOGGER = logging.getLogger(__name__)

ENTITY_KEYS = ("district_id", "school_id", "school_name", "district_name")

_DISTRICT_ID_IN_SQL = re.compile(r"district_id\s*=\s*(\d+)", re.IGNORECASE)
_INSTITUTION_ID_IN_SQL = re.compile(r"institution_id\s*=\s*(\d+)", re.IGNORECASE)
_QUOTED_NAME = re.compile(r"['\"]([^'\"]+)['\"]")
_SCHOOL_NAME_IN_NOTE = re.compile(r"students in (.+?) \(ID: \d+\)")


@dataclass(frozen=True)
class QueryResult:
    sql: str
    rows: Tuple[Dict[str, Any], ...] = ()
    note: Optional[str] = None
    error: Optional[str] = None
    entities: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "rows", tuple(self.rows))

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"sql": self.sql, "rows": [dict(r) for r in self.rows]}
        if self.note is not None:
            data["note"] = self.note
        if self.error is not None:
            data["error"] = self.error
        if self.entities:
            data["entities"] = dict(self.entities)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueryResult":
        return cls(
            sql=data.get("sql", ""),
            rows=tuple(data.get("rows") or ()),
            note=data.get("note"),
            error=data.get("error"),
            entities=dict(data.get("entities") or {}),
        )


@dataclass(frozen=True)
class ConversationContext:
    previous_questions: Tuple[str, ...] = ()
    previous_results: Tuple[QueryResult, ...] = ()
    entities: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "previous_questions": list(self.previous_questions),
            "previous_results": [r.to_dict() for r in self.previous_results],
            "entities": dict(self.entities),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ConversationContext":
        if not data:
            return cls()
        return cls(
            previous_questions=tuple(data.get("previous_questions") or ()),
            previous_results=tuple(QueryResult.from_dict(r) for r in data.get("previous_results") or ()),
            entities={k: v for k, v in (data.get("entities") or {}).items() if k in ENTITY_KEYS},
        )


def _school_name_from_note(note: str) -> Optional[str]:
    if "school" not in note.lower():
        return None
    m = _SCHOOL_NAME_IN_NOTE.search(note)
    if m:
        return m.group(1).strip()
    m = _QUOTED_NAME.search(note)
    if m:
        return m.group(1).strip()
    return None


def extract_entities(result: QueryResult, existing: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Merge the entities a turn established into ``existing``.

    Structured entities set by a matcher win; the SQL text and the note are
    only consulted for keys the matcher did not fill. Keys are overwritten,
    never removed.
    """
    entities = dict(existing or {})
    found: Dict[str, Any] = {}

    m = _DISTRICT_ID_IN_SQL.search(result.sql or "")
    if m:
        found["district_id"] = int(m.group(1))
    m = _INSTITUTION_ID_IN_SQL.search(result.sql or "")
    if m:
        found["school_id"] = int(m.group(1))
    if result.note:
        name = _school_name_from_note(result.note)
        if name:
            found["school_name"] = name

    for key, value in result.entities.items():
        if key in ENTITY_KEYS and value is not None:
            found[key] = value

    entities.update(found)
    return entities


def update_context(context: Optional[ConversationContext], question: str, result: QueryResult) -> ConversationContext:
    """Return a new context with this turn appended."""
    context = context or ConversationContext()
    entities = extract_entities(result, context.entities)
    if entities != context.entities:
        LOGGER.info(f"Context entities now: {entities}")
    return replace(
        context,
        previous_questions=context.previous_questions + (question,),
        previous_results=context.previous_results + (result,),
        entities=entities,
    )


def format_answer(result: QueryResult) -> str:
    """Render a turn the way the chat panel shows it."""
    if result.error:
        return f"Error: {result.error}"
    parts: List[str] = []
    if result.note:
        parts.append(f"Note: {result.note}")
    rows = list(result.rows)
    if len(rows) == 1 and "student_count" in rows[0]:
        count = rows[0]["student_count"]
        parts.append(f"Found {count} student{'s' if str(count) != '1' else ''}")
    elif rows:
        parts.append(pd.DataFrame(rows).to_markdown(index=False))
    elif result.sql:
        parts.append("No rows returned.")
    return "\n\n".join(parts)
