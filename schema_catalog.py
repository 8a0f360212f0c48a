import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from core.sql_utils import _stringify_llm_content

LOGGER = logging.getLogger(__name__)


# Human-written descriptions. "relates to <table>" and "via <column>" phrases
# are parsed into related_tables / foreign_keys.
TABLE_DESCRIPTIONS: Dict[str, str] = {
    "districts": (
        "School districts. Each district has a unique id and a name; institutions "
        "belong to a district through their district_id column. Districts also relates to "
        "districts_interventions for district-wide attendance alerts."
    ),
    "institutions": (
        "Schools (also called institutions) such as elementary, middle, high and charter "
        "schools. Stores the school name, address and district. Each institution relates to "
        "districts via district_id. Students and staff are linked through institutions_users."
    ),
    "users": (
        "People in the system: students, parents, guardians, teachers and staff. Stores "
        "first_name, last_name, email, gender, grade level and birth_date. A user relates to "
        "institutions through institutions_users and relates to courses through courses_users."
    ),
    "institutions_users": (
        "Linking table between users and institutions recording which students and staff are "
        "enrolled at which school. Relates to users via user_id and relates to institutions via "
        "institution_id. Rows with a deleted_at timestamp are no longer active enrollments."
    ),
    "schools_users": (
        "Legacy linking table between users and schools. Relates to users via user_id and "
        "relates to institutions via school_id."
    ),
    "courses": (
        "Courses and classes taught at a school, with course name, code and term. Each course "
        "relates to institutions via institution_id."
    ),
    "courses_users": (
        "Course enrollment: which students attend which courses. Relates to courses via "
        "course_id and relates to users via user_id."
    ),
    "interventions": (
        "Attendance interventions and alerts raised for students. Stores "
        "course_attendance_filters, period_attendance_filters and daily_attendance_filters "
        "describing which attendance rule triggered the alert, plus created_at."
    ),
    "districts_interventions": (
        "District level intervention and alert configuration. Relates to districts via "
        "district_id and stores course_attendance_filters, period_attendance_filters and "
        "daily_attendance_filters."
    ),
    "generated_reports": (
        "Reports generated for students such as attendance and progress reports. Each report "
        "relates to users via user_id and records created_at."
    ),
    "attendances": (
        "Daily attendance records for students with a date and a status such as present, "
        "absent or tardy. Relates to users via user_id."
    ),
    "grades": (
        "Grades and marks a student received in a course, stored as grade_value. Relates to "
        "users via user_id and relates to courses via course_id."
    ),
    "guardians": (
        "Parent and guardian relationships between users. Relates to users via student_id for "
        "the student and via user_id for the parent or guardian."
    ),
    "student_tiers": (
        "Support tier assigned to a student for intervention planning. Relates to users via "
        "user_id."
    ),
}

TABLE_ALIASES: Dict[str, str] = {
    "schools": "institutions",
    "school": "institutions",
    "students": "users",
    "student": "users",
}

_RELATES_TO = re.compile(r"relates to (?:a |an |')?([a-z_]+)(?:'| table| tables)?", re.IGNORECASE)
_VIA_COLUMN = re.compile(r"(?:via|through) ['\"]?([a-z_]+_id)['\"]?", re.IGNORECASE)


def parse_relationships(description: str) -> Dict[str, List[str]]:
    """Pull related table names and foreign key columns out of a description."""
    related = []
    for name in _RELATES_TO.findall(description):
        name = name.lower()
        if name not in related:
            related.append(name)
    foreign_keys = []
    for column in _VIA_COLUMN.findall(description):
        column = column.lower()
        if column not in foreign_keys:
            foreign_keys.append(column)
    return {"related_tables": related, "foreign_keys": foreign_keys}


@dataclass
class TableEntry:
    table_name: str
    columns: List[Dict[str, str]] = field(default_factory=list)
    description: str = ""
    related_tables: List[str] = field(default_factory=list)
    foreign_keys: List[str] = field(default_factory=list)


class SchemaCatalog:
    """Table/column metadata plus the human-written descriptions.

    A catalog built from a live engine is *introspected*: callers may trust
    has_table() to say whether a table exists. A catalog built only from the
    static descriptions cannot tell, so probes fall back to trying the query.
    """

    def __init__(self, entries: Iterable[TableEntry], introspected: bool = False) -> None:
        self._entries: Dict[str, TableEntry] = {}
        for entry in entries:
            self._entries[entry.table_name] = entry
        self.introspected = introspected

    @classmethod
    def from_descriptions(
        cls,
        descriptions: Optional[Dict[str, str]] = None,
        columns: Optional[Dict[str, List[Dict[str, str]]]] = None,
    ) -> "SchemaCatalog":
        descriptions = TABLE_DESCRIPTIONS if descriptions is None else descriptions
        columns = columns or {}
        entries = []
        for table_name, description in descriptions.items():
            rel = parse_relationships(description)
            entries.append(
                TableEntry(
                    table_name=table_name,
                    columns=list(columns.get(table_name, [])),
                    description=description,
                    related_tables=rel["related_tables"],
                    foreign_keys=rel["foreign_keys"],
                )
            )
        return cls(entries, introspected=False)

    @classmethod
    def from_engine(cls, engine: Engine, schema: Optional[str] = None) -> "SchemaCatalog":
        """Load tables, columns and foreign keys from the live database."""
        inspector = inspect(engine)
        entries = []
        for table_name in inspector.get_table_names(schema=schema):
            cols = [
                {"name": c["name"], "type": str(c.get("type"))}
                for c in inspector.get_columns(table_name, schema=schema)
            ]
            description = TABLE_DESCRIPTIONS.get(table_name, "")
            rel = parse_relationships(description)
            related = list(rel["related_tables"])
            foreign_keys = list(rel["foreign_keys"])
            try:
                for fk in inspector.get_foreign_keys(table_name, schema=schema):
                    referred = fk.get("referred_table")
                    if referred and referred not in related:
                        related.append(referred)
                    for column in fk.get("constrained_columns", []):
                        if column not in foreign_keys:
                            foreign_keys.append(column)
            except NotImplementedError:
                pass
            entries.append(
                TableEntry(
                    table_name=table_name,
                    columns=cols,
                    description=description,
                    related_tables=related,
                    foreign_keys=foreign_keys,
                )
            )
        LOGGER.info("Loaded schema catalog with %d tables", len(entries))
        return cls(entries, introspected=True)

    def list_tables(self) -> List[str]:
        return list(self._entries.keys())

    def entries(self) -> List[TableEntry]:
        return list(self._entries.values())

    def get_entry(self, table_name: str) -> Optional[TableEntry]:
        return self._entries.get(TABLE_ALIASES.get(table_name, table_name))

    def get_columns(self, table_name: str) -> List[Dict[str, str]]:
        entry = self.get_entry(table_name)
        return list(entry.columns) if entry else []

    def get_table_description(self, table_name: str) -> str:
        entry = self.get_entry(table_name)
        if entry and entry.description:
            return entry.description
        return f"Table containing {table_name} data"

    def has_table(self, table_name: str) -> bool:
        return table_name in self._entries

    def set_description(self, table_name: str, description: str) -> None:
        entry = self._entries.get(table_name)
        if entry is None:
            return
        entry.description = description
        rel = parse_relationships(description)
        for name in rel["related_tables"]:
            if name not in entry.related_tables:
                entry.related_tables.append(name)
        for column in rel["foreign_keys"]:
            if column not in entry.foreign_keys:
                entry.foreign_keys.append(column)

    def resolve_table_name(self, word: str) -> Optional[str]:
        """Guess a table from a word: exact, pluralised, then singularised."""
        word = word.lower().strip()
        if not word:
            return None
        singular = re.sub(r"s$", "", word)
        for candidate in (word, word + "s", singular, singular + "s"):
            if candidate in self._entries:
                return candidate
            aliased = TABLE_ALIASES.get(candidate)
            if aliased and aliased in self._entries:
                return aliased
        return None

    def describe(self, table_name: str) -> Dict[str, Any]:
        entry = self.get_entry(table_name)
        if entry is None:
            return {}
        return {
            "table_name": entry.table_name,
            "columns": list(entry.columns),
            "description": self.get_table_description(entry.table_name),
            "related_tables": list(entry.related_tables),
            "foreign_keys": list(entry.foreign_keys),
        }


class DescriptionGenerator:
    """Writes short descriptions for tables that have no human-written one."""

    def __init__(self, llm, batch_size: int = 5) -> None:
        self.llm = llm
        self.batch_size = batch_size

    def _build_prompt(self, entry: TableEntry) -> str:
        columns_info = ", ".join(f"{c['name']} ({c['type']})" for c in entry.columns)
        return (
            "As a database expert, provide a concise, informative description for this database table:\n\n"
            f"Table Name: {entry.table_name}\n"
            f"Columns: {columns_info}\n\n"
            "Describe the table's purpose, what data it likely contains, and potential relationships "
            "with other tables. Be precise and informative. Limit to 75 words."
        )

    def fill_missing(self, catalog: SchemaCatalog) -> Dict[str, str]:
        """Generate descriptions for undescribed tables and store them on the catalog."""
        pending = [e for e in catalog.entries() if not e.description]
        generated: Dict[str, str] = {}
        for start in range(0, len(pending), self.batch_size):
            batch = pending[start : start + self.batch_size]
            responses = self.llm.batch(
                [self._build_prompt(entry) for entry in batch], return_exceptions=True
            )
            for entry, response in zip(batch, responses):
                if isinstance(response, Exception):
                    LOGGER.error(f"Error generating description for table {entry.table_name}: {response}")
                    description = f"Failed to generate description: {response}"
                else:
                    content = response.content if hasattr(response, "content") else response
                    description = _stringify_llm_content(content).strip()
                    catalog.set_description(entry.table_name, description)
                generated[entry.table_name] = description
        LOGGER.info("Generated %d table descriptions", len(generated))
        return generated
