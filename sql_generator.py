"""
Schema-grounded SQL generation: rank tables against the question, pull
semantic snippets, build the prompt and ask the language model for SQL.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from core.sql_utils import InfrastructureError, _extract_sql_from_text, _stringify_llm_content, _strip_code_fences
from schema_catalog import SchemaCatalog

LOGGER = logging.getLogger(__name__)

GENERATION_RULES = """- The terms "schools" and "institutions" refer to the same table called "institutions"
- All tables that appear in the SELECT or JOIN clauses MUST be explicitly included in the FROM clause
- Use appropriate JOINs when data needs to be combined from multiple tables
- For simple listing queries (e.g., "all courses"), use a straightforward SELECT * FROM tablename
- For filtered queries, use proper WHERE clauses with valid boolean expressions
- Use LIMIT only when explicitly asked to restrict the number of results
- When the user refers to entities by name instead of ID, use ILIKE with wildcards ('%Name%')
- If the question refers to a relationship between entities, use appropriate JOINs based on foreign keys
- For queries about "schools in district X" where X is a name (not ID), use: SELECT institutions.* FROM institutions JOIN districts ON institutions.district_id = districts.id WHERE districts.name ILIKE '%X%'
- For queries about "schools in district X" where X is a numeric ID, use: SELECT * FROM institutions WHERE district_id = X
- For queries about students in a specific school, filter institutions by name and join with the appropriate user/student table
- Include proper WHERE clauses for name filtering (e.g., institutions.name ILIKE '%School Name%')
- IMPORTANT: DO NOT change names like "Elementary School" to "Elementary Institution" in search conditions - keep them exactly as provided
- When searching for school names that include the word "School", maintain the exact name format"""


@dataclass
class GeneratedSql:
    sql: str
    relevant_tables: List[str] = field(default_factory=list)
    prompt: str = ""


def find_relevant_tables(question: str, catalog: SchemaCatalog, top_n: int = 3) -> List[str]:
    """Rank tables: +10 when the name appears, +1 per description keyword present."""
    lowered = question.lower()
    scored: List[Tuple[str, int]] = []
    for table_name in catalog.list_tables():
        score = 10 if table_name.lower() in lowered else 0
        description = catalog.get_table_description(table_name).lower()
        score += sum(1 for word in description.split() if len(word) > 3 and word in lowered)
        if score > 0:
            scored.append((table_name, score))
    # sorted() is stable, ties keep catalog order
    ranked = sorted(scored, key=lambda item: item[1], reverse=True)
    return [name for name, _ in ranked[:top_n]]


def build_prompt(question: str, relevant_tables: Sequence[str], snippets: Sequence[str], catalog: SchemaCatalog) -> str:
    lowered = question.lower()
    described = list(relevant_tables)
    if ("school" in lowered or "institution" in lowered) and "institutions" not in described:
        described.append("institutions")
    if ("student" in lowered or "count" in lowered) and "users" not in described:
        described.append("users")
    if "district" in lowered and "districts" not in described:
        described.append("districts")

    table_descriptions = "".join(
        f'Table "{name}": {catalog.get_table_description(name)}\n\n' for name in described
    )
    context = "\n".join(snippets)
    return f"""You are an expert SQL generator that creates precise queries to answer user questions about a PostgreSQL database. Use the schema and detailed table descriptions below to craft your SQL:

{table_descriptions}{context}

Generate a SQL query to answer: "{question}"

Important notes:
{GENERATION_RULES}

Only output the SQL query without explanations."""


class SchemaGroundedGenerator:
    """Asks the language model for SQL when no matcher recognised the question."""

    def __init__(self, llm, catalog: SchemaCatalog, searcher=None, top_n: int = 3, search_k: int = 4) -> None:
        self.llm = llm
        self.catalog = catalog
        self.searcher = searcher
        self.top_n = top_n
        self.search_k = search_k

    def _snippets(self, question: str) -> List[str]:
        if self.searcher is None:
            return []
        return list(self.searcher.search(question, self.search_k))

    def generate(self, question: str) -> GeneratedSql:
        relevant_tables = find_relevant_tables(question, self.catalog, self.top_n)
        LOGGER.info(f"Relevant tables: {relevant_tables}")
        prompt = build_prompt(question, relevant_tables, self._snippets(question), self.catalog)
        try:
            response = self.llm.invoke(prompt)
        except Exception as e:
            LOGGER.error(f"Language model call failed: {e}")
            raise InfrastructureError(f"Language model unavailable: {e}") from e
        content = response.content if hasattr(response, "content") else response
        sql = self._extract_sql(_stringify_llm_content(content))
        LOGGER.info(f"Generated SQL: {sql}")
        return GeneratedSql(sql=sql, relevant_tables=relevant_tables, prompt=prompt)

    def _extract_sql(self, text_value: str) -> str:
        if "```" in text_value:
            extracted: Optional[str] = _extract_sql_from_text(text_value)
            if extracted:
                return extracted.strip()
        return _strip_code_fences(text_value).strip()
