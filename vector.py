import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from langchain_ollama import OllamaEmbeddings
from langchain_chroma import Chroma

from schema_catalog import SchemaCatalog, TableEntry


LOGGER = logging.getLogger(__name__)

DEFAULT_SYNONYMS: Dict[str, List[str]] = {
    "school": ["institution", "institutions"],
    "student": ["user", "users", "institutions_users"],
    "parent": ["guardian", "guardians"],
    "alert": ["intervention", "interventions"],
    "absent": ["attendance", "attendances"],
    "class": ["course", "courses"],
}


def ensure_dir(path: str) -> None:
    if not os.path.isdir(path):
        os.makedirs(path, exist_ok=True)


@dataclass
class RetrievedContext:
    texts: List[str]
    metadatas: List[Dict[str, Any]]


class QueryExpander:
    """Lightweight synonym expansion to improve retrieval without changing SQL generation semantics."""

    def __init__(self, synonyms_path: Optional[str] = None) -> None:
        self.synonyms_path = synonyms_path
        self.synonyms: Dict[str, List[str]] = dict(DEFAULT_SYNONYMS)
        self._load()

    def _load(self) -> None:
        if self.synonyms_path and os.path.isfile(self.synonyms_path):
            try:
                with open(self.synonyms_path, "r", encoding="utf-8") as f:
                    self.synonyms.update(json.load(f))
            except (OSError, ValueError) as exc:
                LOGGER.warning(
                    "Failed to load synonyms file %s: %s", self.synonyms_path, exc
                )

    def expand(self, query_text: str) -> str:
        """Append synonym hints to the query string to enrich retrieval context."""
        if not self.synonyms:
            return query_text
        hints: List[str] = []
        lowered = query_text.lower()
        for canonical, syns in self.synonyms.items():
            if canonical.lower() in lowered:
                hints.extend(syns)
        if hints:
            return f"{query_text}\n\nAlso consider related terms: {', '.join(sorted(set(hints)))}"
        return query_text


def table_chunk(entry: TableEntry, description: str) -> str:
    lines = [f"Table: {entry.table_name}", f"Description: {description}"]
    if entry.columns:
        lines.append("Columns:")
        lines.extend(f"- {c['name']} ({c['type']})" for c in entry.columns)
    if entry.related_tables:
        lines.append(f"Related tables: {', '.join(entry.related_tables)}")
    return "\n".join(lines)


class VectorStoreManager:
    """Embeds one description chunk per table and answers similarity searches."""

    def __init__(
        self,
        persist_directory: str = ".vector_store",
        collection_name: str = "school_nl2sql",
        embedding_model: str = "mxbai-embed-large",
        synonyms_path: Optional[str] = None,
        vector_store: Optional[Chroma] = None,
    ) -> None:
        self.persist_directory = persist_directory
        self.collection_name = collection_name
        if vector_store is None:
            ensure_dir(persist_directory)
            self.embeddings = OllamaEmbeddings(model=embedding_model)
            vector_store = Chroma(
                collection_name=self.collection_name,
                embedding_function=self.embeddings,
                persist_directory=self.persist_directory,
            )
        self._vector_store = vector_store
        self.query_expander = QueryExpander(synonyms_path)

    @property
    def vector_store(self) -> Chroma:
        return self._vector_store

    def index_catalog(self, catalog: SchemaCatalog) -> int:
        """Indexes each table of the catalog. Returns number of chunks added."""
        added = 0
        for entry in catalog.entries():
            # Drop the previous chunk so re-indexing does not duplicate it
            try:
                self._vector_store.delete(where={"table": entry.table_name})
            except ValueError as exc:
                LOGGER.debug("Nothing to delete for table %s: %s", entry.table_name, exc)
            text_block = table_chunk(entry, catalog.get_table_description(entry.table_name))
            self._vector_store.add_texts(
                texts=[text_block],
                metadatas=[{"type": "schema", "table": entry.table_name}],
            )
            added += 1
        LOGGER.info("Indexed %d table descriptions into %s", added, self.collection_name)
        return added

    def similarity_search(self, query_text: str, top_k: int = 4) -> RetrievedContext:
        enriched = self.query_expander.expand(query_text)
        try:
            docs = self._vector_store.similarity_search(enriched, k=top_k)
        except Exception as exc:
            LOGGER.warning("Vector search failed, returning empty context: %s", exc)
            return RetrievedContext(texts=[], metadatas=[])
        texts = [d.page_content for d in docs]
        metas = [d.metadata or {} for d in docs]
        return RetrievedContext(texts=texts, metadatas=metas)

    def search(self, query: str, k: int = 4) -> List[str]:
        return self.similarity_search(query, top_k=k).texts
