#!/usr/bin/env python3
"""
Question-to-query resolver
Orchestrates normalisation, context injection, the matcher bank, schema
grounded generation, SQL repair and the fallback cascade for one turn
"""

import logging
import random
import time
from typing import Any, Dict, Optional, Tuple

from core.config import Settings
from core.sql_utils import DatabaseQueryError, SqlExecutor
from conversation_context import ConversationContext, QueryResult, update_context
from question_normalizer import conversational_reply, normalize_question
from context_applicator import apply_context
from matchers import MatchContext, run_matchers
from schema_catalog import DescriptionGenerator, SchemaCatalog
from sql_generator import SchemaGroundedGenerator
from sql_postprocessor import SqlPostProcessor
from fallback_cascade import FallbackCascade

LOGGER = logging.getLogger(__name__)


class QueryResolver:
    """Resolves one question (plus the caller's context) into a QueryResult"""

    def __init__(
        self,
        executor,
        catalog: SchemaCatalog,
        searcher,
        llm,
        settings: Optional[Settings] = None,
        rng: Optional[random.Random] = None,
    ):
        self.settings = settings or Settings()
        self.executor = executor
        self.catalog = catalog
        self.generator = SchemaGroundedGenerator(
            llm,
            catalog,
            searcher,
            top_n=self.settings.relevant_tables,
            search_k=self.settings.search_k,
        )
        self.postprocessor = SqlPostProcessor()
        self.cascade = FallbackCascade(executor, fallback_limit=self.settings.fallback_limit)
        self.rng = rng or random.Random()
        self.resolver_stats: Dict[str, Any] = {
            'total_questions': 0,
            'conversational': 0,
            'matcher_answers': 0,
            'generated_answers': 0,
            'fallback_answers': 0,
            'errors': 0,
        }

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "QueryResolver":
        """Wire the live collaborators: pooled engine, introspected catalog, Chroma, Ollama"""
        from langchain_ollama import ChatOllama
        from core.database import create_engine_from_env
        from vector import VectorStoreManager

        settings = settings or Settings.from_env()
        engine = create_engine_from_env(settings.database_url)
        catalog = SchemaCatalog.from_engine(engine)
        describer = ChatOllama(model=settings.description_model_name, temperature=0.2)
        DescriptionGenerator(describer).fill_missing(catalog)
        vector_manager = VectorStoreManager(
            persist_directory=settings.vector_dir,
            collection_name=settings.collection_name,
            embedding_model=settings.embedding_model,
        )
        vector_manager.index_catalog(catalog)
        llm = ChatOllama(model=settings.model_name, temperature=0.0)
        LOGGER.info(f"Query resolver initialised with model {settings.model_name}")
        return cls(SqlExecutor(engine), catalog, vector_manager, llm, settings)

    def resolve(self, question: str, context: Optional[ConversationContext] = None) -> QueryResult:
        """Answer one question. Only InfrastructureError escapes."""
        start_time = time.time()
        self.resolver_stats['total_questions'] += 1
        LOGGER.info(f"Resolving question: {question[:80]}")

        normalized = normalize_question(question)
        if normalized.is_conversational:
            self.resolver_stats['conversational'] += 1
            return QueryResult(sql="", rows=(), note=conversational_reply(self.rng))

        processed = normalized.normalized
        if normalized.is_follow_up and context is not None:
            LOGGER.info("Question detected as follow-up")
            processed = apply_context(processed, context, normalized.original)

        match_ctx = MatchContext(
            executor=self.executor,
            catalog=self.catalog,
            question=processed,
            original=normalized.original,
        )
        matched = run_matchers(match_ctx)
        if matched is not None:
            self.resolver_stats['matcher_answers'] += 1
            self._log_done(start_time)
            return matched

        generated = self.generator.generate(processed)
        sql = self.postprocessor.process(generated.sql, processed, normalized.original)
        if not sql.strip():
            error = "The language model did not produce a SQL query"
            return self._recover(sql, error, processed, generated.relevant_tables, start_time)

        try:
            rows = self.executor.query(sql)
        except DatabaseQueryError as e:
            return self._recover(sql, e.message, processed, generated.relevant_tables, start_time)

        self.resolver_stats['generated_answers'] += 1
        self._log_done(start_time)
        return QueryResult(sql=sql, rows=rows)

    def resolve_turn(self, question: str, context: Optional[ConversationContext] = None) -> Tuple[QueryResult, ConversationContext]:
        """resolve() plus the context for the next turn (unchanged on error)"""
        context = context or ConversationContext()
        result = self.resolve(question, context)
        if result.succeeded and result.sql:
            context = update_context(context, question, result)
        return result, context

    def get_stats(self) -> Dict[str, Any]:
        return dict(self.resolver_stats)

    def _recover(self, sql, error, question, relevant_tables, start_time) -> QueryResult:
        LOGGER.warning(f"Generated SQL failed, starting fallback cascade: {error}")
        result = self.cascade.run(sql, error, question, relevant_tables)
        if result.succeeded:
            self.resolver_stats['fallback_answers'] += 1
        else:
            self.resolver_stats['errors'] += 1
        self._log_done(start_time)
        return result

    def _log_done(self, start_time: float) -> None:
        LOGGER.info(f"Question resolved in {time.time() - start_time:.2f}s")
