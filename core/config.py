"""
Runtime settings and logging setup.
"""

import logging
import os
import sys
from dataclasses import dataclass
from typing import Optional

DEFAULT_MODEL = "llama3.1:8b-instruct-q4_K_M"
DEFAULT_EMBEDDING_MODEL = "mxbai-embed-large"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}")


@dataclass
class Settings:
    """Settings for the resolver and its collaborators."""
    database_url: Optional[str] = None
    model_name: str = DEFAULT_MODEL
    description_model_name: str = DEFAULT_MODEL
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    vector_dir: str = ".vector_store"
    collection_name: str = "school_nl2sql"
    relevant_tables: int = 3
    search_k: int = 4
    fallback_limit: int = 100
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        model_name = os.environ.get("NL2SQL_MODEL", DEFAULT_MODEL)
        return cls(
            database_url=os.environ.get("DATABASE_URL"),
            model_name=model_name,
            description_model_name=os.environ.get("NL2SQL_DESCRIPTION_MODEL", model_name),
            embedding_model=os.environ.get("NL2SQL_EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL),
            vector_dir=os.environ.get("NL2SQL_VECTOR_DIR", ".vector_store"),
            collection_name=os.environ.get("NL2SQL_COLLECTION", "school_nl2sql"),
            relevant_tables=_env_int("NL2SQL_RELEVANT_TABLES", 3),
            search_k=_env_int("NL2SQL_SEARCH_K", 4),
            fallback_limit=_env_int("NL2SQL_FALLBACK_LIMIT", 100),
            log_level=os.environ.get("NL2SQL_LOG_LEVEL", "INFO").upper(),
            log_file=os.environ.get("NL2SQL_LOG_FILE") or None,
        )


def setup_logging(settings: Optional[Settings] = None) -> None:
    settings = settings or Settings.from_env()
    handlers = [logging.StreamHandler(sys.stdout)]
    if settings.log_file:
        log_dir = os.path.dirname(settings.log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(settings.log_file, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
    )
