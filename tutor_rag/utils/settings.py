from __future__ import annotations

import os
from types import SimpleNamespace
from typing import Any, Dict


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, default))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, default))


def default_settings(*, override: Dict[str, Any] | None = None) -> SimpleNamespace:
    """Build the runtime settings from the environment, then apply overrides."""
    settings = SimpleNamespace(
        db_url=os.getenv("TUTOR_DB_URL", "data/tutor.db"),
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        strong_model=os.getenv("OPENAI_STRONG_MODEL", "gpt-4o"),
        light_model=os.getenv("OPENAI_LIGHT_MODEL", "gpt-3.5-turbo"),
        embedding_model=os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"),
        embedding_provider=os.getenv("EMBEDDING_PROVIDER", "openai").lower(),
        local_embedding_model=os.getenv("LOCAL_EMBEDDING_MODEL", "sentence-transformers/all-MiniLM-L6-v2"),
        # search
        default_threshold=_env_float("RAG_THRESHOLD", 0.3),
        min_threshold=_env_float("RAG_MIN_THRESHOLD", 0.15),
        page_size=_env_int("SEARCH_PAGE_SIZE", 100),
        soft_quota=_env_int("SEARCH_SOFT_QUOTA", 20),
        max_scan=_env_int("SEARCH_MAX_SCAN", 1000),
        embedding_cache_size=_env_int("EMBEDDING_CACHE_SIZE", 500),
        query_cache_size=_env_int("QUERY_CACHE_SIZE", 100),
        use_query_expansion=os.getenv("USE_QUERY_EXPANSION", "1") not in ("0", "false", "False"),
        # indexing
        chunk_size=_env_int("CHUNK_SIZE", 800),
        min_chunk_chars=_env_int("CHUNK_MIN_CHARS", 50),
        index_call_delay=_env_float("INDEX_CALL_DELAY", 0.1),
        batch_delay=_env_float("INDEX_BATCH_DELAY", 3.0),
        # answer cache
        answer_cache_ttl=_env_float("ANSWER_CACHE_TTL", 3600),
        answer_cache_size=_env_int("ANSWER_CACHE_SIZE", 300),
        cache_confidence_threshold=_env_int("CACHE_CONFIDENCE_THRESHOLD", 40),
        # learning patterns
        pattern_buffer_size=_env_int("PATTERN_BUFFER_SIZE", 100),
        pattern_min_records=_env_int("PATTERN_MIN_RECORDS", 5),
        recent_failure_limit=_env_int("RECENT_FAILURE_LIMIT", 2),
        # background sweeps
        answer_sweep_interval=_env_float("ANSWER_SWEEP_INTERVAL", 3600),
        embedding_sweep_interval=_env_float("EMBEDDING_SWEEP_INTERVAL", 1800),
        embedding_sweep_threshold=_env_int("EMBEDDING_SWEEP_THRESHOLD", 400),
    )
    if override:
        for key, val in override.items():
            setattr(settings, key, val)
    return settings
