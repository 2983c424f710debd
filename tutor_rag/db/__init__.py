from tutor_rag.db.async_session import create_async_engine_and_session, normalize_db_url
from tutor_rag.db.async_store import AsyncChunkStore
from tutor_rag.db.models import Base, Chunk, Source, SourceSupplement

__all__ = [
    "Base",
    "Source",
    "SourceSupplement",
    "Chunk",
    "AsyncChunkStore",
    "create_async_engine_and_session",
    "normalize_db_url",
]
