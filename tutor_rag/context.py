from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

from tutor_rag.db.async_store import AsyncChunkStore
from tutor_rag.logging_config import get_logger
from tutor_rag.utils.settings import default_settings
from tutor_rag.utils.types import IndexReport, RAGResponse, SearchResult
from tutor_rag.workflow.answer_cache import AnswerCache
from tutor_rag.workflow.chunking import SmartChunker
from tutor_rag.workflow.classifiers import QuestionClassifier
from tutor_rag.workflow.indexer import DocumentIndexer
from tutor_rag.workflow.learning import LearningPatternEngine
from tutor_rag.workflow.llm import CompletionService, EmbeddingService, OpenAICompletionService, OpenAIEmbeddingService
from tutor_rag.workflow.rag import RAGPipeline
from tutor_rag.workflow.similarity import FIFOCache, SimilaritySearchEngine

logger = get_logger(__name__)


def build_embedding_service(settings: SimpleNamespace) -> EmbeddingService:
    if settings.embedding_provider == "local":
        # sentence-transformers is heavy; load it only when selected
        from tutor_rag.workflow.vectorizer import LocalEmbeddingService

        return LocalEmbeddingService(settings.local_embedding_model)
    return OpenAIEmbeddingService(api_key=settings.openai_api_key, model=settings.embedding_model)


class TutorContext:
    """Composition root: owns the store, caches, learning state and the services built on them.

    Construct once at startup and share by reference. ``clear()`` resets all
    in-memory state, which tests use between cases.
    """

    def __init__(
        self,
        settings: Optional[SimpleNamespace] = None,
        *,
        store: Optional[AsyncChunkStore] = None,
        embedder: Optional[EmbeddingService] = None,
        completer: Optional[CompletionService] = None,
        classifier: Optional[QuestionClassifier] = None,
    ) -> None:
        self.settings = settings or default_settings()
        s = self.settings
        self.store = store or AsyncChunkStore(s.db_url)
        self.embedder = embedder or build_embedding_service(s)
        self.completer = completer or OpenAICompletionService(api_key=s.openai_api_key, model=s.openai_model)
        self.classifier = classifier or QuestionClassifier()

        self.search_engine = SimilaritySearchEngine(
            self.store,
            self.embedder,
            embedding_cache=FIFOCache(s.embedding_cache_size),
            query_cache=FIFOCache(s.query_cache_size),
            default_threshold=s.default_threshold,
            min_threshold=s.min_threshold,
            page_size=s.page_size,
            soft_quota=s.soft_quota,
            max_scan=s.max_scan,
            use_query_expansion=s.use_query_expansion,
            sweep_threshold=s.embedding_sweep_threshold,
        )
        self.indexer = DocumentIndexer(
            self.store,
            self.embedder,
            SmartChunker(chunk_size=s.chunk_size, min_chunk_chars=s.min_chunk_chars),
            call_delay=s.index_call_delay,
            batch_delay=s.batch_delay,
        )
        self.learning = LearningPatternEngine(
            self.classifier,
            buffer_size=s.pattern_buffer_size,
            min_records=s.pattern_min_records,
        )
        self.answer_cache = AnswerCache(ttl_seconds=s.answer_cache_ttl, max_size=s.answer_cache_size)
        self.rag = RAGPipeline(
            self.search_engine,
            self.completer,
            self.learning,
            self.answer_cache,
            classifier=self.classifier,
            settings=s,
        )
        self._sweep_tasks: List[asyncio.Task] = []

    # Lifecycle
    async def start(self, *, background_sweeps: bool = False) -> "TutorContext":
        await self.store.init_models()
        if background_sweeps:
            self.start_background_sweeps()
        return self

    async def aclose(self) -> None:
        for task in self._sweep_tasks:
            task.cancel()
        if self._sweep_tasks:
            await asyncio.gather(*self._sweep_tasks, return_exceptions=True)
        self._sweep_tasks.clear()
        await self.store.close()

    async def __aenter__(self) -> "TutorContext":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def clear(self) -> None:
        self.search_engine.clear_caches()
        self.answer_cache.clear()
        self.learning.clear()
        self.rag.reset_metrics()
        logger.info("Tutor context cleared")

    # Background sweeps
    def start_background_sweeps(self) -> None:
        if self._sweep_tasks:
            return
        s = self.settings
        self._sweep_tasks = [
            asyncio.create_task(self._every(s.answer_sweep_interval, self.answer_cache.sweep_expired, "answer-cache")),
            asyncio.create_task(self._every(s.embedding_sweep_interval, self.search_engine.sweep, "embedding-cache")),
        ]
        logger.info("Background sweeps started | answer_every=%s embedding_every=%s", s.answer_sweep_interval, s.embedding_sweep_interval)

    @staticmethod
    async def _every(interval: float, sweep: Callable[[], Any], name: str) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                sweep()
            except Exception:
                logger.warning("Background sweep failed | sweep=%s", name, exc_info=True)

    # Facade
    async def answer(self, question: str, source_id: str | None = None, user_id: str | None = None) -> RAGResponse:
        return await self.rag.answer(question, source_id, user_id)

    async def generate_questions(self, source_id: str, count: int = 5, user_id: str | None = None) -> List[Dict[str, Any]]:
        return await self.rag.generate_questions(source_id, count, user_id)

    async def search(self, query: str, limit: int = 5, threshold: float | None = None) -> List[SearchResult]:
        return await self.search_engine.search(query, limit, threshold)

    async def index_source(self, source_id: str) -> IndexReport:
        return await self.indexer.index_source(source_id)

    async def index_all(self, batch_size: int | None = None) -> Dict[str, int]:
        return await self.indexer.index_all(batch_size)

    async def stats(self) -> Dict[str, Any]:
        return {
            "search": await self.search_engine.get_stats(),
            "index": await self.indexer.get_index_stats(),
            "rag": self.rag.get_metrics(),
        }
