from __future__ import annotations

import json
import math
import time
from typing import Any, Awaitable, Callable, Dict, Hashable, Iterator, List, Optional, Sequence

import numpy as np

from tutor_rag.db.async_store import AsyncChunkStore
from tutor_rag.logging_config import get_logger
from tutor_rag.utils.types import ChunkRecord, SearchResult, SourceInfo
from tutor_rag.workflow.llm import EmbeddingService
from tutor_rag.workflow.query import expand_query, extract_keywords, normalize_query

logger = get_logger(__name__)

VECTOR_WEIGHT = 0.6
KEYWORD_WEIGHT = 0.4
KEYWORD_HIT_SCORE = 0.1


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity clamped to [0, 1]; 0 when the vectors cannot be compared."""
    vec_a = np.asarray(a, dtype=float)
    vec_b = np.asarray(b, dtype=float)
    if vec_a.ndim != 1 or vec_a.shape != vec_b.shape:
        logger.error("Vector length mismatch | a=%s b=%s", vec_a.shape, vec_b.shape)
        return 0.0
    norm_a = float(np.linalg.norm(vec_a))
    norm_b = float(np.linalg.norm(vec_b))
    if np.isclose(norm_a, 0.0) or np.isclose(norm_b, 0.0):
        logger.warning("Zero-norm vector in cosine similarity | size=%s", vec_a.size)
        return 0.0
    return float(np.clip(np.dot(vec_a, vec_b) / (norm_a * norm_b), 0.0, 1.0))


class FIFOCache:
    """Capacity-bounded map that evicts the oldest-inserted key first."""

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be a positive integer.")
        self.capacity = capacity
        self._data: Dict[Hashable, Any] = {}

    def get(self, key: Hashable, default: Any = None) -> Any:
        return self._data.get(key, default)

    def put(self, key: Hashable, value: Any) -> None:
        if key not in self._data and len(self._data) >= self.capacity:
            oldest = next(iter(self._data))
            del self._data[oldest]
        self._data[key] = value

    def pop(self, key: Hashable, default: Any = None) -> Any:
        return self._data.pop(key, default)

    def clear(self) -> None:
        self._data.clear()

    def keys(self) -> Iterator[Hashable]:
        return iter(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)


class SimilaritySearchEngine:
    """Cosine-similarity retrieval over stored chunks with a multi-strategy fallback ladder.

    The batched scan stops once ``soft_quota`` matches are collected or ``max_scan``
    chunks have been read. Chunks beyond that point are never considered, which keeps
    latency bounded on a growing corpus at the cost of completeness.
    """

    def __init__(
        self,
        store: AsyncChunkStore,
        embedder: EmbeddingService,
        *,
        embedding_cache: FIFOCache,
        query_cache: FIFOCache,
        default_threshold: float = 0.3,
        min_threshold: float = 0.15,
        page_size: int = 100,
        soft_quota: int = 20,
        max_scan: int = 1000,
        use_query_expansion: bool = True,
        sweep_threshold: int = 400,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.embedding_cache = embedding_cache
        self.query_cache = query_cache
        self.default_threshold = default_threshold
        self.min_threshold = min_threshold
        self.page_size = page_size
        self.soft_quota = soft_quota
        self.max_scan = max_scan
        self.use_query_expansion = use_query_expansion
        self.sweep_threshold = sweep_threshold

    # Embedding helpers
    async def _query_embedding(self, query: str) -> np.ndarray:
        key = normalize_query(query)
        cached = self.query_cache.get(key)
        if cached is not None:
            return cached
        vector = np.asarray(await self.embedder.embed(query), dtype=float)
        self.query_cache.put(key, vector)
        return vector

    def _chunk_vector(self, chunk: ChunkRecord) -> Optional[np.ndarray]:
        cached = self.embedding_cache.get(chunk.id)
        if cached is not None:
            if isinstance(cached, np.ndarray) and cached.ndim == 1 and cached.size:
                return cached
            self.embedding_cache.pop(chunk.id)
        try:
            vector = np.asarray(json.loads(chunk.embedding_json), dtype=float)
        except (ValueError, TypeError):
            logger.warning("Skipping chunk with unreadable embedding | chunk=%s", chunk.id, exc_info=True)
            return None
        if vector.ndim != 1 or vector.size == 0:
            logger.warning("Skipping chunk with empty embedding | chunk=%s", chunk.id)
            return None
        self.embedding_cache.put(chunk.id, vector)
        return vector

    def _score(self, query_vector: np.ndarray, chunk: ChunkRecord) -> Optional[float]:
        vector = self._chunk_vector(chunk)
        if vector is None:
            return None
        return cosine_similarity(query_vector, vector)

    @staticmethod
    def _result(chunk: ChunkRecord, score: float) -> SearchResult:
        return SearchResult(chunk=chunk, score=score, source_info=SourceInfo.from_metadata(chunk.source_id, chunk.metadata))

    # Vector search
    async def search(self, query: str, limit: int = 5, threshold: float | None = None) -> List[SearchResult]:
        if limit < 1:
            raise ValueError("limit must be a positive integer.")
        threshold = self.default_threshold if threshold is None else threshold
        started = time.perf_counter()

        query_vector = await self._query_embedding(query)
        results = await self._batched_scan(query_vector, threshold)

        if not results and threshold > self.min_threshold:
            logger.info("No results, relaxing threshold | from=%s to=%s", threshold, self.min_threshold)
            return await self.search(query, limit, self.min_threshold)

        results.sort(key=lambda item: item.score, reverse=True)
        logger.debug(
            "Vector search done | results=%s threshold=%s ms=%.1f",
            len(results),
            threshold,
            (time.perf_counter() - started) * 1000,
        )
        return results[:limit]

    async def _batched_scan(self, query_vector: np.ndarray, threshold: float) -> List[SearchResult]:
        results: List[SearchResult] = []
        offset = 0
        while len(results) < self.soft_quota and offset < self.max_scan:
            page = await self.store.fetch_chunks(offset=offset, limit=min(self.page_size, self.max_scan - offset))
            if not page:
                break
            for chunk in page:
                score = self._score(query_vector, chunk)
                if score is not None and score >= threshold:
                    results.append(self._result(chunk, score))
            offset += len(page)
            if len(page) < self.page_size:
                break
        return results

    async def search_in_source(self, source_id: str, query: str, limit: int = 3) -> List[SearchResult]:
        if limit < 1:
            raise ValueError("limit must be a positive integer.")
        if not query or not query.strip():
            chunks = await self.store.load_chunks(source_id, limit=limit)
            return [self._result(chunk, 1.0) for chunk in chunks]

        query_vector = await self._query_embedding(query)
        results: List[SearchResult] = []
        for chunk in await self.store.load_chunks(source_id):
            score = self._score(query_vector, chunk)
            if score is not None:
                results.append(self._result(chunk, score))
        results.sort(key=lambda item: item.score, reverse=True)
        return results[:limit]

    # Fallback strategies
    def expanded_keywords(self, query: str) -> List[str]:
        """Keywords of the query plus those of its synonym-substituted variants."""
        terms = extract_keywords(query)
        if self.use_query_expansion:
            for variant in expand_query(query)[1:]:
                terms.extend(extract_keywords(variant))
        return list(dict.fromkeys(terms))

    async def keyword_search(self, keywords: Sequence[str], limit: int = 5) -> List[SearchResult]:
        terms = [kw.lower() for kw in keywords if kw]
        if not terms:
            return []
        rows = await self.store.search_text(terms, limit=limit * 2)
        results = []
        for chunk in rows:
            text = chunk.text.lower()
            occurrences = sum(text.count(term) for term in terms)
            results.append(self._result(chunk, min(1.0, occurrences * KEYWORD_HIT_SCORE)))
        results.sort(key=lambda item: item.score, reverse=True)
        return results[:limit]

    async def hybrid_search(self, query: str, keywords: Sequence[str] | None = None, limit: int = 5) -> List[SearchResult]:
        vector_results = await self.search(query, limit * 2, self.min_threshold)
        terms = list(keywords) if keywords is not None else self.expanded_keywords(query)
        if not terms:
            return vector_results[:limit]
        keyword_results = await self.keyword_search(terms, limit)

        merged: Dict[str, SearchResult] = {}
        for item in vector_results:
            merged[item.chunk.id] = SearchResult(item.chunk, item.score * VECTOR_WEIGHT, item.source_info)
        for item in keyword_results:
            existing = merged.get(item.chunk.id)
            if existing:
                existing.score = min(1.0, existing.score + item.score * KEYWORD_WEIGHT)
            else:
                merged[item.chunk.id] = SearchResult(item.chunk, item.score * KEYWORD_WEIGHT, item.source_info)

        results = sorted(merged.values(), key=lambda item: item.score, reverse=True)
        return results[:limit]

    async def partial_search(self, query: str, limit: int = 5) -> List[SearchResult]:
        words = [word for word in (query or "").split() if len(word) > 2]
        if len(words) <= 1:
            return []
        head = " ".join(words[: math.ceil(len(words) / 2)])
        return await self.search(head, limit, self.min_threshold)

    async def enhanced_search(self, query: str, limit: int = 5) -> List[SearchResult]:
        """Try vector, hybrid, keyword, then partial search; first non-empty result wins."""
        strategies: List[tuple[str, Callable[[], Awaitable[List[SearchResult]]]]] = [
            ("vector", lambda: self.search(query, limit)),
            ("hybrid", lambda: self.hybrid_search(query, None, limit)),
            ("keyword", lambda: self.keyword_search(self.expanded_keywords(query), limit)),
            ("partial", lambda: self.partial_search(query, limit)),
        ]
        for name, run in strategies:
            try:
                results = await run()
            except Exception:
                logger.warning("Search strategy failed | strategy=%s", name, exc_info=True)
                continue
            if results:
                logger.info("Search resolved | strategy=%s results=%s", name, len(results))
                return results
        logger.info("Search exhausted all strategies | query=%s", query[:60])
        return []

    # Cache management
    def clear_caches(self) -> None:
        self.embedding_cache.clear()
        self.query_cache.clear()
        logger.info("Search caches cleared")

    def sweep(self) -> bool:
        if len(self.embedding_cache) <= self.sweep_threshold:
            return False
        logger.info("Embedding cache over threshold, clearing | size=%s", len(self.embedding_cache))
        self.clear_caches()
        return True

    async def get_stats(self) -> Dict[str, Any]:
        return {
            "embedding_cache_size": len(self.embedding_cache),
            "query_cache_size": len(self.query_cache),
            "total_chunks": await self.store.count_chunks(),
            "features": {
                "query_expansion": self.use_query_expansion,
                "page_size": self.page_size,
                "soft_quota": self.soft_quota,
                "max_scan": self.max_scan,
            },
        }
