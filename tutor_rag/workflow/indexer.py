from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from tutor_rag.db.async_store import AsyncChunkStore
from tutor_rag.logging_config import get_logger
from tutor_rag.utils.types import ChunkCandidate, ChunkEmbedding, IndexReport, SourceContent, SupplementItem
from tutor_rag.workflow.chunking import SmartChunker
from tutor_rag.workflow.content import build_source_text, parse_enrichment
from tutor_rag.workflow.llm import EmbeddingService

logger = get_logger(__name__)

# chunk_index namespaces; each holds NAMESPACE_SIZE entries
MAIN_NAMESPACE = 0
EXAMPLE_NAMESPACE = 10000
QUESTION_NAMESPACE = 20000
VISUAL_NAMESPACE = 30000
NAMESPACE_SIZE = 10000

SUPPLEMENT_NAMESPACES: Dict[str, int] = {
    "example": EXAMPLE_NAMESPACE,
    "question": QUESTION_NAMESPACE,
    "visual": VISUAL_NAMESPACE,
}
REPORT_FIELDS = {"example": "examples", "question": "questions", "visual": "visuals"}


def render_supplement(item: SupplementItem) -> str:
    payload = item.payload
    if item.kind == "example":
        return f"مثال: {payload.get('problem', '')}\nالحل: {payload.get('solution', '')}"
    if item.kind == "question":
        text = f"سؤال: {payload.get('question', '')}\nالإجابة: {payload.get('correct_answer', '')}"
        if payload.get("explanation"):
            text += f"\nالشرح: {payload['explanation']}"
        return text
    if item.kind == "visual":
        return f"{payload.get('title', '')}: {payload.get('description', '')}"
    raise ValueError(f"Unknown supplement kind: {item.kind}")


class DocumentIndexer:
    """Turns a stored source into embedded chunks, fully replacing any previous index."""

    def __init__(
        self,
        store: AsyncChunkStore,
        embedder: EmbeddingService,
        chunker: Optional[SmartChunker] = None,
        *,
        call_delay: float = 0.1,
        batch_delay: float = 3.0,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.chunker = chunker or SmartChunker()
        self.call_delay = call_delay
        self.batch_delay = batch_delay

    async def _pause(self) -> None:
        if self.call_delay > 0:
            await asyncio.sleep(self.call_delay)

    async def _embed_and_store(self, source_id: str, chunk_index: int, text: str, metadata: Dict[str, Any]) -> bool:
        try:
            embedding = await self.embedder.embed(text)
            await self.store.add_chunk(
                source_id,
                ChunkEmbedding(chunk_index=chunk_index, text=text, embedding=embedding, metadata=metadata),
            )
            return True
        except Exception:
            logger.warning("Chunk indexing failed, skipping | source=%s index=%s", source_id, chunk_index, exc_info=True)
            return False
        finally:
            await self._pause()

    @staticmethod
    def _chunk_metadata(source: SourceContent, candidate: ChunkCandidate, position: int, total: int, is_enriched: bool) -> Dict[str, Any]:
        return {
            "type": "content",
            "source_id": source.source_id,
            "source_title": source.title,
            "source_title_en": source.title_en,
            "unit_id": source.unit_id,
            "unit_title": source.unit_title,
            "subject_name": source.subject_name,
            "subject_name_en": source.subject_name_en,
            "grade": source.grade,
            "difficulty": source.difficulty,
            "section_index": candidate.section_index,
            "section_type": candidate.section_type,
            "chunk_number": position + 1,
            "total_chunks": total,
            "is_enriched": is_enriched,
            "enrichment_level": source.enrichment_level,
        }

    async def index_source(self, source_id: str) -> IndexReport:
        source = await self.store.get_source(source_id)
        if source is None:
            raise ValueError(f"Source {source_id} not found; cannot index.")

        removed = await self.store.delete_chunks(source_id)
        enriched = parse_enrichment(source.enriched)
        report = IndexReport(source_id=source_id, is_enriched=enriched is not None)
        logger.info("Index start | source=%s removed=%s enriched=%s", source_id, removed, report.is_enriched)

        candidates = self.chunker.chunk(build_source_text(source, enriched))
        if len(candidates) > NAMESPACE_SIZE:
            logger.warning("Too many chunks, truncating | source=%s chunks=%s", source_id, len(candidates))
            candidates = candidates[:NAMESPACE_SIZE]

        for position, candidate in enumerate(candidates):
            metadata = self._chunk_metadata(source, candidate, position, len(candidates), report.is_enriched)
            if await self._embed_and_store(source_id, MAIN_NAMESPACE + position, candidate.text, metadata):
                report.main_chunks += 1
            else:
                report.failed += 1

        await self._index_supplements(source, report)
        logger.info(
            "Index done | source=%s main=%s examples=%s questions=%s visuals=%s failed=%s",
            source_id,
            report.main_chunks,
            report.examples,
            report.questions,
            report.visuals,
            report.failed,
        )
        return report

    async def _index_supplements(self, source: SourceContent, report: IndexReport) -> None:
        positions: Dict[str, int] = {kind: 0 for kind in SUPPLEMENT_NAMESPACES}
        for item in source.supplements:
            base = SUPPLEMENT_NAMESPACES.get(item.kind)
            if base is None:
                logger.warning("Unknown supplement kind, skipping | source=%s kind=%s", source.source_id, item.kind)
                continue
            position = positions[item.kind]
            positions[item.kind] += 1
            if position >= NAMESPACE_SIZE:
                logger.warning("Supplement namespace full, skipping | source=%s kind=%s", source.source_id, item.kind)
                continue

            metadata = {
                "type": item.kind,
                "item_id": item.item_id,
                "source_id": source.source_id,
                "source_title": source.title,
                "unit_title": source.unit_title,
                "subject_name": source.subject_name,
                "difficulty": item.payload.get("difficulty", source.difficulty),
            }
            if await self._embed_and_store(source.source_id, base + position, render_supplement(item), metadata):
                attr = REPORT_FIELDS[item.kind]
                setattr(report, attr, getattr(report, attr) + 1)
            else:
                report.failed += 1

    async def index_all(self, batch_size: int | None = None) -> Dict[str, int]:
        """Index every stored source; a failing source is logged and counted, never fatal."""
        source_ids = await self.store.list_source_ids()
        if not source_ids:
            logger.info("No sources found to index")
            return {"processed": 0, "failed": 0, "total_chunks": await self.store.count_chunks()}

        size = batch_size or len(source_ids)
        processed = failed = 0
        for start in range(0, len(source_ids), size):
            for source_id in source_ids[start : start + size]:
                try:
                    await self.index_source(source_id)
                    processed += 1
                except Exception:
                    failed += 1
                    logger.warning("Source indexing failed | source=%s", source_id, exc_info=True)
            if start + size < len(source_ids) and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)

        total = await self.store.count_chunks()
        logger.info("Index all done | processed=%s failed=%s total_chunks=%s", processed, failed, total)
        return {"processed": processed, "failed": failed, "total_chunks": total}

    async def get_index_stats(self, source_id: str | None = None) -> Dict[str, int]:
        return {
            "content": await self.store.count_chunks(source_id, max_index=EXAMPLE_NAMESPACE),
            "example": await self.store.count_chunks(source_id, min_index=EXAMPLE_NAMESPACE, max_index=QUESTION_NAMESPACE),
            "question": await self.store.count_chunks(source_id, min_index=QUESTION_NAMESPACE, max_index=VISUAL_NAMESPACE),
            "visual": await self.store.count_chunks(source_id, min_index=VISUAL_NAMESPACE),
            "total": await self.store.count_chunks(source_id),
        }
