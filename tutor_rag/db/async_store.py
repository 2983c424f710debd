from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

from sqlalchemy import delete, func, or_, select

from tutor_rag.db.async_session import create_async_engine_and_session, normalize_db_url
from tutor_rag.db.models import Base, Chunk, Source, SourceSupplement
from tutor_rag.logging_config import get_logger
from tutor_rag.utils.types import ChunkEmbedding, ChunkRecord, SourceContent, SupplementItem

logger = get_logger(__name__)


class AsyncChunkStore:
    """Async SQLAlchemy persistence for sources and their indexed chunks."""

    def __init__(self, db_url: Union[str, Path]):
        self.db_url = normalize_db_url(db_url)
        self.engine, self.SessionLocal = create_async_engine_and_session(self.db_url)

    async def init_models(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    # Utilities
    @staticmethod
    def _build_chunk_id(source_id: str, chunk_index: int, text: str) -> str:
        payload = f"{source_id}|{chunk_index}|{(text or '').strip()}"
        return hashlib.sha1(payload.encode("utf-8")).hexdigest()

    @staticmethod
    def _to_record(row: Chunk) -> ChunkRecord:
        metadata = dict(row.meta or {})
        metadata.setdefault("chunk_index", row.chunk_index)
        return ChunkRecord(
            id=row.chunk_id,
            source_id=row.source_id,
            chunk_index=row.chunk_index,
            text=row.text or "",
            embedding_json=row.embedding or "[]",
            metadata=metadata,
        )

    # Source helpers
    async def upsert_source(self, source: SourceContent) -> None:
        async with self.SessionLocal() as session:
            row = await session.get(Source, source.source_id)
            if row is None:
                row = Source(source_id=source.source_id)
                session.add(row)
            row.title = source.title
            row.title_en = source.title_en
            row.subject_name = source.subject_name
            row.subject_name_en = source.subject_name_en
            row.unit_id = source.unit_id
            row.unit_title = source.unit_title
            row.grade = source.grade
            row.difficulty = source.difficulty
            row.full_text = source.full_text
            row.summary = source.summary
            row.key_points = list(source.key_points)
            row.examples = list(source.examples)
            row.exercises = list(source.exercises)
            row.enriched = source.enriched
            row.enrichment_level = source.enrichment_level

            await session.execute(delete(SourceSupplement).where(SourceSupplement.source_id == source.source_id))
            session.add_all(
                [
                    SourceSupplement(
                        source_id=source.source_id,
                        kind=item.kind,
                        position=idx,
                        item_id=item.item_id,
                        payload=dict(item.payload),
                    )
                    for idx, item in enumerate(source.supplements)
                ]
            )
            await session.commit()

    async def get_source(self, source_id: str) -> Optional[SourceContent]:
        async with self.SessionLocal() as session:
            row = await session.get(Source, source_id)
            if row is None:
                return None
            stmt = (
                select(SourceSupplement)
                .where(SourceSupplement.source_id == source_id)
                .order_by(SourceSupplement.position.asc())
            )
            supplements: Iterable[SourceSupplement] = (await session.execute(stmt)).scalars().all()
            return SourceContent(
                source_id=row.source_id,
                title=row.title or "",
                title_en=row.title_en or "",
                subject_name=row.subject_name or "",
                subject_name_en=row.subject_name_en or "",
                unit_id=row.unit_id or "",
                unit_title=row.unit_title or "",
                grade=row.grade or 0,
                difficulty=row.difficulty or "medium",
                full_text=row.full_text or "",
                summary=row.summary or "",
                key_points=list(row.key_points or []),
                examples=list(row.examples or []),
                exercises=list(row.exercises or []),
                enriched=row.enriched,
                enrichment_level=row.enrichment_level or 0,
                supplements=[
                    SupplementItem(kind=item.kind, payload=dict(item.payload or {}), item_id=item.item_id)
                    for item in supplements
                ],
            )

    async def list_source_ids(self) -> List[str]:
        async with self.SessionLocal() as session:
            stmt = select(Source.source_id).order_by(Source.created_at.asc(), Source.source_id.asc())
            return list((await session.execute(stmt)).scalars().all())

    # Chunk helpers
    async def delete_chunks(self, source_id: str, *, min_index: int | None = None) -> int:
        async with self.SessionLocal() as session:
            stmt = delete(Chunk).where(Chunk.source_id == source_id)
            if min_index is not None:
                stmt = stmt.where(Chunk.chunk_index >= min_index)
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount or 0

    async def add_chunk(self, source_id: str, chunk: ChunkEmbedding) -> ChunkRecord:
        chunk_id = self._build_chunk_id(source_id, chunk.chunk_index, chunk.text)
        row = Chunk(
            source_id=source_id,
            chunk_index=chunk.chunk_index,
            chunk_id=chunk_id,
            text=chunk.text,
            embedding=json.dumps([float(value) for value in chunk.embedding]),
            meta=dict(chunk.metadata or {}),
        )
        async with self.SessionLocal() as session:
            session.add(row)
            await session.commit()
        return self._to_record(row)

    async def fetch_chunks(self, *, offset: int, limit: int) -> List[ChunkRecord]:
        async with self.SessionLocal() as session:
            stmt = select(Chunk).order_by(Chunk.id.asc()).offset(offset).limit(limit)
            rows: Iterable[Chunk] = (await session.execute(stmt)).scalars().all()
            return [self._to_record(row) for row in rows]

    async def load_chunks(self, source_id: str, *, limit: int | None = None) -> List[ChunkRecord]:
        async with self.SessionLocal() as session:
            stmt = select(Chunk).where(Chunk.source_id == source_id).order_by(Chunk.chunk_index.asc())
            if limit is not None:
                stmt = stmt.limit(limit)
            rows: Iterable[Chunk] = (await session.execute(stmt)).scalars().all()
            return [self._to_record(row) for row in rows]

    async def search_text(self, keywords: Sequence[str], *, limit: int) -> List[ChunkRecord]:
        terms = [kw for kw in keywords if kw]
        if not terms:
            return []
        async with self.SessionLocal() as session:
            stmt = (
                select(Chunk)
                .where(or_(*[Chunk.text.icontains(term, autoescape=True) for term in terms]))
                .order_by(Chunk.id.asc())
                .limit(limit)
            )
            rows: Iterable[Chunk] = (await session.execute(stmt)).scalars().all()
            return [self._to_record(row) for row in rows]

    async def count_chunks(
        self,
        source_id: str | None = None,
        *,
        min_index: int | None = None,
        max_index: int | None = None,
    ) -> int:
        async with self.SessionLocal() as session:
            stmt = select(func.count()).select_from(Chunk)
            if source_id is not None:
                stmt = stmt.where(Chunk.source_id == source_id)
            if min_index is not None:
                stmt = stmt.where(Chunk.chunk_index >= min_index)
            if max_index is not None:
                stmt = stmt.where(Chunk.chunk_index < max_index)
            return int((await session.execute(stmt)).scalar_one())
