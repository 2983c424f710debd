from __future__ import annotations

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.sqlite import JSON as SQLITE_JSON
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Source(Base):
    __tablename__ = "sources"

    source_id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    title_en = Column(String, nullable=True)
    subject_name = Column(String, nullable=True)
    subject_name_en = Column(String, nullable=True)
    unit_id = Column(String, nullable=True)
    unit_title = Column(String, nullable=True)
    grade = Column(Integer, nullable=False, default=0)
    difficulty = Column(String, nullable=True)
    full_text = Column(Text, nullable=True)
    summary = Column(Text, nullable=True)
    key_points = Column(SQLITE_JSON, nullable=False, default=list)
    examples = Column(SQLITE_JSON, nullable=False, default=list)
    exercises = Column(SQLITE_JSON, nullable=False, default=list)
    enriched = Column(SQLITE_JSON, nullable=True)
    enrichment_level = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class SourceSupplement(Base):
    __tablename__ = "source_supplements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    source_id = Column(String, ForeignKey("sources.source_id", ondelete="CASCADE"), nullable=False)
    kind = Column(String, nullable=False)
    position = Column(Integer, nullable=False, default=0)
    item_id = Column(String, nullable=True)
    payload = Column(SQLITE_JSON, nullable=False, default=dict)


class Chunk(Base):
    __tablename__ = "chunks"
    __table_args__ = (
        UniqueConstraint("chunk_id", name="uix_chunk_id"),
        UniqueConstraint("source_id", "chunk_index", name="uix_source_chunk_index"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    source_id = Column(String, ForeignKey("sources.source_id", ondelete="CASCADE"), nullable=False)
    chunk_index = Column(Integer, nullable=False)
    chunk_id = Column(String, nullable=False)
    text = Column(Text, nullable=False)
    # serialized JSON array of floats, parsed lazily by the search engine
    embedding = Column(Text, nullable=False, default="[]")
    meta = Column(SQLITE_JSON, nullable=False, default=dict)
    created_at = Column(DateTime, server_default=func.now())
