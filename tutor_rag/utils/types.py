from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class ChunkCandidate:
    """Chunk text emitted by the chunker before embedding."""

    text: str
    section_index: int = 0
    section_type: str = "content"


@dataclass
class ChunkEmbedding:
    """Chunk text paired with its embedding vector, ready to be written."""

    chunk_index: int
    text: str
    embedding: List[float]
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ChunkRecord:
    """Chunk row as read back from the datastore.

    The embedding stays in its serialized form until a search needs it.
    """

    id: str
    source_id: str
    chunk_index: int
    text: str
    embedding_json: str = "[]"
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def embedding(self) -> List[float]:
        return list(json.loads(self.embedding_json or "[]"))


@dataclass
class SourceInfo:
    id: str
    title: str = ""
    unit_title: str = ""
    subject_name: str = ""

    @classmethod
    def from_metadata(cls, source_id: str, metadata: Dict[str, Any]) -> "SourceInfo":
        return cls(
            id=str(metadata.get("source_id") or source_id),
            title=str(metadata.get("source_title") or ""),
            unit_title=str(metadata.get("unit_title") or ""),
            subject_name=str(metadata.get("subject_name") or ""),
        )


@dataclass
class SearchResult:
    chunk: ChunkRecord
    score: float
    source_info: SourceInfo


@dataclass
class SupplementItem:
    """Worked example, quiz question or visual aid attached to a source."""

    kind: str
    payload: Dict[str, Any] = field(default_factory=dict)
    item_id: Optional[str] = None


@dataclass
class SourceContent:
    """Lesson content as stored in the datastore."""

    source_id: str
    title: str
    title_en: str = ""
    subject_name: str = ""
    subject_name_en: str = ""
    unit_id: str = ""
    unit_title: str = ""
    grade: int = 0
    difficulty: str = "medium"
    full_text: str = ""
    summary: str = ""
    key_points: List[str] = field(default_factory=list)
    examples: List[Any] = field(default_factory=list)
    exercises: List[Any] = field(default_factory=list)
    enriched: Optional[Dict[str, Any]] = None
    enrichment_level: int = 0
    supplements: List[SupplementItem] = field(default_factory=list)


@dataclass
class IndexReport:
    source_id: str
    main_chunks: int = 0
    examples: int = 0
    questions: int = 0
    visuals: int = 0
    failed: int = 0
    is_enriched: bool = False

    @property
    def total(self) -> int:
        return self.main_chunks + self.examples + self.questions + self.visuals


@dataclass(frozen=True)
class LearningPattern:
    """One interaction record; immutable once appended."""

    timestamp: float
    topic: str
    question_type: str
    response_time: int
    success: bool
    difficulty: str
    emotional_state: str


@dataclass
class UserLearningProfile:
    id: str
    level: int = 5
    correct_answers: int = 0
    total_attempts: int = 0
    weak_areas: List[str] = field(default_factory=list)
    strong_areas: List[str] = field(default_factory=list)
    learning_style: str = "mixed"
    current_mood: str = "neutral"
    recent_failures: int = 0
    successful_examples: List[str] = field(default_factory=list)
    last_successful_topic: str = ""
    last_active: float = field(default_factory=time.time)


@dataclass
class PredictiveInsights:
    next_likely_question: str = ""
    suggested_topics: List[str] = field(default_factory=list)
    optimal_learning_time: str = ""
    predicted_difficulties: List[str] = field(default_factory=list)
    motivation_level: str = "medium"


@dataclass
class QuestionPattern:
    type: str = "general"
    difficulty: str = "moderate"
    emotional_tone: str = "neutral"
    learning_stage: str = "learning"
    related_concepts: List[str] = field(default_factory=list)
    suggested_search_terms: List[str] = field(default_factory=list)


@dataclass
class RAGResponse:
    answer: str
    sources: List[SearchResult] = field(default_factory=list)
    confidence: int = 0


@dataclass
class CompletionOptions:
    temperature: float = 0.5
    max_tokens: int = 800
    preferred_model: Optional[str] = None
