from __future__ import annotations

import re
from typing import List, Tuple

from tutor_rag.utils.types import ChunkCandidate

SECTION_MARKER_RE = re.compile(r"^[ \t]*={3,}[ \t]*(.*?)[ \t]*={3,}[ \t]*$", re.MULTILINE)
SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?؟])\s+|\n{2,}|\n(?=[A-Z\u0600-\u06FF])")

SECTION_TYPE_MARKERS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("concept", ("مفاهيم", "المفاهيم", "concept")),
    ("example", ("أمثلة", "مثال", "example")),
    ("exercise", ("تمارين", "تمرين", "exercise", "practice")),
    ("assessment", ("تقييم", "التحقق", "assessment", "self-check")),
    ("objective", ("أهداف", "الأهداف", "objective")),
    ("summary", ("ملخص", "الملخص", "summary")),
)


def detect_section_type(label: str) -> str:
    lowered = (label or "").lower()
    for section_type, markers in SECTION_TYPE_MARKERS:
        if any(marker in lowered for marker in markers):
            return section_type
    return "content"


class SmartChunker:
    """Section-aware chunker that carries an overlap tail between consecutive chunks."""

    def __init__(
        self,
        chunk_size: int = 800,
        min_chunk_chars: int = 50,
        min_split_chars: int = 200,
        short_sentence_chars: int = 50,
        max_sentence_chars: int = 600,
        overlap_ratio: float = 0.2,
        max_overlap_words: int = 20,
    ) -> None:
        if chunk_size <= min_split_chars:
            raise ValueError(f"chunk_size must exceed {min_split_chars} characters.")
        self.chunk_size = chunk_size
        self.min_chunk_chars = min_chunk_chars
        self.min_split_chars = min_split_chars
        self.short_sentence_chars = short_sentence_chars
        self.max_sentence_chars = max_sentence_chars
        self.overlap_ratio = overlap_ratio
        self.max_overlap_words = max_overlap_words

    @staticmethod
    def split_sections(text: str) -> List[Tuple[str, str]]:
        pieces = SECTION_MARKER_RE.split(text or "")
        sections = [("", pieces[0])]
        for idx in range(1, len(pieces) - 1, 2):
            sections.append((pieces[idx], pieces[idx + 1]))
        return sections

    def split_sentences(self, text: str) -> List[str]:
        sentences = [s.strip() for s in SENTENCE_SPLIT_RE.split(text) if s and s.strip()]
        merged: List[str] = []
        current = ""
        for sentence in sentences:
            if len(sentence) < self.short_sentence_chars and current:
                current = f"{current} {sentence}"
            else:
                if current:
                    merged.append(current)
                current = sentence
            if len(current) > self.max_sentence_chars:
                merged.append(current)
                current = ""
        if current:
            merged.append(current)
        return merged

    def overlap_tail(self, text: str) -> str:
        words = text.split()
        count = min(self.max_overlap_words, int(len(words) * self.overlap_ratio))
        return " ".join(words[-count:]) if count > 0 else ""

    def _split_long(self, sentence: str) -> List[str]:
        words = sentence.split()
        out: List[str] = []
        current: List[str] = []
        length = 0
        for word in words:
            if current and length + len(word) + 1 > self.chunk_size:
                out.append(" ".join(current))
                current, length = [], 0
            current.append(word)
            length += len(word) + 1
        if current:
            out.append(" ".join(current))
        return out

    def _split_section(self, body: str) -> List[str]:
        sentences: List[str] = []
        for sentence in self.split_sentences(body):
            sentences.extend(self._split_long(sentence) if len(sentence) > self.chunk_size else [sentence])

        chunks: List[str] = []
        current = ""
        for sentence in sentences:
            if current and len(current) + len(sentence) > self.chunk_size and len(current) > self.min_split_chars:
                chunks.append(current.strip())
                current = f"{self.overlap_tail(current)} {sentence}".strip()
            else:
                current = f"{current} {sentence}".strip()
        if len(current.strip()) > self.min_chunk_chars:
            chunks.append(current.strip())
        return chunks

    def chunk(self, text: str) -> List[ChunkCandidate]:
        candidates: List[ChunkCandidate] = []
        for section_index, (label, body) in enumerate(self.split_sections(text)):
            body = body.strip()
            if not body:
                continue
            section_type = detect_section_type(label)
            pieces = [body] if len(body) <= self.chunk_size else self._split_section(body)
            for piece in pieces:
                if len(piece) > self.min_chunk_chars:
                    candidates.append(ChunkCandidate(text=piece, section_index=section_index, section_type=section_type))
        return candidates
