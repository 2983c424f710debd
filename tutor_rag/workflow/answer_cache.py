from __future__ import annotations

import math
import re
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from tutor_rag.logging_config import get_logger

logger = get_logger(__name__)

_PUNCTUATION_RE = re.compile(r"[؟?!.،,؛:]")
_DIACRITICS_RE = re.compile(r"[\u064B-\u0652]")
EVICTION_FRACTION = 0.2


def normalize_question(question: str) -> str:
    text = (question or "").lower().strip()
    text = _PUNCTUATION_RE.sub("", text)
    text = _DIACRITICS_RE.sub("", text)
    return " ".join(text.split())


def build_cache_key(question: str, source_id: Optional[str] = None) -> str:
    return f"rag_{normalize_question(question)}_{source_id or 'general'}"


@dataclass
class CacheEntry:
    key: str
    answer: str
    confidence: int
    timestamp: float
    hit_count: int = 0


class AnswerCache:
    """In-memory answer cache with TTL expiry and least-hit eviction at capacity."""

    def __init__(self, ttl_seconds: float = 3600, max_size: int = 300, clock: Callable[[], float] = time.time) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.timestamp > self.ttl_seconds

    def get(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._expired(entry, self._clock()):
            del self._entries[key]
            return None
        entry.hit_count += 1
        return entry

    def put(self, key: str, answer: str, confidence: int) -> CacheEntry:
        if key not in self._entries and len(self._entries) >= self.max_size:
            self._evict()
        entry = CacheEntry(key=key, answer=answer, confidence=confidence, timestamp=self._clock())
        self._entries[key] = entry
        return entry

    def _evict(self) -> None:
        ranked = sorted(self._entries.values(), key=lambda item: item.hit_count)
        count = math.ceil(len(ranked) * EVICTION_FRACTION)
        for entry in ranked[:count]:
            del self._entries[entry.key]
        logger.info("Answer cache full, evicted least-hit entries | evicted=%s", count)

    def sweep_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if self._expired(entry, now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info("Answer cache sweep | expired=%s remaining=%s", len(expired), len(self._entries))
        return len(expired)

    def clear(self) -> int:
        size = len(self._entries)
        self._entries.clear()
        return size

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
