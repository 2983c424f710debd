"""Keyword heuristics that classify a student's question.

Each policy is a plain function of the question text so it can be swapped out
through :class:`QuestionClassifier` without touching the answer pipeline.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Sequence, Tuple

from tutor_rag.utils.types import QuestionPattern

GENERAL_TOPIC = "general"

QUESTION_TYPE_MARKERS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("mathematical", ("حل", "احسب", "solve", "calculate")),
    ("explanation", ("اشرح", "وضح", "explain", "describe")),
    ("definition", ("عرف", "ما هو", "ما هي", "define", "what is")),
    ("application", ("مثال", "طبق", "example", "apply")),
)
TONE_MARKERS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("frustrated", ("مش فاهم", "صعب", "don't understand", "confused")),
    ("polite", ("ممكن", "لو سمحت", "please", "could you")),
    ("urgent", ("!", "؟؟", "??")),
)
STAGE_MARKERS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("understanding", ("ليه", "ازاي", "why", "how does")),
    ("application", ("حل", "احسب", "solve", "calculate")),
    ("review", ("مراجعة", "ملخص", "review", "summary", "summarize")),
)
EMOTION_MARKERS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("frustrated", ("مش فاهم", "صعب", "معقد", "don't understand", "confusing")),
    ("excited", ("!", "رائع", "فهمت", "awesome", "got it")),
    ("bored", ("ممل", "طويل", "boring")),
    ("happy", ("😊", "😄")),
)

MATH_SYMBOLS_RE = re.compile(r"[+\-*/=^]")
CONJUNCTIONS = frozenset(["و", "أو", "ثم", "and", "or", "then"])
_LATIN_WORD_RE = re.compile(r"[A-Za-z]+")
_NUMBER_RE = re.compile(r"\d+")
_SENTENCE_END_RE = re.compile(r"[.!?؟]")


def _first_match(text: str, table: Sequence[Tuple[str, Tuple[str, ...]]], default: str) -> str:
    lowered = text.lower()
    for label, markers in table:
        if any(marker in lowered for marker in markers):
            return label
    return default


def detect_question_type(question: str) -> str:
    return _first_match(question, QUESTION_TYPE_MARKERS, "general")


def detect_emotional_tone(question: str) -> str:
    return _first_match(question, TONE_MARKERS, "neutral")


def detect_learning_stage(question: str) -> str:
    return _first_match(question, STAGE_MARKERS, "learning")


def detect_emotional_state(question: str) -> str:
    return _first_match(question, EMOTION_MARKERS, "neutral")


def _count_conjunctions(words: Sequence[str]) -> int:
    count = 0
    for word in words:
        lowered = word.lower()
        # Arabic "و" is usually attached to the following word
        if lowered in CONJUNCTIONS or (lowered.startswith("و") and len(lowered) > 3):
            count += 1
    return count


def assess_question_difficulty(question: str) -> str:
    words = question.split()
    has_math = bool(MATH_SYMBOLS_RE.search(question))
    if len(words) < 5 and not has_math:
        return "simple"
    if len(words) > 15 or _count_conjunctions(words) > 2:
        return "hard"
    return "moderate"


def extract_topic(question: str) -> str:
    words = [word for word in question.split() if len(word) > 3]
    return " ".join(words[:2]) or GENERAL_TOPIC


def assess_chunk_complexity(text: str) -> int:
    """Rough 0-10 reading complexity from length, Latin terms, digits and sentence count."""
    score = (
        len(text) / 100
        + len(_LATIN_WORD_RE.findall(text)) / 10
        + len(_NUMBER_RE.findall(text)) / 5
        + len(_SENTENCE_END_RE.split(text)) / 3
    )
    return min(10, round(score))


@dataclass
class QuestionClassifier:
    question_type: Callable[[str], str] = detect_question_type
    difficulty: Callable[[str], str] = assess_question_difficulty
    emotional_tone: Callable[[str], str] = detect_emotional_tone
    learning_stage: Callable[[str], str] = detect_learning_stage
    emotional_state: Callable[[str], str] = detect_emotional_state
    topic: Callable[[str], str] = extract_topic

    def classify(self, question: str) -> QuestionPattern:
        return QuestionPattern(
            type=self.question_type(question),
            difficulty=self.difficulty(question),
            emotional_tone=self.emotional_tone(question),
            learning_stage=self.learning_stage(question),
        )
