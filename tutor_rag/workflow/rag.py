from __future__ import annotations

import time
from types import SimpleNamespace
from typing import Any, Awaitable, Dict, List, Optional, Sequence

from tutor_rag.logging_config import get_logger
from tutor_rag.utils.settings import default_settings
from tutor_rag.utils.types import CompletionOptions, QuestionPattern, RAGResponse, SearchResult, UserLearningProfile
from tutor_rag.workflow.answer_cache import AnswerCache, build_cache_key, normalize_question
from tutor_rag.workflow.classifiers import QuestionClassifier
from tutor_rag.workflow.learning import InteractionOutcome, LearningPatternEngine
from tutor_rag.workflow.llm import CompletionService
from tutor_rag.workflow.prompts import (
    MOTIVATIONAL_SUFFIX,
    REASSURANCE_SUFFIX,
    STUDY_PLAN_SYSTEM_PROMPT,
    WRONG_ANSWER_SYSTEM_PROMPT,
    basic_study_plan,
    build_adaptive_system_prompt,
    build_answer_prompt,
    build_concept_prompts,
    build_context,
    build_quiz_context,
    build_study_plan_prompt,
    build_wrong_answer_prompt,
    concept_fallback,
    daily_capacity_minutes,
    encouraging_message,
    fallback_answer,
)
from tutor_rag.workflow.quiz import (
    build_quiz_system_prompt,
    build_quiz_user_prompt,
    fallback_questions,
    parse_quiz_questions,
    personalize_questions,
)
from tutor_rag.workflow.similarity import SimilaritySearchEngine

logger = get_logger(__name__)

SCOPED_LIMIT = 5
CORPUS_LIMIT = 8
BROAD_LIMIT = 5
RELATED_CONCEPT_LIMIT = 3
QUIZ_SOURCE_CHUNKS = 15
MAX_SUGGESTED_TERMS = 2
MAX_RELATED_CONCEPTS = 3
CONCEPT_CONFIDENCE = 95
DEFAULT_STUDY_TIME = "4:00 PM - 6:00 PM"

HIGH_QUALITY_SCORE = 0.6
HIGH_QUALITY_BONUS = 5
MAX_HIGH_QUALITY_BONUS = 15
WORD_OVERLAP_BONUS = 3
MAX_WORD_OVERLAP_BONUS = 10
ADJACENCY_BONUS = 5


def has_adjacent_chunks(results: Sequence[SearchResult]) -> bool:
    """True when two results are consecutive chunks of the same source."""
    by_source: Dict[str, List[int]] = {}
    for item in results:
        by_source.setdefault(item.chunk.source_id, []).append(item.chunk.chunk_index)
    for indices in by_source.values():
        ordered = sorted(set(indices))
        if any(b - a == 1 for a, b in zip(ordered, ordered[1:])):
            return True
    return False


def calculate_confidence(results: Sequence[SearchResult], question: str) -> int:
    """Retrieval-quality estimate in [0, 100]."""
    if not results:
        return 0
    top = results[:3]
    confidence = sum(item.score for item in top) / len(top) * 100

    high_quality = sum(1 for item in results if item.score > HIGH_QUALITY_SCORE)
    confidence += min(high_quality * HIGH_QUALITY_BONUS, MAX_HIGH_QUALITY_BONUS)

    chunk_words = set(normalize_question(results[0].chunk.text).split())
    overlap = sum(1 for word in set(normalize_question(question).split()) if word in chunk_words)
    confidence += min(overlap * WORD_OVERLAP_BONUS, MAX_WORD_OVERLAP_BONUS)

    if has_adjacent_chunks(results):
        confidence += ADJACENCY_BONUS
    return max(0, min(100, round(confidence)))


class RAGPipeline:
    """Answers student questions from indexed lessons and adapts to each student over time."""

    def __init__(
        self,
        search: SimilaritySearchEngine,
        completer: CompletionService,
        learning: LearningPatternEngine,
        answer_cache: AnswerCache,
        *,
        classifier: Optional[QuestionClassifier] = None,
        settings: Optional[SimpleNamespace] = None,
    ) -> None:
        self.search = search
        self.completer = completer
        self.learning = learning
        self.answer_cache = answer_cache
        self.classifier = classifier or learning.classifier
        self.settings = settings or default_settings()
        self.metrics: Dict[str, float] = {}
        self.reset_metrics()

    # Metrics
    def reset_metrics(self) -> None:
        self.metrics = {
            "total_questions": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "answered": 0,
            "average_confidence": 0.0,
            "average_response_time": 0.0,
        }

    def _update_metrics(self, confidence: int, response_ms: float) -> None:
        count = self.metrics["answered"] + 1
        self.metrics["answered"] = count
        self.metrics["average_confidence"] += (confidence - self.metrics["average_confidence"]) / count
        self.metrics["average_response_time"] += (response_ms - self.metrics["average_response_time"]) / count

    def get_metrics(self) -> Dict[str, Any]:
        total = self.metrics["total_questions"]
        return {
            **self.metrics,
            "average_response_time": round(self.metrics["average_response_time"]),
            "cache_size": len(self.answer_cache),
            "cache_hit_rate": round(self.metrics["cache_hits"] / total * 100) if total else 0,
            "user_profiles": len(self.learning.profiles),
            "patterns_analyzed": self.learning.pattern_count(),
            "predictions_generated": len(self.learning.predictions),
        }

    def clear_cache(self) -> int:
        size = self.answer_cache.clear()
        logger.info("Answer cache cleared | entries=%s", size)
        return size

    # Answering
    def analyze_question(self, question: str, user_id: str | None = None) -> QuestionPattern:
        pattern = self.classifier.classify(question)
        if user_id:
            pattern.related_concepts = self.learning.recent_topics(user_id, MAX_RELATED_CONCEPTS)
            profile = self.learning.get_profile(user_id)
            pattern.suggested_search_terms = profile.weak_areas[:MAX_SUGGESTED_TERMS]
        return pattern

    async def answer(self, question: str, source_id: str | None = None, user_id: str | None = None) -> RAGResponse:
        started = time.perf_counter()
        self.metrics["total_questions"] += 1
        pattern = self.analyze_question(question, user_id)

        cache_key = build_cache_key(question, source_id)
        cached = self.answer_cache.get(cache_key)
        if cached is not None:
            self.metrics["cache_hits"] += 1
            logger.info("Answer cache hit | key=%s hits=%s", cache_key[:60], cached.hit_count)
            if user_id:
                self.learning.record_interaction(user_id, question, InteractionOutcome(from_cache=True))
            return RAGResponse(answer=cached.answer, sources=[], confidence=cached.confidence)
        self.metrics["cache_misses"] += 1

        results = await self._retrieve(question, source_id, user_id, pattern)
        profile = self.learning.get_profile(user_id) if user_id else None
        if not results:
            logger.info("No content found, using fallback answer | source=%s", source_id)
            return RAGResponse(answer=fallback_answer(self.classifier.topic(question), profile), sources=[], confidence=0)

        context = build_context(results, profile, pattern)
        text, generated = await self._generate_answer(context, question, profile, pattern)
        confidence = calculate_confidence(results, question)
        elapsed_ms = (time.perf_counter() - started) * 1000

        if user_id:
            self.learning.record_interaction(
                user_id,
                question,
                InteractionOutcome(success=generated, response_time_ms=int(elapsed_ms)),
            )
            self.learning.update_predictions(user_id, question, confidence)

        self._update_metrics(confidence, elapsed_ms)
        if generated and confidence > self.settings.cache_confidence_threshold:
            self.answer_cache.put(cache_key, text, confidence)

        logger.info("Answer done | ms=%.0f confidence=%s chunks=%s", elapsed_ms, confidence, len(results))
        return RAGResponse(answer=text, sources=list(results), confidence=confidence)

    async def _retrieve(
        self,
        question: str,
        source_id: str | None,
        user_id: str | None,
        pattern: QuestionPattern,
    ) -> List[SearchResult]:
        query = " ".join([question, *pattern.suggested_search_terms])
        if source_id:
            results = await self._guarded("scoped", self.search.search_in_source(source_id, query, SCOPED_LIMIT))
        else:
            results = await self._guarded("corpus", self.search.enhanced_search(query, CORPUS_LIMIT))

        if not results and user_id and pattern.related_concepts:
            logger.info("Trying related concepts | user=%s concepts=%s", user_id, len(pattern.related_concepts))
            for concept in pattern.related_concepts:
                results.extend(await self._guarded("related", self.search.search(concept, RELATED_CONCEPT_LIMIT)))
        if not results:
            results = await self._guarded("broad", self.search.enhanced_search(question, BROAD_LIMIT))
        if not results:
            results = await self._guarded(
                "keyword", self.search.keyword_search(self.search.expanded_keywords(question), BROAD_LIMIT)
            )
        return results

    @staticmethod
    async def _guarded(step: str, search: Awaitable[List[SearchResult]]) -> List[SearchResult]:
        try:
            return list(await search)
        except Exception:
            logger.warning("Retrieval step failed | step=%s", step, exc_info=True)
            return []

    def _completion_options(self, pattern: QuestionPattern) -> CompletionOptions:
        if pattern.emotional_tone == "frustrated":
            temperature = 0.7
        elif pattern.learning_stage == "review":
            temperature = 0.3
        else:
            temperature = 0.5
        options = CompletionOptions(
            temperature=temperature,
            max_tokens=400 if pattern.learning_stage == "review" else 800,
        )
        if pattern.type == "mathematical":
            options.preferred_model = self.settings.strong_model
        elif pattern.difficulty == "simple":
            options.preferred_model = self.settings.light_model
        return options

    async def _generate_answer(
        self,
        context: str,
        question: str,
        profile: Optional[UserLearningProfile],
        pattern: QuestionPattern,
    ) -> tuple[str, bool]:
        insights = self.learning.get_insights(profile.id) if profile is not None else None
        messages = [
            {"role": "system", "content": build_adaptive_system_prompt(profile, pattern, insights)},
            {"role": "user", "content": build_answer_prompt(context, question, pattern)},
        ]
        try:
            text = await self.completer.complete(messages, self._completion_options(pattern))
        except Exception:
            logger.warning("Answer generation failed, using fallback", exc_info=True)
            return fallback_answer(self.classifier.topic(question), profile), False
        if pattern.emotional_tone == "frustrated" and profile is not None:
            text = f"{text}\n\n{MOTIVATIONAL_SUFFIX}"
        return text, True

    # Quizzes
    async def generate_questions(self, source_id: str, count: int = 5, user_id: str | None = None) -> List[Dict[str, Any]]:
        if count < 1:
            raise ValueError("count must be a positive integer.")
        profile = self.learning.get_profile(user_id) if user_id else None
        insights = self.learning.get_insights(user_id) if user_id else None

        results = await self.search.search_in_source(source_id, "", QUIZ_SOURCE_CHUNKS)
        if not results:
            raise ValueError(f"No indexed content for source {source_id}.")

        messages = [
            {"role": "system", "content": build_quiz_system_prompt(profile, insights)},
            {"role": "user", "content": build_quiz_user_prompt(build_quiz_context(results), count, profile, insights)},
        ]
        try:
            payload = await self.completer.complete_json(messages, CompletionOptions(temperature=0.8, max_tokens=2000))
            questions = parse_quiz_questions(payload)
        except Exception:
            logger.warning("Quiz generation failed, using fallback | source=%s", source_id, exc_info=True)
            return fallback_questions(count)
        if not questions:
            logger.warning("Quiz generation returned no usable questions, using fallback | source=%s", source_id)
            return fallback_questions(count)

        logger.info("Quiz generated | source=%s requested=%s received=%s", source_id, count, len(questions))
        return personalize_questions(questions, profile, failure_limit=self.settings.recent_failure_limit)

    # Tutoring helpers
    async def explain_wrong_answer(
        self,
        question: str,
        user_answer: str,
        correct_answer: str,
        user_id: str | None = None,
    ) -> str:
        profile = self.learning.record_failure(user_id, question) if user_id else None
        messages = [
            {"role": "system", "content": WRONG_ANSWER_SYSTEM_PROMPT},
            {"role": "user", "content": build_wrong_answer_prompt(question, user_answer, correct_answer, profile)},
        ]
        options = CompletionOptions(temperature=0.7, max_tokens=500, preferred_model=self.settings.light_model)
        try:
            explanation = await self.completer.complete(messages, options)
        except Exception:
            logger.warning("Wrong-answer explanation failed, using encouragement", exc_info=True)
            return encouraging_message(profile.recent_failures if profile is not None else 0)
        if profile is not None and profile.recent_failures > 3:
            explanation = f"{explanation}\n\n{REASSURANCE_SUFFIX}"
        return explanation

    async def explain_concept(self, concept: str, grade_level: int | None = None) -> str:
        grade = grade_level or 6
        cache_key = f"explain_{concept}_{grade}"
        cached = self.answer_cache.get(cache_key)
        if cached is not None:
            return cached.answer

        system_prompt, user_prompt = build_concept_prompts(concept, grade)
        messages = [{"role": "system", "content": system_prompt}, {"role": "user", "content": user_prompt}]
        try:
            explanation = await self.completer.complete(messages, CompletionOptions(temperature=0.7, max_tokens=600))
        except Exception:
            logger.warning("Concept explanation failed | concept=%s", concept, exc_info=True)
            return concept_fallback(concept)
        self.answer_cache.put(cache_key, explanation, CONCEPT_CONFIDENCE)
        return explanation

    async def generate_study_plan(self, user_id: str, weaknesses: Sequence[str]) -> Dict[str, Any]:
        profile = self.learning.get_profile(user_id)
        insights = self.learning.get_insights(user_id)
        optimal_time = (insights.optimal_learning_time if insights else "") or DEFAULT_STUDY_TIME
        daily_minutes = daily_capacity_minutes(profile)

        messages = [
            {"role": "system", "content": STUDY_PLAN_SYSTEM_PROMPT},
            {"role": "user", "content": build_study_plan_prompt(profile, weaknesses, optimal_time, daily_minutes)},
        ]
        try:
            plan = await self.completer.complete_json(messages, CompletionOptions(temperature=0.6))
        except Exception:
            logger.warning("Study plan generation failed, using basic plan | user=%s", user_id, exc_info=True)
            return basic_study_plan(weaknesses, daily_minutes)
        if not isinstance(plan, dict) or not plan:
            return basic_study_plan(weaknesses, daily_minutes)
        plan.setdefault("optimal_time", optimal_time)
        plan.setdefault("daily_minutes", daily_minutes)
        return plan

    def update_user_performance(self, user_id: str, correct: bool, topic: str | None = None) -> UserLearningProfile:
        return self.learning.update_user_performance(user_id, correct, topic)
