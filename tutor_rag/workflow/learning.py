from __future__ import annotations

import time
from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Deque, Dict, List, Mapping, Optional, Sequence

from tutor_rag.logging_config import get_logger
from tutor_rag.utils.types import LearningPattern, PredictiveInsights, UserLearningProfile
from tutor_rag.workflow.classifiers import QuestionClassifier

logger = get_logger(__name__)

RELATED_TOPICS: Dict[str, List[str]] = {
    "كسور": ["أعداد", "قسمة", "ضرب"],
    "معادلة": ["جبر", "متغيرات", "حل"],
    "هندسة": ["أشكال", "مساحة", "محيط"],
    "fraction": ["numbers", "division", "multiplication"],
    "equation": ["algebra", "variables", "solving"],
    "geometry": ["shapes", "area", "perimeter"],
}

CACHED_RESPONSE_TIME_MS = 0
DEFAULT_RESPONSE_TIME_MS = 1000
LOW_CONFIDENCE = 50
MAX_STRONG_AREAS = 5
MAX_SUCCESSFUL_EXAMPLES = 10
LEVEL_UP_RATE = 0.8
LEVEL_DOWN_RATE = 0.4
MIN_ATTEMPTS_FOR_LEVEL_CHANGE = 10
FRUSTRATION_FAILURES = 3


@dataclass
class InteractionOutcome:
    success: bool = True
    from_cache: bool = False
    response_time_ms: Optional[int] = None


class LearningPatternEngine:
    """Per-user profiles, bounded interaction history and the insights derived from it.

    State lives for the process lifetime only.
    """

    def __init__(
        self,
        classifier: Optional[QuestionClassifier] = None,
        *,
        buffer_size: int = 100,
        min_records: int = 5,
        related_topics: Optional[Mapping[str, Sequence[str]]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.classifier = classifier or QuestionClassifier()
        self.buffer_size = buffer_size
        self.min_records = min_records
        self.related_topics = dict(related_topics or RELATED_TOPICS)
        self._clock = clock
        self.profiles: Dict[str, UserLearningProfile] = {}
        self.patterns: Dict[str, Deque[LearningPattern]] = {}
        self.predictions: Dict[str, PredictiveInsights] = {}

    # Profiles
    def get_profile(self, user_id: str) -> UserLearningProfile:
        profile = self.profiles.get(user_id)
        if profile is None:
            profile = UserLearningProfile(id=user_id)
            self.profiles[user_id] = profile
            logger.debug("Profile created | user=%s", user_id)
        profile.last_active = self._clock()
        return profile

    def patterns_for(self, user_id: str) -> List[LearningPattern]:
        return list(self.patterns.get(user_id, ()))

    def get_insights(self, user_id: str) -> Optional[PredictiveInsights]:
        return self.predictions.get(user_id)

    def recent_topics(self, user_id: str, limit: int = 3) -> List[str]:
        recent = [pattern.topic for pattern in self.patterns_for(user_id)[-10:]]
        return list(dict.fromkeys(recent))[:limit]

    def related_topics_for(self, topic: str) -> List[str]:
        lowered = topic.lower()
        for key, related in self.related_topics.items():
            if key in lowered:
                return list(related)
        return []

    # Interactions
    def record_interaction(self, user_id: str, question: str, outcome: InteractionOutcome | None = None) -> LearningPattern:
        outcome = outcome or InteractionOutcome()
        if outcome.from_cache:
            response_time = CACHED_RESPONSE_TIME_MS
        else:
            response_time = outcome.response_time_ms if outcome.response_time_ms is not None else DEFAULT_RESPONSE_TIME_MS
        pattern = LearningPattern(
            timestamp=self._clock(),
            topic=self.classifier.topic(question),
            question_type=self.classifier.question_type(question),
            response_time=response_time,
            success=outcome.success,
            difficulty=self.classifier.difficulty(question),
            emotional_state=self.classifier.emotional_state(question),
        )
        buffer = self.patterns.get(user_id)
        if buffer is None:
            buffer = deque(maxlen=self.buffer_size)
            self.patterns[user_id] = buffer
        buffer.append(pattern)
        self.analyze(user_id)
        return pattern

    def analyze(self, user_id: str) -> Optional[PredictiveInsights]:
        patterns = self.patterns_for(user_id)
        if len(patterns) < self.min_records:
            return None

        last_topic = patterns[-1].topic
        related = self.related_topics_for(last_topic)
        insights = PredictiveInsights(
            next_likely_question=related[0] if related else last_topic,
            suggested_topics=related,
        )

        hours = Counter(datetime.fromtimestamp(p.timestamp).hour for p in patterns if p.success)
        if hours:
            hour, _ = hours.most_common(1)[0]
            insights.optimal_learning_time = f"{hour}:00 - {hour + 1}:00"

        difficult = [p.topic for p in patterns if p.difficulty == "hard" and not p.success]
        insights.predicted_difficulties = list(dict.fromkeys(difficult))

        recent_emotions = [p.emotional_state for p in patterns[-5:]]
        if recent_emotions.count("frustrated") >= 3:
            insights.motivation_level = "low"
        elif recent_emotions.count("excited") >= 3:
            insights.motivation_level = "high"

        self.predictions[user_id] = insights
        return insights

    def update_predictions(self, user_id: str, question: str, confidence: int) -> PredictiveInsights:
        insights = self.predictions.setdefault(user_id, PredictiveInsights())
        if confidence < LOW_CONFIDENCE:
            topic = self.classifier.topic(question)
            if topic not in insights.predicted_difficulties:
                insights.predicted_difficulties.append(topic)
        return insights

    # Performance
    def record_failure(self, user_id: str, question: str) -> UserLearningProfile:
        profile = self.get_profile(user_id)
        profile.recent_failures += 1
        if profile.recent_failures > FRUSTRATION_FAILURES:
            profile.current_mood = "frustrated"
        topic = self.classifier.topic(question)
        if topic not in profile.weak_areas:
            profile.weak_areas.append(topic)
        return profile

    def update_user_performance(
        self,
        user_id: str,
        correct: bool,
        topic: Optional[str] = None,
        example: Optional[str] = None,
    ) -> UserLearningProfile:
        profile = self.get_profile(user_id)
        profile.total_attempts += 1
        if correct:
            profile.correct_answers += 1
            if topic:
                profile.last_successful_topic = topic
                if topic not in profile.strong_areas:
                    profile.strong_areas.append(topic)
                    if len(profile.strong_areas) > MAX_STRONG_AREAS:
                        profile.strong_areas.pop(0)
            if example:
                profile.successful_examples.append(example)
                del profile.successful_examples[:-MAX_SUCCESSFUL_EXAMPLES]

        success_rate = profile.correct_answers / profile.total_attempts
        if profile.total_attempts > MIN_ATTEMPTS_FOR_LEVEL_CHANGE:
            if success_rate > LEVEL_UP_RATE:
                profile.level = min(10, profile.level + 1)
            elif success_rate < LEVEL_DOWN_RATE:
                profile.level = max(1, profile.level - 1)
        return profile

    # Lifecycle
    def pattern_count(self) -> int:
        return sum(len(buffer) for buffer in self.patterns.values())

    def clear(self) -> None:
        self.profiles.clear()
        self.patterns.clear()
        self.predictions.clear()
