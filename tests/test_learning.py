import itertools
import pathlib
import sys
from datetime import datetime

import pytest

# Ensure the repository root is on the path for direct test runs.
REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.append(str(REPO_ROOT))

from tutor_rag.workflow.answer_cache import AnswerCache, build_cache_key, normalize_question
from tutor_rag.workflow.learning import InteractionOutcome, LearningPatternEngine

FRACTIONS_QUESTION = "ما هي الكسور المتكافئة"
HARD_QUESTION = " ".join(["word"] * 16)


class FakeClock:
    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now


def test_pattern_buffer_is_bounded_fifo():
    ticks = itertools.count(1_700_000_000)
    engine = LearningPatternEngine(buffer_size=100, clock=lambda: next(ticks))

    for idx in range(105):
        engine.record_interaction("u1", f"question number {idx}")

    patterns = engine.patterns_for("u1")
    assert len(patterns) == 100
    assert patterns[0].topic == "question number"
    assert patterns[0].timestamp < patterns[-1].timestamp
    assert engine.pattern_count() == 100


def test_cached_interactions_record_zero_response_time():
    engine = LearningPatternEngine()
    cached = engine.record_interaction("u1", FRACTIONS_QUESTION, InteractionOutcome(from_cache=True, response_time_ms=900))
    fresh = engine.record_interaction("u1", FRACTIONS_QUESTION, InteractionOutcome(response_time_ms=900))
    assert cached.response_time == 0
    assert fresh.response_time == 900


def test_analyze_waits_for_minimum_records():
    engine = LearningPatternEngine(min_records=5)
    for _ in range(4):
        engine.record_interaction("u1", FRACTIONS_QUESTION)
    assert engine.get_insights("u1") is None
    engine.record_interaction("u1", FRACTIONS_QUESTION)
    assert engine.get_insights("u1") is not None


def test_analyze_derives_insights():
    clock = FakeClock()
    engine = LearningPatternEngine(clock=clock)
    engine.record_interaction("u1", HARD_QUESTION, InteractionOutcome(success=False))
    engine.record_interaction("u1", FRACTIONS_QUESTION)
    for _ in range(3):
        engine.record_interaction("u1", "الدرس صعب جداً")
    engine.record_interaction("u1", FRACTIONS_QUESTION)

    insights = engine.get_insights("u1")
    hour = datetime.fromtimestamp(clock.now).hour
    assert insights.next_likely_question == "أعداد"
    assert insights.suggested_topics == ["أعداد", "قسمة", "ضرب"]
    assert insights.optimal_learning_time == f"{hour}:00 - {hour + 1}:00"
    assert insights.predicted_difficulties == ["word word"]
    assert insights.motivation_level == "low"


def test_excited_streak_raises_motivation():
    engine = LearningPatternEngine()
    for _ in range(5):
        engine.record_interaction("u1", "رائع فهمت الدرس")
    assert engine.get_insights("u1").motivation_level == "high"


def test_low_confidence_marks_predicted_difficulty():
    engine = LearningPatternEngine()
    engine.update_predictions("u1", FRACTIONS_QUESTION, 80)
    assert engine.get_insights("u1").predicted_difficulties == []
    engine.update_predictions("u1", FRACTIONS_QUESTION, 30)
    engine.update_predictions("u1", FRACTIONS_QUESTION, 20)
    assert engine.get_insights("u1").predicted_difficulties == ["الكسور المتكافئة"]


def test_performance_updates_level_and_strong_areas():
    engine = LearningPatternEngine()
    for idx in range(11):
        profile = engine.update_user_performance("u1", True, topic=f"topic {idx}")
    assert profile.level == 6
    assert profile.strong_areas == [f"topic {idx}" for idx in range(6, 11)]
    assert profile.last_successful_topic == "topic 10"

    for _ in range(30):
        profile = engine.update_user_performance("u2", False)
    assert profile.level == 1


def test_clear_drops_all_learning_state():
    engine = LearningPatternEngine(min_records=1)
    engine.record_interaction("u1", FRACTIONS_QUESTION)
    engine.clear()
    assert engine.profiles == {}
    assert engine.pattern_count() == 0
    assert engine.get_insights("u1") is None


def test_question_normalization_ignores_case_punctuation_and_diacritics():
    assert normalize_question("  ما هوَ   الكسرُ؟ ") == "ما هو الكسر"
    assert normalize_question("What IS a Fraction?!") == "what is a fraction"
    assert build_cache_key("What is x?", None) == "rag_what is x_general"
    assert build_cache_key("What is x?", "lesson-1") == "rag_what is x_lesson-1"


def test_answer_cache_expires_entries_on_read_and_sweep():
    clock = FakeClock()
    cache = AnswerCache(ttl_seconds=10, max_size=5, clock=clock)
    cache.put("a", "answer a", 80)
    cache.put("b", "answer b", 70)

    clock.now += 5
    assert cache.get("a").confidence == 80
    cache.put("c", "answer c", 90)

    clock.now += 6
    assert cache.get("a") is None
    assert "b" in cache
    assert cache.sweep_expired() == 1
    assert len(cache) == 1
    assert cache.get("c").answer == "answer c"


def test_answer_cache_evicts_least_hit_entries_at_capacity():
    cache = AnswerCache(ttl_seconds=100, max_size=5, clock=FakeClock())
    for key in "abcde":
        cache.put(key, key, 50)
    for key in "abde":
        cache.get(key)

    cache.put("f", "f", 50)

    assert "c" not in cache
    assert len(cache) == 5
    assert cache.clear() == 5


@pytest.mark.parametrize("size, evicted", [(10, 2), (3, 1)])
def test_answer_cache_eviction_rounds_up(size, evicted):
    cache = AnswerCache(ttl_seconds=100, max_size=size, clock=FakeClock())
    for idx in range(size):
        cache.put(str(idx), "x", 50)
    cache.put("new", "x", 50)
    assert len(cache) == size - evicted + 1
