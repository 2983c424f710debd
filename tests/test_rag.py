import asyncio
import math
import pathlib
import sys

import pytest

# Ensure the repository root is on the path for direct test runs.
REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.append(str(REPO_ROOT))

from conftest import ScriptedCompleter, StaticEmbedder
from tutor_rag.utils.types import ChunkEmbedding, ChunkRecord, SearchResult, SourceContent, SourceInfo
from tutor_rag.workflow.prompts import ENCOURAGING_MESSAGES, MOTIVATIONAL_SUFFIX, REASSURANCE_SUFFIX
from tutor_rag.workflow.rag import calculate_confidence, has_adjacent_chunks


async def _seed(ctx, scores, source_id="lesson-1"):
    await ctx.store.upsert_source(SourceContent(source_id=source_id, title="الكسور"))
    for idx, score in enumerate(scores):
        await ctx.store.add_chunk(
            source_id,
            ChunkEmbedding(
                chunk_index=idx,
                text=f"fractions chunk {idx}",
                embedding=[score, math.sqrt(1.0 - score * score)],
                metadata={"source_id": source_id, "source_title": "الكسور"},
            ),
        )


def _result(source_id, chunk_index, score, text="text"):
    chunk = ChunkRecord(id=f"{source_id}-{chunk_index}", source_id=source_id, chunk_index=chunk_index, text=text)
    return SearchResult(chunk=chunk, score=score, source_info=SourceInfo(id=source_id))


def test_repeated_question_is_served_from_cache(make_context):
    embedder = StaticEmbedder([1.0, 0.0])
    completer = ScriptedCompleter(replies=["first answer", "second answer"])

    async def scenario():
        ctx = make_context(embedder=embedder, completer=completer)
        await ctx.start()
        try:
            await _seed(ctx, [1.0, 0.99, 0.98])
            first = await ctx.answer("What are fractions?", "lesson-1", "u1")
            calls_after_first = embedder.calls
            second = await ctx.answer("what are   FRACTIONS", "lesson-1", "u1")
            metrics = ctx.rag.get_metrics()
        finally:
            await ctx.aclose()
        return first, second, calls_after_first, metrics

    first, second, calls_after_first, metrics = asyncio.run(scenario())
    assert first.answer == "first answer"
    assert first.confidence > 40
    assert second.answer == "first answer"
    assert second.confidence == first.confidence
    assert second.sources == []
    assert embedder.calls == calls_after_first
    assert len(completer.calls) == 1
    assert metrics["cache_hits"] == 1
    assert metrics["cache_hit_rate"] == 50
    assert metrics["patterns_analyzed"] == 2


def test_low_confidence_answer_is_never_cached(make_context):
    completer = ScriptedCompleter(replies=["weak one", "weak two"])

    async def scenario():
        ctx = make_context(embedder=StaticEmbedder([1.0, 0.0]), completer=completer)
        await ctx.start()
        try:
            await _seed(ctx, [0.2, 0.2])
            first = await ctx.answer("what is a ratio", "lesson-1")
            second = await ctx.answer("what is a ratio", "lesson-1")
            cached = len(ctx.answer_cache)
        finally:
            await ctx.aclose()
        return first, second, cached

    first, second, cached = asyncio.run(scenario())
    assert first.confidence <= 40
    assert second.answer == "weak two"
    assert cached == 0
    assert len(completer.calls) == 2


def test_empty_retrieval_returns_fallback_with_zero_confidence(make_context):
    completer = ScriptedCompleter()

    async def scenario():
        ctx = make_context(embedder=StaticEmbedder([1.0, 0.0]), completer=completer)
        await ctx.start()
        try:
            plain = await ctx.answer("Explain photosynthesis please")
            ctx.rag.learning.record_failure("u1", "Explain photosynthesis please")
            weak = await ctx.answer("Explain photosynthesis please", user_id="u1")
        finally:
            await ctx.aclose()
        return plain, weak

    plain, weak = asyncio.run(scenario())
    assert plain.confidence == 0
    assert plain.sources == []
    assert "لم أجد معلومات كافية" in plain.answer
    assert "مراجعة إضافية" in weak.answer
    assert completer.calls == []


def test_generation_fault_returns_fallback_and_skips_cache(make_context):
    completer = ScriptedCompleter(fail=True)

    async def scenario():
        ctx = make_context(embedder=StaticEmbedder([1.0, 0.0]), completer=completer)
        await ctx.start()
        try:
            await _seed(ctx, [1.0, 0.95])
            response = await ctx.answer("what are fractions", "lesson-1", "u1")
            cached = len(ctx.answer_cache)
            pattern = ctx.rag.learning.patterns_for("u1")[-1]
        finally:
            await ctx.aclose()
        return response, cached, pattern

    response, cached, pattern = asyncio.run(scenario())
    assert response.sources
    assert "عذراً" in response.answer
    assert cached == 0
    assert pattern.success is False


def test_frustrated_math_question_adapts_generation(make_context):
    completer = ScriptedCompleter(replies=["steps"])

    async def scenario():
        ctx = make_context(embedder=StaticEmbedder([1.0, 0.0]), completer=completer)
        await ctx.start()
        try:
            await _seed(ctx, [1.0])
            return await ctx.answer("مش فاهم احسب ناتج الكسر 1/2 + 1/4", "lesson-1", "u1")
        finally:
            await ctx.aclose()

    response = asyncio.run(scenario())
    messages, options = completer.calls[0]
    assert response.answer.endswith(MOTIVATIONAL_SUFFIX)
    assert options.temperature == 0.7
    assert options.max_tokens == 800
    assert options.preferred_model == "gpt-4o"
    assert "سؤال الطالب" in messages[1]["content"]


def test_screen_context_is_passed_separately(make_context):
    completer = ScriptedCompleter(replies=["ok"])

    async def scenario():
        ctx = make_context(embedder=StaticEmbedder([1.0, 0.0]), completer=completer)
        await ctx.start()
        try:
            await _seed(ctx, [1.0])
            await ctx.answer("[السياق: شريحة الكسور المتكافئة] ما معنى الكسر", "lesson-1")
        finally:
            await ctx.aclose()

    asyncio.run(scenario())
    user_prompt = completer.calls[0][0][1]["content"]
    assert "شريحة الكسور المتكافئة" in user_prompt
    assert "سؤال الطالب: ما معنى الكسر" in user_prompt


def test_generate_questions_validates_and_personalizes(make_context):
    payload = {
        "questions": [
            {"type": "mcq", "question": "1/2 + 1/2 = ?", "options": ["1", "2"], "correctAnswer": 1, "points": "3"},
            {"type": "true_false", "question": "1/2 > 1/3", "correctAnswer": True},
            {"type": "mcq", "options": ["missing question"]},
        ]
    }
    completer = ScriptedCompleter(json_replies=[payload])

    async def scenario():
        ctx = make_context(embedder=StaticEmbedder([1.0, 0.0]), completer=completer)
        await ctx.start()
        try:
            await _seed(ctx, [1.0, 0.9])
            for _ in range(3):
                ctx.rag.learning.record_failure("u1", "كسور عادية")
            return await ctx.generate_questions("lesson-1", 2, "u1")
        finally:
            await ctx.aclose()

    questions = asyncio.run(scenario())
    assert len(questions) == 2
    assert questions[0]["correct_answer"] == "1"
    assert questions[0]["points"] == 3
    assert questions[0]["difficulty"] == "easy"
    assert questions[0]["hint"] == "ابدأ بالأساسيات"
    assert questions[1]["correct_answer"] == "true"
    assert all(q["personalized"] and q["user_id"] == "u1" and q["encouragement"] for q in questions)


def test_generate_questions_falls_back_on_fault(make_context):
    async def scenario():
        ctx = make_context(embedder=StaticEmbedder([1.0, 0.0]), completer=ScriptedCompleter(fail=True))
        await ctx.start()
        try:
            await _seed(ctx, [1.0])
            return await ctx.generate_questions("lesson-1", 4)
        finally:
            await ctx.aclose()

    questions = asyncio.run(scenario())
    assert [q["type"] for q in questions] == ["mcq", "true_false", "fill_blank", "mcq"]
    assert all(q["correct_answer"] == "خيار أ" for q in questions)


def test_generate_questions_without_content_raises(make_context):
    async def scenario():
        ctx = make_context(embedder=StaticEmbedder([1.0, 0.0]))
        await ctx.start()
        try:
            await ctx.generate_questions("empty-lesson", 3)
        finally:
            await ctx.aclose()

    with pytest.raises(ValueError):
        asyncio.run(scenario())


def test_explain_wrong_answer_tracks_failures(make_context):
    completer = ScriptedCompleter(replies=["e1", "e2", "e3", "e4"])

    async def scenario():
        ctx = make_context(completer=completer)
        await ctx.start()
        try:
            replies = [await ctx.rag.explain_wrong_answer("جمع الكسور", "2/4", "1", "u1") for _ in range(4)]
            profile = ctx.rag.learning.get_profile("u1")
        finally:
            await ctx.aclose()
        return replies, profile

    replies, profile = asyncio.run(scenario())
    assert replies[2] == "e3"
    assert replies[3].endswith(REASSURANCE_SUFFIX)
    assert profile.recent_failures == 4
    assert profile.current_mood == "frustrated"
    assert profile.weak_areas == ["الكسور"]


def test_explain_wrong_answer_fault_returns_encouragement(make_context):
    async def scenario():
        ctx = make_context(completer=ScriptedCompleter(fail=True))
        await ctx.start()
        try:
            return await ctx.rag.explain_wrong_answer("q", "a", "b")
        finally:
            await ctx.aclose()

    assert asyncio.run(scenario()) in ENCOURAGING_MESSAGES


def test_explain_concept_is_cached(make_context):
    completer = ScriptedCompleter(replies=["story about fractions"])

    async def scenario():
        ctx = make_context(completer=completer)
        await ctx.start()
        try:
            first = await ctx.rag.explain_concept("الكسور", 4)
            second = await ctx.rag.explain_concept("الكسور", 4)
        finally:
            await ctx.aclose()
        return first, second

    first, second = asyncio.run(scenario())
    assert first == second == "story about fractions"
    assert len(completer.calls) == 1
    assert "الابتدائية" in completer.calls[0][0][0]["content"]


def test_study_plan_falls_back_to_basic_week(make_context):
    async def scenario():
        ctx = make_context(completer=ScriptedCompleter(fail=True))
        await ctx.start()
        try:
            return await ctx.rag.generate_study_plan("u1", ["الكسور", "القسمة"])
        finally:
            await ctx.aclose()

    plan = asyncio.run(scenario())
    assert len(plan["daily_schedule"]) == 7
    assert plan["daily_schedule"][0]["topic"] == "القسمة"
    assert plan["daily_schedule"][0]["duration"] == "30 دقيقة"


def test_clear_resets_context_state(make_context):
    async def scenario():
        ctx = make_context(embedder=StaticEmbedder([1.0, 0.0]), completer=ScriptedCompleter(replies=["a"]))
        await ctx.start()
        try:
            await _seed(ctx, [1.0, 0.99])
            await ctx.answer("what are fractions", "lesson-1", "u1")
            ctx.clear()
            return ctx.rag.get_metrics(), len(ctx.answer_cache), len(ctx.search_engine.query_cache)
        finally:
            await ctx.aclose()

    metrics, cached, queries = asyncio.run(scenario())
    assert metrics["total_questions"] == 0
    assert metrics["user_profiles"] == 0
    assert cached == 0
    assert queries == 0


def test_confidence_scoring_bonuses():
    results = [_result("a", 0, 0.8, "fractions are parts"), _result("a", 1, 0.7), _result("a", 5, 0.6)]
    # mean 70, two chunks above 0.6 (+10), two overlapping words (+6), adjacent (+5)
    assert calculate_confidence(results, "fractions are") == 91
    assert calculate_confidence([], "anything") == 0
    assert calculate_confidence([_result("a", 0, 1.0, "x")] * 4, "x y") == 100


def test_adjacency_is_checked_within_a_source():
    assert has_adjacent_chunks([_result("a", 3, 0.5), _result("a", 4, 0.5)])
    assert not has_adjacent_chunks([_result("a", 3, 0.5), _result("b", 4, 0.5)])


class DownEmbedder:
    """Embedding service that is always unavailable."""

    async def embed(self, text):
        raise RuntimeError("embedding service unavailable")


def test_scoped_answer_survives_embedding_outage_through_keywords(make_context):
    completer = ScriptedCompleter(replies=["keyword answer"])

    async def scenario():
        ctx = make_context(embedder=DownEmbedder(), completer=completer)
        await ctx.start()
        try:
            await _seed(ctx, [1.0])
            return await ctx.answer("what are fractions", "lesson-1")
        finally:
            await ctx.aclose()

    response = asyncio.run(scenario())
    assert response.answer == "keyword answer"
    assert [r.chunk.chunk_index for r in response.sources] == [0]
    assert response.sources[0].score == pytest.approx(0.1)


def test_embedding_outage_without_matches_returns_fallback(make_context):
    completer = ScriptedCompleter()

    async def scenario():
        ctx = make_context(embedder=DownEmbedder(), completer=completer)
        await ctx.start()
        try:
            await _seed(ctx, [1.0])
            ctx.rag.learning.record_interaction("u1", "ما هي الكسور المتكافئة")
            return await ctx.answer("zzzz qqqq", None, "u1")
        finally:
            await ctx.aclose()

    response = asyncio.run(scenario())
    assert response.confidence == 0
    assert response.sources == []
    assert "لم أجد معلومات كافية" in response.answer
    assert completer.calls == []


def test_review_stage_lowers_temperature_and_budget(make_context):
    completer = ScriptedCompleter(replies=["short recap", "full answer"])

    async def scenario():
        ctx = make_context(embedder=StaticEmbedder([1.0, 0.0]), completer=completer)
        await ctx.start()
        try:
            await _seed(ctx, [1.0])
            await ctx.answer("review fractions summary please", "lesson-1")
            await ctx.answer("what are fractions", "lesson-1")
        finally:
            await ctx.aclose()

    asyncio.run(scenario())
    review, normal = completer.calls[0][1], completer.calls[1][1]
    assert review.max_tokens == 400
    assert normal.max_tokens == 800
    assert review.temperature < normal.temperature


def test_confidence_word_overlap_ignores_punctuation_and_case():
    results = [_result("a", 0, 0.5, "Fractions are parts.")]
    # mean 50, three overlapping words (+9)
    assert calculate_confidence(results, "fractions, ARE parts?") == 59
