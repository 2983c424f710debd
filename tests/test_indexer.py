import asyncio
import pathlib
import sys

import pytest

# Ensure the repository root is on the path for direct test runs.
REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.append(str(REPO_ROOT))

from conftest import BagOfWordsEmbedder
from tutor_rag.utils.types import SourceContent, SupplementItem
from tutor_rag.workflow.chunking import SmartChunker, detect_section_type
from tutor_rag.workflow.content import build_source_text, parse_enrichment, section_marker
from tutor_rag.workflow.indexer import EXAMPLE_NAMESPACE, QUESTION_NAMESPACE, render_supplement


def _lesson_text(sentences=20):
    line = "Sentence number {} explains how fractions relate parts of a whole using numerators and denominators."
    return " ".join(line.format(i) for i in range(sentences))


def _lesson(source_id="frac-1", examples=3, **kwargs):
    supplements = [
        SupplementItem(kind="example", payload={"problem": f"Add 1/{n} and 1/{n}", "solution": f"2/{n}"}, item_id=f"ex-{n}")
        for n in range(2, 2 + examples)
    ]
    return SourceContent(
        source_id=source_id,
        title="الكسور",
        title_en="Fractions",
        subject_name="رياضيات",
        subject_name_en="Math",
        grade=5,
        full_text=_lesson_text(),
        supplements=supplements,
        **kwargs,
    )


def test_lesson_scenario_produces_main_and_example_chunks(make_context):
    async def scenario():
        ctx = make_context(chunk_size=600)
        await ctx.start()
        try:
            await ctx.store.upsert_source(_lesson())
            report = await ctx.index_source("frac-1")
            chunks = await ctx.store.load_chunks("frac-1")
        finally:
            await ctx.aclose()
        return report, chunks

    report, chunks = asyncio.run(scenario())
    assert len(_lesson_text()) >= 2000
    assert report.main_chunks >= 4
    assert report.examples == 3
    assert report.failed == 0
    examples = [c for c in chunks if c.metadata["type"] == "example"]
    assert len(examples) == 3
    assert all(c.chunk_index >= EXAMPLE_NAMESPACE for c in examples)
    main_indexes = {c.chunk_index for c in chunks if c.metadata["type"] == "content"}
    assert all(idx < EXAMPLE_NAMESPACE for idx in main_indexes)
    assert main_indexes.isdisjoint({c.chunk_index for c in examples})


def test_reindexing_is_idempotent(make_context):
    async def scenario():
        ctx = make_context(chunk_size=600)
        await ctx.start()
        try:
            await ctx.store.upsert_source(_lesson())
            await ctx.index_source("frac-1")
            first = [(c.chunk_index, c.text) for c in await ctx.store.load_chunks("frac-1")]
            await ctx.index_source("frac-1")
            second = [(c.chunk_index, c.text) for c in await ctx.store.load_chunks("frac-1")]
        finally:
            await ctx.aclose()
        return first, second

    first, second = asyncio.run(scenario())
    assert first == second


def test_failed_chunk_is_skipped_without_aborting(make_context):
    async def scenario():
        ctx = make_context(embedder=BagOfWordsEmbedder(fail_on="1/3"))
        await ctx.start()
        try:
            await ctx.store.upsert_source(_lesson())
            report = await ctx.index_source("frac-1")
            stored = await ctx.store.count_chunks("frac-1")
            stats = await ctx.indexer.get_index_stats("frac-1")
        finally:
            await ctx.aclose()
        return report, stored, stats

    report, stored, stats = asyncio.run(scenario())
    assert report.failed == 1
    assert report.examples == 2
    assert stored == report.total
    assert stats["example"] == 2
    assert stats["content"] == report.main_chunks
    assert stats["total"] == stored


def test_index_missing_source_raises(make_context):
    async def scenario():
        ctx = make_context()
        await ctx.start()
        try:
            await ctx.index_source("missing")
        finally:
            await ctx.aclose()

    with pytest.raises(ValueError):
        asyncio.run(scenario())


def test_index_all_counts_every_source(make_context):
    async def scenario():
        ctx = make_context()
        await ctx.start()
        try:
            await ctx.store.upsert_source(_lesson("a", examples=1))
            await ctx.store.upsert_source(_lesson("b", examples=0))
            summary = await ctx.index_all(batch_size=1)
            total = await ctx.store.count_chunks()
        finally:
            await ctx.aclose()
        return summary, total

    summary, total = asyncio.run(scenario())
    assert summary["processed"] == 2
    assert summary["failed"] == 0
    assert summary["total_chunks"] == total > 0


def test_question_supplements_use_their_own_namespace(make_context):
    async def scenario():
        ctx = make_context()
        await ctx.start()
        try:
            lesson = _lesson(examples=0)
            lesson.supplements = [
                SupplementItem(kind="question", payload={"question": "What is 1/2 + 1/2?", "correct_answer": "1"}),
                SupplementItem(kind="visual", payload={"title": "Pie", "description": "A pie cut in halves"}),
            ]
            await ctx.store.upsert_source(lesson)
            report = await ctx.index_source("frac-1")
            chunks = await ctx.store.load_chunks("frac-1")
        finally:
            await ctx.aclose()
        return report, chunks

    report, chunks = asyncio.run(scenario())
    assert report.questions == 1
    assert report.visuals == 1
    question = next(c for c in chunks if c.metadata["type"] == "question")
    assert QUESTION_NAMESPACE <= question.chunk_index < QUESTION_NAMESPACE + 10000


def test_render_supplement_rejects_unknown_kind():
    assert "الحل: 4" in render_supplement(SupplementItem(kind="example", payload={"problem": "2+2", "solution": "4"}))
    with pytest.raises(ValueError):
        render_supplement(SupplementItem(kind="video"))


def test_chunker_splits_on_section_markers():
    text = "\n".join(
        [
            "intro line that is long enough to survive the minimum chunk length filter",
            section_marker("الأمثلة | Examples"),
            "example body that is also long enough to survive the minimum chunk length",
            section_marker("الملخص | Summary"),
            "summary body with enough characters to pass the minimum chunk length check",
        ]
    )
    chunks = SmartChunker().chunk(text)

    assert [c.section_type for c in chunks] == ["content", "example", "summary"]
    assert [c.section_index for c in chunks] == [0, 1, 2]


def test_chunker_respects_target_size_and_overlap():
    chunker = SmartChunker(chunk_size=600)
    chunks = chunker.chunk(_lesson_text())

    assert len(chunks) >= 4
    assert all(len(c.text) <= 600 + 200 for c in chunks)
    tail = chunker.overlap_tail(chunks[0].text)
    assert tail and chunks[1].text.startswith(tail)


def test_chunker_drops_tiny_fragments_and_validates_size():
    assert SmartChunker().chunk("too short") == []
    with pytest.raises(ValueError):
        SmartChunker(chunk_size=100)


def test_section_type_detection():
    assert detect_section_type("تمارين تطبيقية | Practice Exercises") == "exercise"
    assert detect_section_type("المفاهيم الأساسية | Key Concepts") == "concept"
    assert detect_section_type("Lesson") == "content"


def test_source_text_includes_labelled_sections_and_enrichment():
    lesson = _lesson(
        key_points=["A fraction has a numerator"],
        summary="Fractions describe parts.",
        enriched={
            "detailed_explanation": "Long explanation",
            "common_misconceptions": [{"common_mistake": "Adding denominators"}],
            "learning_objectives": ["Compare fractions"],
        },
    )
    enriched = parse_enrichment(lesson.enriched)
    text = build_source_text(lesson, enriched)

    for label in ("Search Terms", "Main Content", "Key Points", "Summary", "Common Misconceptions", "Learning Objectives"):
        assert label in text
    assert "what is Fractions" in text
    assert "Adding denominators" in text


def test_invalid_enrichment_is_ignored():
    assert parse_enrichment(None) is None
    assert parse_enrichment({"key_concepts": [{"simple_explanation": "missing concept"}]}) is None


def test_lesson_json_loader_builds_supplements():
    from scripts.load_lesson import lesson_from_json

    lesson = lesson_from_json(
        {
            "source_id": "l1",
            "title": "الكسور",
            "full_text": "text",
            "supplements": [{"kind": "example", "payload": {"problem": "1+1", "solution": "2"}}],
        }
    )
    assert lesson.supplements[0].kind == "example"
    assert lesson.supplements[0].payload["solution"] == "2"
