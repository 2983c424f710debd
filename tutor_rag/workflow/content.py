from __future__ import annotations

import re
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tutor_rag.logging_config import get_logger
from tutor_rag.utils.types import SourceContent

logger = get_logger(__name__)

_ARABIC_WORD_RE = re.compile(r"[\u0600-\u06FF]{3,}")
_ENGLISH_WORD_RE = re.compile(r"[a-z]{4,}")

IMPORTANT_WORD_STOP_LIST = frozenset(
    [
        "هذا", "هذه", "ذلك", "التي", "الذي", "على", "في", "من", "إلى", "عن",
        "بعد", "قبل", "عند", "لكن", "أيضا", "كذلك", "ومن", "وما", "وهو", "وهي",
        "this", "that", "which", "where", "when", "what", "with", "from", "into",
        "about", "after", "before", "also", "then", "than", "them", "they", "their",
    ]
)
MAX_IMPORTANT_WORDS = 30


class _Enrichment(BaseModel):
    model_config = ConfigDict(extra="ignore")


class KeyConcept(_Enrichment):
    concept: str
    simple_explanation: str = ""
    detailed_explanation: str = ""
    analogies: List[str] = Field(default_factory=list)
    visual_representation: str = ""


class RealWorldExample(_Enrichment):
    title: str = ""
    description: str = ""
    related_concept: str = ""
    difficulty: str = ""


class PracticeProblem(_Enrichment):
    question: str
    solution: str = ""
    hints: List[str] = Field(default_factory=list)
    step_by_step_solution: List[str] = Field(default_factory=list)
    difficulty: Optional[int] = None


class Misconception(_Enrichment):
    common_mistake: str
    why_it_happens: str = ""
    correct_understanding: str = ""
    how_to_avoid: str = ""


class AssessmentItem(_Enrichment):
    question: str
    options: List[str] = Field(default_factory=list)
    correct_answer: str = ""
    explanation: str = ""


class EnrichedContent(_Enrichment):
    """Structured enrichment produced for a lesson by an upstream content enricher."""

    detailed_explanation: str = ""
    enriched_text: str = ""
    key_concepts: List[KeyConcept] = Field(default_factory=list)
    real_world_examples: List[RealWorldExample] = Field(default_factory=list)
    practice_problems: List[PracticeProblem] = Field(default_factory=list)
    common_misconceptions: List[Misconception] = Field(default_factory=list)
    prerequisite_knowledge: List[str] = Field(default_factory=list)
    learning_objectives: List[str] = Field(default_factory=list)
    self_check_points: List[str] = Field(default_factory=list)
    assessment_questions: List[AssessmentItem] = Field(default_factory=list)


def section_marker(label: str) -> str:
    return f"=== {label} ==="


def parse_enrichment(raw: Any) -> Optional[EnrichedContent]:
    if not raw:
        return None
    try:
        return EnrichedContent.model_validate(raw)
    except ValidationError:
        logger.warning("Failed to parse enriched content, using original", exc_info=True)
        return None


def extract_important_words(*texts: str) -> List[str]:
    text = " ".join(texts).lower()
    arabic = [w for w in _ARABIC_WORD_RE.findall(text) if len(w) > 3 and w not in IMPORTANT_WORD_STOP_LIST]
    english = [w for w in _ENGLISH_WORD_RE.findall(text) if len(w) > 4 and w not in IMPORTANT_WORD_STOP_LIST]
    return list(dict.fromkeys(arabic + english))[:MAX_IMPORTANT_WORDS]


def generate_search_variations(source: SourceContent) -> List[str]:
    """Question phrasings a student is likely to type about this lesson."""
    title = source.title
    variations: List[str] = []
    if source.title_en:
        variations.extend(
            [
                f"what is {source.title_en}",
                f"explain {source.title_en}",
                f"define {source.title_en}",
                f"examples of {source.title_en}",
                f"{source.title_en} grade {source.grade}",
                f"{source.subject_name_en} {source.title_en}".strip(),
            ]
        )
    variations.extend(
        [
            f"ما هو {title}",
            f"ما هي {title}",
            f"اشرح {title}",
            f"اشرح لي {title}",
            f"عرف {title}",
            f"تعريف {title}",
            f"أمثلة على {title}",
            f"كيف أفهم {title}",
            f"كيف أحل {title}",
            f"تمارين {title}",
            f"{title} للصف {source.grade}",
            f"{source.subject_name} {title}".strip(),
        ]
    )
    variations.extend(extract_important_words(source.full_text, source.summary))
    return list(dict.fromkeys(variations))


def _render_example(item: Any, index: int) -> List[str]:
    if isinstance(item, str):
        return [f"{index}. {item}"]
    problem = item.get("problem") or item.get("question") or ""
    solution = item.get("solution") or item.get("answer") or ""
    return [f"مثال {index}: {problem}", f"الحل: {solution}"]


def _render_exercise(item: Any, index: int) -> List[str]:
    if isinstance(item, str):
        return [f"{index}. {item}"]
    lines = [f"تمرين {index}: {item.get('question', '')}"]
    if item.get("answer"):
        lines.append(f"الإجابة: {item['answer']}")
    return lines


def _render_enrichment(enriched: EnrichedContent) -> List[str]:
    parts: List[str] = []
    body = enriched.detailed_explanation or enriched.enriched_text
    if body:
        parts += [section_marker("المحتوى المحسّن | Enriched Content"), body]

    if enriched.key_concepts:
        parts.append(section_marker("المفاهيم الأساسية | Key Concepts"))
        for concept in enriched.key_concepts:
            parts.append(f"{concept.concept}")
            if concept.simple_explanation:
                parts.append(f"الشرح البسيط: {concept.simple_explanation}")
            if concept.detailed_explanation:
                parts.append(f"الشرح التفصيلي: {concept.detailed_explanation}")
            if concept.analogies:
                parts.append(f"التشبيهات: {'، '.join(concept.analogies)}")
            if concept.visual_representation:
                parts.append(f"التمثيل المرئي: {concept.visual_representation}")

    if enriched.real_world_examples:
        parts.append(section_marker("أمثلة من الحياة الواقعية | Real-World Examples"))
        for idx, example in enumerate(enriched.real_world_examples, start=1):
            parts += [f"مثال {idx}: {example.title}", example.description]
            if example.related_concept:
                parts.append(f"المفهوم المرتبط: {example.related_concept}")

    if enriched.practice_problems:
        parts.append(section_marker("تمارين تطبيقية | Practice Exercises"))
        for idx, problem in enumerate(enriched.practice_problems, start=1):
            parts.append(f"تمرين {idx}: {problem.question}")
            if problem.hints:
                parts.append(f"التلميحات: {' | '.join(problem.hints)}")
            parts.append(f"الحل: {problem.solution}")
            parts += [f"   {step_no}. {step}" for step_no, step in enumerate(problem.step_by_step_solution, start=1)]

    if enriched.common_misconceptions:
        parts.append(section_marker("تصحيح المفاهيم الخاطئة | Common Misconceptions"))
        for item in enriched.common_misconceptions:
            parts.append(f"الخطأ الشائع: {item.common_mistake}")
            if item.why_it_happens:
                parts.append(f"لماذا يحدث: {item.why_it_happens}")
            if item.correct_understanding:
                parts.append(f"الفهم الصحيح: {item.correct_understanding}")
            if item.how_to_avoid:
                parts.append(f"كيفية التجنب: {item.how_to_avoid}")

    if enriched.prerequisite_knowledge:
        parts.append(section_marker("المتطلبات السابقة | Prerequisites"))
        parts += [f"• {item}" for item in enriched.prerequisite_knowledge]

    if enriched.learning_objectives:
        parts.append(section_marker("الأهداف التعليمية | Learning Objectives"))
        parts += [f"✓ {item}" for item in enriched.learning_objectives]

    if enriched.self_check_points:
        parts.append(section_marker("نقاط التحقق الذاتي | Self-Check"))
        parts += [f"□ {item}" for item in enriched.self_check_points]

    if enriched.assessment_questions:
        parts.append(section_marker("أسئلة التقييم | Assessment"))
        for idx, item in enumerate(enriched.assessment_questions, start=1):
            parts.append(f"سؤال {idx}: {item.question}")
            parts += [f"   {chr(65 + opt_no)}) {option}" for opt_no, option in enumerate(item.options)]
            parts.append(f"الإجابة الصحيحة: {item.correct_answer}")
            if item.explanation:
                parts.append(f"الشرح: {item.explanation}")
    return parts


def build_source_text(source: SourceContent, enriched: Optional[EnrichedContent] = None) -> str:
    """Render a source as one text with a labeled section marker per part."""
    parts: List[str] = [f"# {source.title}"]
    if source.subject_name:
        parts.append(f"المادة: {source.subject_name} | الصف: {source.grade}")
    if source.title_en:
        parts.append(f"Subject: {source.subject_name_en} | Grade: {source.grade} | Lesson: {source.title_en}")

    parts.append(section_marker("كلمات البحث | Search Terms"))
    parts.extend(generate_search_variations(source))

    if source.full_text:
        parts += [section_marker("المحتوى الرئيسي | Main Content"), source.full_text]

    if source.key_points:
        parts.append(section_marker("النقاط الأساسية | Key Points"))
        parts += [f"{idx}. {point}" for idx, point in enumerate(source.key_points, start=1)]

    if source.summary:
        parts += [section_marker("الملخص | Summary"), source.summary]

    if source.examples:
        parts.append(section_marker("الأمثلة | Examples"))
        for idx, item in enumerate(source.examples, start=1):
            parts += _render_example(item, idx)

    if source.exercises:
        parts.append(section_marker("التمارين | Exercises"))
        for idx, item in enumerate(source.exercises, start=1):
            parts += _render_exercise(item, idx)

    if enriched is not None:
        parts += _render_enrichment(enriched)

    return "\n".join(part for part in parts if part)
