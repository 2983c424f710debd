"""Context assembly and prompt text for the tutoring pipeline.

Everything here is pure string building over retrieved chunks and the
student's profile; nothing in this module talks to a collaborator.
"""

from __future__ import annotations

import re
from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from tutor_rag.utils.types import PredictiveInsights, QuestionPattern, SearchResult, UserLearningProfile
from tutor_rag.workflow.classifiers import assess_chunk_complexity

CORE_SCORE = 0.7
SUPPORTING_SCORE = 0.5
SUPPORTING_SNIPPET_CHARS = 200
BACKGROUND_SNIPPET_CHARS = 120
MAX_CONTEXT_CHUNKS = 6
MAX_PLAIN_CHUNKS = 5
MAX_PRIOR_EXAMPLES = 2
QUIZ_TOP_CHUNKS = 4

STAGE_LABELS: Dict[str, str] = {
    "understanding": "فهم المفهوم",
    "application": "التطبيق العملي",
    "review": "المراجعة والتلخيص",
    "learning": "التعلم الأولي",
}

SCREEN_CONTEXT_RE = re.compile(r"\[(?:السياق|Context):\s*(.*?)\]", re.DOTALL)

MOTIVATIONAL_SUFFIX = "💪 أنت تستطيع! كل خطوة صغيرة تقربك من الهدف."
REASSURANCE_SUFFIX = "💝 تذكر: العباقرة يخطئون أيضاً! المهم أننا نتعلم. أنت تتحسن مع كل محاولة."
ENCOURAGING_MESSAGES: Tuple[str, ...] = (
    "لا بأس! الخطأ جزء من التعلم. المحاولة القادمة ستكون أفضل! 💪",
    "كل عالم عظيم بدأ بأخطاء. أنت في الطريق الصحيح! 🌟",
    "ممتاز أنك تحاول! هذه شجاعة. هيا نحاول مرة أخرى! 🚀",
    "الأبطال لا يستسلمون! خذ نفس عميق وحاول مرة أخرى! 💖",
)

WRONG_ANSWER_SYSTEM_PROMPT = "أنت معلم متفهم وصبور، تحول الأخطاء لفرص تعلم."
STUDY_PLAN_SYSTEM_PROMPT = "أنت مخطط تعليمي خبير في التعلم التكيفي."


# Context
def select_optimal_chunks(
    results: Sequence[SearchResult],
    profile: Optional[UserLearningProfile],
    complexity: Callable[[str], int] = assess_chunk_complexity,
) -> List[SearchResult]:
    """Prefer chunks whose reading complexity is closest to the student's level, then by score."""
    if profile is None:
        return list(results[:MAX_PLAIN_CHUNKS])
    ranked = sorted(
        results,
        key=lambda item: (abs(complexity(item.chunk.text) - profile.level), -item.score),
    )
    return ranked[:MAX_CONTEXT_CHUNKS]


def build_context(
    results: Sequence[SearchResult],
    profile: Optional[UserLearningProfile],
    pattern: QuestionPattern,
    complexity: Callable[[str], int] = assess_chunk_complexity,
) -> str:
    selected = select_optimal_chunks(results, profile, complexity)
    core = [item for item in selected if item.score > CORE_SCORE]
    supporting = [item for item in selected if SUPPORTING_SCORE < item.score <= CORE_SCORE]
    background = [item for item in selected if item.score <= SUPPORTING_SCORE]

    lines: List[str] = []
    if pattern.emotional_tone == "frustrated" and profile is not None:
        lines += ["💡 ملاحظة: الطالب يواجه صعوبة، اشرح ببساطة شديدة.", ""]
    lines.append(f"📚 مرحلة التعلم: {STAGE_LABELS.get(pattern.learning_stage, pattern.learning_stage)}")
    lines += ["=" * 37, ""]

    if core:
        lines.append("🎯 معلومات أساسية:")
        for idx, item in enumerate(core, start=1):
            lines.append(f"[{idx}] {item.chunk.text}")
            if item.source_info.title:
                lines.append(f"📖 المصدر: {item.source_info.title}")
            lines.append("")

    if supporting:
        lines.append("📝 معلومات إضافية:")
        lines += [f"• {item.chunk.text[:SUPPORTING_SNIPPET_CHARS]}..." for item in supporting]
        lines.append("")

    if background:
        lines.append("📎 معلومات مساندة:")
        lines += [f"- {item.chunk.text[:BACKGROUND_SNIPPET_CHARS]}..." for item in background]
        lines.append("")

    if profile is not None and profile.successful_examples:
        lines.append("✅ أمثلة نجح فيها الطالب سابقاً:")
        lines += [f"• {example}" for example in profile.successful_examples[-MAX_PRIOR_EXAMPLES:]]

    return "\n".join(lines).strip()


def build_quiz_context(results: Sequence[SearchResult]) -> str:
    """Top-scoring chunks plus one neighbouring chunk each, grouped under their source title."""
    by_source: Dict[str, List[SearchResult]] = defaultdict(list)
    for item in results:
        by_source[item.source_info.id].append(item)

    top = sorted(results, key=lambda item: item.score, reverse=True)[:QUIZ_TOP_CHUNKS]
    selected: List[SearchResult] = list(top)
    for item in top:
        neighbours = [
            other
            for other in by_source[item.source_info.id]
            if abs(other.chunk.chunk_index - item.chunk.chunk_index) == 1 and other not in selected
        ]
        selected.extend(neighbours[:1])

    lines = ["معلومات ذات صلة:", ""]
    current_title = ""
    for idx, item in enumerate(selected, start=1):
        title = item.source_info.title
        if title and title != current_title:
            current_title = title
            lines += [f"📚 {title}", "─" * 30]
        lines.append(f"[{idx}] {item.chunk.text}")
        if item.score > CORE_SCORE:
            lines.append(f"✅ صلة قوية ({round(item.score * 100)}%)")
        lines.append("")
    return "\n".join(lines).strip()


# Answers
def build_adaptive_system_prompt(
    profile: Optional[UserLearningProfile],
    pattern: QuestionPattern,
    insights: Optional[PredictiveInsights] = None,
    now: Optional[datetime] = None,
) -> str:
    frustrated = pattern.emotional_tone == "frustrated"
    parts = [
        "أنت معلم ذكي ومتعاطف، متخصص في المناهج المصرية.",
        "",
        f"الشخصية: {'صبور جداً ومشجع' if frustrated else 'ودود ومحفز'}",
        f"الأسلوب: {'شرح تفصيلي بأمثلة' if pattern.learning_stage == 'understanding' else 'مباشر ومركز'}",
    ]

    if profile is not None:
        if profile.level < 4:
            parts += ["", "👶 المستوى: مبتدئ", "- استخدم لغة بسيطة جداً", "- أمثلة من الحياة اليومية", "- خطوات صغيرة جداً"]
        elif profile.level > 7:
            parts += ["", "🎓 المستوى: متقدم", "- يمكنك استخدام مصطلحات متقدمة", "- ركز على التطبيقات", "- تحدي الطالب قليلاً"]

        style_hints = {
            "visual": "📊 أسلوب التعلم: بصري - استخدم أوصاف مرئية ورموز",
            "kinesthetic": "🔧 أسلوب التعلم: حركي - ركز على التطبيقات العملية",
            "auditory": "🎵 أسلوب التعلم: سمعي - اذكر أمثلة صوتية",
        }
        if profile.learning_style in style_hints:
            parts.append(style_hints[profile.learning_style])

        if profile.weak_areas:
            parts += ["", f"⚠️ نقاط ضعف معروفة: {', '.join(profile.weak_areas)}", "- اشرح هذه النقاط بعناية خاصة"]

        hour = (now or datetime.now()).hour
        if hour < 12:
            parts += ["", "🌅 الوقت: صباح - الطالب نشيط، يمكن شرح مفاهيم جديدة"]
        elif hour > 20:
            parts += ["", "🌙 الوقت: مساء - الطالب قد يكون متعباً، اختصر"]

    if insights is not None and insights.next_likely_question:
        parts += ["", f'🔮 توقع: الطالب قد يسأل بعد ذلك عن "{insights.next_likely_question}"']

    return "\n".join(parts)


def extract_screen_context(question: str) -> Tuple[str, str]:
    """Split an embedded ``[السياق: ...]`` marker off the question; returns (question, screen_context)."""
    match = SCREEN_CONTEXT_RE.search(question)
    if not match:
        return question.strip(), ""
    cleaned = (question[: match.start()] + question[match.end() :]).strip()
    return " ".join(cleaned.split()), match.group(1).strip()


def build_answer_prompt(context: str, question: str, pattern: QuestionPattern) -> str:
    cleaned, screen_context = extract_screen_context(question)
    parts = ["السياق التعليمي:", context, ""]
    if screen_context:
        parts += ["السياق المباشر من الشريحة الحالية:", screen_context, ""]
    parts.append(f"سؤال الطالب: {cleaned}")
    if pattern.emotional_tone == "frustrated":
        parts.append("⚠️ الطالب محبط، كن مشجعاً جداً!")
    if pattern.learning_stage == "review":
        parts.append("📝 الطالب في مرحلة المراجعة، قدم ملخصاً مركزاً")
    closing = "أجب بما يناسب مستوى وحالة الطالب"
    if screen_context:
        closing += " واربط إجابتك بالشريحة المعروضة"
    parts += ["", closing + "."]
    return "\n".join(parts)


def fallback_answer(topic: str, profile: Optional[UserLearningProfile] = None) -> str:
    if profile is not None and topic in profile.weak_areas:
        tip = (
            f"راجع {profile.last_successful_topic} أولاً، فهو مرتبط بهذا الموضوع"
            if profile.last_successful_topic
            else "ابدأ بالأمثلة البسيطة"
        )
        return (
            "هذا الموضوع من النقاط التي تحتاج مراجعة إضافية.\n\n"
            "دعني أساعدك:\n"
            "1. راجع الأساسيات أولاً\n"
            "2. حل أمثلة بسيطة\n"
            "3. اسأل عن أي جزء غير واضح\n\n"
            f"💡 نصيحة: {tip}"
        )
    return (
        "عذراً، لم أجد معلومات كافية عن هذا السؤال.\n\n"
        "💡 جرب:\n"
        "- صياغة السؤال بطريقة أخرى\n"
        "- تحديد الدرس المطلوب\n"
        "- السؤال عن جزء محدد\n\n"
        "أنا هنا لمساعدتك! 😊"
    )


def encouraging_message(seed: int = 0) -> str:
    return ENCOURAGING_MESSAGES[seed % len(ENCOURAGING_MESSAGES)]


# Wrong answers and concepts
def build_wrong_answer_prompt(
    question: str,
    user_answer: str,
    correct_answer: str,
    profile: Optional[UserLearningProfile] = None,
) -> str:
    tone = "الطالب محبط، كن لطيفاً جداً ومشجعاً" if profile and profile.current_mood == "frustrated" else "اشرح بإيجابية"
    parts = [
        tone,
        "",
        f"السؤال: {question}",
        f"إجابة الطالب: {user_answer}",
        f"الإجابة الصحيحة: {correct_answer}",
        "",
        "قدم شرحاً:",
        "1. ابدأ بتقدير المحاولة (حتى لو خاطئة)",
        "2. اشرح الخطأ بلطف",
        "3. وضح الإجابة الصحيحة",
        "4. قدم طريقة لتذكر الإجابة",
        "5. شجع الطالب",
    ]
    if profile is not None and profile.level < 5:
        parts += ["", "استخدم لغة بسيطة جداً"]
    return "\n".join(parts)


def grade_band(grade: int) -> str:
    if grade <= 6:
        return "الابتدائية"
    if grade <= 9:
        return "الإعدادية"
    return "الثانوية"


def build_concept_prompts(concept: str, grade: int) -> Tuple[str, str]:
    primary = grade <= 6
    preparatory = grade <= 9
    system_prompt = (
        f"أنت معلم متميز للمرحلة {grade_band(grade)}.\n"
        "تشرح بأسلوب:\n"
        f"- {'قصصي ممتع مع شخصيات' if primary else 'علمي مبسط'}\n"
        f"- {'أمثلة من الحياة اليومية' if preparatory else 'ربط بالتطبيقات العملية'}\n"
        "- تشبيهات مناسبة للعمر"
    )
    user_prompt = (
        f'اشرح "{concept}" لطالب في الصف {grade}.\n\n'
        "الشرح يجب أن يتضمن:\n"
        "1. تعريف بسيط (سطر واحد)\n"
        f"2. {'قصة قصيرة أو شخصية كرتونية' if primary else 'مثال من الحياة'}\n"
        f"3. {'نشاط عملي بسيط' if preparatory else 'تطبيق علمي'}\n"
        "4. خلاصة في جملة\n\n"
        f"اجعله {'ممتع جداً! 🌟' if primary else 'مشوق ومفيد'}"
    )
    return system_prompt, user_prompt


def concept_fallback(concept: str) -> str:
    return f"{concept} هو مفهوم مهم في المنهج. راجع الكتاب المدرسي."


# Study plans
def daily_capacity_minutes(profile: UserLearningProfile) -> int:
    return 45 if profile.level > 6 else 30


def build_study_plan_prompt(
    profile: UserLearningProfile,
    weaknesses: Sequence[str],
    optimal_time: str,
    daily_minutes: int,
) -> str:
    return (
        "أنشئ خطة دراسية مخصصة تماماً:\n\n"
        "الطالب:\n"
        f"- المستوى: {profile.level}/10\n"
        f"- أسلوب التعلم: {profile.learning_style}\n"
        f"- أفضل وقت للدراسة: {optimal_time}\n"
        f"- السعة اليومية: {daily_minutes} دقيقة\n\n"
        f"نقاط الضعف: {', '.join(weaknesses)}\n"
        f"نقاط القوة: {', '.join(profile.strong_areas)}\n\n"
        "الخطة يجب أن:\n"
        "1. تبدأ بمراجعة نقاط القوة (لبناء الثقة)\n"
        "2. تعالج نقاط الضعف تدريجياً\n"
        "3. تتضمن فترات راحة\n"
        "4. تكون واقعية وقابلة للتنفيذ\n\n"
        "صيغة JSON مفصلة."
    )


def basic_study_plan(weaknesses: Sequence[str], daily_minutes: int, days: int = 7) -> Dict[str, Any]:
    schedule = []
    for day in range(1, days + 1):
        topic = weaknesses[day % len(weaknesses)] if weaknesses else "مراجعة عامة"
        schedule.append(
            {
                "day": day,
                "topic": topic,
                "duration": f"{daily_minutes} دقيقة",
                "activities": ["قراءة الدرس", "حل 3 تمارين", "مراجعة الأخطاء"],
            }
        )
    return {
        "duration": f"{days} أيام",
        "daily_schedule": schedule,
        "tips": ["ابدأ بالأسهل", "خذ فترات راحة", "راجع يومياً", "اسأل عند الحاجة"],
    }
