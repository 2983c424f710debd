from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from tutor_rag.logging_config import get_logger
from tutor_rag.utils.types import PredictiveInsights, UserLearningProfile

logger = get_logger(__name__)

FALLBACK_TYPES = ("mcq", "true_false", "fill_blank")
QUIZ_FORMAT_EXAMPLE = """[
  {
    "type": "mcq|true_false|fill_blank|problem|short_answer|essay",
    "question": "نص السؤال",
    "options": ["خيار1", "خيار2", "خيار3", "خيار4"],
    "correctAnswer": "الإجابة الصحيحة",
    "explanation": "شرح مختصر",
    "hint": "تلميح مساعد",
    "difficulty": "easy|medium|hard",
    "points": 1,
    "tags": ["tag1", "tag2"],
    "encouragement": "رسالة تحفيزية",
    "stepByStepSolution": ["خطوة 1", "خطوة 2"],
    "requiresSteps": true
  }
]"""


class QuizQuestion(BaseModel):
    """One generated quiz item; accepts the camelCase keys models tend to emit."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str = "mcq"
    question: str
    options: List[str] = Field(default_factory=list)
    correct_answer: str = Field(default="", alias="correctAnswer")
    explanation: str = ""
    hint: str = ""
    difficulty: str = "medium"
    points: int = 1
    tags: List[str] = Field(default_factory=list)
    encouragement: str = ""
    step_by_step_solution: List[str] = Field(default_factory=list, alias="stepByStepSolution")
    requires_steps: bool = Field(default=False, alias="requiresSteps")

    @field_validator("correct_answer", mode="before")
    @classmethod
    def _answer_to_str(cls, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    @field_validator("options", mode="before")
    @classmethod
    def _options_to_str(cls, value: Any) -> List[str]:
        if not value:
            return []
        return [str(item) for item in value]

    @field_validator("points", mode="before")
    @classmethod
    def _points_to_int(cls, value: Any) -> int:
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return 1


def build_quiz_system_prompt(profile: Optional[UserLearningProfile], insights: Optional[PredictiveInsights]) -> str:
    parts = [
        "أنت خبير في إنشاء اختبارات تعليمية مخصصة وذكية.",
        "",
        "القواعد الأساسية:",
        "1. نوّع الأسئلة لتناسب أساليب التعلم المختلفة",
        "2. تدرج في الصعوبة بذكاء",
        "3. أضف عناصر تحفيزية",
    ]
    if profile is not None:
        parts += ["", f"📊 مستوى الطالب: {profile.level}/10"]
        if profile.level < 4:
            parts += ["- ابدأ بأسئلة سهلة جداً لبناء الثقة", "- استخدم كلمات بسيطة"]
        elif profile.level > 7:
            parts += ["- أضف أسئلة تحدي", "- اربط بتطبيقات الحياة", "- أسئلة تحليلية"]

        if profile.learning_style == "visual":
            parts += ["", "🎨 الطالب بصري: استخدم أوصاف مرئية"]
        elif profile.learning_style == "auditory":
            parts += ["", "🎵 الطالب سمعي: اذكر أمثلة صوتية"]

        if profile.current_mood == "frustrated":
            parts += ["", "😔 الطالب محبط: أسئلة محفزة وليست محبطة"]
        elif profile.current_mood == "excited":
            parts += ["", "😊 الطالب متحمس: يمكن زيادة التحدي"]

    if insights is not None and insights.motivation_level == "low":
        parts += ["", "⚠️ المعنويات منخفضة: أضف تحفيز إضافي ونجاحات صغيرة"]
    return "\n".join(parts)


def build_quiz_user_prompt(
    context: str,
    count: int,
    profile: Optional[UserLearningProfile],
    insights: Optional[PredictiveInsights],
) -> str:
    parts = ["من المحتوى التالي:", "=" * 37, context, "=" * 37, "", f"أنشئ {count} أسئلة متنوعة ومناسبة للطالب."]
    if profile is not None and profile.weak_areas:
        parts.append(f"⚠️ ركز على: {', '.join(profile.weak_areas)}")
    if insights is not None and insights.predicted_difficulties:
        parts.append(f"📍 تجنب التعقيد في: {', '.join(insights.predicted_difficulties)}")
    parts += ["", "الصيغة المطلوبة (JSON):", QUIZ_FORMAT_EXAMPLE]
    return "\n".join(parts)


def parse_quiz_questions(payload: Any) -> List[QuizQuestion]:
    """Validate a structured reply; accepts a bare list or ``{"questions": [...]}``. Invalid items are dropped."""
    if isinstance(payload, dict):
        payload = payload.get("questions", [])
    if not isinstance(payload, list):
        logger.warning("Quiz payload is not a list | type=%s", type(payload).__name__)
        return []

    questions: List[QuizQuestion] = []
    for idx, item in enumerate(payload):
        if not isinstance(item, dict):
            logger.warning("Skipping non-object quiz item | index=%s", idx)
            continue
        try:
            questions.append(QuizQuestion.model_validate(item))
        except ValidationError:
            logger.warning("Skipping invalid quiz item | index=%s", idx, exc_info=True)
    return questions


def _encouragement_for(profile: UserLearningProfile) -> str:
    if profile.current_mood == "frustrated":
        return "أنت قادر! خطوة بخطوة"
    if profile.level > 7:
        return "ممتاز! استمر في التفوق"
    return "أحسنت! كل محاولة تقربك من الهدف"


def personalize_questions(
    questions: Sequence[QuizQuestion],
    profile: Optional[UserLearningProfile],
    *,
    failure_limit: int = 2,
    clock: Callable[[], float] = time.time,
) -> List[Dict[str, Any]]:
    now = clock()
    stamp = int(now * 1000)
    personalized: List[Dict[str, Any]] = []
    for idx, question in enumerate(questions):
        item = question.model_dump()
        if profile is not None:
            if not item["encouragement"]:
                item["encouragement"] = _encouragement_for(profile)
            if idx == 0 and profile.recent_failures > failure_limit:
                item["difficulty"] = "easy"
                item["hint"] = "ابدأ بالأساسيات"
        item.update(
            {
                "id": f"q_{stamp}_{idx}",
                "personalized": True,
                "user_id": profile.id if profile is not None else None,
                "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(now)),
            }
        )
        personalized.append(item)
    return personalized


def fallback_questions(count: int) -> List[Dict[str, Any]]:
    """Deterministic placeholder quiz used when generation fails."""
    return [
        QuizQuestion(
            type=FALLBACK_TYPES[idx % len(FALLBACK_TYPES)],
            question=f"سؤال {idx + 1}: ما هو...؟",
            options=["خيار أ", "خيار ب", "خيار ج", "خيار د"],
            correct_answer="خيار أ",
            explanation="هذا سؤال تجريبي",
            difficulty="medium",
            points=2,
            hint="فكر في الدرس",
            tags=["تجريبي"],
        ).model_dump()
        for idx in range(count)
    ]
