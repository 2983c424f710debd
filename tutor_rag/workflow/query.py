from __future__ import annotations

import string
from typing import Dict, List, Tuple

# Known curriculum terms and their surface variants; the last entry is the English term.
SYNONYMS: Dict[str, List[str]] = {
    "معادلة": ["معادلات", "المعادلة", "المعادلات", "equation"],
    "حل": ["احل", "حلول", "الحل", "يحل", "نحل", "solving"],
    "جمع": ["الجمع", "اجمع", "يجمع", "مجموع", "addition"],
    "طرح": ["الطرح", "اطرح", "يطرح", "subtraction"],
    "ضرب": ["الضرب", "اضرب", "يضرب", "حاصل الضرب", "multiplication"],
    "قسمة": ["القسمة", "اقسم", "يقسم", "division"],
    "كسر": ["كسور", "الكسر", "الكسور", "fraction"],
    "عدد": ["أعداد", "العدد", "الأعداد", "رقم", "أرقام", "number"],
    "مسألة": ["مسائل", "المسألة", "المسائل", "تمرين", "problem"],
    "درس": ["الدرس", "دروس", "الدروس", "lesson"],
}

ARABIC_STOP_WORDS = frozenset(["في", "من", "على", "هي", "هو", "ما", "كيف", "متى", "أين", "لماذا", "هل", "أو", "و"])
ENGLISH_STOP_WORDS = frozenset(["the", "is", "at", "which", "on", "a", "an", "as", "are", "was", "were", "for", "of"])

# (markers found anywhere in the query, term added to the keyword list)
IMPORTANT_TERMS: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("ضرب", "الضرب"), "ضرب"),
    (("جمع", "الجمع"), "جمع"),
    (("طرح", "الطرح"), "طرح"),
    (("قسم", "القسمة"), "قسمة"),
    (("كسر", "كسور"), "كسور"),
    (("عدد", "أعداد"), "أعداد"),
)

MAX_QUERY_VARIANTS = 3
MAX_SYNONYMS_PER_WORD = 2
_STRIP_CHARS = string.punctuation + "؟،؛«»"


def normalize_query(query: str) -> str:
    return " ".join((query or "").lower().split())


def expand_query(query: str) -> List[str]:
    """Return the query followed by up to two synonym-substituted variants."""
    variants = [query]
    for term, synonyms in SYNONYMS.items():
        if term in query:
            variant = query.replace(term, synonyms[0], 1)
            if variant != query and variant not in variants:
                variants.append(variant)
        if len(variants) >= MAX_QUERY_VARIANTS:
            break
    return variants[:MAX_QUERY_VARIANTS]


def extract_keywords(text: str) -> List[str]:
    words = []
    for raw in (text or "").split():
        word = raw.strip(_STRIP_CHARS)
        if len(word) <= 2:
            continue
        if word in ARABIC_STOP_WORDS or word.lower() in ENGLISH_STOP_WORDS:
            continue
        words.append(word)

    expanded: List[str] = []
    for word in words:
        expanded.append(word)
        if word in SYNONYMS:
            expanded.extend(SYNONYMS[word][:MAX_SYNONYMS_PER_WORD])

    for markers, term in IMPORTANT_TERMS:
        if any(marker in text for marker in markers):
            expanded.append(term)

    return list(dict.fromkeys(expanded))
