"""Information entropy measures for fee wording analysis"""

import math
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import List

ROUND_AMOUNTS = (100, 500, 1000, 2500, 5000, 10000, 25000, 50000)

COMMON_WORDS = (
    "de", "la", "le", "du", "des", "et", "en", "un", "une", "pour", "sur", "par",
    "avec", "au", "aux", "frais", "compte", "virement", "paiement", "carte", "retrait",
)

SUSPICIOUS_WORDING = (
    (re.compile(r"frais\s+divers"), 0.25),
    (re.compile(r"commission\s+diverse"), 0.25),
    (re.compile(r"autres?\s+frais"), 0.2),
    (re.compile(r"prélèvement\s+auto"), 0.15),
    (re.compile(r"frais\s+de\s+gestion"), 0.15),
    (re.compile(r"^frais\s*$"), 0.3),
    (re.compile(r"^commission\s*$"), 0.3),
)

_REPEATING = re.compile(r"(.{2,})\1{2,}")


def shannon_entropy(text: str) -> float:
    """Character-level Shannon entropy in bits"""
    if not text:
        return 0.0
    text = text.lower()
    length = len(text)
    return -sum((n / length) * math.log2(n / length) for n in Counter(text).values())


def word_entropy(text: str) -> float:
    words = re.sub(r"[^\w\s]", " ", text.lower()).split()
    if not words:
        return 0.0
    total = len(words)
    return -sum((n / total) * math.log2(n / total) for n in Counter(words).values())


def normalized_entropy(text: str) -> float:
    if not text or len(text) <= 1:
        return 0.0
    return shannon_entropy(text) / math.log2(len(text))


@dataclass
class RandomnessAnalysis:
    is_random: bool
    entropy: float
    normalized_entropy: float
    confidence: float
    reasons: List[str] = field(default_factory=list)


def analyze_randomness(text: str) -> RandomnessAnalysis:
    """Heuristic check for auto-generated or scrambled wording"""
    if not text:
        return RandomnessAnalysis(False, 0.0, 0.0, 0.0)

    reasons = []
    score = 0.0
    entropy = shannon_entropy(text)

    if entropy > 4.0:
        score += 0.3
        reasons.append("Entropie de caractères élevée")

    length = len(text)
    alpha_ratio = sum(c.isalpha() for c in text) / length
    digit_ratio = sum(c.isdigit() for c in text) / length
    special_ratio = sum(not c.isalnum() and not c.isspace() for c in text) / length

    if digit_ratio > 0.3 and alpha_ratio > 0.3:
        score += 0.2
        reasons.append("Mélange inhabituel de chiffres et lettres")
    if special_ratio > 0.2:
        score += 0.2
        reasons.append("Trop de caractères spéciaux")
    if _REPEATING.search(text):
        score -= 0.1

    words = text.lower().split()
    if not any(common in word for word in words for common in COMMON_WORDS):
        score += 0.2
        reasons.append("Absence de mots communs")

    confidence = min(max(score, 0.0), 1.0)
    return RandomnessAnalysis(
        is_random=confidence > 0.5,
        entropy=entropy,
        normalized_entropy=normalized_entropy(text),
        confidence=confidence,
        reasons=reasons,
    )


def fee_description_suspicion(description: str) -> float:
    """Score in [0, 1], higher for vague or generated fee wording"""
    lowered = description.lower().strip()
    score = sum(weight for pattern, weight in SUSPICIOUS_WORDING if pattern.search(lowered))

    if len(description) < 15:
        score += 0.15
    if len(description) < 25 and word_entropy(description) < 1.5:
        score += 0.1
    if analyze_randomness(description).is_random:
        score += 0.2

    return min(score, 1.0)


def is_round_amount(amount: float) -> bool:
    value = abs(amount)
    return any(value >= step and value % step == 0 for step in ROUND_AMOUNTS)
