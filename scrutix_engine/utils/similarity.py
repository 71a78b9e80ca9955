"""String and transaction similarity measures used for duplicate matching"""

import math
import re
from datetime import date
from typing import Set

from scrutix_engine.domain.models import Transaction

_NON_WORD = re.compile(r"[^\w\s]")


def levenshtein_distance(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def normalize_description(text: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace"""
    return " ".join(_NON_WORD.sub(" ", text.lower()).split())


def string_similarity(a: str, b: str) -> float:
    """1 - normalized edit distance over normalized descriptions"""
    a, b = normalize_description(a), normalize_description(b)
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / longest


def tokenize(text: str) -> Set[str]:
    return {token for token in normalize_description(text).split() if len(token) > 1}


def jaccard_similarity(a: str, b: str) -> float:
    tokens_a, tokens_b = tokenize(a), tokenize(b)
    if not tokens_a and not tokens_b:
        return 1.0
    union = tokens_a | tokens_b
    return len(tokens_a & tokens_b) / len(union)


def description_similarity(a: str, b: str) -> float:
    """Best of edit-distance and token-overlap similarity"""
    return max(string_similarity(a, b), jaccard_similarity(a, b))


def relative_amount_difference(a: float, b: float) -> float:
    larger = max(abs(a), abs(b))
    if larger == 0:
        return 0.0
    return abs(abs(a) - abs(b)) / larger


def amount_similarity(a: float, b: float, tolerance: float = 0.01) -> float:
    ratio = relative_amount_difference(a, b)
    if ratio <= tolerance:
        return 1.0
    return max(0.0, 1.0 - ratio)


def time_similarity(a: date, b: date, max_days: int) -> float:
    """1 on the same day, decaying exponentially to 0 at max_days"""
    days = abs((a - b).days)
    if days == 0:
        return 1.0
    if max_days <= 0 or days >= max_days:
        return 0.0
    return math.exp(-days / (max_days / 3))


def transaction_similarity(
    a: Transaction, b: Transaction, max_days: int, amount_tolerance: float = 0.01
) -> float:
    """
    Weighted similarity of two transactions.

    Weights: amount 40%, description 40%, date proximity 20%.
    """
    return (
        0.4 * amount_similarity(a.amount, b.amount, amount_tolerance)
        + 0.4 * description_similarity(a.description, b.description)
        + 0.2 * time_similarity(a.date, b.date, max_days)
    )
