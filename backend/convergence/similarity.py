"""
Similarity Scorer - Normalized string and list similarity.

Every matcher compares free text through these functions; none of them
know anything about entity kinds.
"""
import re
from typing import Iterable, Optional

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_SPACES = re.compile(r"\s+")


def normalize_for_match(value: Optional[str]) -> str:
    """Lowercase, drop punctuation, collapse whitespace."""
    if not value:
        return ""
    text = _NON_ALNUM.sub("", str(value).lower())
    return _SPACES.sub(" ", text).strip()


def _significant_words(text: str) -> set:
    return {w for w in text.split(" ") if len(w) > 2}


def string_similarity(a: Optional[str], b: Optional[str]) -> float:
    """
    Similarity of two strings in [0, 1].

    - either side empty -> 0
    - equal after normalization -> 1
    - one contains the other -> len(shorter) / len(longer)
    - otherwise Jaccard overlap of words longer than two characters
    """
    a = normalize_for_match(a)
    b = normalize_for_match(b)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0

    shorter, longer = (a, b) if len(a) <= len(b) else (b, a)
    if shorter in longer:
        return len(shorter) / len(longer)

    words_a = _significant_words(a)
    words_b = _significant_words(b)
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def best_pairwise_similarity(names_a: Iterable[str], names_b: Iterable[str]) -> float:
    """Highest similarity between any name in one list and any in the other."""
    names_b = [n for n in names_b if n]
    best = 0.0
    for name_a in names_a:
        if not name_a:
            continue
        for name_b in names_b:
            best = max(best, string_similarity(name_a, name_b))
            if best == 1.0:
                return best
    return best


def contains_phrase(haystack: Optional[str], needle: Optional[str], min_length: int = 3) -> bool:
    """Whether the normalized needle occurs inside the normalized haystack."""
    needle = normalize_for_match(needle)
    if len(needle) < min_length:
        return False
    return needle in normalize_for_match(haystack)
