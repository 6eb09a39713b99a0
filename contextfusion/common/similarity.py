"""
Text Similarity Utilities

Content hashing, Jaccard word overlap and LCS-based character similarity.
Used by deduplication and diversity selection.
"""

import hashlib
import re
from typing import FrozenSet, Tuple

# Weights for the combined near-duplicate metric
CHAR_WEIGHT = 0.6
WORD_WEIGHT = 0.4

_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Lowercase, trim and collapse whitespace"""
    return _WHITESPACE.sub(" ", (text or "").lower()).strip()


def content_hash(text: str) -> str:
    """Stable hash of normalized content"""
    return hashlib.sha256(normalize_text(text).encode("utf-8")).hexdigest()


def word_set(text: str) -> FrozenSet[str]:
    """Lowercased whitespace tokens"""
    return frozenset(normalize_text(text).split())


def jaccard_similarity(a: str, b: str) -> float:
    """Intersection-over-union of whitespace token sets."""
    return jaccard_of_sets(word_set(a), word_set(b))


def jaccard_of_sets(a: FrozenSet[str], b: FrozenSet[str]) -> float:
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def lcs_length(a: str, b: str) -> int:
    """
    Length of the longest common subsequence of two strings.

    Bit-parallel formulation (Crochemore et al. / Hyyro): one big-int
    add/or per character of the shorter string, so long documents stay cheap.
    """
    if not a or not b:
        return 0
    if len(a) < len(b):
        a, b = b, a

    masks = {}
    for i, ch in enumerate(a):
        masks[ch] = masks.get(ch, 0) | (1 << i)

    full = (1 << len(a)) - 1
    v = full
    for ch in b:
        u = v & masks.get(ch, 0)
        v = ((v + u) | (v - u)) & full

    return len(a) - bin(v).count("1")


def char_similarity(a: str, b: str) -> float:
    """LCS length over the longer normalized string."""
    na, nb = normalize_text(a), normalize_text(b)
    return _char_similarity_normalized(na, nb)


def _char_similarity_normalized(na: str, nb: str) -> float:
    if na == nb:
        return 1.0
    if not na or not nb:
        return 0.0

    # Common prefix/suffix never change the LCS; strip them before the DP
    prefix = 0
    limit = min(len(na), len(nb))
    while prefix < limit and na[prefix] == nb[prefix]:
        prefix += 1
    suffix = 0
    while (
        suffix < limit - prefix
        and na[len(na) - 1 - suffix] == nb[len(nb) - 1 - suffix]
    ):
        suffix += 1

    middle = lcs_length(na[prefix:len(na) - suffix], nb[prefix:len(nb) - suffix])
    return (prefix + suffix + middle) / max(len(na), len(nb))


def combined_similarity(a: str, b: str) -> float:
    """0.6 * char similarity + 0.4 * Jaccard similarity"""
    return (
        CHAR_WEIGHT * char_similarity(a, b)
        + WORD_WEIGHT * jaccard_similarity(a, b)
    )


def combined_upper_bound(len_a: int, len_b: int, jaccard: float) -> float:
    """
    Upper bound of combined_similarity from lengths and Jaccard alone.

    LCS can never exceed the shorter string, so char similarity is at most
    min/max length. Pairs whose bound falls below a threshold skip the LCS.
    """
    longest = max(len_a, len_b)
    if longest == 0:
        return CHAR_WEIGHT + WORD_WEIGHT * jaccard
    return CHAR_WEIGHT * (min(len_a, len_b) / longest) + WORD_WEIGHT * jaccard


class TextFingerprint:
    """Precomputed normalized forms of one text for repeated comparisons"""

    __slots__ = ("normalized", "words", "digest")

    def __init__(self, text: str):
        self.normalized = normalize_text(text)
        self.words = frozenset(self.normalized.split())
        self.digest = hashlib.sha256(self.normalized.encode("utf-8")).hexdigest()

    def __len__(self) -> int:
        return len(self.normalized)

    def jaccard(self, other: "TextFingerprint") -> float:
        return jaccard_of_sets(self.words, other.words)

    def char_similarity(self, other: "TextFingerprint") -> float:
        return _char_similarity_normalized(self.normalized, other.normalized)

    def combined(self, other: "TextFingerprint") -> float:
        return self.combined_bounded(other, 0.0)[0]

    def combined_bounded(self, other: "TextFingerprint", floor: float) -> Tuple[float, bool]:
        """
        Combined similarity, skipping the LCS when the cheap bound is below ``floor``.

        Returns (value, exact). When ``exact`` is False the value is an upper
        bound that is already below ``floor``.
        """
        jaccard = self.jaccard(other)
        bound = combined_upper_bound(len(self), len(other), jaccard)
        if bound < floor:
            return bound, False
        return CHAR_WEIGHT * self.char_similarity(other) + WORD_WEIGHT * jaccard, True
