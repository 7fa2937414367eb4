"""
BACKLOG SYNC - Similarity Matcher
=================================
Normalized Levenshtein similarity used to pair document headings
with persisted items.
"""

from typing import Generic, Iterable, Optional, Protocol, TypeVar

# 70% similarity required to treat two titles as the same item
SIMILARITY_THRESHOLD = 0.7


class HasContent(Protocol):
    content: str


T = TypeVar("T", bound=HasContent)


class Match(Generic[T]):
    __slots__ = ("item", "similarity")

    def __init__(self, item: T, similarity: float):
        self.item = item
        self.similarity = similarity

    def __repr__(self) -> str:
        return f"Match(item={self.item!r}, similarity={self.similarity:.3f})"


def levenshtein_distance(a: str, b: str) -> int:
    """Insertions, deletions and substitutions needed to turn a into b"""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


def calculate_similarity(a: str, b: str) -> float:
    """Case-insensitive, whitespace-trimmed similarity in [0, 1]"""
    s1 = a.lower().strip()
    s2 = b.lower().strip()

    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0

    return 1 - levenshtein_distance(s1, s2) / max(len(s1), len(s2))


def find_best_match(
    target: str,
    candidates: Iterable[T],
    threshold: float = SIMILARITY_THRESHOLD
) -> Optional[Match[T]]:
    """
    Highest scoring candidate at or above threshold.

    Candidates are scanned in order; on a tie the first one wins.
    """
    best: Optional[Match[T]] = None
    for candidate in candidates:
        score = calculate_similarity(target, candidate.content)
        if score < threshold:
            continue
        if best is None or score > best.similarity:
            best = Match(candidate, score)
    return best
