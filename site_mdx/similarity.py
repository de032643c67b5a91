"""Near-duplicate page detection with word shingles and Jaccard similarity."""

from __future__ import annotations

import re
from typing import FrozenSet, List, Optional, Tuple

SHINGLE_SIZE = 5
_WORD = re.compile(r"\w+", re.UNICODE)
_FRONT_MATTER = re.compile(r"\A---\n.*?\n---\n", re.DOTALL)


def shingles(text: str, size: int = SHINGLE_SIZE) -> FrozenSet[str]:
    """Return the set of ``size``-word shingles of ``text``."""
    words = _WORD.findall(text.lower())
    if not words:
        return frozenset()
    if len(words) < size:
        return frozenset({" ".join(words)})
    return frozenset(" ".join(words[i : i + size]) for i in range(len(words) - size + 1))


def jaccard(first: FrozenSet[str], second: FrozenSet[str]) -> float:
    if not first or not second:
        return 0.0
    return len(first & second) / len(first | second)


def strip_front_matter(markdown: str) -> str:
    return _FRONT_MATTER.sub("", markdown, count=1)


class DuplicateDetector:
    """Remember accepted pages and flag new ones that repeat their content."""

    def __init__(self, threshold: float = 0.8, size: int = SHINGLE_SIZE) -> None:
        self.threshold = threshold
        self.size = size
        self._accepted: List[Tuple[str, FrozenSet[str]]] = []

    def check(self, url: str, markdown: str) -> Optional[Tuple[str, float]]:
        """Return ``(original_url, similarity)`` for a duplicate, else record the page."""
        current = shingles(strip_front_matter(markdown), self.size)
        best: Optional[Tuple[str, float]] = None
        for other_url, other in self._accepted:
            score = jaccard(current, other)
            if score >= self.threshold and (best is None or score > best[1]):
                best = (other_url, score)
        if best is None:
            self._accepted.append((url, current))
        return best
