"""Approximate title search.

Scores are similarities in [0, 1] computed with difflib. A title is a hit
for a query when its score is at least ``1 - threshold``, so a threshold of
0 demands an exact (normalised) match and larger thresholds tolerate more
typos. The query may match anywhere inside the title, so "dune" finds
"Dune: Part Two".
"""

import re
from difflib import SequenceMatcher
from typing import List, Sequence, Tuple

DEFAULT_THRESHOLD = 0.3
DEFAULT_MAX_QUERY_LENGTH = 32

_NON_WORD = re.compile(r"[\W_]+", re.UNICODE)


def normalize_title(text: str) -> str:
    """Lower-case, replace punctuation with spaces, collapse whitespace."""
    return " ".join(_NON_WORD.sub(" ", text.lower()).split())


def _partial_score(matcher: SequenceMatcher, query: str, text: str) -> float:
    """Best ratio of ``query`` against any equally long window of ``text``.

    ``matcher`` must already have ``query`` set as its second sequence.
    """
    if len(query) >= len(text):
        matcher.set_seq1(text)
        return matcher.ratio()

    window = len(query)
    best = 0.0
    for start in range(len(text) - window + 1):
        matcher.set_seq1(text[start:start + window])
        if matcher.real_quick_ratio() <= best or matcher.quick_ratio() <= best:
            continue
        score = matcher.ratio()
        if score > best:
            best = score
            if best == 1.0:
                break
    return best


def _token_score(query_tokens: Sequence[str], title_tokens: Sequence[str]) -> float:
    """Length-weighted mean of each query token's best match among title tokens."""
    if not query_tokens or not title_tokens:
        return 0.0

    total = 0
    weighted = 0.0
    for token in query_tokens:
        matcher = SequenceMatcher(None, b=token, autojunk=False)
        best = 0.0
        for candidate in title_tokens:
            matcher.set_seq1(candidate)
            best = max(best, matcher.ratio())
            if best == 1.0:
                break
        weighted += best * len(token)
        total += len(token)
    return weighted / total


def similarity(query: str, title: str) -> float:
    """Similarity of two already-normalised strings."""
    if not query or not title:
        return 0.0
    if query == title or query in title:
        return 1.0

    matcher = SequenceMatcher(None, b=query, autojunk=False)
    partial = _partial_score(matcher, query, title)
    tokens = _token_score(query.split(), title.split())
    return max(partial, tokens)


class FuzzyTitleIndex:
    """Searchable snapshot of item titles.

    Built once per match call; normalisation of the titles happens up front.
    """

    def __init__(
        self,
        titles: Sequence[str],
        threshold: float = DEFAULT_THRESHOLD,
        max_query_length: int = DEFAULT_MAX_QUERY_LENGTH,
    ):
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"threshold must be within [0, 1], got {threshold}")
        if max_query_length < 1:
            raise ValueError("max_query_length must be positive")

        self.threshold = threshold
        self.max_query_length = max_query_length
        self._titles = [normalize_title(title) for title in titles]

    def __len__(self) -> int:
        return len(self._titles)

    def prepare_query(self, query: str) -> str:
        return normalize_title(query)[: self.max_query_length].strip()

    def search(self, query: str) -> List[Tuple[int, float]]:
        """Return ``(position, score)`` for every title that matches ``query``.

        Best scores come first; ties keep the original title order.
        """
        prepared = self.prepare_query(query)
        if not prepared:
            return []

        minimum = 1.0 - self.threshold
        hits = []
        for position, title in enumerate(self._titles):
            score = similarity(prepared, title)
            if score >= minimum:
                hits.append((position, score))

        hits.sort(key=lambda hit: (-hit[1], hit[0]))
        return hits
