"""Keyword matching of content items.

Matching runs in two steps:
1. Every keyword is evaluated on its own (title keywords fuzzily, feature
   keywords exactly) and hits are aggregated per item, keywords combined
   with OR.
2. Screenings of each hit are refined per contributing entry: an entry
   admits the screenings that carry all of its feature keywords (all
   screenings when it has none). The refined list is the union of what the
   contributing entries admit. Entries that admit nothing are dropped from
   the result, and so are items left without any entry.
"""

import logging
from collections import OrderedDict
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from ..domain.models import ContentItem, Screening
from ..logging import get_logger
from .fuzzy import DEFAULT_MAX_QUERY_LENGTH, DEFAULT_THRESHOLD, FuzzyTitleIndex
from .models import MatchResult, TaggedKeyword

logger = get_logger(__name__, component="matching")

EntryKey = Tuple[Optional[int], str]


class MatchEngine:
    """Evaluates tagged keywords against a set of content items.

    The engine is stateless between calls and deterministic: the same
    keywords and items always produce the same results in the same order.
    """

    def __init__(
        self,
        title_threshold: float = DEFAULT_THRESHOLD,
        max_query_length: int = DEFAULT_MAX_QUERY_LENGTH,
        logger_instance: Optional[logging.Logger] = None,
    ):
        self.title_threshold = title_threshold
        self.max_query_length = max_query_length
        self.logger = logger_instance or logger

    def match(
        self, keywords: Sequence[TaggedKeyword], items: Sequence[ContentItem]
    ) -> List[MatchResult]:
        """Match keywords against items.

        Args:
            keywords: Keywords tagged with their owning entry, in evaluation order
            items: Candidate content items

        Returns:
            One MatchResult per matched item, ordered by first match
        """
        if not keywords or not items:
            return []

        index = FuzzyTitleIndex(
            [item.title for item in items],
            threshold=self.title_threshold,
            max_query_length=self.max_query_length,
        )
        hits: "OrderedDict[int, List[TaggedKeyword]]" = OrderedDict()

        for tagged in keywords:
            if tagged.is_title:
                positions = [position for position, _ in index.search(tagged.value)]
            else:
                wanted = tagged.value.lower()
                positions = [
                    position for position, item in enumerate(items) if wanted in item.features
                ]

            for position in positions:
                hits.setdefault(position, []).append(tagged)

        required = self._required_features(keywords)
        results = []
        for position, matched in hits.items():
            result = self._refine(items[position], matched, required)
            if result is not None:
                results.append(result)

        self.logger.debug(
            "Keywords evaluated",
            extra={
                "event": "matching.completed",
                "keyword_count": len(keywords),
                "item_count": len(items),
                "raw_hits": len(hits),
                "match_count": len(results),
            },
        )
        return results

    @staticmethod
    def _required_features(
        keywords: Sequence[TaggedKeyword],
    ) -> Dict[EntryKey, FrozenSet[str]]:
        features: Dict[EntryKey, set] = {}
        for tagged in keywords:
            bucket = features.setdefault(tagged.entry_key, set())
            if not tagged.is_title:
                bucket.add(tagged.value.lower())
        return {key: frozenset(values) for key, values in features.items()}

    @staticmethod
    def _refine(
        item: ContentItem,
        matched: List[TaggedKeyword],
        required: Dict[EntryKey, FrozenSet[str]],
    ) -> Optional[MatchResult]:
        admitted_entries = set()
        admitted_screenings = set()

        for entry_key in OrderedDict.fromkeys(tagged.entry_key for tagged in matched):
            needed = required.get(entry_key, frozenset())
            admitted = [
                position
                for position, screening in enumerate(item.screenings)
                if needed <= screening.feature_set
            ]
            if admitted:
                admitted_entries.add(entry_key)
                admitted_screenings.update(admitted)

        if not admitted_entries:
            return None

        screenings: List[Screening] = [
            screening
            for position, screening in enumerate(item.screenings)
            if position in admitted_screenings
        ]
        return MatchResult(
            item=item.with_screenings(screenings),
            keywords=[tagged for tagged in matched if tagged.entry_key in admitted_entries],
        )


def build_broadcast_results(items: Sequence[ContentItem]) -> List[MatchResult]:
    """Results for a guild broadcast, where every item with screenings is included."""
    return [MatchResult(item=item) for item in items if item.screenings]
