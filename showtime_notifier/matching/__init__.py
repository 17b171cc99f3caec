"""Title and feature matching of content items against notification keywords."""

from .engine import MatchEngine, build_broadcast_results
from .fuzzy import FuzzyTitleIndex, normalize_title, similarity
from .models import MatchResult, TaggedKeyword, tag_entry_keywords

__all__ = [
    "MatchEngine",
    "MatchResult",
    "TaggedKeyword",
    "FuzzyTitleIndex",
    "build_broadcast_results",
    "normalize_title",
    "similarity",
    "tag_entry_keywords",
]
