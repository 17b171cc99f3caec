"""Unit tests for the matching engine.

Covers fuzzy title search, exact case-insensitive feature matching,
aggregation of keywords per item and the per-entry screening post-filter.
"""

import pytest

from showtime_notifier.domain import Keyword, KeywordType
from showtime_notifier.matching import (
    FuzzyTitleIndex,
    MatchEngine,
    TaggedKeyword,
    build_broadcast_results,
    normalize_title,
    similarity,
    tag_entry_keywords,
)
from tests.helpers.factories import make_entry, make_item, make_screening


def tagged(value, kind=KeywordType.TITLE, entry_id=1, entry_name="entry"):
    return TaggedKeyword(
        keyword=Keyword(type=kind, value=value), entry_id=entry_id, entry_name=entry_name
    )


@pytest.fixture
def items():
    return [
        make_item(
            "dune-2",
            "Dune: Part Two",
            make_screening(24, "IMAX", ["imax", "ov"]),
            make_screening(27, "Saal 2", ["3d"]),
        ),
        make_item("oppenheimer", "Oppenheimer", make_screening(30, "Saal 3", ["OV"])),
        make_item("barbie", "Barbie", make_screening(26, "Saal 4")),
    ]


class TestNormalizeTitle:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Dune: Part Two", "dune part two"),
            ("  SPIDER-MAN:   Across_the Spider-Verse ", "spider man across the spider verse"),
            ("Amélie", "amélie"),
            ("!!!", ""),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_title(raw) == expected


class TestSimilarity:
    def test_substring_is_perfect(self):
        assert similarity("dune", "dune part two") == 1.0

    def test_typo_scores_high(self):
        assert similarity("oppenhiemer", "oppenheimer") >= 0.85

    def test_unrelated_scores_low(self):
        assert similarity("barbie", "oppenheimer") < 0.5

    def test_empty(self):
        assert similarity("", "dune") == 0.0


class TestFuzzyTitleIndex:
    def test_search_returns_positions_best_first(self):
        index = FuzzyTitleIndex(["Dune: Part Two", "Dune", "Barbie"])
        hits = index.search("dune")
        assert [position for position, _ in hits] == [0, 1]
        assert all(score == 1.0 for _, score in hits)

    def test_threshold_zero_requires_exact_match(self):
        index = FuzzyTitleIndex(["Oppenheimer"], threshold=0.0)
        assert index.search("Oppenhiemer") == []
        assert index.search("OPPENHEIMER") == [(0, 1.0)]

    def test_typo_found_with_default_threshold(self):
        index = FuzzyTitleIndex(["Oppenheimer", "Barbie"])
        assert [position for position, _ in index.search("Oppenhiemer")] == [0]

    def test_query_is_truncated(self):
        index = FuzzyTitleIndex(["Dune"], max_query_length=4)
        assert index.prepare_query("Dune and a very long tail") == "dune"
        assert index.search("Dune and a very long tail") == [(0, 1.0)]

    def test_blank_query(self):
        assert FuzzyTitleIndex(["Dune"]).search(" :: ") == []

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            FuzzyTitleIndex([], threshold=1.5)
        with pytest.raises(ValueError):
            FuzzyTitleIndex([], max_query_length=0)


class TestMatchEngine:
    def test_empty_inputs(self, items):
        engine = MatchEngine()
        assert engine.match([], items) == []
        assert engine.match([tagged("Dune")], []) == []

    def test_title_match(self, items):
        results = MatchEngine().match([tagged("dune")], items)

        assert [r.item.item_id for r in results] == ["dune-2"]
        assert len(results[0].item.screenings) == 2

    def test_unknown_title_matches_nothing(self, items):
        assert MatchEngine().match([tagged("nonexistentxyz")], items) == []

    def test_fuzzy_title_match(self, items):
        results = MatchEngine().match([tagged("Oppenhiemer")], items)
        assert [r.item.item_id for r in results] == ["oppenheimer"]

    def test_feature_match_is_exact_and_case_insensitive(self, items):
        results = MatchEngine().match([tagged("Ov", KeywordType.FEATURE)], items)
        assert [r.item.item_id for r in results] == ["dune-2", "oppenheimer"]

        assert MatchEngine().match([tagged("o", KeywordType.FEATURE)], items) == []

    def test_keywords_aggregate_per_item_in_first_match_order(self, items):
        keywords = [
            tagged("Oppenheimer", entry_id=1, entry_name="nolan"),
            tagged("ov", KeywordType.FEATURE, entry_id=2, entry_name="original"),
        ]

        results = MatchEngine().match(keywords, items)

        assert [r.item.item_id for r in results] == ["oppenheimer", "dune-2"]
        assert [k.value for k in results[0].keywords] == ["Oppenheimer", "ov"]
        assert results[0].entry_names == ["nolan", "original"]
        assert results[1].entry_ids == [2]

    def test_screenings_restricted_to_required_features(self, items):
        entry = make_entry("dune imax", titles=["Dune"], features=["IMAX"])

        results = MatchEngine().match(tag_entry_keywords([entry]), items)

        assert len(results) == 1
        assert [s.auditorium for s in results[0].item.screenings] == ["IMAX"]

    def test_entry_features_are_combined_per_screening(self, items):
        entry = make_entry("dune 3d ov", titles=["Dune"], features=["3d", "ov"])

        # No single screening is both 3D and OV.
        assert MatchEngine().match(tag_entry_keywords([entry]), items) == []

    def test_refined_screenings_are_union_over_entries(self, items):
        imax = make_entry("imax", titles=["Dune"], features=["imax"], entry_id=1)
        three_d = make_entry("3d", titles=["Dune"], features=["3d"], entry_id=2)

        results = MatchEngine().match(tag_entry_keywords([imax, three_d]), items)

        assert len(results[0].item.screenings) == 2
        assert results[0].entry_ids == [1, 2]

    def test_entries_admitting_nothing_are_dropped(self, items):
        plain = make_entry("dune", titles=["Dune"], entry_id=1)
        atmos = make_entry("atmos", titles=["Dune"], features=["atmos"], entry_id=2)

        results = MatchEngine().match(tag_entry_keywords([plain, atmos]), items)

        assert results[0].entry_ids == [1]
        assert len(results[0].item.screenings) == 2

    def test_item_without_screenings_never_matches(self):
        empty = make_item("dune-2", "Dune: Part Two").with_screenings([])
        assert MatchEngine().match([tagged("Dune")], [empty]) == []

    def test_input_items_are_not_mutated(self, items):
        entry = make_entry("dune imax", titles=["Dune"], features=["imax"])
        MatchEngine().match(tag_entry_keywords([entry]), items)
        assert len(items[0].screenings) == 2

    def test_deterministic(self, items):
        keywords = [tagged("dune"), tagged("ov", KeywordType.FEATURE), tagged("Barbie")]
        first = MatchEngine().match(keywords, items)
        second = MatchEngine().match(keywords, items)

        assert [(r.item.item_id, r.keywords) for r in first] == [
            (r.item.item_id, r.keywords) for r in second
        ]

    def test_earliest_screening(self, items):
        result = MatchEngine().match([tagged("dune")], items)[0]
        assert result.earliest_screening.auditorium == "IMAX"


class TestBroadcastResults:
    def test_every_item_with_screenings(self, items):
        empty = make_item("empty", "Empty").with_screenings([])
        results = build_broadcast_results(items + [empty])

        assert [r.item.item_id for r in results] == ["dune-2", "oppenheimer", "barbie"]
        assert all(r.keywords == [] for r in results)


class TestTagEntryKeywords:
    def test_preserves_entry_and_keyword_order(self):
        first = make_entry("a", titles=["Dune"], features=["imax"], entry_id=1)
        second = make_entry("b", titles=["Barbie"], entry_id=2)

        tags = tag_entry_keywords([first, second])

        assert [(t.entry_name, t.value) for t in tags] == [
            ("a", "Dune"),
            ("a", "imax"),
            ("b", "Barbie"),
        ]
        assert tags[0].is_title and not tags[1].is_title
