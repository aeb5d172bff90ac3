"""
Tests for fuzzy sound search.

These tests verify that:
1. Exact and substring names rank first
2. Tags are searchable
3. Blank queries list sounds alphabetically, capped at Discord's limit
"""

from datetime import datetime, timezone
from pathlib import Path

from utils.library import SoundFile
from utils.search import MAX_CHOICES, autocomplete_search, fuzzy_search


def make_sound(name, display_name=None, tags=None) -> SoundFile:
    return SoundFile(
        name=name,
        display_name=display_name or name.replace("_", " "),
        path=Path(f"sounds/{name}.mp3"),
        size=1,
        uploaded_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        tags=tags or [],
    )


SOUNDS = [
    make_sound("airhorn"),
    make_sound("bruh", tags=["meme"]),
    make_sound("sad_trombone"),
]


class TestFuzzySearch:
    """Tests for fuzzy_search()."""

    def test_exact_name_ranks_first(self):
        results = fuzzy_search("airhorn", SOUNDS)

        assert results[0][0].name == "airhorn"
        assert results[0][1] > 100

    def test_blank_and_symbol_queries_return_nothing(self):
        assert fuzzy_search("", SOUNDS) == []
        assert fuzzy_search("!!!", SOUNDS) == []
        assert fuzzy_search("airhorn", []) == []

    def test_max_results(self):
        assert len(fuzzy_search("a", SOUNDS, max_results=2)) == 2


class TestAutocompleteSearch:
    """Tests for autocomplete_search()."""

    def test_substring_match(self):
        assert autocomplete_search("horn", SOUNDS)[0].name == "airhorn"

    def test_display_name_match(self):
        assert autocomplete_search("sad trombone", SOUNDS)[0].name == "sad_trombone"

    def test_tag_match(self):
        assert [s.name for s in autocomplete_search("meme", SOUNDS)] == ["bruh"]

    def test_unrelated_query_matches_nothing(self):
        assert autocomplete_search("xyzzy", SOUNDS) == []

    def test_blank_query_lists_first_sounds(self):
        many = [make_sound(f"sound_{i:02d}") for i in range(40)]

        results = autocomplete_search("   ", many)

        assert len(results) == MAX_CHOICES
        assert results[0].name == "sound_00"
