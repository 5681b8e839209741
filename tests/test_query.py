"""
Tests for raidbotdb.query — name normalization and search patterns.
"""

import pytest

from raidbotdb.query import escape_glob, normalize_name, search_pattern


class TestNormalizeName:
    def test_lowercases(self):
        assert normalize_name("AirHorn") == "airhorn"

    def test_keeps_inner_spaces(self):
        assert normalize_name("Air Horn") == "air horn"

    @pytest.mark.parametrize("bad", ["", "   ", None, 3])
    def test_rejects_empty(self, bad):
        with pytest.raises(ValueError):
            normalize_name(bad)


class TestSearchPattern:
    def test_single_segment(self):
        assert search_pattern("Boo") == "*boo*"

    def test_spaces_become_wildcards(self):
        assert search_pattern("air horn") == "*air*horn*"

    def test_repeated_whitespace_collapses(self):
        assert search_pattern("  air \t horn ") == "*air*horn*"

    def test_empty_query_matches_all(self):
        assert search_pattern("") == "*"
        assert search_pattern("   ") == "*"

    def test_glob_characters_are_escaped(self):
        assert search_pattern("what?") == "*what\\?*"
        assert search_pattern("[x]*") == "*\\[x\\]\\**"

    def test_escape_backslash(self):
        assert escape_glob("a\\b") == "a\\\\b"
