"""
Tests for raidbotdb.types — record decoding and id validation.
"""

import pytest

from raidbotdb.errors import MalformedData
from raidbotdb.types import (
    Category,
    Sound,
    check_id,
    pairs_to_dict,
    parse_id,
    parse_number,
)


class TestParsing:
    def test_parse_id(self):
        assert parse_id("42") == 42

    @pytest.mark.parametrize("bad", ["abc", "", None, "0", "-3"])
    def test_parse_id_rejects_garbage(self, bad):
        with pytest.raises(MalformedData):
            parse_id(bad)

    def test_parse_number_keeps_integers(self):
        assert parse_number("3") == 3
        assert isinstance(parse_number("3"), int)

    def test_parse_number_float(self):
        assert parse_number("2.5") == 2.5

    def test_parse_number_rejects_text(self):
        with pytest.raises(MalformedData):
            parse_number("loud")

    def test_malformed_is_value_error(self):
        with pytest.raises(ValueError):
            parse_number("loud")

    def test_pairs_to_dict(self):
        assert pairs_to_dict(["name", "Boo", "file", "boo.mp3"]) == {
            "name": "Boo", "file": "boo.mp3",
        }

    def test_pairs_to_dict_odd_length(self):
        with pytest.raises(MalformedData):
            pairs_to_dict(["name"])


class TestCheckId:
    def test_accepts_int_and_digit_string(self):
        assert check_id(7) == 7
        assert check_id("7") == 7

    @pytest.mark.parametrize("bad", [0, -1, True, 2.5, "x", "07", None])
    def test_rejects(self, bad):
        with pytest.raises(ValueError):
            check_id(bad)


class TestSound:
    def test_from_hash(self):
        s = Sound.from_hash("4", {"name": "Airhorn", "length": "3", "file": "a.mp3"})
        assert s == Sound(id=4, name="Airhorn", length=3, file="a.mp3", owner=None)

    def test_from_hash_with_owner(self):
        s = Sound.from_hash(
            "4", {"name": "A", "length": "1.5", "file": "a", "owner": "u1"},
        )
        assert s.owner == "u1"
        assert s.length == 1.5

    def test_from_hash_missing_field(self):
        with pytest.raises(MalformedData, match="file"):
            Sound.from_hash("4", {"name": "A", "length": "1"})

    def test_roundtrip_dict(self):
        s = Sound(id=1, name="Boo", length=2, file="boo.mp3", owner="u")
        assert Sound.from_dict(s.to_dict()) == s

    def test_from_dict_missing_field(self):
        with pytest.raises(MalformedData):
            Sound.from_dict({"id": 1, "name": "Boo"})


class TestCategory:
    def test_from_reply(self):
        assert Category.from_reply(["3", "Memes", 2]) == Category(3, "Memes", 2)

    def test_from_reply_without_name(self):
        with pytest.raises(MalformedData):
            Category.from_reply(["3", "", 0])

    def test_from_reply_wrong_shape(self):
        with pytest.raises(MalformedData):
            Category.from_reply(["3", "Memes"])
