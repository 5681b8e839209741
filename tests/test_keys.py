"""
Tests for raidbotdb.keys — the Redis key layout.
"""

import pytest

from raidbotdb.keys import KeyLayout


class TestKeyLayout:
    def test_default_layout(self):
        k = KeyLayout()
        assert k.sound_counter == "sounds:id"
        assert k.category_counter == "categories:id"
        assert k.sounds == "sounds"
        assert k.categories == "categories"
        assert k.sound(5) == "sounds:5"
        assert k.category_name(2) == "categories:2:name"
        assert k.category_members(2) == "categories:2:members"
        assert k.sound_categories(5) == "sounds:5:categories"
        assert k.name_scan == "soundnames"
        assert k.name_forward("boo") == "soundnames:boo"
        assert k.name_reverse(5) == "sounds:5:name"
        assert k.joinsounds == "joinsounds"

    def test_prefix_gets_separator(self):
        assert KeyLayout("bot").sound(1) == "bot:sounds:1"
        assert KeyLayout("bot:").sound(1) == "bot:sounds:1"

    def test_counter_by_kind(self):
        k = KeyLayout()
        assert k.counter("sound") == "sounds:id"
        assert k.counter("category") == "categories:id"
        with pytest.raises(ValueError):
            k.counter("user")
