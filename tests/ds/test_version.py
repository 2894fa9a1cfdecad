"""Tests for ds.version."""

from __future__ import annotations

import pytest

from tabds.ds.version import Version


class TestVersion:
    def test_parts(self):
        v = Version("1.2.3", description="first release")
        assert v.tuple == (1, 2, 3)
        assert (v.major, v.minor, v.patch) == (1, 2, 3)
        assert str(v) == "1.2.3"
        assert v.description == "first release"

    def test_equal_to_string(self):
        assert Version("1.0.0") == "1.0.0"
        assert Version("1.0.0") == Version("1.0.0")
        assert Version("1.0.0") != "1.0.1"

    def test_not_equal_to_other_types(self):
        assert Version("1.0.0") != 1
        assert Version("1.0.0") != "not-a-version"

    def test_ordering_is_numeric(self):
        assert Version("1.2.0") < Version("1.10.0")
        assert Version("2.0.0") > "1.99.99"
        assert sorted([Version("0.3.0"), Version("0.1.0"), Version("0.2.5")]) == ["0.1.0", "0.2.5", "0.3.0"]

    def test_hashable(self):
        assert len({Version("1.0.0"), Version("1.0.0"), Version("2.0.0")}) == 2

    @pytest.mark.parametrize("bad", ["1.0", "v1.0.0", "1.0.0.0", "a.b.c", ""])
    def test_invalid(self, bad):
        with pytest.raises(ValueError, match="Invalid version"):
            Version(bad)

    def test_compare_with_unsupported_type(self):
        with pytest.raises(TypeError):
            Version("1.0.0") < 3
