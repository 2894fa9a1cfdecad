"""Tests for ds.splits."""

from __future__ import annotations

import pytest

from tabds.ds.splits import (
    Split,
    SplitDict,
    SplitGenerator,
    SplitInfo,
    SplitSlice,
    check_splits_exist,
    parse_split_expression,
    validate_split_name,
)
from tabds.ds.types import SplitNotFoundError


class TestSplitNames:
    def test_enum_str(self):
        assert str(Split.TRAIN) == "train"
        assert Split.VALIDATION == "validation"

    def test_custom_name_allowed(self):
        assert validate_split_name("train-extra_2") == "train-extra_2"

    def test_invalid_name(self):
        with pytest.raises(ValueError, match="Split name should match"):
            validate_split_name("train data")

    def test_generator_validates(self):
        with pytest.raises(ValueError):
            SplitGenerator("bad/name")


class TestSplitDict:
    def test_totals_and_list(self):
        sd = SplitDict()
        sd.add(SplitInfo("train", num_bytes=100, num_examples=10, shard_lengths=[10]))
        sd.add(SplitInfo("test", num_bytes=20, num_examples=2, shard_lengths=[2]))
        assert sd.total_num_examples == 12
        assert sd.total_num_bytes == 120
        restored = SplitDict.from_list(sd.to_list())
        assert list(restored) == ["train", "test"]
        assert restored["test"].shard_lengths == [2]

    def test_from_empty(self):
        assert SplitDict.from_list(None) == {}


class TestSplitExpressions:
    def test_parse_terms(self):
        slices = parse_split_expression("train[:10%] + test")
        assert slices == [SplitSlice("train", None, "10%"), SplitSlice("test", None, None)]

    def test_percent_bounds(self):
        assert SplitSlice("train", None, "10%").resolve(200) == (0, 20)
        assert SplitSlice("train", "50%", None).resolve(5) == (2, 5)

    def test_negative_bounds_wrap(self):
        assert SplitSlice("train", "-10", None).resolve(100) == (90, 100)
        assert SplitSlice("train", None, "-10%").resolve(100) == (0, 90)

    def test_bounds_are_clamped(self):
        assert SplitSlice("train", "5", "500").resolve(100) == (5, 100)
        assert SplitSlice("train", "80", "20").resolve(100) == (80, 80)

    def test_percent_out_of_range(self):
        with pytest.raises(ValueError, match="within"):
            SplitSlice("train", None, "150%").resolve(10)

    def test_mixed_bounds(self):
        with pytest.raises(ValueError, match="Cannot mix"):
            parse_split_expression("train[10:50%]")

    @pytest.mark.parametrize("expr", ["", "train[1:2:3]", "train[a:b]", "train+"])
    def test_malformed(self, expr):
        with pytest.raises(ValueError):
            parse_split_expression(expr)

    def test_unknown_split(self):
        with pytest.raises(SplitNotFoundError, match="Unknown split 'dev'"):
            check_splits_exist(parse_split_expression("train+dev"), ["train", "test"])

    def test_unknown_split_is_key_error(self):
        with pytest.raises(KeyError):
            check_splits_exist([SplitSlice("dev")], ["train"])
