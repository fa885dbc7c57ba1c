"""Tests for the comparison operators."""

from __future__ import annotations

import pytest

from compobj.operators import Op, any_match, compare, describe, format_value, is_number, is_scalar


class TestPredicates:
    def test_bool_is_not_a_number(self):
        assert not is_number(True)
        assert is_number(3)
        assert is_number(2.5)

    def test_scalar(self):
        assert is_scalar("x")
        assert is_scalar(1)
        assert not is_scalar([1])
        assert not is_scalar(None)


class TestFormatValue:
    @pytest.mark.parametrize("value, expected", [(22.0, "22"), (22, "22"), (1.5, "1.5"), ("yes", "yes")])
    def test_render(self, value, expected):
        assert format_value(value) == expected


class TestCompare:
    def test_numeric_equality(self):
        assert compare("22", Op.EQ, 22)
        assert compare("22.0", Op.EQ, 22)
        assert not compare("abc", Op.EQ, 22)

    def test_string_equality(self):
        assert compare("yes", Op.EQ, "yes")
        assert not compare("Yes", Op.EQ, "yes")

    def test_ordering(self):
        assert compare("30", Op.GE, 20)
        assert not compare("10", Op.GE, 20)
        assert compare("10", Op.LE, 20)
        assert not compare("abc", Op.LE, 20)

    def test_in(self):
        assert compare("no", Op.IN, ["yes", "no"])
        assert compare("2", Op.IN, [1, 2])
        assert not compare("3", Op.IN, [1, 2])

    def test_any_match(self):
        assert any_match(["no", "yes"], Op.EQ, "yes")
        assert not any_match([], Op.EQ, "yes")

    def test_describe(self):
        assert describe(Op.GE) == "greater than or equal to"
        assert describe(Op.UNSET) == "unset"
