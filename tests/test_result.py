"""Tests for the result algebra."""

from __future__ import annotations

import itertools

import pytest

from compobj.result import ExitCode, merge_all

OK, NOK, NA = ExitCode.OK, ExitCode.NOK, ExitCode.NA


class TestMerge:
    @pytest.mark.parametrize(
        "a, b, expected",
        [
            (OK, OK, OK),
            (OK, NOK, NOK),
            (OK, NA, OK),
            (NOK, NOK, NOK),
            (NOK, NA, NOK),
            (NA, NA, NA),
        ],
    )
    def test_table(self, a: ExitCode, b: ExitCode, expected: ExitCode):
        assert a.merge(b) is expected
        assert b.merge(a) is expected

    def test_associative(self):
        for a, b, c in itertools.product(ExitCode, repeat=3):
            assert a.merge(b).merge(c) is a.merge(b.merge(c))

    def test_exit_code_values(self):
        assert [int(OK), int(NOK), int(NA)] == [0, 1, 2]


class TestMergeAll:
    def test_empty_is_ok(self):
        assert merge_all([]) is OK

    def test_nok_absorbs(self):
        assert merge_all([OK, NA, NOK, OK]) is NOK

    def test_all_na_from_na_start(self):
        assert merge_all([NA, NA], start=NA) is NA

    def test_consumes_generator(self):
        assert merge_all(code for code in (NA, OK)) is OK
