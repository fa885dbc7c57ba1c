"""Tests for RuleContext."""

from __future__ import annotations

from compobj.context import RuleContext, Validity


class TestMark:
    def test_same_state_is_kept(self):
        ctx = RuleContext()
        assert ctx.mark("k", Validity.SET) is Validity.SET
        assert ctx.mark("k", Validity.SET) is Validity.SET
        assert not ctx.is_invalid("k")

    def test_set_and_unset_is_invalid_in_any_order(self):
        a, b = RuleContext(), RuleContext()
        a.mark("k", Validity.SET)
        a.mark("k", Validity.UNSET)
        b.mark("k", Validity.UNSET)
        b.mark("k", Validity.SET)
        assert a.is_invalid("k")
        assert b.is_invalid("k")

    def test_invalid_is_sticky(self):
        ctx = RuleContext()
        ctx.mark("k", Validity.SET)
        ctx.mark("k", Validity.UNSET)
        assert ctx.mark("k", Validity.SET) is Validity.INVALID


class TestBlacklist:
    def test_first_blacklist_only(self):
        ctx = RuleContext()
        assert ctx.blacklist_identity(("/etc/f", "k"), "conflict") is True
        assert ctx.blacklist_identity(("/etc/f", "k"), "conflict") is False
        assert list(ctx.blacklist) == [("/etc/f", "k")]


class TestResetCounters:
    def test_count_only_declared(self):
        ctx = RuleContext()
        ctx.count("k")
        assert ctx.desired_count("k") == 0
        assert not ctx.has_reset("k")

        ctx.declare_reset("k")
        ctx.count("k")
        ctx.count("k")
        assert ctx.desired_count("k") == 2

    def test_rewind(self):
        ctx = RuleContext()
        ctx.declare_reset("k")
        ctx.count("k")
        ctx.rewind_counters()
        assert ctx.desired_count("k") == 0
        assert ctx.has_reset("k")
