"""Auxiliary indices that span every intake call of one invocation."""

from __future__ import annotations

from collections.abc import Hashable
from dataclasses import dataclass, field
from enum import StrEnum


class Validity(StrEnum):
    SET = "set"
    UNSET = "unset"
    INVALID = "invalid"


@dataclass
class RuleContext:
    """Conflict map, reset counters and blacklist for one process run."""

    validity: dict[Hashable, Validity] = field(default_factory=dict)
    reset_counts: dict[Hashable, int] = field(default_factory=dict)
    blacklist: dict[Hashable, str] = field(default_factory=dict)

    def mark(self, identity: Hashable, state: Validity) -> Validity:
        """Record a set/unset demand; a set+unset pair turns the identity invalid."""
        current = self.validity.get(identity)
        if current is Validity.INVALID:
            return current
        if current is not None and current is not state:
            state = Validity.INVALID
        self.validity[identity] = state
        return state

    def is_invalid(self, identity: Hashable) -> bool:
        return self.validity.get(identity) is Validity.INVALID

    def blacklist_identity(self, identity: Hashable, reason: str) -> bool:
        """Return True the first time an identity is blacklisted."""
        if identity in self.blacklist:
            return False
        self.blacklist[identity] = reason
        return True

    def declare_reset(self, identity: Hashable) -> None:
        self.reset_counts[identity] = 0

    def has_reset(self, identity: Hashable) -> bool:
        return identity in self.reset_counts

    def count(self, identity: Hashable) -> None:
        if identity in self.reset_counts:
            self.reset_counts[identity] += 1

    def desired_count(self, identity: Hashable) -> int:
        return self.reset_counts.get(identity, 0)

    def rewind_counters(self) -> None:
        """Zero every reset counter before a new check or fix pass."""
        for identity in self.reset_counts:
            self.reset_counts[identity] = 0
