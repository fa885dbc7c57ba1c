"""Three-valued result algebra used to fold per-rule outcomes."""

from __future__ import annotations

from collections.abc import Iterable
from enum import IntEnum


class ExitCode(IntEnum):
    OK = 0
    NOK = 1
    NA = 2

    def merge(self, other: ExitCode) -> ExitCode:
        """Combine two outcomes: NOK absorbs, NA is the identity."""
        if self is ExitCode.NOK or other is ExitCode.NOK:
            return ExitCode.NOK
        if self is ExitCode.NA:
            return ExitCode(other)
        if other is ExitCode.NA:
            return self
        return ExitCode.OK


def merge_all(codes: Iterable[ExitCode], start: ExitCode = ExitCode.OK) -> ExitCode:
    result = start
    for code in codes:
        result = result.merge(code)
    return result
