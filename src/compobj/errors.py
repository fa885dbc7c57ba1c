"""Exception hierarchy shared by the compliance objects."""

from __future__ import annotations


class CompobjError(Exception):
    """Base class for every error raised by compobj."""


class IntakeError(CompobjError):
    """Raised when a rule payload cannot be decoded or validated."""


