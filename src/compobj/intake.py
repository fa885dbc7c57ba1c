"""Rule intake from the process environment."""

from __future__ import annotations

import logging
import re
import sys
from collections.abc import Mapping

from compobj.base import ComplianceObject
from compobj.errors import IntakeError

logger = logging.getLogger(__name__)

VAR_NAME_PREFIX = "OSVC_COMP_"

_RE_ENV_WILDCARD = re.compile(r"%%ENV:([A-Z_][A-Z0-9_]*)%%")


def subst(text: str, environ: Mapping[str, str], hostname: str) -> str:
    """Expand %%HOSTNAME%%, %%SHORT_HOSTNAME%% and %%ENV:NAME%% wildcards."""
    text = text.replace("%%HOSTNAME%%", hostname)
    text = text.replace("%%SHORT_HOSTNAME%%", hostname.split(".")[0])

    def _env(match: re.Match[str]) -> str:
        name = match.group(1)
        if not name.startswith("OSVC_"):
            name = VAR_NAME_PREFIX + name
        return environ.get(name, "")

    return _RE_ENV_WILDCARD.sub(_env, text)


def load_rules(obj: ComplianceObject, prefix: str, environ: Mapping[str, str]) -> int:
    """Feed every environment payload under prefix to obj. Returns the count accepted."""
    accepted = 0
    for key in sorted(environ):
        if not key.startswith(prefix):
            continue
        value = subst(environ[key], environ, obj.config.hostname)
        try:
            obj.add(value)
        except IntakeError as e:
            print(f"incompatible data: {key}: {e}", file=sys.stderr)
            logger.debug(f"rejected payload {key}={value!r}")
            continue
        accepted += 1
    obj.finalize_intake()
    return accepted
