"""External command wrapper.

Every call to an OS tool goes through run(), which is the single mock target
in tests.
"""

from __future__ import annotations

import logging
import shutil
import subprocess

from compobj.errors import CompobjError

logger = logging.getLogger(__name__)


class CommandError(CompobjError):
    """Raised when an external command cannot run or exits in error."""

    def __init__(self, message: str, returncode: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


def run(
    args: list[str],
    *,
    input: str | None = None,
    check: bool = False,
    timeout: float | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run a command and capture its text output.

    A missing binary always raises CommandError. With check=True a non-zero
    exit status raises CommandError too.
    """
    logger.debug(f"exec: {' '.join(args)}")
    try:
        result = subprocess.run(
            args,
            input=input,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError:
        raise CommandError(f"{args[0]}: command not found")
    except subprocess.TimeoutExpired:
        raise CommandError(f"{args[0]} timed out")
    if check and result.returncode != 0:
        stderr = result.stderr.strip()
        raise CommandError(
            f"{' '.join(args)}: exit code {result.returncode}: {stderr}",
            returncode=result.returncode,
            stderr=stderr,
        )
    return result


def which(name: str) -> str | None:
    return shutil.which(name)
