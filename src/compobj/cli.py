"""Command line entry point: bundle management and per-object invocation."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from collections.abc import Mapping
from pathlib import Path

from compobj import __version__, registry
from compobj.base import ComplianceObject
from compobj.config import CompConfig
from compobj.context import RuleContext
from compobj.errors import IntakeError
from compobj.intake import load_rules, subst
from compobj.result import ExitCode

logger = logging.getLogger(__name__)

ACTIONS = ("check", "fix", "fixable", "info", "test")


def _usage(prog: str) -> str:
    return (
        f"Usage of {prog}:\n"
        "  <ENV VARS PREFIX> check     report system non-compliance issues with the rules pointed by <ENV VARS PREFIX>\n"
        "  <ENV VARS PREFIX> fix       fix issues reported by check\n"
        "  <ENV VARS PREFIX> fixable   report if issues are fixable\n"
        "  info                        print the compobj manifest\n"
        "  test                        run the compobj test\n"
    )


def bundle_help() -> str:
    lines = ["The compliance objects in this bundle must be called via a symlink.", "", "Bundle content:"]
    lines += [f"  {name}" for name in registry.names()]
    return "\n".join(lines) + "\n"


# -- bundle -------------------------------------------------------------------


def _symlink(target: str, link: Path) -> None:
    if link.is_symlink():
        current = os.readlink(link)
        if current == target:
            print(f"symlink {target} {link}: already exists")
            return
        print(f"remove symlink {current} {link}")
        link.unlink()
    os.symlink(target, link)
    print(f"symlink {target} {link}")


def install(install_dir: str | Path, executable: str | Path, relative: bool = False) -> None:
    """Create one symlink per registered object pointing at the executable."""
    install_dir = Path(install_dir).absolute()
    target = str(Path(executable).absolute())
    if relative:
        target = os.path.relpath(target, install_dir)
    for name in registry.names():
        _symlink(target, install_dir / name)


def bundle_main(argv: list[str]) -> ExitCode:
    parser = argparse.ArgumentParser(
        prog=registry.BUNDLE_NAME,
        description="Bundle of configuration compliance objects",
    )
    _ = parser.add_argument("-V", "--version", action="version", version=f"compobj {__version__}")
    _ = parser.add_argument(
        "-i",
        "--install",
        metavar="DIR",
        help="install bundled compliance objects as symlinks in a directory",
    )
    _ = parser.add_argument(
        "-r",
        "--relative",
        action="store_true",
        help="use relative path for the target of the symlinks",
    )
    _ = parser.add_argument("-l", "--list", action="store_true", help="list the bundle content")
    args = parser.parse_args(argv[1:])

    if args.install:
        try:
            install(args.install, argv[0], relative=args.relative)
        except OSError as e:
            print(f"install: {e}", file=sys.stderr)
            return ExitCode.NOK
        return ExitCode.OK
    if args.list:
        print(bundle_help(), end="")
        return ExitCode.OK
    print(bundle_help(), file=sys.stderr)
    parser.print_help(sys.stderr)
    return ExitCode.OK


# -- object -------------------------------------------------------------------


def run_test(obj: ComplianceObject, environ: Mapping[str, str]) -> ExitCode:
    """Feed the object its own example rule, wildcards expanded, and run a check."""
    print(json.dumps({"example_value": obj.info.example_value, "example_env": obj.info.example_env}, indent=4))
    try:
        obj.add(subst(json.dumps(obj.info.example_value), environ, obj.config.hostname))
    except IntakeError as e:
        print(f"incompatible data: {e}", file=sys.stderr)
        return ExitCode.NOK
    obj.finalize_intake()
    return obj.check()


def object_main(argv: list[str], environ: Mapping[str, str], config: CompConfig) -> ExitCode:
    name = os.path.basename(argv[0])
    cls = registry.lookup(name)
    if cls is None:
        print(f"{name}: compliance object not found", file=sys.stderr)
        return ExitCode.NOK

    if len(argv) == 2:
        prefix, action = "", argv[1]
    elif len(argv) == 3:
        prefix, action = argv[1], argv[2]
    else:
        print(_usage(name), file=sys.stderr, end="")
        return ExitCode.NOK

    obj = cls(ctx=RuleContext(), config=config)
    if action == "info":
        print(obj.info.markdown())
        return ExitCode.OK
    if action == "test":
        return run_test(obj, environ)
    if action not in ACTIONS:
        print(f"invalid action: {action}", file=sys.stderr)
        return ExitCode.NOK

    count = load_rules(obj, prefix or obj.info.default_prefix, environ)
    logger.debug(f"{name}: {count} payloads accepted, {len(obj.rules)} rules")
    if action == "check":
        return obj.check()
    if action == "fix":
        return obj.fix()
    return obj.fixable()


def main(argv: list[str] | None = None) -> None:
    argv = list(sys.argv if argv is None else argv)
    config = CompConfig.from_env()
    logging.basicConfig(
        stream=sys.stderr,
        level=config.log_level,
        format="%(levelname)s %(name)s: %(message)s",
    )
    if os.path.basename(argv[0]) == registry.BUNDLE_NAME:
        code = bundle_main(argv)
    else:
        code = object_main(argv, os.environ, config)
    sys.exit(int(code))
