"""Keys in "KEY VALUE" formatted configuration files (sshd_config, ntp.conf, ...).

A file may hold the same key several times. Comparison rules pass when at
least one current value matches; fixing an unmatched comparison appends a
new line. The ``reset`` operator bounds the number of lines for a key to the
number of value rules declared for it, rewriting the surviving lines with
those values in declaration order.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator

from compobj import fsutil
from compobj.base import ComplianceObject, ObjInfo, validate_rule
from compobj.context import Validity
from compobj.operators import COMPARISONS, Op, any_match, describe, format_value, is_number, is_scalar
from compobj.result import ExitCode

logger = logging.getLogger(__name__)

_RE_KEY_VALUE = re.compile(r"(\S+)\s+(.*)$")


class KeyvalKey(BaseModel):
    key: str
    op: Op = Op.EQ
    value: Any = None

    @model_validator(mode="before")
    @classmethod
    def _default_op(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("op"):
            data = {**data, "op": Op.EQ}
        return data

    @model_validator(mode="after")
    def _validate(self) -> KeyvalKey:
        if not self.key:
            raise ValueError("key is mandatory")
        if self.op in (Op.UNSET, Op.RESET):
            self.value = None
            return self
        if self.value is None:
            raise ValueError(f"value is mandatory with operator {self.op}")
        if self.op == Op.IN:
            if not isinstance(self.value, list) or not self.value:
                raise ValueError("IN operator needs a non-empty list value")
            if not all(is_scalar(item) for item in self.value):
                raise ValueError("IN list members must be strings or numbers")
            return self
        if not is_scalar(self.value):
            raise ValueError("value must be a string or a number")
        if self.op in (Op.GE, Op.LE) and not is_number(self.value):
            raise ValueError(f"operator {self.op} needs a numeric value")
        return self


class KeyvalPayload(BaseModel):
    path: str
    keys: list[KeyvalKey] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate(self) -> KeyvalPayload:
        if not self.path:
            raise ValueError("path is mandatory")
        return self


class KeyvalRule(BaseModel):
    path: str
    key: str
    op: Op
    value: Any = None

    @property
    def identity(self) -> tuple[str, str]:
        return (self.path, self.key)

    @property
    def is_value_rule(self) -> bool:
        return self.op in COMPARISONS

    def target_text(self) -> str:
        """The value written to the file when fixing this rule."""
        if self.op == Op.IN:
            return format_value(self.value[0])
        return format_value(self.value)


def line_key(line: str) -> str | None:
    """The key of a config line, None for comments and indented lines."""
    if not line.strip() or line[0].isspace() or line.startswith("#"):
        return None
    return line.split(None, 1)[0]


def parse_values(lines: Iterable[str], key: str) -> list[str]:
    """All values currently set for key, in file order."""
    values = []
    for line in lines:
        if line.startswith("#"):
            continue
        m = _RE_KEY_VALUE.match(line.rstrip("\n"))
        if m and m.group(1) == key:
            values.append(m.group(2).strip())
    return values


def read_lines(path: str | Path) -> list[str]:
    data = Path(path).read_bytes().decode("utf-8", "surrogateescape")
    return data.splitlines(keepends=True)


def write_lines(path: str | Path, lines: list[str]) -> None:
    fsutil.atomic_write(path, "".join(lines).encode("utf-8", "surrogateescape"))


class KeyvalObject(ComplianceObject):
    name = "keyval"
    rule_model = KeyvalPayload
    info = ObjInfo(
        default_prefix="OSVC_COMP_KEYVAL_",
        example_value={
            "path": "/etc/ssh/sshd_config",
            "keys": [
                {"key": "PermitRootLogin", "op": "=", "value": "yes"},
                {"key": "PermitRootLogin", "op": "reset", "value": ""},
            ],
        },
        description=(
            '* Setup and verify keys in "key value" formatted configuration file.\n'
            "* Example files: sshd_config, ssh_config, ntp.conf, ...\n"
        ),
        form_definition="""Desc: |
  A rule to set a list of parameters in simple keyword/value configuration file format. Current values can be checked as set or unset, or superior/inferior to their target value. By default, this object appends keyword/values not found, potentially creating duplicates. The 'reset' operator can be used to avoid such duplicates.
Outputs:
  -
    Dest: compliance variable
    Type: json
    Format: dict
    Class: keyval
Inputs:
  -
    Id: path
    Label: Path
    DisplayModeLabel: path
    LabelCss: hd16
    Mandatory: Yes
    Type: string
    Help: The path of the configuration file to edit.
  -
    Id: keys
    Label: Keys
    DisplayModeLabel: keys
    LabelCss: action16
    Mandatory: Yes
    Type: list of dict
    Help: A list of {key, op, value} dicts. op is one of reset, unset, =, >=, <=, IN and defaults to =. The IN operator verifies the current value is one of the target list member; on fix, it sets the first member. Insert a key reset after the last key set to mark any additional occurrence found in the file to be removed.
""",
    )

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._missing: set[str] = set()

    # -- intake -------------------------------------------------------------

    def parse_payload(self, data: Any) -> list[Any]:
        payload = validate_rule(KeyvalPayload, data)
        return [
            KeyvalRule(path=payload.path, key=k.key, op=k.op, value=k.value)
            for k in payload.keys
        ]

    def add(self, payload: str) -> None:
        super().add(payload)
        self.filter_rules()

    def add_rule(self, rule: KeyvalRule) -> None:
        if rule.op == Op.RESET:
            self.ctx.declare_reset(rule.identity)
        elif rule.op == Op.UNSET:
            self.ctx.mark(rule.identity, Validity.UNSET)
        else:
            self.ctx.mark(rule.identity, Validity.SET)
        self.rules.append(rule)

    def filter_rules(self) -> None:
        """Drop every rule of a key asked both unset and compared."""
        kept = []
        for rule in self.rules:
            if not self.ctx.is_invalid(rule.identity):
                kept.append(rule)
                continue
            reason = "asking for a comparison operator and unset at the same time"
            if self.ctx.blacklist_identity(rule.identity, reason):
                self.error_msg(f"{rule.path}: the key {rule.key} generates conflicts ({reason}), the key is now blacklisted")
        self.rules = kept

    def finalize_intake(self) -> None:
        self.filter_rules()

    # -- evaluation ---------------------------------------------------------

    def begin_pass(self) -> None:
        self.ctx.rewind_counters()
        self._missing = set()

    def _lines(self, path: str) -> list[str] | None:
        if path in self._missing:
            return None
        try:
            return read_lines(path)
        except FileNotFoundError:
            self.error_msg(f"the file {path} does not exist")
        except OSError as e:
            self.error_msg(f"{path}: {e}")
        self._missing.add(path)
        return None

    def check_value_rule(self, rule: KeyvalRule, lines: list[str]) -> ExitCode:
        values = parse_values(lines, rule.key)
        if rule.op == Op.UNSET:
            if values:
                self.verbose_error(f"{rule.path}: {rule.key} is set and should not be set")
                return ExitCode.NOK
            self.verbose_info(f"{rule.path}: {rule.key} is not set and should not be set")
            return ExitCode.OK
        self.ctx.count(rule.identity)
        if not values:
            self.verbose_error(f"{rule.path}: {rule.key} is unset and should be set")
            return ExitCode.NOK
        target = [format_value(v) for v in rule.value] if rule.op == Op.IN else format_value(rule.value)
        msg = f"{rule.path}: {rule.key} has the following values: {values} and one of these values should be {describe(rule.op)} {target}"
        if any_match(values, rule.op, rule.value):
            self.verbose_info(msg)
            return ExitCode.OK
        self.verbose_error(msg)
        return ExitCode.NOK

    def check_reset_rule(self, rule: KeyvalRule, lines: list[str]) -> ExitCode:
        count = len(parse_values(lines, rule.key))
        desired = self.ctx.desired_count(rule.identity)
        if count != desired:
            self.verbose_error(f"{rule.path}: {rule.key} is set {count} times, should be set {desired} times")
            return ExitCode.NOK
        self.verbose_info(f"{rule.path}: {rule.key} is set {desired} times, on target")
        return ExitCode.OK

    def check(self) -> ExitCode:
        self.verbose = True
        self.begin_pass()
        result = ExitCode.OK
        for reset_pass in (False, True):
            for rule in self.rules:
                if (rule.op == Op.RESET) is not reset_pass:
                    continue
                lines = self._lines(rule.path)
                if lines is None:
                    result = ExitCode.NOK
                    continue
                if reset_pass:
                    result = result.merge(self.check_reset_rule(rule, lines))
                else:
                    result = result.merge(self.check_value_rule(rule, lines))
        return result

    # -- remediation --------------------------------------------------------

    def fix(self) -> ExitCode:
        self.verbose = False
        self.begin_pass()
        result = ExitCode.OK
        for reset_pass in (False, True):
            for rule in self.rules:
                if (rule.op == Op.RESET) is not reset_pass:
                    continue
                lines = self._lines(rule.path)
                if lines is None:
                    result = ExitCode.NOK
                    continue
                if reset_pass:
                    result = result.merge(self.fix_reset(rule, lines))
                else:
                    result = result.merge(self.fix_value_rule(rule, lines))
        return result

    def _rewrite(self, rule: KeyvalRule, lines: list[str], action: str) -> ExitCode:
        try:
            fsutil.backup(rule.path, self.config)
            write_lines(rule.path, lines)
        except OSError as e:
            self.error_msg(f"{rule.path}: {action}: {e}")
            return ExitCode.NOK
        self.info_msg(f"{rule.path}: {action}")
        return ExitCode.OK

    def fix_value_rule(self, rule: KeyvalRule, lines: list[str]) -> ExitCode:
        if self.check_value_rule(rule, lines) == ExitCode.OK:
            return ExitCode.OK
        if rule.op == Op.UNSET:
            kept = [line for line in lines if line_key(line) != rule.key]
            return self._rewrite(rule, kept, f"unset the key {rule.key}")
        lines = list(lines)
        if lines and not lines[-1].endswith("\n"):
            lines[-1] += "\n"
        value = rule.target_text()
        lines.append(f"{rule.key} {value}\n")
        return self._rewrite(rule, lines, f"adding the key {rule.key} with value {value}")

    def fix_reset(self, rule: KeyvalRule, lines: list[str]) -> ExitCode:
        if self.check_reset_rule(rule, lines) == ExitCode.OK:
            return ExitCode.OK
        desired = self.ctx.desired_count(rule.identity)
        sources = [r for r in self.rules if r.identity == rule.identity and r.is_value_rule][:desired]
        new_lines = []
        written = 0
        for line in lines:
            if line_key(line) != rule.key:
                new_lines.append(line)
                continue
            if written < len(sources):
                new_lines.append(f"{rule.key} {sources[written].target_text()}\n")
                written += 1
        if new_lines and not new_lines[-1].endswith("\n"):
            new_lines[-1] += "\n"
        for source in sources[written:]:
            new_lines.append(f"{rule.key} {source.target_text()}\n")
        return self._rewrite(rule, new_lines, f"reset all the old values of the key {rule.key}")
