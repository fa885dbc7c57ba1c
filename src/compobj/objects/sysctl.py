"""Linux kernel parameters: /etc/sysctl.conf persistence and live values."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, model_validator

from compobj import fsutil, sysexec
from compobj.base import ComplianceObject, ObjInfo
from compobj.operators import Op, compare, format_value, is_number
from compobj.result import ExitCode
from compobj.sysexec import CommandError

logger = logging.getLogger(__name__)

SYSCTL_CONF = "/etc/sysctl.conf"


class SysctlRule(BaseModel):
    key: str
    index: int
    op: Op = Op.EQ
    value: Any = None

    @model_validator(mode="after")
    def _validate(self) -> SysctlRule:
        if not self.key:
            raise ValueError("key is mandatory")
        if self.index < 0:
            raise ValueError("index must not be < 0")
        if self.op not in (Op.EQ, Op.GE, Op.LE):
            raise ValueError("operator must be =, >= or <=")
        if self.value is None:
            raise ValueError("value is mandatory")
        if is_number(self.value):
            if float(self.value) != int(self.value):
                raise ValueError("value must not be a float")
            self.value = int(self.value)
        elif isinstance(self.value, str):
            if self.op != Op.EQ:
                raise ValueError(f"operator {self.op} needs an integer value")
        else:
            raise ValueError("value must be a string or an integer")
        return self

    @property
    def label(self) -> str:
        return self.key if self.index == 0 else f"{self.key}[{self.index}]"


def conf_entry(line: str) -> tuple[str, list[str]] | None:
    """Parse a ``key = v1 v2`` line, None for comments and other lines."""
    if line.lstrip().startswith(("#", ";")):
        return None
    parts = line.rstrip("\n").split("=")
    if len(parts) != 2:
        return None
    return parts[0].strip(), parts[1].split()


def format_entry(key: str, values: list[str]) -> str:
    return f"{key} = {' '.join(values)}\n"


class SysctlObject(ComplianceObject):
    name = "sysctl"
    rule_model = SysctlRule
    conf_path = SYSCTL_CONF
    _need_reload = False
    info = ObjInfo(
        default_prefix="OSVC_COMP_SYSCTL_",
        example_value=[{"key": "vm.lowmem_reserve_ratio", "index": 1, "op": "=", "value": 256}],
        description=(
            "* Verify a linux kernel parameter value is on target\n"
            "* Live parameter value (sysctl executable)\n"
            "* Persistent parameter value (/etc/sysctl.conf)\n"
        ),
        form_definition="""Desc: |
  A rule to set a list of Linux kernel parameters to be set in /etc/sysctl.conf. Current values can be checked as strictly equal, superior or equal, inferior or equal to their target value. Each field in a vectored value can be tuned independently using the index key.
Css: comp48
Outputs:
  -
    Dest: compliance variable
    Type: json
    Format: list of dict
    Class: sysctl
Inputs:
  -
    Id: key
    Label: Key
    DisplayModeLabel: key
    LabelCss: action16
    Mandatory: Yes
    Type: string
    Help: The /etc/sysctl.conf parameter to check.
  -
    Id: index
    Label: Index
    DisplayModeLabel: idx
    LabelCss: action16
    Mandatory: Yes
    Default: 0
    Type: integer
    Help: The index of the field to check in a vectored value.
  -
    Id: op
    Label: Comparison operator
    DisplayModeLabel: op
    LabelCss: action16
    Mandatory: Yes
    Type: string
    Default: "="
    Candidates:
      - "="
      - ">="
      - "<="
    Help: The comparison operator to use to check the parameter current value.
  -
    Id: value
    Label: Value
    DisplayModeLabel: value
    LabelCss: action16
    Mandatory: Yes
    Type: string or integer
    Help: The /etc/sysctl.conf parameter target value.
""",
    )

    def _conf_lines(self) -> list[str]:
        path = Path(self.conf_path)
        if not path.exists():
            return []
        return path.read_text().splitlines(keepends=True)

    def conf_values(self, key: str) -> list[str] | None:
        """Values persisted for key; the last occurrence wins, as with sysctl -p."""
        values = None
        for line in self._conf_lines():
            entry = conf_entry(line)
            if entry is not None and entry[0] == key:
                values = entry[1]
        return values

    def live_values(self, key: str) -> list[str]:
        return sysexec.run(["sysctl", "-n", key], check=True).stdout.split()

    def check_rule(self, rule: SysctlRule) -> ExitCode:
        try:
            conf = self.conf_values(rule.key)
        except OSError as e:
            self.error_msg(f"can't read {self.conf_path}: {e}")
            return ExitCode.NOK
        if conf is None:
            self.verbose_error(f"sysctl {rule.key} not found in {self.conf_path}")
            return ExitCode.NOK
        if len(conf) <= rule.index:
            self.verbose_error(f"index {rule.index} is out of range for key {rule.key}")
            return ExitCode.NOK
        value = conf[rule.index]
        if not compare(value, rule.op, rule.value):
            self.verbose_error(f"sysctl {rule.label} = {value} target: {rule.op} {format_value(rule.value)}")
            return ExitCode.NOK
        self.verbose_info(f"sysctl {rule.label} = {value}, on target in {self.conf_path}")
        try:
            live = self.live_values(rule.key)
        except CommandError as e:
            self.error_msg(f"can't read live values for the key {rule.key}: {e}")
            return ExitCode.NOK
        if len(live) <= rule.index or live[rule.index] != value:
            self.verbose_error(f"sysctl {rule.label} on target in {self.conf_path} but kernel value is different")
            return ExitCode.NOK
        return ExitCode.OK

    def _patched_values(self, rule: SysctlRule, values: list[str]) -> list[str]:
        if len(values) <= rule.index:
            raise IndexError(f"can't modify the key {rule.key}: index {rule.index} out of range")
        values = list(values)
        conf_ok = compare(values[rule.index], rule.op, rule.value)
        if not conf_ok:
            values[rule.index] = format_value(rule.value)
        return values

    def update_conf(self, rule: SysctlRule) -> bool:
        """Persist the target in the conf file. Returns True when the file changed."""
        lines = self._conf_lines()
        values = self._patched_values(rule, self.live_values(rule.key))
        new_lines = []
        found = False
        for line in lines:
            entry = conf_entry(line)
            if entry is None or entry[0] != rule.key:
                new_lines.append(line)
                continue
            if found:
                self.info_msg(f"sysctl: remove redundant key {rule.key}")
                continue
            found = True
            new_lines.append(format_entry(rule.key, values))
        if not found:
            if new_lines and not new_lines[-1].endswith("\n"):
                new_lines[-1] += "\n"
            new_lines.append(format_entry(rule.key, values))
        if new_lines == lines:
            return False
        fsutil.backup(self.conf_path, self.config)
        fsutil.atomic_write(self.conf_path, "".join(new_lines))
        self.info_msg(f"setting the key {rule.key} to {format_value(rule.value)} in {self.conf_path}")
        return True

    def reload(self) -> ExitCode:
        try:
            sysexec.run(["sysctl", "-e", "-p", self.conf_path], check=True)
        except CommandError as e:
            self.error_msg(f"can't reload sysctl: {e}")
            return ExitCode.NOK
        self.info_msg("reload sysctl")
        return ExitCode.OK

    def fix_rule(self, rule: SysctlRule) -> ExitCode:
        if self.check_rule(rule) == ExitCode.OK:
            return ExitCode.OK
        try:
            self.update_conf(rule)
        except (OSError, IndexError, CommandError) as e:
            self.error_msg(f"can't modify {self.conf_path}: {e}")
            return ExitCode.NOK
        self._need_reload = True
        return ExitCode.OK

    def fix(self) -> ExitCode:
        self._need_reload = False
        result = super().fix()
        if self._need_reload:
            result = result.merge(self.reload())
        return result
