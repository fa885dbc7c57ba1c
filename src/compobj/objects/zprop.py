"""ZFS dataset and pool properties, read and set through the zfs/zpool CLIs."""

from __future__ import annotations

import logging
from typing import Any, ClassVar

from pydantic import BaseModel, model_validator

from compobj import sysexec
from compobj.base import ComplianceObject, ObjInfo
from compobj.operators import Op, compare, format_value, is_number
from compobj.result import ExitCode
from compobj.sysexec import CommandError

logger = logging.getLogger(__name__)

UNSET_VALUE = "-"


class ZpropRule(BaseModel):
    name: str
    prop: str
    op: Op = Op.EQ
    value: Any = None

    @model_validator(mode="after")
    def _validate(self) -> ZpropRule:
        if not self.name:
            raise ValueError("name is mandatory")
        if not self.prop:
            raise ValueError("prop is mandatory")
        if self.op not in (Op.EQ, Op.GE, Op.LE):
            raise ValueError("op must be =, >= or <=")
        if self.value is None:
            raise ValueError("value is mandatory")
        if not isinstance(self.value, str) and not is_number(self.value):
            raise ValueError("value must be a string or a number")
        if isinstance(self.value, str) and self.op != Op.EQ:
            raise ValueError("op must be = when value is a string")
        return self


class ZpropObject(ComplianceObject):
    """Generic property convergence; subclasses pick the binary."""

    rule_model = ZpropRule
    binary: ClassVar[str] = ""
    kind: ClassVar[str] = ""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._bin: str | None = None

    def begin_pass(self) -> None:
        self._bin = sysexec.which(self.binary)
        if self._bin is None:
            self.error_msg(f"{self.binary} not found")

    def get_prop(self, rule: ZpropRule) -> str:
        args = [self._bin or self.binary, "get", "-Hp", "-o", "value", rule.prop, rule.name]
        return sysexec.run(args, check=True).stdout.strip("\n")

    def set_prop(self, rule: ZpropRule) -> None:
        args = [self._bin or self.binary, "set", f"{rule.prop}={format_value(rule.value)}", rule.name]
        sysexec.run(args, check=True)

    def check_rule(self, rule: ZpropRule) -> ExitCode:
        if self._bin is None:
            return ExitCode.NOK
        target = format_value(rule.value)
        try:
            current = self.get_prop(rule)
        except CommandError as e:
            self.error_msg(f"{self.kind} {rule.name}: {e}")
            return ExitCode.NOK
        if current == UNSET_VALUE and not (rule.op == Op.EQ and target == UNSET_VALUE):
            self.verbose_error(f"property {rule.prop} current value is not {rule.op} {target} (the value is not set)")
            return ExitCode.NOK
        if compare(current, rule.op, rule.value):
            self.verbose_info(f"property {rule.prop} current value {current} is {rule.op} {target}, on target")
            return ExitCode.OK
        self.verbose_error(f"property {rule.prop} current value {current} is not {rule.op} {target}")
        return ExitCode.NOK

    def fix_rule(self, rule: ZpropRule) -> ExitCode:
        if self._bin is None:
            return ExitCode.NOK
        if self.check_rule(rule) == ExitCode.OK:
            return ExitCode.OK
        try:
            self.set_prop(rule)
        except CommandError as e:
            self.error_msg(f"{self.kind} {rule.name}: {e}")
            return ExitCode.NOK
        self.info_msg(f"set the property {rule.prop} of the {self.kind} {rule.name} to {format_value(rule.value)}")
        return ExitCode.OK


_FORM = """Desc: |
  A rule to set a list of {kind} properties.
Css: comp48
Outputs:
  -
    Dest: compliance variable
    Type: json
    Format: list of dict
    Class: {cls}
Inputs:
  -
    Id: name
    Label: {label}
    DisplayModeLabel: name
    LabelCss: hd16
    Mandatory: Yes
    Type: string
    Help: The {kind} name whose property to check.
  -
    Id: prop
    Label: Property
    DisplayModeLabel: property
    LabelCss: action16
    Mandatory: Yes
    Type: string
    Help: The {kind} property to check.
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
    Help: The comparison operator to use to check the property current value. Only = is allowed with string values.
  -
    Id: value
    Label: Value
    DisplayModeLabel: value
    LabelCss: action16
    Mandatory: Yes
    Type: string or integer
    Help: The {kind} property target value.
"""


class ZfsObject(ZpropObject):
    name = "zfs"
    binary = "zfs"
    kind = "dataset"
    info = ObjInfo(
        default_prefix="OSVC_COMP_ZFS_",
        example_value=[
            {"name": "rpool/swap", "prop": "aclmode", "op": "=", "value": "discard"},
            {"name": "rpool/swap", "prop": "copies", "op": ">=", "value": 1},
        ],
        description=(
            "* Check the zfs dataset properties values against their target and operator\n"
            "* In the 'fix' the zfs dataset property is set.\n"
        ),
        form_definition=_FORM.format(kind="zfs dataset", cls="zfs dataset", label="Dataset Name"),
    )


class ZpoolObject(ZpropObject):
    name = "zpool"
    binary = "zpool"
    kind = "pool"
    info = ObjInfo(
        default_prefix="OSVC_COMP_ZPOOL_",
        example_value=[
            {"name": "rpool", "prop": "failmode", "op": "=", "value": "continue"},
            {"name": "rpool", "prop": "dedupditto", "op": "<=", "value": 1},
        ],
        description=(
            "* Check the zpool properties values against their target and operator\n"
            "* In the 'fix' the zpool property is set.\n"
        ),
        form_definition=_FORM.format(kind="zpool", cls="zpool", label="Pool Name"),
    )
