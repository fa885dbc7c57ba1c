"""Agent node configuration keywords, read and written through the om CLI."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, model_validator

from compobj import sysexec
from compobj.base import ComplianceObject, ObjInfo
from compobj.context import Validity
from compobj.operators import Op, compare, describe, format_value, is_number, is_scalar
from compobj.result import ExitCode
from compobj.sysexec import CommandError

logger = logging.getLogger(__name__)

_NODECONF_OPS = (Op.EQ, Op.GE, Op.LE, Op.UNSET)


class NodeconfRule(BaseModel):
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
    def _validate(self) -> NodeconfRule:
        if not self.key:
            raise ValueError("key is mandatory")
        if self.op not in _NODECONF_OPS:
            raise ValueError("op must be in =, >=, <=, unset")
        if self.op == Op.UNSET:
            self.value = None
            return self
        if self.value is None:
            raise ValueError("value is mandatory (except if operator is unset)")
        if not is_scalar(self.value):
            raise ValueError("value must be a string or a number")
        if self.op in (Op.GE, Op.LE) and not is_number(self.value):
            raise ValueError(f"operator {self.op} needs a numeric value")
        return self


class NodeconfObject(ComplianceObject):
    name = "nodeconf"
    rule_model = NodeconfRule
    info = ObjInfo(
        default_prefix="OSVC_COMP_NODECONF_",
        example_value=[
            {"key": "node.repopkg", "op": "=", "value": "ftp://ftp.opensvc.com/opensvc"},
            {"key": "node.repocomp", "op": "=", "value": "ftp://ftp.opensvc.com/compliance"},
        ],
        description="* Verify opensvc agent configuration parameter\n",
        form_definition="""Desc: |
  A rule to set a parameter in OpenSVC node.conf configuration file. Used by the 'nodeconf' compliance object.
Css: comp48
Outputs:
  -
    Dest: compliance variable
    Type: json
    Format: list of dict
    Class: nodeconf
Inputs:
  -
    Id: key
    Label: Key
    DisplayModeLabel: key
    LabelCss: action16
    Mandatory: Yes
    Type: string
    Help: The OpenSVC node.conf parameter to check.
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
      - "unset"
    Help: The comparison operator to use to check the parameter value.
  -
    Id: value
    Label: Value
    DisplayModeLabel: value
    LabelCss: action16
    Type: string or integer
    Help: The OpenSVC node.conf parameter value to check.
""",
    )

    # -- intake -------------------------------------------------------------

    def add(self, payload: str) -> None:
        super().add(payload)
        self.filter_rules()

    def add_rule(self, rule: NodeconfRule) -> None:
        state = Validity.UNSET if rule.op == Op.UNSET else Validity.SET
        self.ctx.mark(rule.key, state)
        self.rules.append(rule)

    def filter_rules(self) -> None:
        kept = []
        for rule in self.rules:
            if not self.ctx.is_invalid(rule.key):
                kept.append(rule)
                continue
            reason = "asking for a comparison operator and unset at the same time"
            if self.ctx.blacklist_identity(rule.key, reason):
                self.error_msg(f"the key {rule.key} generates conflicts ({reason}), the key is now blacklisted")
        self.rules = kept

    def finalize_intake(self) -> None:
        self.filter_rules()

    # -- om cli -------------------------------------------------------------

    def get_value(self, key: str) -> str:
        result = sysexec.run([self.config.om_bin, "node", "get", "--kw", key], check=True)
        return result.stdout.strip()

    def set_value(self, key: str, value: str) -> None:
        sysexec.run([self.config.om_bin, "node", "set", "--kw", f"{key}={value}"], check=True)

    def unset_value(self, key: str) -> None:
        sysexec.run([self.config.om_bin, "node", "unset", "--kw", key], check=True)

    # -- convergence --------------------------------------------------------

    def check_rule(self, rule: NodeconfRule) -> ExitCode:
        try:
            current = self.get_value(rule.key)
        except CommandError as e:
            self.error_msg(f"get the value of the key {rule.key}: {e}")
            return ExitCode.NOK
        if rule.op == Op.UNSET:
            if not current:
                self.verbose_info(f"the key {rule.key} is unset and should be unset --> ok")
                return ExitCode.OK
            self.verbose_error(f"the key {rule.key} should be unset and is set (value = {current}) --> not ok")
            return ExitCode.NOK
        if not current:
            self.verbose_error(f"the key {rule.key} is unset and should not be unset --> not ok")
            return ExitCode.NOK
        if not is_number(rule.value) and rule.op != Op.EQ:
            self.verbose_error("only the unset and = operators are accepted for strings")
            return ExitCode.NOK
        msg = f"{rule.key} = {current} target: {describe(rule.op)} {format_value(rule.value)}"
        if compare(current, rule.op, rule.value):
            self.verbose_info(f"{msg} --> ok")
            return ExitCode.OK
        self.verbose_error(f"{msg} --> not ok")
        return ExitCode.NOK

    def fix_rule(self, rule: NodeconfRule) -> ExitCode:
        if self.check_rule(rule) == ExitCode.OK:
            return ExitCode.OK
        try:
            if rule.op == Op.UNSET:
                self.unset_value(rule.key)
                self.info_msg(f"unset the key {rule.key}")
            else:
                value = format_value(rule.value)
                self.set_value(rule.key, value)
                self.info_msg(f"set the key {rule.key} to {value}")
        except CommandError as e:
            self.error_msg(f"{e}")
            return ExitCode.NOK
        return ExitCode.OK
