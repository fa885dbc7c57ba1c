"""Linux device-mapper multipath configuration (/etc/multipath.conf)."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, model_validator

from compobj import fsutil, mpathconf, sysexec
from compobj.base import ComplianceObject, ObjInfo
from compobj.mpathconf import MpathKey
from compobj.operators import Op, any_match, describe, format_value, is_number, is_scalar
from compobj.result import ExitCode
from compobj.sysexec import CommandError

logger = logging.getLogger(__name__)

MULTIPATH_CONF = "/etc/multipath.conf"


class MpathRule(BaseModel):
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
    def _validate(self) -> MpathRule:
        if not self.key:
            raise ValueError("key is mandatory")
        if self.op not in (Op.EQ, Op.GE, Op.LE):
            raise ValueError("op must be in =, >=, <=")
        mpath_key = mpathconf.parse_key(self.key)
        if mpath_key.presence_only:
            return self
        if self.value is None or not is_scalar(self.value):
            raise ValueError("value must be a string or a number")
        if self.op in (Op.GE, Op.LE) and not is_number(self.value):
            raise ValueError(f"operator {self.op} needs a numeric value")
        return self

    @property
    def mpath_key(self) -> MpathKey:
        return mpathconf.parse_key(self.key)


class LinuxMpathObject(ComplianceObject):
    name = "linux_mpath"
    rule_model = MpathRule
    conf_path = MULTIPATH_CONF
    _need_reconfigure = False
    info = ObjInfo(
        default_prefix="OSVC_COMP_LINUX_MPATH_",
        example_value=[
            {"key": "defaults.polling_interval", "op": ">=", "value": 20},
            {"key": "devices.device.{HP}.{HSV210}.path_grouping_policy", "op": "=", "value": "group_by_prio"},
            {"key": "blacklist.wwid", "value": 600600000001},
        ],
        description=(
            "* Setup and verify the Linux native multipath configuration\n"
            "* Keys address the defaults, overrides, blacklist, blacklist_exceptions,\n"
            "  devices and multipaths sections\n"
        ),
        form_definition="""Desc: |
  A rule to set a list of Linux multipath.conf parameters. Current values can be checked as equal, superior/inferior to their target value.
Outputs:
  -
    Dest: compliance variable
    Type: json
    Format: list of dict
    Class: linux_mpath
Inputs:
  -
    Id: key
    Label: Key
    DisplayModeLabel: key
    LabelCss: action16
    Mandatory: Yes
    Type: string
    Help: >
     The multipath.conf parameter to check.
     ex: defaults.polling_interval or
         devices.device.{HP}.{HSV210}.path_grouping_policy or
         multipaths.multipath.{6006000000000000}.path_grouping_policy or
         blacklist.wwid or
         blacklist.device.{HP}.{HSV210}
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
    Help: The comparison operator to use to check the parameter value.
  -
    Id: value
    Label: Value
    DisplayModeLabel: value
    LabelCss: action16
    Mandatory: Yes
    Type: string or integer
    Help: The multipath.conf parameter value to check.
""",
    )

    def read_conf(self) -> str:
        path = Path(self.conf_path)
        if not path.exists():
            return ""
        return path.read_text()

    def check_rule(self, rule: MpathRule) -> ExitCode:
        try:
            root = mpathconf.parse(self.read_conf())
        except OSError as e:
            self.error_msg(f"can't read {self.conf_path}: {e}")
            return ExitCode.NOK
        key = rule.mpath_key
        if key.presence_only:
            _, target = key.locate(root)
            if target is None:
                self.verbose_error(f"{rule.key} is not declared --> not ok")
                return ExitCode.NOK
            self.verbose_info(f"{rule.key} is declared --> ok")
            return ExitCode.OK
        values = key.values(root)
        target = format_value(rule.value)
        if not values:
            self.verbose_error(f"{rule.key} is not set, target: {describe(rule.op)} {target} --> not ok")
            return ExitCode.NOK
        msg = f"{rule.key} = {', '.join(values)}, target: {describe(rule.op)} {target}"
        if any_match(values, rule.op, rule.value):
            self.verbose_info(f"{msg} --> ok")
            return ExitCode.OK
        self.verbose_error(f"{msg} --> not ok")
        return ExitCode.NOK

    def fix_rule(self, rule: MpathRule) -> ExitCode:
        if self.check_rule(rule) == ExitCode.OK:
            return ExitCode.OK
        try:
            text = self.read_conf()
            new_text = mpathconf.apply(text, rule.mpath_key, format_value(rule.value))
            if new_text == text:
                return ExitCode.OK
            if Path(self.conf_path).exists():
                fsutil.backup(self.conf_path, self.config)
            fsutil.atomic_write(self.conf_path, new_text)
        except OSError as e:
            self.error_msg(f"can't write {self.conf_path}: {e}")
            return ExitCode.NOK
        if rule.mpath_key.presence_only:
            self.info_msg(f"{rule.key} declared in {self.conf_path}")
        else:
            self.info_msg(f"{rule.key} set to {format_value(rule.value)} in {self.conf_path}")
        self._need_reconfigure = True
        return ExitCode.OK

    def reconfigure(self) -> ExitCode:
        """Ask a running multipathd to reload its configuration."""
        try:
            if sysexec.run(["pgrep", "multipathd"]).returncode != 0:
                logger.debug("multipathd is not running, skip reconfigure")
                return ExitCode.OK
            sysexec.run(["multipathd", "reconfigure"], check=True)
        except CommandError as e:
            self.error_msg(f"multipathd reconfigure: {e}")
            return ExitCode.NOK
        self.info_msg("multipathd reconfigured")
        return ExitCode.OK

    def fix(self) -> ExitCode:
        self._need_reconfigure = False
        result = super().fix()
        if self._need_reconfigure:
            result = result.merge(self.reconfigure())
        return result
