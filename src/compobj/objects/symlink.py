"""Symbolic link existence and target."""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, model_validator

from compobj.base import ComplianceObject, ObjInfo
from compobj.result import ExitCode


class SymlinkRule(BaseModel):
    symlink: str
    target: str

    @model_validator(mode="after")
    def _validate(self) -> SymlinkRule:
        if not self.symlink:
            raise ValueError("symlink is mandatory")
        if not self.target:
            raise ValueError("target is mandatory")
        return self


class SymlinkObject(ComplianceObject):
    name = "symlink"
    rule_model = SymlinkRule
    info = ObjInfo(
        default_prefix="OSVC_COMP_SYMLINK_",
        example_value={"symlink": "/tmp/foo", "target": "/tmp/bar"},
        description="* Verify symlink's existence.\n* The collector provides the format with wildcards.\n",
        form_definition="""Desc: |
  A symfile rule, fed to the 'symlink' compliance object to create a Unix symbolic link.
Css: comp48
Outputs:
  -
    Dest: compliance variable
    Class: symlink
    Type: json
    Format: dict
Inputs:
  -
    Id: symlink
    Label: Symlink path
    DisplayModeLabel: symlink
    LabelCss: hd16
    Mandatory: Yes
    Help: The full path of the symbolic link to check.
    Type: string
  -
    Id: target
    Label: Target path
    DisplayModeLabel: target
    LabelCss: hd16
    Mandatory: Yes
    Help: The full path of the target file pointed by this symbolic link.
    Type: string
""",
    )

    def check_rule(self, rule: SymlinkRule) -> ExitCode:
        path = Path(rule.symlink)
        if not path.is_symlink():
            if path.exists():
                self.verbose_error(f"{rule.symlink} exists and is not a symlink")
            else:
                self.verbose_error(f"symlink {rule.symlink} does not exist")
            return ExitCode.NOK
        current = os.readlink(path)
        if current != rule.target:
            self.verbose_error(f"symlink {rule.symlink} points to {current}, should point to {rule.target}")
            return ExitCode.NOK
        self.verbose_info(f"symlink {rule.symlink} -> {rule.target}")
        return ExitCode.OK

    def fix_rule(self, rule: SymlinkRule) -> ExitCode:
        if self.check_rule(rule) == ExitCode.OK:
            return ExitCode.OK
        path = Path(rule.symlink)
        if path.exists() and not path.is_symlink():
            self.error_msg(f"cowardly refusing to replace {rule.symlink}: not a symlink")
            return ExitCode.NOK
        try:
            if path.is_symlink():
                path.unlink()
                self.info_msg(f"removed symlink {rule.symlink}")
            path.parent.mkdir(parents=True, exist_ok=True)
            os.symlink(rule.target, path)
        except OSError as e:
            self.error_msg(f"symlink {rule.target} {rule.symlink}: {e}")
            return ExitCode.NOK
        self.info_msg(f"symlink {rule.symlink} -> {rule.target} created")
        return ExitCode.OK
