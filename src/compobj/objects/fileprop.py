"""File existence, ownership and mode, without content assertion."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from compobj.base import ObjInfo, validate_rule
from compobj.objects.file import FileObject, FileRule
from compobj.result import ExitCode


class FilePropRule(BaseModel):
    path: str
    mode: int | str | None = None
    uid: int | str | None = None
    gid: int | str | None = None

    def to_file_rule(self) -> FileRule:
        return validate_rule(FileRule, self.model_dump())


class FilePropObject(FileObject):
    name = "fileprop"
    rule_model = FilePropRule
    info = ObjInfo(
        default_prefix="OSVC_COMP_FILEPROP_",
        example_value={"path": "/some/path/to/file", "mode": 640, "uid": 500, "gid": 500},
        description=(
            "* Verify file existence, mode and ownership.\n"
            "* The collector provides the format with wildcards.\n"
            "* The module replace the wildcards with contextual values.\n\n"
            "In fix() the file is created empty with the right mode & ownership.\n"
        ),
        form_definition="""Desc: |
  A fileprop rule, fed to the 'fileprop' compliance object to verify the target file ownership and permissions.
Css: comp48
Outputs:
  -
    Dest: compliance variable
    Class: fileprop
    Type: json
    Format: dict
Inputs:
  -
    Id: path
    Label: Path
    DisplayModeLabel: path
    LabelCss: action16
    Mandatory: Yes
    Help: File path to check the ownership and permissions for.
    Type: string
  -
    Id: mode
    Label: Permissions
    DisplayModeLabel: perm
    LabelCss: action16
    Help: "In octal form. Example: 644"
    Type: integer
  -
    Id: uid
    Label: Owner
    DisplayModeLabel: uid
    LabelCss: guy16
    Help: Either a user ID or a user name
    Type: string or integer
  -
    Id: gid
    Label: Owner group
    DisplayModeLabel: gid
    LabelCss: guy16
    Help: Either a group ID or a group name
    Type: string or integer
""",
    )

    def parse_payload(self, data: Any) -> list[Any]:
        items = data if isinstance(data, list) else [data]
        return [validate_rule(FilePropRule, item).to_file_rule() for item in items]

    def check_rule(self, rule: FileRule) -> ExitCode:
        if self.check_existence(rule) == ExitCode.NOK:
            return ExitCode.NOK
        return self.check_ownership(rule).merge(self.check_mode(rule))

    def fix_rule(self, rule: FileRule) -> ExitCode:
        steps = (
            (self.check_existence, self.fix_existence),
            (self.check_ownership, self.fix_ownership),
            (self.check_mode, self.fix_mode),
        )
        for check, fix in steps:
            if check(rule) == ExitCode.NOK and fix(rule) == ExitCode.NOK:
                return ExitCode.NOK
        return ExitCode.OK
