"""Local Unix groups: presence, absence and gid."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, field_validator

from compobj import osdb, sysexec
from compobj.base import ComplianceObject, ObjInfo, validate_rule
from compobj.errors import IntakeError
from compobj.osdb import GroupEntry
from compobj.result import ExitCode
from compobj.sysexec import CommandError

logger = logging.getLogger(__name__)

PROTECTED_GROUPS = frozenset({
    "root", "bin", "daemon", "sys", "adm", "tty", "disk", "lp", "mem", "kmem",
    "wheel", "mail", "news", "uucp", "man", "games", "gopher", "video", "dip",
    "ftp", "lock", "audio", "nobody", "users", "utmp", "utempter", "floppy",
    "vcsa", "cdrom", "tape", "dialout", "saslauth", "postdrop", "postfix",
    "sshd", "opensvc", "mailnull", "smmsp", "slocate", "rpc", "rpcuser",
    "nfsnobody", "tcpdump", "ntp",
})


def split_name(name: str) -> tuple[str, bool]:
    """Strip the "-" absence marker: returns (name, absent)."""
    if name.startswith("-"):
        return name[1:], True
    return name, False


class GroupSpec(BaseModel):
    gid: int | None = None

    @field_validator("gid", mode="before")
    @classmethod
    def _parse_gid(cls, value: Any) -> Any:
        if isinstance(value, str):
            if not value.strip().isdigit():
                raise ValueError(f"gid {value!r} must be an integer")
            return int(value)
        return value


class GroupRule(BaseModel):
    name: str
    absent: bool = False
    gid: int | None = None


class GroupObject(ComplianceObject):
    name = "group"
    rule_model = GroupSpec
    group_path = osdb.GROUP_PATH
    nsswitch_path = osdb.NSSWITCH_PATH
    info = ObjInfo(
        default_prefix="OSVC_COMP_GROUP_",
        example_value={"group1": {"gid": 1000}, "group2": {"gid": 2000}},
        description=(
            "* Verify a local system group configuration\n"
            "* A minus (-) prefix to the group name indicates the group should not exist\n"
        ),
        form_definition="""Desc: |
  A rule defining a list of Unix groups and their properties. Used by the groups compliance objects.
Css: comp48
Outputs:
  -
    Dest: compliance variable
    Type: json
    Format: dict of dict
    Key: group
    EmbedKey: No
    Class: group
Inputs:
  -
    Id: group
    Label: Group name
    DisplayModeLabel: group
    LabelCss: guys16
    Mandatory: Yes
    Type: string
    Help: The Unix group name.
  -
    Id: gid
    Label: Group id
    DisplayModeLabel: gid
    LabelCss: guys16
    Type: string or integer
    Help: The Unix gid of this group.
""",
    )

    # -- intake -------------------------------------------------------------

    def parse_payload(self, data: Any) -> list[GroupRule]:
        if not isinstance(data, dict):
            raise IntakeError("a dict of group name to group properties is expected")
        rules = []
        for key, value in data.items():
            name, absent = split_name(key)
            if not name:
                raise IntakeError("group name should not be empty")
            spec = validate_rule(GroupSpec, value if value is not None else {})
            if not absent and spec.gid is None:
                raise IntakeError(f"gid should be in the dict of group {name}")
            rules.append(GroupRule(name=name, absent=absent, gid=spec.gid))
        return rules

    def add_rule(self, rule: GroupRule) -> None:
        for i, existing in enumerate(self.rules):
            if existing.name != rule.name:
                continue
            if existing.absent != rule.absent:
                self.rules[i] = rule
            elif existing.gid is None:
                existing.gid = rule.gid
            return
        self.rules.append(rule)

    # -- system -------------------------------------------------------------

    def lookup(self, name: str) -> GroupEntry | None:
        if osdb.nsswitch_uses_files("group", self.nsswitch_path):
            return osdb.read_group(self.group_path).get(name)
        return osdb.getent_group(name)

    # -- convergence --------------------------------------------------------

    def check_rule(self, rule: GroupRule) -> ExitCode:
        try:
            entry = self.lookup(rule.name)
        except (OSError, CommandError) as e:
            self.error_msg(f"can't read the group database: {e}")
            return ExitCode.NOK
        if rule.absent:
            if entry is None:
                self.verbose_info(f"group {rule.name} does not exist and should not exist --> ok")
                return ExitCode.OK
            self.verbose_error(f"group {rule.name} exists and should not exist --> not ok")
            return ExitCode.NOK
        if entry is None:
            self.verbose_error(f"group {rule.name} does not exist and should exist --> not ok")
            return ExitCode.NOK
        if entry.gid != rule.gid:
            self.verbose_error(f"group {rule.name} gid = {entry.gid} target = {rule.gid} --> not ok")
            return ExitCode.NOK
        self.verbose_info(f"group {rule.name} gid = {entry.gid} --> ok")
        return ExitCode.OK

    def fix_rule(self, rule: GroupRule) -> ExitCode:
        if self.check_rule(rule) == ExitCode.OK:
            return ExitCode.OK
        if rule.absent:
            if rule.name in PROTECTED_GROUPS:
                self.error_msg(f"cowardly refusing to delete the group {rule.name}")
                return ExitCode.NOK
            args = ["groupdel", rule.name]
            action = f"delete the group {rule.name}"
        else:
            try:
                exists = self.lookup(rule.name) is not None
            except (OSError, CommandError) as e:
                self.error_msg(f"can't read the group database: {e}")
                return ExitCode.NOK
            if exists:
                args = ["groupmod", "-g", str(rule.gid), rule.name]
                action = f"set the group {rule.name} gid to {rule.gid}"
            else:
                args = ["groupadd", "-g", str(rule.gid), rule.name]
                action = f"add the group {rule.name} with gid {rule.gid}"
        try:
            sysexec.run(args, check=True)
        except CommandError as e:
            self.error_msg(f"can't {action}: {e}")
            return ExitCode.NOK
        self.info_msg(action)
        return ExitCode.OK
