"""Supplementary group membership of local users."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field

from compobj import osdb, sysexec
from compobj.base import ComplianceObject, ObjInfo, validate_rule
from compobj.errors import IntakeError
from compobj.objects.group import split_name
from compobj.result import ExitCode
from compobj.sysexec import CommandError

logger = logging.getLogger(__name__)


class MembershipSpec(BaseModel):
    members: list[str] = Field(default_factory=list)


class MembershipRule(BaseModel):
    group: str
    members: list[str] = Field(default_factory=list)

    def wanted(self) -> list[tuple[str, bool]]:
        """(user, absent) pairs, in declaration order."""
        return [split_name(member) for member in self.members]


class GroupMembershipObject(ComplianceObject):
    name = "groupmembership"
    rule_model = MembershipSpec
    info = ObjInfo(
        default_prefix="OSVC_COMP_GROUPMEMBERSHIP_",
        example_value={"tibco": {"members": ["tibco", "-tibco1"]}, "tibco1": {"members": ["tibco1"]}},
        description=(
            "* Verify a local system group configuration\n"
            "* A minus (-) prefix to the user name indicates the user should not be a member of the group\n"
        ),
        form_definition="""Desc: |
  A rule defining a list of Unix groups and their user membership. The referenced users and groups must exist.
Css: comp48
Outputs:
  -
    Dest: compliance variable
    Type: json
    Format: dict of dict
    Key: group
    EmbedKey: No
    Class: group_membership
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
    Id: members
    Label: Group members
    DisplayModeLabel: members
    LabelCss: guy16
    Type: list of string
    Help: A comma-separed list of Unix user names members of this group.
""",
    )

    # -- intake -------------------------------------------------------------

    def parse_payload(self, data: Any) -> list[MembershipRule]:
        if not isinstance(data, dict):
            raise IntakeError("a dict of group name to membership is expected")
        rules = []
        for group, value in data.items():
            if not group:
                raise IntakeError("group name should not be empty")
            spec = validate_rule(MembershipSpec, value if value is not None else {})
            if any(not split_name(member)[0] for member in spec.members):
                raise IntakeError(f"empty member name in the group {group}")
            rules.append(MembershipRule(group=group, members=spec.members))
        return rules

    def add_rule(self, rule: MembershipRule) -> None:
        for existing in self.rules:
            if existing.group != rule.group:
                continue
            known = {name for name, _ in existing.wanted()}
            for member in rule.members:
                if split_name(member)[0] not in known:
                    existing.members.append(member)
            return
        self.rules.append(rule)

    # -- system -------------------------------------------------------------

    def group_members(self, group: str) -> list[str] | None:
        entry = osdb.getent_group(group)
        if entry is None:
            return None
        return entry.members

    def user_exists(self, user: str) -> bool:
        return osdb.getent("passwd", user) is not None

    # -- convergence --------------------------------------------------------

    def check_member(self, group: str, members: list[str], user: str, absent: bool) -> ExitCode:
        primary = osdb.primary_group(user)
        if primary == group:
            if absent:
                self.verbose_error(f"user {user} has the group {group} as primary group and should not be present in the group")
                return ExitCode.NOK
            self.verbose_info(f"user {user} has the group {group} as primary group and should be present in the group")
            return ExitCode.OK
        if user in members:
            if absent:
                self.verbose_error(f"user {user} is present in the group {group} and should not be present")
                return ExitCode.NOK
            self.verbose_info(f"user {user} is present in the group {group} and should be present")
            return ExitCode.OK
        if absent:
            self.verbose_info(f"user {user} is not present in the group {group} and should not be present")
            return ExitCode.OK
        self.verbose_error(f"user {user} is not present in the group {group} and should be present")
        return ExitCode.NOK

    def _prepare(self, rule: MembershipRule) -> list[str] | None | ExitCode:
        """Current members, or an ExitCode when the rule can't proceed."""
        members = self.group_members(rule.group)
        if members is None:
            self.verbose_info(f"group {rule.group} does not exist, skip membership check")
            return ExitCode.OK
        missing = [user for user, _ in rule.wanted() if not self.user_exists(user)]
        for user in missing:
            self.error_msg(f"user {user} is missing in the os")
        if missing:
            return ExitCode.NOK
        return members

    def check_rule(self, rule: MembershipRule) -> ExitCode:
        try:
            members = self._prepare(rule)
            if isinstance(members, ExitCode):
                return members
            result = ExitCode.OK
            for user, absent in rule.wanted():
                result = result.merge(self.check_member(rule.group, members, user, absent))
        except CommandError as e:
            self.error_msg(f"{rule.group}: {e}")
            return ExitCode.NOK
        return result

    def fix_member(self, group: str, user: str, absent: bool) -> ExitCode:
        try:
            if not absent:
                sysexec.run(["usermod", "-a", "-G", group, user], check=True)
                self.info_msg(f"adding the user {user} to the group {group}")
                return ExitCode.OK
            if osdb.primary_group(user) == group:
                self.error_msg(
                    f"user {user} has the group {group} as primary group, "
                    "cowardly refusing to remove the user from its primary group"
                )
                return ExitCode.NOK
            sysexec.run(["gpasswd", "-d", user, group], check=True)
            self.info_msg(f"removing the user {user} from the group {group}")
        except CommandError as e:
            self.error_msg(f"{group}: {e}")
            return ExitCode.NOK
        return ExitCode.OK

    def fix_rule(self, rule: MembershipRule) -> ExitCode:
        try:
            members = self._prepare(rule)
            if isinstance(members, ExitCode):
                return members
            result = ExitCode.OK
            for user, absent in rule.wanted():
                if self.check_member(rule.group, members, user, absent) == ExitCode.NOK:
                    result = result.merge(self.fix_member(rule.group, user, absent))
        except CommandError as e:
            self.error_msg(f"{rule.group}: {e}")
            return ExitCode.NOK
        return result
