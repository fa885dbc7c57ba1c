"""Local Unix users: presence, ids, shell, home, gecos and password hash."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Any

from pydantic import BaseModel, field_validator

from compobj import osdb, sysexec
from compobj.base import ComplianceObject, ObjInfo, validate_rule
from compobj.errors import IntakeError
from compobj.objects.group import split_name
from compobj.osdb import PasswdEntry
from compobj.result import ExitCode
from compobj.sysexec import CommandError

logger = logging.getLogger(__name__)

SKEL_DIR = "/etc/skel"

PROTECTED_USERS = frozenset({
    "root", "bin", "daemon", "adm", "lp", "sync", "shutdown", "halt", "mail",
    "news", "uucp", "operator", "nobody", "nscd", "vcsa", "pcap", "mailnull",
    "smmsp", "sshd", "rpc", "avahi", "rpcuser", "nfsnobody", "haldaemon",
    "avahi-autoipd", "ntp", "opensvc",
})


class UserSpec(BaseModel):
    uid: int | None = None
    gid: int | None = None
    shell: str = ""
    home: str = ""
    password: str = ""
    gecos: str = ""
    check_home: str = ""

    @field_validator("uid", "gid", mode="before")
    @classmethod
    def _parse_id(cls, value: Any) -> Any:
        if isinstance(value, str):
            if not value.strip().isdigit():
                raise ValueError(f"id {value!r} must be an integer")
            return int(value)
        return value


class UserRule(UserSpec):
    name: str
    absent: bool = False

    def merge(self, other: UserRule) -> None:
        """Fold a later rule for the same user: fields already set win."""
        for field in ("uid", "gid"):
            if getattr(self, field) is None:
                setattr(self, field, getattr(other, field))
        for field in ("shell", "home", "password", "gecos"):
            if not getattr(self, field):
                setattr(self, field, getattr(other, field))
        if self.check_home != "yes":
            self.check_home = other.check_home


class UserObject(ComplianceObject):
    name = "user"
    rule_model = UserSpec
    passwd_path = osdb.PASSWD_PATH
    shadow_path = osdb.SHADOW_PATH
    nsswitch_path = osdb.NSSWITCH_PATH
    info = ObjInfo(
        default_prefix="OSVC_COMP_USER_",
        example_value={
            "tibco": {"shell": "/bin/ksh", "gecos": "agecos", "uid": 1000, "gid": 1000},
            "tibco1": {"shell": "/bin/tcsh", "uid": 1001, "gid": 1000, "home": "/home/tibco1", "check_home": "yes"},
        },
        description=(
            "* Verify a local system user configuration\n"
            "* A minus (-) prefix to the user name indicates the user should not exist\n"
        ),
        form_definition="""Desc: |
  A rule defining a list of Unix users and their properties. Used by the users and group_membership compliance objects.
Css: comp48
Outputs:
  -
    Dest: compliance variable
    Type: json
    Format: dict of dict
    Key: user
    EmbedKey: No
    Class: user
Inputs:
  -
    Id: user
    Label: User name
    DisplayModeLabel: user
    LabelCss: guy16
    Mandatory: Yes
    Type: string
    Help: The Unix user name.
  -
    Id: uid
    Label: User id
    DisplayModeLabel: uid
    LabelCss: guy16
    Mandatory: Yes
    Type: string or integer
    Help: The Unix uid of this user.
  -
    Id: gid
    Label: Group id
    DisplayModeLabel: gid
    LabelCss: guys16
    Mandatory: Yes
    Type: string or integer
    Help: The Unix primary gid of this user.
  -
    Id: shell
    Label: Login shell
    DisplayModeLabel: shell
    LabelCss: action16
    Type: string
    Help: The Unix login shell for this user.
  -
    Id: home
    Label: Home directory
    DisplayModeLabel: home
    LabelCss: action16
    Type: string
    Help: The Unix home directory full path for this user.
  -
    Id: password
    Label: Password hash
    DisplayModeLabel: pwd
    LabelCss: action16
    Type: string
    Help: The password hash for this user. It is recommanded to set it to '!!' in order to disable local password login.
  -
    Id: gecos
    Label: Gecos
    DisplayModeLabel: gecos
    LabelCss: action16
    Type: string
    Help: A free text field.
  -
    Id: check_home
    Label: Enforce home ownership
    DisplayModeLabel: home ownership
    LabelCss: action16
    Type: string
    Default: yes
    Candidates:
      - "yes"
      - "no"
    Help: Toggle to enable or disable the home directory ownership check and fix.
""",
    )

    # -- intake -------------------------------------------------------------

    def parse_payload(self, data: Any) -> list[UserRule]:
        if not isinstance(data, dict):
            raise IntakeError("a dict of user name to user properties is expected")
        rules = []
        for key, value in data.items():
            name, absent = split_name(key)
            if not name:
                raise IntakeError("user name should not be empty")
            spec = validate_rule(UserSpec, value if value is not None else {})
            if not absent:
                if spec.uid is None:
                    raise IntakeError(f"uid should be in the dict of user {name}")
                if spec.gid is None:
                    raise IntakeError(f"gid should be in the dict of user {name}")
            rules.append(UserRule(name=name, absent=absent, **spec.model_dump()))
        return rules

    def add_rule(self, rule: UserRule) -> None:
        for i, existing in enumerate(self.rules):
            if existing.name != rule.name:
                continue
            if existing.absent != rule.absent:
                self.rules[i] = rule
            else:
                existing.merge(rule)
            return
        self.rules.append(rule)

    # -- system -------------------------------------------------------------

    def lookup(self, name: str) -> PasswdEntry | None:
        if osdb.nsswitch_uses_files("passwd", self.nsswitch_path):
            return osdb.read_passwd(self.passwd_path).get(name)
        return osdb.getent_passwd(name)

    def password_hash(self, name: str) -> str | None:
        entry = osdb.read_shadow(self.shadow_path).get(name)
        return entry.hash if entry is not None else None

    # -- checks -------------------------------------------------------------

    def _compare(self, rule: UserRule, label: str, current: Any, target: Any) -> ExitCode:
        if current == target:
            self.verbose_info(f"user {rule.name} {label} = {current} --> ok")
            return ExitCode.OK
        self.verbose_error(f"user {rule.name} {label} = {current} target = {target} --> not ok")
        return ExitCode.NOK

    def check_uid(self, rule: UserRule, entry: PasswdEntry) -> ExitCode:
        return self._compare(rule, "uid", entry.uid, rule.uid)

    def check_gid(self, rule: UserRule, entry: PasswdEntry) -> ExitCode:
        return self._compare(rule, "gid", entry.gid, rule.gid)

    def check_shell(self, rule: UserRule, entry: PasswdEntry) -> ExitCode:
        if not rule.shell:
            return ExitCode.OK
        return self._compare(rule, "shell", entry.shell, rule.shell)

    def check_gecos(self, rule: UserRule, entry: PasswdEntry) -> ExitCode:
        if not rule.gecos:
            return ExitCode.OK
        return self._compare(rule, "gecos", entry.gecos, rule.gecos)

    def check_home_dir(self, rule: UserRule, entry: PasswdEntry) -> ExitCode:
        if not rule.home:
            return ExitCode.OK
        if not Path(rule.home).is_dir():
            self.verbose_error(f"user {rule.name} home dir {rule.home} does not exist --> not ok")
            return ExitCode.NOK
        return self._compare(rule, "home", entry.home, rule.home)

    def check_home_ownership(self, rule: UserRule, entry: PasswdEntry) -> ExitCode:
        if rule.check_home != "yes":
            return ExitCode.OK
        try:
            owner = os.stat(entry.home).st_uid
        except OSError as e:
            self.verbose_error(f"user {rule.name} home dir ownership: {e}")
            return ExitCode.NOK
        return self._compare(rule, "home dir owner", owner, rule.uid)

    def check_password(self, rule: UserRule, entry: PasswdEntry) -> ExitCode:
        if not rule.password:
            return ExitCode.OK
        try:
            current = self.password_hash(rule.name)
        except OSError as e:
            self.error_msg(f"can't read {self.shadow_path}: {e}")
            return ExitCode.NOK
        if current is None:
            self.verbose_error(f"user {rule.name} not found in {self.shadow_path} --> not ok")
            return ExitCode.NOK
        if current == rule.password:
            self.verbose_info(f"user {rule.name} password hash --> ok")
            return ExitCode.OK
        self.verbose_error(f"user {rule.name} password hash is not on target --> not ok")
        return ExitCode.NOK

    def _lookup(self, rule: UserRule) -> PasswdEntry | None | ExitCode:
        try:
            return self.lookup(rule.name)
        except (OSError, CommandError) as e:
            self.error_msg(f"can't read the passwd database: {e}")
            return ExitCode.NOK

    def check_rule(self, rule: UserRule) -> ExitCode:
        entry = self._lookup(rule)
        if isinstance(entry, ExitCode):
            return entry
        if rule.absent:
            if entry is None:
                self.verbose_info(f"user {rule.name} does not exist and should not exist --> ok")
                return ExitCode.OK
            self.verbose_error(f"user {rule.name} exists and should not exist --> not ok")
            return ExitCode.NOK
        if entry is None:
            self.verbose_error(f"user {rule.name} does not exist and should exist --> not ok")
            return ExitCode.NOK
        checks = (
            self.check_uid,
            self.check_gid,
            self.check_shell,
            self.check_home_dir,
            self.check_home_ownership,
            self.check_password,
            self.check_gecos,
        )
        result = ExitCode.OK
        for check in checks:
            result = result.merge(check(rule, entry))
        return result

    # -- fixes --------------------------------------------------------------

    def _run(self, args: list[str], action: str, input: str | None = None) -> ExitCode:
        try:
            sysexec.run(args, input=input, check=True)
        except CommandError as e:
            self.error_msg(f"can't {action}: {e}")
            return ExitCode.NOK
        self.info_msg(action)
        return ExitCode.OK

    def fix_existence(self, rule: UserRule) -> ExitCode:
        args = ["useradd", "-u", str(rule.uid), "-g", str(rule.gid)]
        if rule.home:
            args += ["-d", rule.home, "-m"]
        if rule.shell:
            args += ["-s", rule.shell]
        if rule.gecos:
            args += ["-c", rule.gecos]
        return self._run([*args, rule.name], f"add the user {rule.name}")

    def fix_uid(self, rule: UserRule, entry: PasswdEntry) -> ExitCode:
        return self._run(["usermod", "-u", str(rule.uid), rule.name], f"set the user {rule.name} uid to {rule.uid}")

    def fix_gid(self, rule: UserRule, entry: PasswdEntry) -> ExitCode:
        return self._run(["usermod", "-g", str(rule.gid), rule.name], f"set the user {rule.name} gid to {rule.gid}")

    def fix_shell(self, rule: UserRule, entry: PasswdEntry) -> ExitCode:
        return self._run(["usermod", "-s", rule.shell, rule.name], f"set the user {rule.name} shell to {rule.shell}")

    def fix_gecos(self, rule: UserRule, entry: PasswdEntry) -> ExitCode:
        return self._run(["usermod", "-c", rule.gecos, rule.name], f"set the user {rule.name} gecos to {rule.gecos}")

    def fix_home_dir(self, rule: UserRule, entry: PasswdEntry) -> ExitCode:
        if entry.home != rule.home:
            result = self._run(
                ["usermod", "-d", rule.home, "-m", rule.name],
                f"set the user {rule.name} home to {rule.home}",
            )
            if result == ExitCode.NOK:
                return result
        home = Path(rule.home)
        if home.is_dir():
            return ExitCode.OK
        try:
            home.mkdir(mode=0o755, parents=True)
            if Path(SKEL_DIR).is_dir():
                shutil.copytree(SKEL_DIR, home, dirs_exist_ok=True)
            for path in (home, *home.rglob("*")):
                os.lchown(path, rule.uid, rule.gid)
        except OSError as e:
            self.error_msg(f"can't create the user {rule.name} home {rule.home}: {e}")
            return ExitCode.NOK
        self.info_msg(f"created the user {rule.name} home {rule.home}")
        return ExitCode.OK

    def fix_home_ownership(self, rule: UserRule, entry: PasswdEntry) -> ExitCode:
        try:
            os.chown(rule.home or entry.home, rule.uid, -1)
        except OSError as e:
            self.error_msg(f"can't set the user {rule.name} home ownership: {e}")
            return ExitCode.NOK
        self.info_msg(f"set the user {rule.name} home owner to {rule.uid}")
        return ExitCode.OK

    def fix_password(self, rule: UserRule, entry: PasswdEntry) -> ExitCode:
        return self._run(
            ["chpasswd", "-e"],
            f"set the user {rule.name} password hash",
            input=f"{rule.name}:{rule.password}\n",
        )

    def fix_delete(self, rule: UserRule) -> ExitCode:
        if rule.name in PROTECTED_USERS:
            self.error_msg(f"cowardly refusing to delete the user {rule.name}")
            return ExitCode.NOK
        return self._run(["userdel", rule.name], f"delete the user {rule.name}")

    def fix_rule(self, rule: UserRule) -> ExitCode:
        if self.check_rule(rule) == ExitCode.OK:
            return ExitCode.OK
        if rule.absent:
            return self.fix_delete(rule)
        entry = self._lookup(rule)
        if isinstance(entry, ExitCode):
            return entry
        if entry is None:
            if self.fix_existence(rule) == ExitCode.NOK:
                return ExitCode.NOK
            entry = self._lookup(rule)
            if isinstance(entry, ExitCode):
                return entry
            if entry is None:
                self.error_msg(f"user {rule.name} still missing after useradd")
                return ExitCode.NOK
        steps = (
            (self.check_gid, self.fix_gid),
            (self.check_uid, self.fix_uid),
            (self.check_home_dir, self.fix_home_dir),
            (self.check_home_ownership, self.fix_home_ownership),
            (self.check_shell, self.fix_shell),
            (self.check_password, self.fix_password),
            (self.check_gecos, self.fix_gecos),
        )
        result = ExitCode.OK
        for check, fix in steps:
            if check(rule, entry) == ExitCode.NOK:
                result = result.merge(fix(rule, entry))
        return result
