"""Ssh public keys in users' authorized_keys files.

Key file locations come from the AuthorizedKeysFile keyword of the sshd
configuration. A user asked to both add and delete the same key is
blacklisted: its rules report NOK and are never fixed.
"""

from __future__ import annotations

import logging
import os
import signal
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, field_validator

from compobj import fsutil, osdb
from compobj.base import ComplianceObject, ObjInfo
from compobj.context import Validity
from compobj.result import ExitCode
from compobj.sysexec import CommandError

logger = logging.getLogger(__name__)

SSHD_CONFIG = "/etc/ssh/sshd_config"
PROC_PATH = Path("/proc")

_TCP_LISTEN = "0A"

EXAMPLE_KEY = (
    "ssh-dss AAAAB3NzaC1kc3MAAACBAPiO1jlT+5yrdPLfQ7sYF52NkfCEzT0AUUNIl+14Sbkubqe+TcU7U3taUtiDJ5YOGOzIVFIDGG"
    "twD0AqNHQbvsiS1ywtC5BJ9362FlrpVH4o1nVZPvMxRzz5hgh3HjxqIWqwZDx29qO8Rg1/g1Gm3QYCxqPFn2a5f2AUiYqc1wtxAAAA"
    "FQC49iboZGNqssicwUrX6TUrT9H0HQAAAIBo5dNRmTF+Vd/+PI0JUOIzPJiHNKK9rnySlaxSDml9hH2LuDSjYz7BWuNP8UnPOa2pcF"
    "A4meDp5u8d5dGOWxkuYO0bLnXwDZuHtDW/ySytjwEaBLPxoqRBAyfyQNlusGsuiqDYRA7j7bS0RxINBxvDw79KdyQhuOn8/lKVG+sj"
    "rQAAAIEAoShly/JlGLQxQzPyWADV5RFlaRSPaPvFzcYT3hS+glkVd6yrCbzc30Yc8Ndu4cflQiXSZzRoUMgsy5PzuiH1M8JjwHTGNl"
    "8r9OfJpnN/OaAhMpIyA06y1ZZD9iEME3UmthFQoZnfRuE3yxi7bqyXJU4rOq04iyCTpU1UKInPdXQ= testuser"
)


class Action(StrEnum):
    ADD = "add"
    DEL = "del"


class AuthFile(StrEnum):
    AUTHORIZED_KEYS = "authorized_keys"
    AUTHORIZED_KEYS2 = "authorized_keys2"


class AuthKeyRule(BaseModel):
    action: Action
    user: str
    key: str
    authfile: AuthFile
    configfile: str = SSHD_CONFIG

    @field_validator("user", "key")
    @classmethod
    def _not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @field_validator("configfile")
    @classmethod
    def _default_configfile(cls, v: str) -> str:
        return v or SSHD_CONFIG

    @property
    def identity(self) -> tuple[str, str]:
        return (self.user, self.key)

    @property
    def short_key(self) -> str:
        if len(self.key) < 50:
            return self.key
        return f"'{self.key[:17]} ... {self.key[-30:]}'"


# -- sshd configuration -------------------------------------------------------


def sshd_keyword(path: str | Path, keyword: str) -> list[str] | None:
    """Arguments of the first line setting keyword, None when absent."""
    for line in Path(path).read_text().splitlines():
        fields = line.split("#", 1)[0].split()
        if len(fields) > 1 and fields[0].lower() == keyword.lower():
            return fields[1:]
    return None


def sshd_port(path: str | Path) -> int:
    values = sshd_keyword(path, "Port")
    return int(values[0]) if values else 22


def expand_authfile(path: str, user: str, home: str) -> str:
    """Expand the %u, %h and ~ tokens of an AuthorizedKeysFile entry."""
    path = path.replace("%u", user).replace("%h", "~").replace("%%", "%")
    if path.startswith("~"):
        return home.rstrip("/") + path[1:]
    if not path.startswith("/"):
        return os.path.join(home, path)
    return path


def set_keyword_member(text: str, keyword: str, member: str) -> str:
    """Append member to the first keyword line of an sshd configuration."""
    lines = text.splitlines(keepends=True)
    for i, line in enumerate(lines):
        fields = line.split()
        if len(fields) > 1 and fields[0].lower() == keyword.lower():
            lines[i] = " ".join(fields + [member]) + "\n"
            break
    return "".join(lines)


# -- sshd process -------------------------------------------------------------


def listening_inode(port: int, proc: Path = PROC_PATH) -> int | None:
    """Socket inode listening on a tcp port, from /proc/net/tcp and tcp6."""
    for name in ("tcp", "tcp6"):
        try:
            lines = (proc / "net" / name).read_text().splitlines()[1:]
        except FileNotFoundError:
            continue
        for line in lines:
            fields = line.split()
            if len(fields) < 10 or fields[3] != _TCP_LISTEN:
                continue
            _, _, local_port = fields[1].rpartition(":")
            if int(local_port, 16) == port:
                return int(fields[9])
    return None


def socket_owner(inode: int, proc: Path = PROC_PATH) -> int | None:
    """Pid of the first process holding the socket inode."""
    target = f"socket:[{inode}]"
    for entry in proc.iterdir():
        if not entry.name.isdigit() or entry.name == "1":
            continue
        try:
            fds = list((entry / "fd").iterdir())
        except (FileNotFoundError, PermissionError):
            continue
        for fd in fds:
            try:
                if os.readlink(fd) == target:
                    return int(entry.name)
            except OSError:
                continue
    return None


def master_pid(pid: int, proc: Path = PROC_PATH) -> int:
    """Climb the parent chain while the parent runs the same executable."""
    while True:
        ppid = int((proc / str(pid) / "stat").read_text().rsplit(")", 1)[1].split()[1])
        if ppid <= 1:
            return pid
        try:
            same = os.readlink(proc / str(pid) / "exe") == os.readlink(proc / str(ppid) / "exe")
        except OSError:
            return pid
        if not same:
            return pid
        pid = ppid


class AuthkeyObject(ComplianceObject):
    name = "authkey"
    rule_model = AuthKeyRule
    proc_path = PROC_PATH
    info = ObjInfo(
        default_prefix="OSVC_COMP_AUTHKEY_",
        example_value={
            "action": "add",
            "authfile": "authorized_keys",
            "user": "testuser",
            "key": EXAMPLE_KEY,
        },
        description=(
            "* Installs or removes ssh public keys from authorized_key files\n"
            "* Looks up the authorized_key and authorized_key2 file location in the running sshd daemon configuration.\n"
            "* Add user to sshd_config AllowUser and AllowGroup if used\n"
            "* Reload sshd if sshd_config has been changed\n"
        ),
        form_definition="""Desc: |
  Describe a list of ssh public keys to authorize login as the specified Unix user.
Css: comp48

Outputs:
  -
    Dest: compliance variable
    Type: json
    Format: dict
    Class: authkey

Inputs:
  -
    Id: action
    Label: Action
    DisplayModeLabel: action
    LabelCss: action16
    Mandatory: Yes
    Type: string
    Candidates:
      - add
      - del
    Help: Defines whether the public key must be installed or uninstalled.
  -
    Id: user
    Label: User
    DisplayModeLabel: user
    LabelCss: guy16
    Mandatory: Yes
    Type: string
    Help: Defines the Unix user name who will accept those ssh public keys.
  -
    Id: key
    Label: Public key
    DisplayModeLabel: key
    LabelCss: guy16
    Mandatory: Yes
    Type: text
    DisplayModeTrim: 60
    Help: The ssh public key as seen in authorized_keys files.
  -
    Id: authfile
    Label: Authorized keys file name
    DisplayModeLabel: authfile
    LabelCss: hd16
    Mandatory: Yes
    Candidates:
      - authorized_keys
      - authorized_keys2
    Default: authorized_keys2
    Type: string
    Help: The authorized_keys file to write the keys into.
  -
    Id: configfile
    Label: sshd config file path
    DisplayModeLabel: configfile
    LabelCss: hd16
    Mandatory: no
    Default: /etc/ssh/sshd_config
    Type: string
    Help: The sshd configuration file path, if not precised the value used is /etc/ssh/sshd_config
""",
    )

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._need_reload: set[str] = set()

    # -- intake -------------------------------------------------------------

    def add_rule(self, rule: AuthKeyRule) -> None:
        if rule.user in self.ctx.blacklist:
            return
        if any(r.identity == rule.identity and r.action == rule.action for r in self.rules):
            return
        state = self.ctx.mark(rule.identity, Validity.SET if rule.action == Action.ADD else Validity.UNSET)
        if state is Validity.INVALID:
            reason = "add and del action for the same key"
            if self.ctx.blacklist_identity(rule.user, reason):
                self.error_msg(
                    f"the authkeys rules for the user {rule.user} generate some conflicts ({reason}), "
                    "the user is now blacklisted from check and fix"
                )
            return
        self.rules.append(rule)

    # -- system -------------------------------------------------------------

    def lookup_user(self, rule: AuthKeyRule) -> osdb.PasswdEntry | None:
        return osdb.getent_passwd(rule.user)

    def primary_path(self, rule: AuthKeyRule, home: str) -> str:
        """The file a missing key is appended to."""
        if rule.authfile == AuthFile.AUTHORIZED_KEYS:
            entry = ".ssh/authorized_keys"
        else:
            entry = (sshd_keyword(rule.configfile, "AuthorizedKeysFile") or [".ssh/authorized_keys"])[0]
        return expand_authfile(entry, rule.user, home)

    def key_paths(self, rule: AuthKeyRule, home: str) -> list[str]:
        """Every file sshd reads keys from for the user."""
        entries = sshd_keyword(rule.configfile, "AuthorizedKeysFile") or [".ssh/authorized_keys2"]
        paths = [expand_authfile(e, rule.user, home) for e in entries + [".ssh/authorized_keys"]]
        return list(dict.fromkeys(paths))

    def installed_keys(self, rule: AuthKeyRule, home: str) -> set[str]:
        keys = set()
        for path in self.key_paths(rule, home):
            try:
                text = Path(path).read_text()
            except FileNotFoundError:
                continue
            keys.update(line.strip() for line in text.splitlines() if line.strip())
        return keys

    # -- check --------------------------------------------------------------

    def check_key(self, rule: AuthKeyRule, home: str) -> ExitCode:
        installed = rule.key in self.installed_keys(rule, home)
        if rule.action == Action.ADD:
            if installed:
                self.verbose_info(f"the key {rule.short_key} is installed and should be installed for the user {rule.user}")
                return ExitCode.OK
            self.verbose_error(f"the key {rule.short_key} is not installed and should be installed for the user {rule.user}")
            return ExitCode.NOK
        if installed:
            self.verbose_error(f"the key {rule.short_key} is installed and should not be installed for the user {rule.user}")
            return ExitCode.NOK
        self.verbose_info(f"the key {rule.short_key} is not installed and should not be installed for the user {rule.user}")
        return ExitCode.OK

    def check_allow_users(self, rule: AuthKeyRule) -> ExitCode:
        allowed = sshd_keyword(rule.configfile, "AllowUsers")
        if allowed is None:
            return ExitCode.OK
        if rule.user in allowed:
            self.verbose_info(f"the user {rule.user} is in AllowUsers in the sshd config file ({rule.configfile})")
            return ExitCode.OK
        self.verbose_error(f"the user {rule.user} is not in AllowUsers in the sshd config file ({rule.configfile})")
        return ExitCode.NOK

    def check_allow_groups(self, rule: AuthKeyRule) -> ExitCode:
        allowed = sshd_keyword(rule.configfile, "AllowGroups")
        if allowed is None:
            return ExitCode.OK
        if osdb.primary_group(rule.user) in allowed:
            self.verbose_info(f"the primary group of the user {rule.user} is in AllowGroups in the sshd config file ({rule.configfile})")
            return ExitCode.OK
        self.verbose_error(f"the primary group of the user {rule.user} is not in AllowGroups in the sshd config file ({rule.configfile})")
        return ExitCode.NOK

    def _home(self, rule: AuthKeyRule) -> str | ExitCode:
        """The user's home directory, or the verdict for a missing user."""
        entry = self.lookup_user(rule)
        if entry is not None:
            return entry.home
        if rule.action == Action.ADD:
            self.verbose_error(f"the key {rule.short_key} is not installed for the user {rule.user}: user does not exist")
            return ExitCode.NOK
        self.verbose_info(f"the key {rule.short_key} is not installed for the user {rule.user}: user does not exist")
        return ExitCode.OK

    def check_rule(self, rule: AuthKeyRule) -> ExitCode:
        if rule.user in self.ctx.blacklist:
            self.error_msg(f"the user {rule.user} is blacklisted")
            return ExitCode.NOK
        try:
            home = self._home(rule)
            if isinstance(home, ExitCode):
                return home
            return self.check_key(rule, home)
        except (OSError, CommandError) as e:
            self.error_msg(f"authkey {rule.user}: {e}")
            return ExitCode.NOK

    def check_allows(self) -> ExitCode:
        """AllowUsers and AllowGroups, once per user and sshd config."""
        result = ExitCode.OK
        seen = set()
        for rule in self.rules:
            if rule.action != Action.ADD or rule.user in self.ctx.blacklist:
                continue
            if (rule.user, rule.configfile) in seen:
                continue
            seen.add((rule.user, rule.configfile))
            try:
                if self.lookup_user(rule) is None:
                    continue
                result = result.merge(self.check_allow_groups(rule))
                result = result.merge(self.check_allow_users(rule))
            except (OSError, CommandError) as e:
                self.error_msg(f"authkey {rule.user}: {e}")
                result = ExitCode.NOK
        return result

    def check(self) -> ExitCode:
        result = super().check()
        return result.merge(self.check_allows())

    # -- fix ----------------------------------------------------------------

    def add_key(self, rule: AuthKeyRule, home: str) -> None:
        path = Path(self.primary_path(rule, home))
        if path.exists():
            text = path.read_text()
            if text and not text.endswith("\n"):
                text += "\n"
            fsutil.atomic_write(path, text + rule.key + "\n")
        else:
            path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            fsutil.atomic_write(path, rule.key + "\n")
            os.chmod(path, 0o600)
        self.info_msg(f"add the key {rule.short_key} to {path}")

    def del_key(self, rule: AuthKeyRule, home: str) -> None:
        for path in map(Path, self.key_paths(rule, home)):
            try:
                lines = path.read_text().splitlines(keepends=True)
            except FileNotFoundError:
                continue
            kept = [line for line in lines if line.strip() != rule.key]
            if kept == lines:
                continue
            fsutil.atomic_write(path, "".join(kept))
            self.info_msg(f"remove the key {rule.short_key} from {path}")

    def add_allow(self, rule: AuthKeyRule, keyword: str, member: str) -> None:
        text = Path(rule.configfile).read_text()
        fsutil.backup(rule.configfile, self.config)
        fsutil.atomic_write(rule.configfile, set_keyword_member(text, keyword, member))
        self.info_msg(f"add {member} to {keyword} in {rule.configfile}")
        self._need_reload.add(rule.configfile)

    def fix_rule(self, rule: AuthKeyRule) -> ExitCode:
        if rule.user in self.ctx.blacklist:
            self.error_msg(f"the user {rule.user} is blacklisted can't fix the rule")
            return ExitCode.NOK
        try:
            home = self._home(rule)
            if isinstance(home, ExitCode):
                return home
            if self.check_key(rule, home) == ExitCode.NOK:
                if rule.action == Action.ADD:
                    self.add_key(rule, home)
                else:
                    self.del_key(rule, home)
            if rule.action == Action.ADD:
                if self.check_allow_groups(rule) == ExitCode.NOK:
                    self.add_allow(rule, "AllowGroups", osdb.primary_group(rule.user))
                if self.check_allow_users(rule) == ExitCode.NOK:
                    self.add_allow(rule, "AllowUsers", rule.user)
        except (OSError, CommandError) as e:
            self.error_msg(f"authkey {rule.user}: {e}")
            return ExitCode.NOK
        return ExitCode.OK

    def reload_sshd(self, configfile: str) -> ExitCode:
        """Send SIGHUP to the sshd daemon listening on the configured port."""
        try:
            port = sshd_port(configfile)
            inode = listening_inode(port, self.proc_path)
            pid = socket_owner(inode, self.proc_path) if inode is not None else None
            if pid is None:
                logger.debug(f"no sshd listening on port {port}, skip reload")
                return ExitCode.OK
            pid = master_pid(pid, self.proc_path)
            os.kill(pid, signal.SIGHUP)
        except (OSError, ValueError) as e:
            self.error_msg(f"can't reload sshd: {e}")
            return ExitCode.NOK
        self.info_msg(f"reload sshd (pid {pid})")
        return ExitCode.OK

    def fix(self) -> ExitCode:
        self._need_reload = set()
        result = super().fix()
        for configfile in sorted(self._need_reload):
            result = result.merge(self.reload_sshd(configfile))
        return result
