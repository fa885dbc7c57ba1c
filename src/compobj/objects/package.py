"""Installed or removed state of OS packages."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from compobj import sysexec
from compobj.base import ComplianceObject, ObjInfo
from compobj.config import CompConfig
from compobj.context import Validity
from compobj.errors import IntakeError
from compobj.objects.group import split_name
from compobj.result import ExitCode, merge_all
from compobj.sysexec import CommandError

logger = logging.getLogger(__name__)

_RPM_VENDORS = {"redhat", "red hat", "centos", "oracle", "fedora", "rocky", "almalinux"}
_SUSE_VENDORS = {"suse", "opensuse"}
_DEB_VENDORS = {"ubuntu", "debian"}


def _lines(args: list[str]) -> list[str]:
    return sysexec.run(args, check=True).stdout.splitlines()


def dpkg_installed() -> set[str]:
    return {line.split()[1] for line in _lines(["dpkg", "-l"]) if line.startswith("ii") and len(line.split()) > 1}


def rpm_installed() -> set[str]:
    names = set()
    for line in _lines(["rpm", "-qa", "--qf", "%{NAME}.%{ARCH}\n"]):
        line = line.strip()
        if not line:
            continue
        names.add(line)
        names.add(line.rsplit(".", 1)[0])
    return names


def pkg_installed() -> set[str]:
    names = set()
    for line in _lines(["pkg", "info"]):
        fields = line.split()
        if fields:
            names.add(fields[0].rsplit("-", 1)[0])
    return names


def apk_installed() -> set[str]:
    return {line.strip() for line in _lines(["apk", "info"]) if line.strip()}


def pkginfo_installed() -> set[str]:
    names = set()
    for line in _lines(["pkginfo", "-l"]):
        key, sep, value = line.partition(":")
        if sep and key.strip() == "PKGINST":
            names.add(value.strip())
    return names


@dataclass(frozen=True)
class PackageManager:
    name: str
    installed: Callable[[], set[str]]
    install: list[str] | None = None
    remove: list[str] | None = None


def detect_manager(config: CompConfig) -> PackageManager | None:
    """Pick the package tools from the node os name and vendor."""
    vendor = config.os_vendor.lower()
    os_name = config.os_name.lower()
    if os_name == "sunos":
        return PackageManager("pkginfo", pkginfo_installed)
    if os_name == "freebsd":
        return PackageManager("pkg", pkg_installed, ["pkg", "install", "-y"], ["pkg", "remove", "-y"])
    if vendor in _DEB_VENDORS:
        return PackageManager("apt", dpkg_installed, ["apt-get", "install", "--allow-unauthenticated", "-y"], ["apt-get", "remove", "-y"])
    if vendor in _RPM_VENDORS:
        tool = "dnf" if sysexec.which("dnf") else "yum"
        return PackageManager(tool, rpm_installed, [tool, "-y", "install"], [tool, "-y", "remove"])
    if vendor in _SUSE_VENDORS:
        return PackageManager("zypper", rpm_installed, ["zypper", "install", "-y"], ["zypper", "remove", "-y"])
    if vendor == "alpine":
        return PackageManager("apk", apk_installed, ["apk", "add"], ["apk", "del"])
    return None


class PackageRule(BaseModel):
    name: str
    absent: bool = False


class PackageObject(ComplianceObject):
    name = "package"
    rule_model = PackageRule
    info = ObjInfo(
        default_prefix="OSVC_COMP_PACKAGES_",
        example_value=["bzip2", "-telnet", "zip"],
        description=(
            "* Verify a list of packages is installed or removed\n"
            "* A '-' prefix before the package name means the package should be removed\n"
            "* No prefix before the package name means the package should be installed\n"
            "* The package version is not checked\n"
        ),
        form_definition="""Desc: |
  A rule defining a set of packages, fed to the 'packages' compliance object for it to check each package installed or not-installed status.
Css: comp48
Outputs:
  -
    Dest: compliance variable
    Class: package
    Type: json
    Format: list
Inputs:
  -
    Id: pkgname
    Label: Package name
    DisplayModeLabel: ""
    LabelCss: pkg16
    Mandatory: Yes
    Help: Use '-' as a prefix to set 'not installed' as the target state.
    Type: string
""",
    )

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._manager: PackageManager | None = None
        self._installed: set[str] | None = None

    # -- intake -------------------------------------------------------------

    def parse_payload(self, data: Any) -> list[PackageRule]:
        if isinstance(data, str):
            data = [data]
        if not isinstance(data, list) or not all(isinstance(item, str) for item in data):
            raise IntakeError("a list of package names is expected")
        rules = []
        for item in data:
            name, absent = split_name(item.strip().removeprefix("+"))
            if not name:
                raise IntakeError("one of the package names is empty")
            rules.append(PackageRule(name=name, absent=absent))
        return rules

    def add(self, payload: str) -> None:
        super().add(payload)
        self.filter_rules()

    def add_rule(self, rule: PackageRule) -> None:
        self.ctx.mark(rule.name, Validity.UNSET if rule.absent else Validity.SET)
        self.rules.append(rule)

    def filter_rules(self) -> None:
        kept = []
        for rule in self.rules:
            if not self.ctx.is_invalid(rule.name):
                kept.append(rule)
                continue
            reason = "trying to add and remove the package at the same time"
            if self.ctx.blacklist_identity(rule.name, reason):
                self.error_msg(f"conflict with the package {rule.name}: {reason}, the package is now blacklisted")
        self.rules = kept

    def finalize_intake(self) -> None:
        self.filter_rules()

    # -- installed packages ---------------------------------------------------

    def begin_pass(self) -> None:
        self._installed = None
        self._manager = detect_manager(self.config)

    def load_installed(self) -> bool:
        if self._manager is None:
            self.verbose_error(f"unsupported os {self.config.os_name} {self.config.os_vendor}")
            return False
        try:
            self._installed = self._manager.installed()
        except CommandError as e:
            self.verbose_error(f"can not fetch installed packages list: {e}")
            return False
        return True

    def check_rule(self, rule: PackageRule) -> ExitCode:
        installed = rule.name in (self._installed or set())
        if rule.absent:
            if installed:
                self.verbose_error(f"package {rule.name} is installed, but should not be")
                return ExitCode.NOK
            self.verbose_info(f"package {rule.name} is not installed")
            return ExitCode.OK
        if not installed:
            self.verbose_error(f"package {rule.name} is not installed, but should be")
            return ExitCode.NOK
        self.verbose_info(f"package {rule.name} is installed")
        return ExitCode.OK

    def _blacklist_result(self, action: str) -> ExitCode:
        if self.ctx.blacklist:
            self.error_msg(f"some packages are blacklisted, can't do a full {action}")
            return ExitCode.NOK
        return ExitCode.OK

    def check(self) -> ExitCode:
        self.verbose = True
        self.begin_pass()
        if not self.load_installed():
            return ExitCode.NA
        result = merge_all(self.check_rule(rule) for rule in self.rules)
        return result.merge(self._blacklist_result("check"))

    def _batch(self, command: list[str] | None, names: list[str], action: str) -> ExitCode:
        if not names:
            return ExitCode.OK
        if command is None:
            self.error_msg(f"no package installer for {self.config.os_name}, can't {action}: {' '.join(names)}")
            return ExitCode.NOK
        try:
            sysexec.run([*command, *names], check=True)
        except CommandError as e:
            self.error_msg(f"package {action}: {e}")
            return ExitCode.NOK
        self.info_msg(f"{action} the following packages: {' '.join(names)}")
        return ExitCode.OK

    def fix(self) -> ExitCode:
        self.verbose = False
        self.begin_pass()
        if not self.load_installed():
            return ExitCode.NA
        pending = [r for r in self.rules if self.check_rule(r) == ExitCode.NOK]
        removes = list(dict.fromkeys(r.name for r in pending if r.absent))
        adds = list(dict.fromkeys(r.name for r in pending if not r.absent))
        manager = self._manager
        result = self._batch(manager.remove if manager else None, removes, "remove")
        result = result.merge(self._batch(manager.install if manager else None, adds, "install"))
        return result.merge(self._blacklist_result("fix"))
