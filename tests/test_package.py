"""Tests for the package object and package manager detection."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, call, patch

import pytest

from compobj.config import CompConfig
from compobj.errors import IntakeError
from compobj.objects.package import PackageObject, detect_manager, dpkg_installed, pkginfo_installed, rpm_installed
from compobj.result import ExitCode
from compobj.sysexec import CommandError

DPKG_OUTPUT = """\
Desired=Unknown/Install/Remove/Purge/Hold
||/ Name           Version      Architecture Description
+++-==============-============-============-=================================
ii  bzip2          1.0.8-5      amd64        high-quality block-sorting file compressor
rc  telnet         0.17-44      amd64        basic telnet client
ii  telnetd        0.17-44      amd64        telnet server
"""


def _completed(stdout: str = "", returncode: int = 0, stderr: str = "") -> MagicMock:
    result = MagicMock()
    result.stdout = stdout
    result.stderr = stderr
    result.returncode = returncode
    return result


def _obj(config: CompConfig, *payloads: list[str]) -> PackageObject:
    obj = PackageObject(config=config)
    for payload in payloads:
        obj.add(json.dumps(payload))
    obj.finalize_intake()
    return obj


class TestListers:
    @patch("compobj.sysexec.run")
    def test_dpkg(self, mock_run):
        mock_run.return_value = _completed(DPKG_OUTPUT)
        assert dpkg_installed() == {"bzip2", "telnetd"}

    @patch("compobj.sysexec.run")
    def test_rpm_name_and_arch(self, mock_run):
        mock_run.return_value = _completed("bzip2.x86_64\nglibc.i686\n")
        assert rpm_installed() == {"bzip2", "bzip2.x86_64", "glibc", "glibc.i686"}

    @patch("compobj.sysexec.run")
    def test_pkginfo(self, mock_run):
        mock_run.return_value = _completed("   PKGINST:  SUNWcsu\n      NAME:  Core Solaris\n   PKGINST:  SUNWzip\n")
        assert pkginfo_installed() == {"SUNWcsu", "SUNWzip"}


class TestDetectManager:
    def test_debian(self):
        manager = detect_manager(CompConfig(os_name="Linux", os_vendor="Ubuntu"))
        assert manager.name == "apt"
        assert manager.install == ["apt-get", "install", "--allow-unauthenticated", "-y"]

    @pytest.mark.parametrize("found, expected", [("/usr/bin/dnf", "dnf"), (None, "yum")])
    def test_redhat_prefers_dnf(self, found, expected):
        with patch("compobj.sysexec.which", return_value=found):
            manager = detect_manager(CompConfig(os_name="Linux", os_vendor="CentOS"))
        assert manager.name == expected
        assert manager.install == [expected, "-y", "install"]

    def test_sunos_has_no_installer(self):
        manager = detect_manager(CompConfig(os_name="SunOS", os_vendor="Oracle Corporation"))
        assert manager.name == "pkginfo"
        assert manager.install is None

    def test_unknown(self):
        assert detect_manager(CompConfig(os_name="HP-UX", os_vendor="HP")) is None


class TestIntake:
    def test_prefixes(self, config: CompConfig):
        obj = _obj(config, ["bzip2", "-telnet", "+zip"])
        assert [(r.name, r.absent) for r in obj.rules] == [("bzip2", False), ("telnet", True), ("zip", False)]

    @pytest.mark.parametrize("payload", [{"name": "x"}, ["ok", ""], ["-"], [1]])
    def test_invalid(self, config: CompConfig, payload):
        with pytest.raises(IntakeError):
            _obj(config, payload)

    def test_add_and_remove_blacklisted(self, config: CompConfig, capsys: pytest.CaptureFixture[str]):
        obj = _obj(config, ["bzip2", "telnet"], ["-telnet"])
        assert [r.name for r in obj.rules] == ["bzip2"]
        assert "telnet" in obj.ctx.blacklist
        assert capsys.readouterr().err.count("blacklisted") == 1


class TestCheck:
    @patch("compobj.sysexec.run")
    def test_installed_and_removed(self, mock_run, config: CompConfig):
        mock_run.return_value = _completed(DPKG_OUTPUT)
        assert _obj(config, ["bzip2", "-telnet"]).check() == ExitCode.OK
        assert _obj(config, ["zip"]).check() == ExitCode.NOK
        assert _obj(config, ["-telnetd"]).check() == ExitCode.NOK

    @patch("compobj.sysexec.run")
    def test_blacklist_makes_check_nok(self, mock_run, config: CompConfig):
        mock_run.return_value = _completed(DPKG_OUTPUT)
        assert _obj(config, ["bzip2", "zip"], ["-zip"]).check() == ExitCode.NOK

    def test_unknown_os_is_na(self):
        obj = _obj(CompConfig(os_name="HP-UX", os_vendor="HP"), ["bzip2"])
        assert obj.check() == ExitCode.NA
        assert obj.fix() == ExitCode.NA

    @patch("compobj.sysexec.run")
    def test_unreadable_list_is_na(self, mock_run, config: CompConfig):
        mock_run.side_effect = CommandError("dpkg: command not found")
        assert _obj(config, ["bzip2"]).check() == ExitCode.NA


class TestFix:
    @patch("compobj.sysexec.run")
    def test_batches_removes_then_installs(self, mock_run, config: CompConfig):
        mock_run.return_value = _completed(DPKG_OUTPUT)
        obj = _obj(config, ["bzip2", "zip", "unzip", "-telnetd"], ["zip"])
        assert obj.fix() == ExitCode.OK
        assert mock_run.call_args_list == [
            call(["dpkg", "-l"], check=True),
            call(["apt-get", "remove", "-y", "telnetd"], check=True),
            call(["apt-get", "install", "--allow-unauthenticated", "-y", "zip", "unzip"], check=True),
        ]

    @patch("compobj.sysexec.run")
    def test_sunos_fix_is_nok(self, mock_run):
        mock_run.return_value = _completed("   PKGINST:  SUNWcsu\n")
        obj = _obj(CompConfig(os_name="SunOS", os_vendor="Oracle"), ["SUNWzip"])
        assert obj.check() == ExitCode.NOK
        assert obj.fix() == ExitCode.NOK

    @patch("compobj.sysexec.run")
    def test_install_failure(self, mock_run, config: CompConfig):
        mock_run.side_effect = [_completed(DPKG_OUTPUT), CommandError("apt-get: exit code 100")]
        assert _obj(config, ["zip"]).fix() == ExitCode.NOK
