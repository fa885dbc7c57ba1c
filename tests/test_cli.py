"""Tests for the command line entry point and the registry."""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from compobj import registry
from compobj.cli import bundle_main, install, main, object_main
from compobj.config import CompConfig
from compobj.result import ExitCode


class TestRegistry:
    def test_names(self):
        assert registry.names() == [
            "authkey",
            "file",
            "fileinc",
            "fileprop",
            "group",
            "groupmembership",
            "keyval",
            "linux_mpath",
            "nodeconf",
            "package",
            "sudoers",
            "symlink",
            "sysctl",
            "user",
            "zfs",
            "zpool",
        ]

    def test_lookup(self):
        assert registry.lookup("keyval").name == "keyval"
        assert registry.lookup("nope") is None

    @pytest.mark.parametrize("name", registry.names())
    def test_example_value_is_accepted(self, name: str):
        cls = registry.lookup(name)
        obj = cls(config=CompConfig(hostname="node1"))
        obj.add(json.dumps(cls.info.example_value))
        assert obj.info.default_prefix.startswith("OSVC_COMP_")


class TestObjectMain:
    def test_unknown_object(self, config: CompConfig, capsys: pytest.CaptureFixture[str]):
        assert object_main(["/usr/bin/nope", "check"], {}, config) == ExitCode.NOK
        assert "nope: compliance object not found" in capsys.readouterr().err

    def test_usage(self, config: CompConfig, capsys: pytest.CaptureFixture[str]):
        assert object_main(["symlink"], {}, config) == ExitCode.NOK
        assert "Usage of symlink" in capsys.readouterr().err

    def test_invalid_action(self, config: CompConfig, capsys: pytest.CaptureFixture[str]):
        assert object_main(["symlink", "OSVC_COMP_X_", "explode"], {}, config) == ExitCode.NOK
        assert "invalid action: explode" in capsys.readouterr().err

    def test_info(self, config: CompConfig, capsys: pytest.CaptureFixture[str]):
        assert object_main(["keyval", "info"], {}, config) == ExitCode.OK
        out = capsys.readouterr().out
        assert "default prefix : OSVC_COMP_KEYVAL_" in out
        assert "PermitRootLogin" in out

    def test_check_with_default_prefix(self, tmp_path: Path, config: CompConfig):
        link = tmp_path / "link"
        link.symlink_to("/tmp/target")
        env = {"OSVC_COMP_SYMLINK_1": json.dumps({"symlink": str(link), "target": "/tmp/target"})}
        assert object_main(["symlink", "check"], env, config) == ExitCode.OK

    def test_explicit_prefix(self, tmp_path: Path, config: CompConfig):
        env = {"OSVC_COMP_RULE_1_SYMLINK": json.dumps({"symlink": str(tmp_path / "l"), "target": "/x"})}
        assert object_main(["symlink", "OSVC_COMP_RULE_1_", "check"], env, config) == ExitCode.NOK
        assert object_main(["symlink", "", "check"], env, config) == ExitCode.OK

    def test_fix_and_fixable(self, tmp_path: Path, config: CompConfig):
        link = tmp_path / "l"
        env = {"OSVC_COMP_SYMLINK_1": json.dumps({"symlink": str(link), "target": "/x"})}
        assert object_main(["symlink", "fixable"], env, config) == ExitCode.NA
        assert object_main(["symlink", "fix"], env, config) == ExitCode.OK
        assert os.readlink(link) == "/x"

    def test_self_test(self, config: CompConfig, capsys: pytest.CaptureFixture[str]):
        with patch("compobj.sysexec.run") as mock_run:
            mock_run.return_value.stdout = "ftp://ftp.opensvc.com/opensvc\n"
            object_main(["nodeconf", "test"], {}, config)
        assert '"example_value"' in capsys.readouterr().out

    def test_self_test_expands_wildcards(self, config: CompConfig):
        seen: list[str] = []

        def _visudo(args, **kwargs):
            seen.append(Path(args[-1]).read_text())
            result = MagicMock()
            result.returncode = 0
            result.stdout = result.stderr = ""
            return result

        with patch("compobj.sysexec.run", side_effect=_visudo):
            object_main(["sudoers", "test"], {"OSVC_COMP_ADMIN_GROUP": "%wheel"}, config)
        assert seen == ["%wheel ALL=(ALL) NOPASSWD: ALL\n"]


class TestBundle:
    def test_list(self, capsys: pytest.CaptureFixture[str]):
        assert bundle_main(["compobj", "--list"]) == ExitCode.OK
        out = capsys.readouterr().out
        assert "  linux_mpath\n" in out

    def test_no_option_prints_help(self, capsys: pytest.CaptureFixture[str]):
        assert bundle_main(["compobj"]) == ExitCode.OK
        assert "must be called via a symlink" in capsys.readouterr().err

    def test_install(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]):
        exe = tmp_path / "bin" / "compobj"
        exe.parent.mkdir()
        exe.write_text("")
        dest = tmp_path / "objs"
        dest.mkdir()
        (dest / "file").symlink_to("/old/compobj")
        install(dest, exe)
        assert os.readlink(dest / "keyval") == str(exe)
        assert os.readlink(dest / "file") == str(exe)
        assert "remove symlink /old/compobj" in capsys.readouterr().out

        install(dest, exe)
        assert "already exists" in capsys.readouterr().out

    def test_install_relative(self, tmp_path: Path):
        exe = tmp_path / "bin" / "compobj"
        exe.parent.mkdir()
        exe.write_text("")
        dest = tmp_path / "objs"
        dest.mkdir()
        assert bundle_main([str(exe), "-i", str(dest), "-r"]) == ExitCode.OK
        assert os.readlink(dest / "zfs") == "../bin/compobj"


class TestMain:
    def test_exit_code_from_object(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("OSVC_COMP_SYMLINK_1", json.dumps({"symlink": str(tmp_path / "l"), "target": "/x"}))
        with pytest.raises(SystemExit) as exc_info:
            main([str(tmp_path / "symlink"), "check"])
        assert exc_info.value.code == 1

    def test_bundle_dispatch(self, capsys: pytest.CaptureFixture[str]):
        with pytest.raises(SystemExit) as exc_info:
            main(["/usr/local/bin/compobj", "--list"])
        assert exc_info.value.code == 0
        assert "  zpool" in capsys.readouterr().out
