"""Tests for the sysctl object."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock, call, patch

import pytest

from compobj.config import CompConfig
from compobj.errors import IntakeError
from compobj.objects.sysctl import SysctlObject, conf_entry
from compobj.result import ExitCode


def _completed(stdout: str = "", returncode: int = 0, stderr: str = "") -> MagicMock:
    result = MagicMock()
    result.stdout = stdout
    result.stderr = stderr
    result.returncode = returncode
    return result


@pytest.fixture
def conf(tmp_path: Path) -> Path:
    path = tmp_path / "sysctl.conf"
    path.write_text("# kernel\nvm.swappiness = 60\nvm.lowmem_reserve_ratio = 256 256 32\n")
    return path


def _obj(config: CompConfig, conf: Path, *rules: dict) -> SysctlObject:
    obj = SysctlObject(config=config)
    obj.conf_path = str(conf)
    obj.add(json.dumps(list(rules)))
    return obj


class TestConfEntry:
    def test_parse(self):
        assert conf_entry("vm.x = 1 2\n") == ("vm.x", ["1", "2"])
        assert conf_entry("# vm.x = 1\n") is None
        assert conf_entry("; vm.x = 1\n") is None
        assert conf_entry("garbage\n") is None


class TestIntake:
    @pytest.mark.parametrize(
        "rule",
        [
            {"key": "vm.x", "index": -1, "value": 1},
            {"key": "vm.x", "index": 0, "op": ">=", "value": "abc"},
            {"key": "vm.x", "index": 0, "value": 1.5},
            {"key": "vm.x", "index": 0, "op": "unset", "value": 1},
            {"key": "vm.x", "index": 0},
        ],
    )
    def test_invalid(self, config: CompConfig, conf: Path, rule: dict):
        with pytest.raises(IntakeError):
            _obj(config, conf, rule)


class TestCheck:
    @patch("compobj.sysexec.run")
    def test_conf_and_live_on_target(self, mock_run, config: CompConfig, conf: Path):
        mock_run.return_value = _completed("256\t256\t32\n")
        obj = _obj(config, conf, {"key": "vm.lowmem_reserve_ratio", "index": 1, "op": "=", "value": 256})
        assert obj.check() == ExitCode.OK
        mock_run.assert_called_once_with(["sysctl", "-n", "vm.lowmem_reserve_ratio"], check=True)

    @patch("compobj.sysexec.run")
    def test_live_differs(self, mock_run, config: CompConfig, conf: Path):
        mock_run.return_value = _completed("30\n")
        assert _obj(config, conf, {"key": "vm.swappiness", "index": 0, "value": 60}).check() == ExitCode.NOK

    @patch("compobj.sysexec.run")
    def test_last_occurrence_wins(self, mock_run, config: CompConfig, conf: Path):
        conf.write_text("vm.swappiness = 60\nvm.swappiness = 10\n")
        mock_run.return_value = _completed("10\n")
        assert _obj(config, conf, {"key": "vm.swappiness", "index": 0, "op": "<=", "value": 10}).check() == ExitCode.OK

    def test_index_out_of_range(self, config: CompConfig, conf: Path):
        assert _obj(config, conf, {"key": "vm.swappiness", "index": 3, "value": 1}).check() == ExitCode.NOK

    def test_key_missing(self, config: CompConfig, conf: Path):
        assert _obj(config, conf, {"key": "kernel.shmmax", "index": 0, "value": 1}).check() == ExitCode.NOK


class TestFix:
    @patch("compobj.sysexec.run")
    def test_patch_index_and_reload(self, mock_run, config: CompConfig, conf: Path):
        mock_run.return_value = _completed("256 256 32\n")
        obj = _obj(config, conf, {"key": "vm.lowmem_reserve_ratio", "index": 2, "op": ">=", "value": 64})
        assert obj.fix() == ExitCode.OK
        assert "vm.lowmem_reserve_ratio = 256 256 64\n" in conf.read_text()
        assert mock_run.call_args_list[-1] == call(["sysctl", "-e", "-p", str(conf)], check=True)

    @patch("compobj.sysexec.run")
    def test_duplicates_dropped(self, mock_run, config: CompConfig, conf: Path):
        conf.write_text("vm.swappiness = 60\nnet.x = 1\nvm.swappiness = 30\n")
        mock_run.return_value = _completed("30\n")
        _obj(config, conf, {"key": "vm.swappiness", "index": 0, "value": 10}).fix()
        assert conf.read_text() == "vm.swappiness = 10\nnet.x = 1\n"

    @patch("compobj.sysexec.run")
    def test_append_missing_key(self, mock_run, config: CompConfig, conf: Path):
        mock_run.return_value = _completed("4096\n")
        _obj(config, conf, {"key": "kernel.shmmni", "index": 0, "value": 8192}).fix()
        assert conf.read_text().endswith("kernel.shmmni = 8192\n")

    @patch("compobj.sysexec.run")
    def test_single_reload_for_many_rules(self, mock_run, config: CompConfig, conf: Path):
        mock_run.return_value = _completed("1\n")
        obj = _obj(
            config,
            conf,
            {"key": "net.a", "index": 0, "value": 2},
            {"key": "net.b", "index": 0, "value": 3},
        )
        assert obj.fix() == ExitCode.OK
        reloads = [c for c in mock_run.call_args_list if c.args[0][:2] == ["sysctl", "-e"]]
        assert len(reloads) == 1

    @patch("compobj.sysexec.run")
    def test_index_beyond_live_vector(self, mock_run, config: CompConfig, conf: Path):
        mock_run.return_value = _completed("1\n")
        obj = _obj(config, conf, {"key": "net.a", "index": 4, "value": 2})
        assert obj.fix() == ExitCode.NOK
        assert "net.a" not in conf.read_text()
