"""Tests for the group and groupmembership objects."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock, call, patch

import pytest

from compobj.config import CompConfig
from compobj.errors import IntakeError
from compobj.objects.group import GroupObject, split_name
from compobj.objects.groupmembership import GroupMembershipObject
from compobj.osdb import GroupEntry
from compobj.result import ExitCode
from compobj.sysexec import CommandError


def _completed(stdout: str = "", returncode: int = 0, stderr: str = "") -> MagicMock:
    result = MagicMock()
    result.stdout = stdout
    result.stderr = stderr
    result.returncode = returncode
    return result


@pytest.fixture
def group_obj(tmp_path: Path, config: CompConfig) -> GroupObject:
    group_file = tmp_path / "group"
    group_file.write_text("root:x:0:\nwheel:x:10:alice\napp:x:1000:\n")
    obj = GroupObject(config=config)
    obj.group_path = group_file
    obj.nsswitch_path = tmp_path / "nsswitch.conf"
    return obj


class TestSplitName:
    def test_absent_marker(self):
        assert split_name("-tibco") == ("tibco", True)
        assert split_name("tibco") == ("tibco", False)


class TestGroupIntake:
    def test_gid_required_for_presence(self, group_obj: GroupObject):
        with pytest.raises(IntakeError, match="gid"):
            group_obj.add('{"app": {}}')

    def test_absent_needs_no_gid(self, group_obj: GroupObject):
        group_obj.add('{"-games": {}}')
        assert group_obj.rules[0].absent

    def test_payload_must_be_a_dict(self, group_obj: GroupObject):
        with pytest.raises(IntakeError):
            group_obj.add('["app"]')

    def test_string_gid(self, group_obj: GroupObject):
        group_obj.add('{"app": {"gid": "1000"}}')
        assert group_obj.rules[0].gid == 1000

    def test_opposite_polarity_replaces(self, group_obj: GroupObject):
        group_obj.add('{"app": {"gid": 1000}}')
        group_obj.add('{"-app": {}}')
        assert len(group_obj.rules) == 1
        assert group_obj.rules[0].absent

    def test_same_polarity_first_wins(self, group_obj: GroupObject):
        group_obj.add('{"app": {"gid": 1000}}')
        group_obj.add('{"app": {"gid": 2000}}')
        assert [r.gid for r in group_obj.rules] == [1000]


class TestGroupCheck:
    def test_files_backend(self, group_obj: GroupObject):
        group_obj.add(json.dumps({"app": {"gid": 1000}, "wheel": {"gid": 11}, "-games": {}}))
        assert group_obj.check_rule(group_obj.rules[0]) == ExitCode.OK
        assert group_obj.check_rule(group_obj.rules[1]) == ExitCode.NOK
        assert group_obj.check_rule(group_obj.rules[2]) == ExitCode.OK

    @patch("compobj.sysexec.run")
    def test_getent_backend(self, mock_run, group_obj: GroupObject, tmp_path: Path):
        nsswitch = tmp_path / "nsswitch.conf"
        nsswitch.write_text("group: sss\n")
        group_obj.nsswitch_path = nsswitch
        mock_run.return_value = _completed("ldapgrp:*:5000:\n")
        group_obj.add('{"ldapgrp": {"gid": 5000}}')
        assert group_obj.check() == ExitCode.OK
        mock_run.assert_called_once_with(["getent", "group", "ldapgrp"])


class TestGroupFix:
    @patch("compobj.sysexec.run")
    def test_add_modify_delete(self, mock_run, group_obj: GroupObject):
        mock_run.return_value = _completed()
        group_obj.group_path.write_text("app:x:1000:\noldapp:x:1500:\n")
        group_obj.add(json.dumps({"new": {"gid": 3000}, "app": {"gid": 1001}, "-oldapp": {}}))
        assert group_obj.fix() == ExitCode.OK
        assert mock_run.call_args_list == [
            call(["groupadd", "-g", "3000", "new"], check=True),
            call(["groupmod", "-g", "1001", "app"], check=True),
            call(["groupdel", "oldapp"], check=True),
        ]

    @patch("compobj.sysexec.run")
    def test_protected_group_not_deleted(self, mock_run, group_obj: GroupObject, capsys):
        group_obj.add('{"-wheel": {}}')
        assert group_obj.fix() == ExitCode.NOK
        mock_run.assert_not_called()
        assert "cowardly refusing" in capsys.readouterr().err

    @patch("compobj.sysexec.run")
    def test_command_failure(self, mock_run, group_obj: GroupObject):
        mock_run.side_effect = CommandError("groupadd: exit code 4")
        group_obj.add('{"new": {"gid": 3000}}')
        assert group_obj.fix() == ExitCode.NOK


def _membership(config: CompConfig, payload: dict) -> GroupMembershipObject:
    obj = GroupMembershipObject(config=config)
    obj.add(json.dumps(payload))
    return obj


class TestGroupMembershipIntake:
    def test_members_merged_by_group(self, config: CompConfig):
        obj = _membership(config, {"tibco": {"members": ["a", "-b"]}})
        obj.add(json.dumps({"tibco": {"members": ["b", "c"]}}))
        assert len(obj.rules) == 1
        assert obj.rules[0].members == ["a", "-b", "c"]

    def test_empty_member(self, config: CompConfig):
        with pytest.raises(IntakeError):
            _membership(config, {"tibco": {"members": ["-"]}})


class TestGroupMembership:
    @pytest.fixture
    def system(self):
        """A fake NSS view: tibco group holds alice, bob's primary group is tibco."""
        groups = {"tibco": GroupEntry(name="tibco", gid=1000, members=["alice"])}
        users = {"alice": "alice", "bob": "tibco", "carol": "carol"}
        with (
            patch("compobj.osdb.getent_group", side_effect=groups.get),
            patch("compobj.osdb.getent", side_effect=lambda db, name: [name] if name in users else None),
            patch("compobj.osdb.primary_group", side_effect=users.__getitem__),
        ):
            yield

    def test_membership_and_primary_group(self, config: CompConfig, system):
        assert _membership(config, {"tibco": {"members": ["alice", "bob"]}}).check() == ExitCode.OK
        assert _membership(config, {"tibco": {"members": ["carol"]}}).check() == ExitCode.NOK
        assert _membership(config, {"tibco": {"members": ["-carol"]}}).check() == ExitCode.OK
        assert _membership(config, {"tibco": {"members": ["-alice"]}}).check() == ExitCode.NOK

    def test_missing_group_is_ok(self, config: CompConfig, system):
        assert _membership(config, {"nogroup": {"members": ["alice"]}}).check() == ExitCode.OK

    def test_missing_user_is_nok(self, config: CompConfig, system, capsys):
        assert _membership(config, {"tibco": {"members": ["ghost"]}}).check() == ExitCode.NOK
        assert "user ghost is missing" in capsys.readouterr().err

    @patch("compobj.sysexec.run")
    def test_fix(self, mock_run, config: CompConfig, system):
        mock_run.return_value = _completed()
        obj = _membership(config, {"tibco": {"members": ["carol", "-alice"]}})
        assert obj.fix() == ExitCode.OK
        assert mock_run.call_args_list == [
            call(["usermod", "-a", "-G", "tibco", "carol"], check=True),
            call(["gpasswd", "-d", "alice", "tibco"], check=True),
        ]

    @patch("compobj.sysexec.run")
    def test_primary_group_removal_refused(self, mock_run, config: CompConfig, system):
        obj = _membership(config, {"tibco": {"members": ["-bob"]}})
        assert obj.fix() == ExitCode.NOK
        mock_run.assert_not_called()
