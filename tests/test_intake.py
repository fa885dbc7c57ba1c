"""Tests for environment rule intake and wildcard substitution."""

from __future__ import annotations

import json

import pytest

from compobj.config import CompConfig
from compobj.intake import load_rules, subst
from compobj.objects.keyval import KeyvalObject
from compobj.objects.symlink import SymlinkObject


class TestSubst:
    def test_hostname_wildcards(self):
        text = "root@corp.com %%HOSTNAME%%@corp.com %%SHORT_HOSTNAME%%"
        assert subst(text, {}, "node1.corp.com") == "root@corp.com node1.corp.com@corp.com node1"

    def test_env_wildcard_gets_comp_prefix(self):
        env = {"OSVC_COMP_ADMIN_GROUP": "%admins"}
        assert subst("%%ENV:ADMIN_GROUP%% ALL", env, "h") == "%admins ALL"

    def test_env_wildcard_keeps_osvc_names(self):
        env = {"OSVC_PATH_VAR": "/var/lib/opensvc"}
        assert subst("%%ENV:OSVC_PATH_VAR%%/x", env, "h") == "/var/lib/opensvc/x"

    def test_missing_env_is_empty(self):
        assert subst("[%%ENV:NOPE%%]", {}, "h") == "[]"


class TestLoadRules:
    def test_only_prefixed_keys_are_loaded(self, config: CompConfig):
        obj = SymlinkObject(config=config)
        env = {
            "OSVC_COMP_SYMLINK_1": json.dumps({"symlink": "/tmp/a", "target": "/tmp/b"}),
            "OSVC_COMP_OTHER_1": json.dumps({"symlink": "/tmp/c", "target": "/tmp/d"}),
        }
        assert load_rules(obj, "OSVC_COMP_SYMLINK_", env) == 1
        assert [r.symlink for r in obj.rules] == ["/tmp/a"]

    def test_sorted_key_order(self, config: CompConfig):
        obj = SymlinkObject(config=config)
        env = {
            "OSVC_COMP_SYMLINK_B": json.dumps({"symlink": "/tmp/b", "target": "/x"}),
            "OSVC_COMP_SYMLINK_A": json.dumps({"symlink": "/tmp/a", "target": "/x"}),
        }
        load_rules(obj, "OSVC_COMP_SYMLINK_", env)
        assert [r.symlink for r in obj.rules] == ["/tmp/a", "/tmp/b"]

    def test_substitutes_before_decoding(self, config: CompConfig):
        obj = SymlinkObject(config=config)
        env = {"OSVC_COMP_SYMLINK_1": json.dumps({"symlink": "/tmp/%%SHORT_HOSTNAME%%", "target": "/x"})}
        load_rules(obj, "OSVC_COMP_SYMLINK_", env)
        assert obj.rules[0].symlink == "/tmp/node1"

    def test_bad_payloads_are_skipped(self, config: CompConfig, capsys: pytest.CaptureFixture[str]):
        obj = SymlinkObject(config=config)
        env = {
            "OSVC_COMP_SYMLINK_1": "{not json",
            "OSVC_COMP_SYMLINK_2": json.dumps({"symlink": "/tmp/a"}),
            "OSVC_COMP_SYMLINK_3": json.dumps({"symlink": "/tmp/b", "target": "/x"}),
        }
        assert load_rules(obj, "OSVC_COMP_SYMLINK_", env) == 1
        err = capsys.readouterr().err
        assert "incompatible data: OSVC_COMP_SYMLINK_1" in err
        assert "incompatible data: OSVC_COMP_SYMLINK_2" in err

    def test_payload_is_all_or_nothing(self, config: CompConfig):
        obj = SymlinkObject(config=config)
        payload = [{"symlink": "/tmp/a", "target": "/x"}, {"symlink": "/tmp/b"}]
        load_rules(obj, "OSVC_COMP_SYMLINK_", {"OSVC_COMP_SYMLINK_1": json.dumps(payload)})
        assert obj.rules == []

    def test_finalize_runs_after_all_payloads(self, config: CompConfig, capsys: pytest.CaptureFixture[str]):
        obj = KeyvalObject(config=config)
        env = {
            "OSVC_COMP_KEYVAL_1": json.dumps({"path": "/etc/f", "keys": [{"key": "A", "op": "=", "value": 1}]}),
            "OSVC_COMP_KEYVAL_2": json.dumps({"path": "/etc/f", "keys": [{"key": "A", "op": "unset"}]}),
        }
        assert load_rules(obj, "OSVC_COMP_KEYVAL_", env) == 2
        assert obj.rules == []
        assert "blacklisted" in capsys.readouterr().err
