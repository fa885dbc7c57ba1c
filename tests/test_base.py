"""Tests for the ComplianceObject base class and ObjInfo."""

from __future__ import annotations

import pytest
from pydantic import BaseModel

from compobj.base import ComplianceObject, ObjInfo, decode_payload, validate_rule
from compobj.config import CompConfig
from compobj.errors import IntakeError
from compobj.result import ExitCode


class _Rule(BaseModel):
    name: str
    code: int


class _Dummy(ComplianceObject):
    name = "dummy"
    rule_model = _Rule
    info = ObjInfo(default_prefix="OSVC_COMP_DUMMY_", example_value={"name": "a", "code": 0})

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fixed: list[str] = []

    def check_rule(self, rule: _Rule) -> ExitCode:
        self.verbose_info(f"check {rule.name}")
        return ExitCode(rule.code)

    def fix_rule(self, rule: _Rule) -> ExitCode:
        self.fixed.append(rule.name)
        return ExitCode(rule.code)


class TestIntake:
    def test_single_and_list_payloads(self):
        obj = _Dummy(config=CompConfig())
        obj.add('{"name": "a", "code": 0}')
        obj.add('[{"name": "b", "code": 1}, {"name": "c", "code": 2}]')
        assert [r.name for r in obj.rules] == ["a", "b", "c"]

    def test_invalid_json(self):
        with pytest.raises(IntakeError, match="invalid json"):
            decode_payload("{")

    def test_validation_error_is_intake_error(self):
        with pytest.raises(IntakeError, match="code"):
            validate_rule(_Rule, {"name": "a"})

    def test_reason_names_the_field(self):
        with pytest.raises(IntakeError) as exc_info:
            validate_rule(_Rule, {"name": "a", "code": "x"})
        assert str(exc_info.value).startswith("code: ")
        assert '{"name": "a", "code": "x"}' in str(exc_info.value)

    def test_rejected_payload_adds_nothing(self):
        obj = _Dummy(config=CompConfig())
        with pytest.raises(IntakeError):
            obj.add('[{"name": "a", "code": 0}, {"name": "b"}]')
        assert obj.rules == []


class TestPasses:
    def test_check_merges_and_is_verbose(self, capsys: pytest.CaptureFixture[str]):
        obj = _Dummy(config=CompConfig())
        obj.add('[{"name": "a", "code": 0}, {"name": "b", "code": 2}]')
        assert obj.check() is ExitCode.OK
        assert "check a" in capsys.readouterr().out

    def test_fix_continues_after_failure(self):
        obj = _Dummy(config=CompConfig())
        obj.add('[{"name": "a", "code": 1}, {"name": "b", "code": 0}]')
        assert obj.fix() is ExitCode.NOK
        assert obj.fixed == ["a", "b"]
        assert obj.verbose is False

    def test_fixable_is_na(self):
        assert _Dummy(config=CompConfig()).fixable() is ExitCode.NA

    def test_empty_rule_set_is_ok(self):
        assert _Dummy(config=CompConfig()).check() is ExitCode.OK


class TestObjInfo:
    def test_markdown_sections(self):
        info = ObjInfo(
            default_prefix="OSVC_COMP_X_",
            example_value={"path": "/tmp/x"},
            example_env={"OSVC_COMP_X_1": "v"},
            description="* one\n* two\n",
            form_definition="Desc: |\n  a form\n",
        )
        text = info.markdown()
        assert "default prefix : OSVC_COMP_X_" in text
        assert "    * one\n    * two\n" in text
        assert "Example environment" in text
        assert '        "path": "/tmp/x"' in text
        assert "    Desc: |\n      a form\n" in text

    def test_markdown_without_example_env(self):
        text = ObjInfo(default_prefix="P_", example_value=[]).markdown()
        assert "Example environment" not in text
        assert "Example rule" in text
