"""ComplianceObject base class and the ObjInfo manifest model."""

from __future__ import annotations

import json
import sys
import textwrap
from typing import Any, ClassVar

from pydantic import BaseModel, ValidationError

from compobj.config import CompConfig
from compobj.context import RuleContext
from compobj.errors import IntakeError
from compobj.result import ExitCode, merge_all


class ObjInfo(BaseModel):
    default_prefix: str
    example_value: Any = None
    example_env: Any = None
    description: str = ""
    form_definition: str = ""

    def markdown(self) -> str:
        """Render the manifest printed by the ``info`` action."""

        def indent(text: str) -> str:
            return textwrap.indent(text.rstrip("\n"), "    ") + "\n"

        sections = [
            "Environment variables\n=====================\n\n"
            f"default prefix : {self.default_prefix}\n",
            f"Description\n===========\n\n{indent(self.description)}",
        ]
        if self.example_env is not None:
            sections.append(
                "Example environment\n===================\n\n::\n\n"
                + indent(json.dumps(self.example_env, indent=4))
            )
        sections.append(
            "Example rule\n============\n\n::\n\n" + indent(json.dumps(self.example_value, indent=4))
        )
        sections.append("Form definition\n===============\n\n::\n\n" + indent(self.form_definition))
        return "\n".join(sections)


def decode_payload(payload: str) -> Any:
    try:
        return json.loads(payload)
    except json.JSONDecodeError as e:
        raise IntakeError(f"invalid json: {e}") from e


def validate_rule(model: type[BaseModel], data: Any) -> Any:
    """Validate one rule, converting pydantic errors to IntakeError."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        reasons = "; ".join(_reason(err) for err in e.errors())
        raise IntakeError(f"{reasons} in {json.dumps(data)}") from e


def _reason(err: Any) -> str:
    # model-level validators report an empty loc
    if not err["loc"]:
        return err["msg"]
    return f"{'.'.join(map(str, err['loc']))}: {err['msg']}"


class ComplianceObject:
    """One rule type: a rule list plus its check and fix logic."""

    name: ClassVar[str] = ""
    info: ClassVar[ObjInfo]
    rule_model: ClassVar[type[BaseModel]]

    def __init__(self, ctx: RuleContext | None = None, config: CompConfig | None = None) -> None:
        self.rules: list[Any] = []
        self.verbose = False
        self.ctx = ctx if ctx is not None else RuleContext()
        self.config = config if config is not None else CompConfig.from_env()

    # -- output -------------------------------------------------------------

    def info_msg(self, msg: str) -> None:
        print(msg, flush=True)

    def error_msg(self, msg: str) -> None:
        print(msg, file=sys.stderr, flush=True)

    def verbose_info(self, msg: str) -> None:
        if self.verbose:
            self.info_msg(msg)

    def verbose_error(self, msg: str) -> None:
        if self.verbose:
            self.error_msg(msg)

    # -- intake -------------------------------------------------------------

    def add(self, payload: str) -> None:
        """Decode one environment payload and append its rules.

        Every rule of the payload is validated before any is added.
        """
        rules = self.parse_payload(decode_payload(payload))
        for rule in rules:
            self.add_rule(rule)

    def parse_payload(self, data: Any) -> list[Any]:
        if isinstance(data, list):
            return [validate_rule(self.rule_model, item) for item in data]
        return [validate_rule(self.rule_model, data)]

    def add_rule(self, rule: Any) -> None:
        self.rules.append(rule)

    def finalize_intake(self) -> None:
        """Second intake pass, run once every payload has been added."""

    # -- convergence --------------------------------------------------------

    def begin_pass(self) -> None:
        """Hook run at the start of every check or fix pass."""

    def check_rule(self, rule: Any) -> ExitCode:
        raise NotImplementedError

    def fix_rule(self, rule: Any) -> ExitCode:
        raise NotImplementedError

    def check(self) -> ExitCode:
        self.verbose = True
        self.begin_pass()
        return merge_all(self.check_rule(rule) for rule in self.rules)

    def fix(self) -> ExitCode:
        self.verbose = False
        self.begin_pass()
        return merge_all(self.fix_rule(rule) for rule in self.rules)

    def fixable(self) -> ExitCode:
        return ExitCode.NA
