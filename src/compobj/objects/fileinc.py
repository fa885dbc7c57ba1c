"""Lines of a file matched by a regular expression: presence or substitution."""

from __future__ import annotations

import logging
import re
from pathlib import Path

from pydantic import AliasChoices, BaseModel, Field, model_validator

from compobj import collector, fsutil
from compobj.base import ComplianceObject, ObjInfo
from compobj.errors import CompobjError
from compobj.result import ExitCode

logger = logging.getLogger(__name__)

MAX_SIZE = 8 * 1024 * 1024


class FileincRule(BaseModel):
    path: str
    check: str | None = None
    replace: str | None = None
    fmt: str | None = None
    ref: str | None = None
    strict_fmt: bool = Field(default=True, validation_alias=AliasChoices("strict_fmt", "strict_Fmt"))

    @model_validator(mode="after")
    def _validate(self) -> FileincRule:
        self.path = self.path.strip()
        if not self.path:
            raise ValueError("path is mandatory")
        if not self.check and not self.replace:
            raise ValueError("check or replace is mandatory")
        if self.check and self.replace:
            raise ValueError("check and replace are mutually exclusive")
        if self.fmt and self.ref:
            raise ValueError("fmt and ref are mutually exclusive")
        try:
            re.compile(self.pattern)
        except re.error as e:
            raise ValueError(f"the regex {self.pattern!r} does not compile: {e}") from e
        return self

    @property
    def pattern(self) -> str:
        return self.check or self.replace or ""


class FileincObject(ComplianceObject):
    name = "fileinc"
    rule_model = FileincRule
    info = ObjInfo(
        default_prefix="OSVC_COMP_FILEINC_",
        example_value={
            "path": "/tmp/foo",
            "check": ".*some pattern.*",
            "fmt": "full added content with %%HOSTNAME%%@corp.com: some pattern into the file",
        },
        description=(
            "* Verify or change file content.\n"
            "* The fmt must match the check pattern ['check' statement]\n"
            "* The fmt is used to substitute any string matching the replace pattern ['replace' statement]\n"
        ),
        form_definition="""Desc: |
  A fileinc rule, fed to the 'fileinc' compliance object to verify a line matching the 'check' regular expression is present in the specified file. Alternatively, the 'replace' statement can be used to substitute any matching expression by string provided by 'fmt' or 'ref' content.
Css: comp48
Outputs:
  -
    Dest: compliance variable
    Class: fileinc
    Type: json
    Format: dict
Inputs:
  -
    Id: path
    Label: Path
    DisplayModeLabel: path
    LabelCss: hd16
    Mandatory: Yes
    Help: File path to search the matching line into.
    Type: string
  -
    Id: check
    Label: Check regexp
    DisplayModeLabel: check
    LabelCss: action16
    Help: A regular expression. Matching the regular expression is sufficient to grant compliance. It is required to use either 'check' or 'replace'.
    Type: string
  -
    Id: replace
    Label: Replace regexp
    DisplayModeLabel: replace
    LabelCss: action16
    Help: A regular expression. Any pattern matched by the regular expression will be replaced. It is required to use either 'check' or 'replace'.
    Type: string
  -
    Id: fmt
    Label: Format
    DisplayModeLabel: fmt
    LabelCss: action16
    Help: The line installed if the check pattern is not found in the file.
    Type: string
  -
    Id: strict_fmt
    Label: Strict Format
    DisplayModeLabel: strict fmt
    LabelCss: action16
    Help: Consider a line matching the check regexp invalid if the line is not strictly the same as fmt.
    Type: boolean
    Default: True
  -
    Id: ref
    Label: URL to format
    DisplayModeLabel: ref
    LabelCss: loc
    Help: An URL pointing to a file containing the line installed if the check pattern is not found in the file.
    Type: string
""",
    )

    def target_line(self, rule: FileincRule) -> str:
        if rule.ref:
            return collector.get_file(rule.ref, self.config).decode().rstrip("\n")
        return rule.fmt or ""

    def read_lines(self, rule: FileincRule) -> list[str] | None:
        path = Path(rule.path)
        try:
            size = path.stat().st_size
            if size > MAX_SIZE:
                self.error_msg(f"file {rule.path} is too large [{size / (1024 * 1024):.2f} Mb] to fit")
                return None
            return path.read_text().splitlines()
        except FileNotFoundError:
            self.error_msg(f"the file {rule.path} does not exist")
        except OSError as e:
            self.error_msg(f"{rule.path}: {e}")
        return None

    def _prepare(self, rule: FileincRule) -> tuple[list[str], str] | None:
        lines = self.read_lines(rule)
        if lines is None:
            return None
        try:
            target = self.target_line(rule)
        except CompobjError as e:
            self.error_msg(f"{rule.path} get target content: {e}")
            return None
        return lines, target

    # -- check mode ---------------------------------------------------------

    def check_match(self, rule: FileincRule, lines: list[str], target: str) -> ExitCode:
        regex = re.compile(rule.pattern)
        if target and not regex.search(target):
            self.verbose_error(f"rule error: '{rule.pattern}' does not match target content")
            return ExitCode.NOK
        matches = [line for line in lines if regex.search(line)]
        if not target:
            if matches:
                self.verbose_info(f"pattern '{rule.pattern}' found in {rule.path}")
                return ExitCode.OK
            self.verbose_error(f"pattern '{rule.pattern}' not found in {rule.path}")
            return ExitCode.NOK
        if not matches:
            self.verbose_error(f"line '{target}' not found in {rule.path}")
            return ExitCode.NOK
        result = ExitCode.OK
        if len(matches) > 1:
            self.verbose_error(f"duplicate match of pattern '{rule.pattern}' in {rule.path}")
            result = ExitCode.NOK
        if rule.strict_fmt and matches[0] != target:
            self.verbose_error(f"pattern '{rule.pattern}' found in {rule.path} but not strictly equal to target")
            return ExitCode.NOK
        self.verbose_info(f"line '{matches[0]}' found in {rule.path}")
        return result

    def fix_match(self, rule: FileincRule, lines: list[str], target: str) -> list[str] | None:
        regex = re.compile(rule.pattern)
        if target and not regex.search(target):
            self.error_msg(f"rule error: '{rule.pattern}' does not match target content")
            return None
        new_lines = []
        matched = 0
        for number, line in enumerate(lines, 1):
            if not regex.search(line):
                new_lines.append(line)
                continue
            matched += 1
            if matched > 1:
                self.info_msg(f"remove duplicate line {rule.path}:{number}:'{line}'")
                continue
            if rule.strict_fmt and target and line != target:
                self.info_msg(f"rewrite {rule.path}:{number}:'{line}', new content: '{target}'")
                line = target
            new_lines.append(line)
        if not matched and target:
            self.info_msg(f"add line '{target}' to {rule.path}")
            new_lines.append(target)
        return new_lines

    # -- replace mode -------------------------------------------------------

    def _substitute(self, regex: re.Pattern[str], line: str, target: str) -> str:
        if line == target:
            return line
        return regex.sub(lambda m: target, line)

    def check_replace(self, rule: FileincRule, lines: list[str], target: str) -> ExitCode:
        regex = re.compile(rule.pattern)
        result = ExitCode.OK
        for line in lines:
            if self._substitute(regex, line, target) == line:
                continue
            for match in regex.finditer(line):
                self.verbose_error(f"{rule.path} : string '{match.group(0)}' should be replaced by '{target}' in line '{line}'")
            result = ExitCode.NOK
        if result == ExitCode.OK:
            self.verbose_info(f"{rule.path} : no string to replace with '{target}'")
        return result

    def fix_replace(self, rule: FileincRule, lines: list[str], target: str) -> list[str]:
        regex = re.compile(rule.pattern)
        self.info_msg(f"replace the pattern {rule.pattern} with {target} in file {rule.path}")
        return [self._substitute(regex, line, target) for line in lines]

    # -- rule ---------------------------------------------------------------

    def check_rule(self, rule: FileincRule) -> ExitCode:
        prepared = self._prepare(rule)
        if prepared is None:
            return ExitCode.NOK
        lines, target = prepared
        if rule.check:
            return self.check_match(rule, lines, target)
        return self.check_replace(rule, lines, target)

    def fix_rule(self, rule: FileincRule) -> ExitCode:
        if self.check_rule(rule) == ExitCode.OK:
            return ExitCode.OK
        prepared = self._prepare(rule)
        if prepared is None:
            return ExitCode.NOK
        lines, target = prepared
        if rule.check:
            new_lines = self.fix_match(rule, lines, target)
        else:
            new_lines = self.fix_replace(rule, lines, target)
        if new_lines is None:
            return ExitCode.NOK
        try:
            fsutil.backup(rule.path, self.config)
            fsutil.atomic_write(rule.path, "".join(f"{line}\n" for line in new_lines))
        except OSError as e:
            self.error_msg(f"{rule.path}: {e}")
            return ExitCode.NOK
        return ExitCode.OK
