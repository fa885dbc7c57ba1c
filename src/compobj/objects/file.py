"""File and directory existence, content, ownership and mode."""

from __future__ import annotations

import difflib
import logging
import os
import stat
from pathlib import Path

from pydantic import BaseModel, model_validator

from compobj import collector, fsutil
from compobj.base import ComplianceObject, ObjInfo
from compobj.errors import CompobjError
from compobj.result import ExitCode

logger = logging.getLogger(__name__)

_WILDCARDS_HELP = """
Special wildcards::

  %%ENV:VARNAME%%       Any environment variable value
  %%HOSTNAME%%          Hostname
  %%SHORT_HOSTNAME%%    Short hostname
"""


class FileRule(BaseModel):
    path: str
    mode: int | str | None = None
    uid: int | str | None = None
    gid: int | str | None = None
    fmt: str | None = None
    ref: str | None = None

    @model_validator(mode="after")
    def _validate(self) -> FileRule:
        if not self.path:
            raise ValueError("path is mandatory")
        if not self.path.startswith("/"):
            raise ValueError(f"path {self.path} must be absolute")
        if self.fmt is not None and self.ref:
            raise ValueError("fmt and ref are mutually exclusive")
        if self.mode is not None and self.mode != "":
            fsutil.parse_mode(self.mode)
        return self

    @property
    def is_dir(self) -> bool:
        return self.path.endswith("/")

    @property
    def has_content(self) -> bool:
        return not self.is_dir and (self.fmt is not None or bool(self.ref))

    @property
    def target_mode(self) -> int | None:
        if self.mode is None or self.mode == "":
            return None
        return fsutil.parse_mode(self.mode)

    def inline_content(self) -> bytes:
        """The fmt template as bytes, newline-terminated."""
        text = self.fmt or ""
        if not text.endswith("\n"):
            text += "\n"
        return text.encode()


class FileObject(ComplianceObject):
    name = "file"
    rule_model = FileRule
    info = ObjInfo(
        default_prefix="OSVC_COMP_FILE_",
        example_value={
            "path": "/some/path/to/file",
            "fmt": "root@corp.com     %%HOSTNAME%%@corp.com",
            "uid": 500,
            "gid": 500,
        },
        description=(
            "* Verify and install file content.\n"
            "* Verify and set file or directory ownership and permission\n"
            "* Directory mode is triggered if the path ends with /\n" + _WILDCARDS_HELP
        ),
        form_definition="""Desc: |
  A file rule, fed to the 'files' compliance object to create a directory or a file and set its ownership and permissions. For files, a reference content can be specified or pointed through an URL.
Css: comp48
Outputs:
  -
    Dest: compliance variable
    Class: file
    Type: json
    Format: dict
Inputs:
  -
    Id: path
    Label: Path
    DisplayModeLabel: path
    LabelCss: action16
    Mandatory: Yes
    Help: File path to install the reference content to. A path ending with '/' is treated as a directory and as such, its content need not be specified.
    Type: string
  -
    Id: mode
    Label: Permissions
    DisplayModeLabel: perm
    LabelCss: action16
    Help: "In octal form. Example: 644"
    Type: integer
  -
    Id: uid
    Label: Owner
    DisplayModeLabel: uid
    LabelCss: guy16
    Help: Either a user ID or a user name
    Type: string or integer
  -
    Id: gid
    Label: Owner group
    DisplayModeLabel: gid
    LabelCss: guy16
    Help: Either a group ID or a group name
    Type: string or integer
  -
    Id: ref
    Label: Content URL pointer
    DisplayModeLabel: ref
    LabelCss: loc
    Help: "Examples: http://server/path/to/reference_file, https://server/path/to/reference_file, safe://safe.uuid.f.ext"
    Type: string
  -
    Id: fmt
    Label: Content
    DisplayModeLabel: fmt
    LabelCss: hd16
    Css: pre
    Help: A reference content for the file. The text can embed substitution variables specified with %%ENV:VAR%%.
    Type: text
""",
    )

    # -- existence ----------------------------------------------------------

    def check_existence(self, rule: FileRule) -> ExitCode:
        path = Path(rule.path)
        if rule.is_dir:
            if path.is_dir():
                self.verbose_info(f"directory {rule.path} exists")
                return ExitCode.OK
            self.verbose_error(f"directory {rule.path} does not exist")
            return ExitCode.NOK
        if path.is_dir():
            self.verbose_error(f"file {rule.path} is a directory")
            return ExitCode.NOK
        if path.exists():
            self.verbose_info(f"file {rule.path} exists")
            return ExitCode.OK
        self.verbose_error(f"file {rule.path} does not exist")
        return ExitCode.NOK

    def fix_existence(self, rule: FileRule) -> ExitCode:
        path = Path(rule.path)
        try:
            if rule.is_dir:
                path.mkdir()
                self.info_msg(f"directory {rule.path} created")
            else:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.touch(exist_ok=False)
                self.info_msg(f"file {rule.path} created")
        except OSError as e:
            self.error_msg(f"file {rule.path} create: {e}")
            return ExitCode.NOK
        return ExitCode.OK

    # -- content ------------------------------------------------------------

    def target_content(self, rule: FileRule) -> bytes:
        if rule.ref:
            return collector.get_file(rule.ref, self.config)
        return rule.inline_content()

    def check_content(self, rule: FileRule) -> ExitCode:
        if not rule.has_content:
            return ExitCode.OK
        if rule.ref and collector.is_safe_ref(rule.ref):
            return self._check_safe_content(rule)
        try:
            target = self.target_content(rule)
        except CompobjError as e:
            self.verbose_error(f"file {rule.path} get target content: {e}")
            return ExitCode.NOK
        try:
            current = Path(rule.path).read_bytes()
        except OSError as e:
            self.verbose_error(f"file {rule.path} get current content: {e}")
            return ExitCode.NOK
        if current == target:
            self.verbose_info(f"file {rule.path} content on target")
            return ExitCode.OK
        diff = difflib.unified_diff(
            current.decode(errors="replace").splitlines(keepends=True),
            target.decode(errors="replace").splitlines(keepends=True),
            fromfile=rule.path,
            tofile=f"{rule.path}.tgt",
        )
        self.verbose_error("".join(diff).rstrip("\n"))
        return ExitCode.NOK

    def _check_safe_content(self, rule: FileRule) -> ExitCode:
        try:
            meta = collector.safe_file_meta(rule.ref or "", self.config)
        except CompobjError as e:
            self.verbose_error(f"file {rule.path} get safe file {rule.ref} metadata: {e}")
            return ExitCode.NOK
        try:
            current = fsutil.file_md5(rule.path)
        except OSError as e:
            self.verbose_error(f"file {rule.path} get current md5: {e}")
            return ExitCode.NOK
        if current == meta.md5:
            self.verbose_info(f"file {rule.path} md5 {current} on target")
            return ExitCode.OK
        self.verbose_error(f"file {rule.path} md5 should be {meta.md5} but is {current}")
        return ExitCode.NOK

    def fix_content(self, rule: FileRule) -> ExitCode:
        try:
            target = self.target_content(rule)
        except CompobjError as e:
            self.error_msg(f"file {rule.path} get target content: {e}")
            return ExitCode.NOK
        try:
            fsutil.backup(rule.path, self.config)
            fsutil.atomic_write(rule.path, target)
        except OSError as e:
            self.error_msg(f"file {rule.path} install content: {e}")
            return ExitCode.NOK
        self.info_msg(f"file {rule.path} rewritten")
        return ExitCode.OK

    # -- ownership ----------------------------------------------------------

    def _target_ids(self, rule: FileRule) -> tuple[int, int]:
        return fsutil.resolve_uid(rule.uid), fsutil.resolve_gid(rule.gid)

    def check_ownership(self, rule: FileRule) -> ExitCode:
        try:
            uid, gid = self._target_ids(rule)
        except LookupError as e:
            self.verbose_error(f"file {rule.path} resolve owner: {e}")
            return ExitCode.NOK
        if uid < 0 and gid < 0:
            return ExitCode.OK
        try:
            st = os.stat(rule.path)
        except OSError as e:
            self.verbose_error(f"file {rule.path} get current ownership: {e}")
            return ExitCode.NOK
        result = ExitCode.OK
        if uid >= 0:
            if st.st_uid != uid:
                self.verbose_error(f"file {rule.path} uid should be {uid} but is {st.st_uid}")
                result = ExitCode.NOK
            else:
                self.verbose_info(f"file {rule.path} uid is {uid}")
        if gid >= 0:
            if st.st_gid != gid:
                self.verbose_error(f"file {rule.path} gid should be {gid} but is {st.st_gid}")
                result = ExitCode.NOK
            else:
                self.verbose_info(f"file {rule.path} gid is {gid}")
        return result

    def fix_ownership(self, rule: FileRule) -> ExitCode:
        try:
            uid, gid = self._target_ids(rule)
            os.chown(rule.path, uid, gid)
        except (LookupError, OSError) as e:
            self.error_msg(f"file {rule.path} set ownership: {e}")
            return ExitCode.NOK
        self.info_msg(f"file {rule.path} ownership set to {uid}:{gid}")
        return ExitCode.OK

    # -- mode ---------------------------------------------------------------

    def check_mode(self, rule: FileRule) -> ExitCode:
        target = rule.target_mode
        if target is None:
            return ExitCode.OK
        try:
            current = stat.S_IMODE(os.stat(rule.path).st_mode)
        except OSError as e:
            self.verbose_error(f"file {rule.path} get current mode: {e}")
            return ExitCode.NOK
        if current == target:
            self.verbose_info(f"file {rule.path} mode is {target:o}")
            return ExitCode.OK
        self.verbose_error(f"file {rule.path} mode should be {target:o} but is {current:o}")
        return ExitCode.NOK

    def fix_mode(self, rule: FileRule) -> ExitCode:
        target = rule.target_mode
        if target is None:
            return ExitCode.OK
        try:
            os.chmod(rule.path, target)
        except OSError as e:
            self.error_msg(f"file {rule.path} set mode to {target:o}: {e}")
            return ExitCode.NOK
        self.info_msg(f"file {rule.path} mode set to {target:o}")
        return ExitCode.OK

    # -- rule ---------------------------------------------------------------

    def check_rule(self, rule: FileRule) -> ExitCode:
        if self.check_existence(rule) == ExitCode.NOK:
            return ExitCode.NOK
        result = self.check_content(rule)
        result = result.merge(self.check_ownership(rule))
        return result.merge(self.check_mode(rule))

    def fix_rule(self, rule: FileRule) -> ExitCode:
        steps = (
            (self.check_existence, self.fix_existence),
            (self.check_content, self.fix_content),
            (self.check_ownership, self.fix_ownership),
            (self.check_mode, self.fix_mode),
        )
        for check, fix in steps:
            if check(rule) == ExitCode.NOK and fix(rule) == ExitCode.NOK:
                return ExitCode.NOK
        return ExitCode.OK
