"""sudoers files: file convergence gated by a visudo syntax check."""

from __future__ import annotations

import os
import tempfile

from compobj import sysexec
from compobj.base import ObjInfo
from compobj.errors import CompobjError
from compobj.objects.file import FileObject, FileRule
from compobj.result import ExitCode


class SudoersObject(FileObject):
    name = "sudoers"
    info = ObjInfo(
        default_prefix="OSVC_COMP_SUDOERS_",
        example_value={
            "path": "/etc/sudoers.d/opensvc",
            "fmt": "%%ENV:ADMIN_GROUP%% ALL=(ALL) NOPASSWD: ALL",
            "uid": 0,
            "gid": 0,
            "mode": 440,
        },
        description=(
            "* Verify and install sudoers files.\n"
            "* The target content is validated with 'visudo -c' before any install.\n"
            "* A rule failing the syntax check is reported as not compliant and never installed.\n"
        ),
        form_definition="""Desc: |
  A sudoers rule, fed to the 'sudoers' compliance object to install a sudoers file after validating its syntax.
Css: comp48
Outputs:
  -
    Dest: compliance variable
    Class: sudoers
    Type: json
    Format: dict
Inputs:
  -
    Id: path
    Label: Path
    DisplayModeLabel: path
    LabelCss: action16
    Mandatory: Yes
    Help: The sudoers file path, usually under /etc/sudoers.d/.
    Type: string
  -
    Id: fmt
    Label: Content
    DisplayModeLabel: fmt
    LabelCss: hd16
    Css: pre
    Help: The sudoers content.
    Type: text
  -
    Id: ref
    Label: Content URL pointer
    DisplayModeLabel: ref
    LabelCss: loc
    Help: An URL or safe reference pointing to the sudoers content.
    Type: string
  -
    Id: mode
    Label: Permissions
    DisplayModeLabel: perm
    LabelCss: action16
    Help: "In octal form. Example: 440"
    Type: integer
  -
    Id: uid
    Label: Owner
    DisplayModeLabel: uid
    LabelCss: guy16
    Type: string or integer
  -
    Id: gid
    Label: Owner group
    DisplayModeLabel: gid
    LabelCss: guy16
    Type: string or integer
""",
    )

    visudo = "visudo"

    def check_syntax(self, rule: FileRule) -> ExitCode:
        """Run ``visudo -c -f`` against the target content."""
        if not rule.has_content:
            return ExitCode.OK
        try:
            content = self.target_content(rule)
        except CompobjError as e:
            self.error_msg(f"sudoers {rule.path} get target content: {e}")
            return ExitCode.NOK
        fd, tmp_name = tempfile.mkstemp(prefix="compobj-sudoers-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)
            result = sysexec.run([self.visudo, "-c", "-f", tmp_name])
        except (OSError, CompobjError) as e:
            self.error_msg(f"sudoers {rule.path} syntax check: {e}")
            return ExitCode.NOK
        finally:
            os.unlink(tmp_name)
        if result.returncode != 0:
            detail = (result.stderr or result.stdout).strip()
            self.error_msg(f"sudoers {rule.path} target content syntax error: {detail}")
            return ExitCode.NOK
        self.verbose_info(f"sudoers {rule.path} target content syntax ok")
        return ExitCode.OK

    def check_rule(self, rule: FileRule) -> ExitCode:
        if self.check_syntax(rule) == ExitCode.NOK:
            return ExitCode.NOK
        return super().check_rule(rule)

    def fix_rule(self, rule: FileRule) -> ExitCode:
        if self.check_syntax(rule) == ExitCode.NOK:
            return ExitCode.NOK
        return super().fix_rule(rule)
