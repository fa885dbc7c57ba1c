"""Name to compliance object class mapping."""

from __future__ import annotations

from compobj.base import ComplianceObject
from compobj.objects.authkey import AuthkeyObject
from compobj.objects.file import FileObject
from compobj.objects.fileinc import FileincObject
from compobj.objects.fileprop import FilePropObject
from compobj.objects.group import GroupObject
from compobj.objects.groupmembership import GroupMembershipObject
from compobj.objects.keyval import KeyvalObject
from compobj.objects.linux_mpath import LinuxMpathObject
from compobj.objects.nodeconf import NodeconfObject
from compobj.objects.package import PackageObject
from compobj.objects.sudoers import SudoersObject
from compobj.objects.symlink import SymlinkObject
from compobj.objects.sysctl import SysctlObject
from compobj.objects.user import UserObject
from compobj.objects.zprop import ZfsObject, ZpoolObject

BUNDLE_NAME = "compobj"

OBJECTS: dict[str, type[ComplianceObject]] = {
    cls.name: cls
    for cls in (
        AuthkeyObject,
        FileObject,
        FilePropObject,
        SymlinkObject,
        SudoersObject,
        FileincObject,
        KeyvalObject,
        NodeconfObject,
        SysctlObject,
        LinuxMpathObject,
        GroupObject,
        GroupMembershipObject,
        UserObject,
        PackageObject,
        ZfsObject,
        ZpoolObject,
    )
}


def names() -> list[str]:
    return sorted(OBJECTS)


def lookup(name: str) -> type[ComplianceObject] | None:
    return OBJECTS.get(name)
