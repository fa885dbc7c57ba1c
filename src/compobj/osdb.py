"""Readers for the local user and group databases and nsswitch.conf."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel, Field

from compobj import sysexec

logger = logging.getLogger(__name__)

NSSWITCH_PATH = Path("/etc/nsswitch.conf")
PASSWD_PATH = Path("/etc/passwd")
GROUP_PATH = Path("/etc/group")
SHADOW_PATH = Path("/etc/shadow")

_FILES_SOURCES = {"files", "compat"}


class PasswdEntry(BaseModel):
    name: str
    uid: int
    gid: int
    gecos: str = ""
    home: str = ""
    shell: str = ""


class GroupEntry(BaseModel):
    name: str
    gid: int
    members: list[str] = Field(default_factory=list)


class ShadowEntry(BaseModel):
    name: str
    hash: str = ""


def nsswitch_sources(database: str, path: str | Path = NSSWITCH_PATH) -> list[str] | None:
    """Return the sources listed for a database, or None when not configured."""
    path = Path(path)
    if not path.exists():
        return None
    for line in path.read_text().splitlines():
        line = line.split("#", 1)[0]
        fields = line.split()
        if fields and fields[0] == f"{database}:":
            return fields[1:]
    return None


def nsswitch_uses_files(database: str, path: str | Path = NSSWITCH_PATH) -> bool:
    """True when the database is served from local files.

    A missing nsswitch.conf or a missing database line means the libc
    default, which is files.
    """
    sources = nsswitch_sources(database, path)
    if sources is None:
        return True
    return any(source in _FILES_SOURCES for source in sources)


def _colon_lines(path: str | Path) -> list[list[str]]:
    rows = []
    for line in Path(path).read_text().splitlines():
        if not line.strip() or line.startswith(("#", "+", "-")):
            continue
        rows.append(line.split(":"))
    return rows


def parse_passwd_line(fields: list[str]) -> PasswdEntry | None:
    if len(fields) < 7:
        return None
    try:
        uid, gid = int(fields[2]), int(fields[3])
    except ValueError:
        logger.warning(f"skipping passwd entry {fields[0]}: invalid uid/gid")
        return None
    return PasswdEntry(
        name=fields[0],
        uid=uid,
        gid=gid,
        gecos=fields[4],
        home=fields[5],
        shell=fields[6],
    )


def parse_group_line(fields: list[str]) -> GroupEntry | None:
    if len(fields) < 4:
        return None
    try:
        gid = int(fields[2])
    except ValueError:
        logger.warning(f"skipping group entry {fields[0]}: invalid gid")
        return None
    members = [m for m in fields[3].split(",") if m]
    return GroupEntry(name=fields[0], gid=gid, members=members)


def read_passwd(path: str | Path = PASSWD_PATH) -> dict[str, PasswdEntry]:
    entries = {}
    for fields in _colon_lines(path):
        entry = parse_passwd_line(fields)
        if entry is not None:
            entries.setdefault(entry.name, entry)
    return entries


def read_group(path: str | Path = GROUP_PATH) -> dict[str, GroupEntry]:
    entries = {}
    for fields in _colon_lines(path):
        entry = parse_group_line(fields)
        if entry is not None:
            entries.setdefault(entry.name, entry)
    return entries


def read_shadow(path: str | Path = SHADOW_PATH) -> dict[str, ShadowEntry]:
    entries = {}
    for fields in _colon_lines(path):
        if len(fields) < 2:
            continue
        entries.setdefault(fields[0], ShadowEntry(name=fields[0], hash=fields[1]))
    return entries


def getent(database: str, key: str) -> list[str] | None:
    """Look an entry up through NSS. Returns None when the key is unknown."""
    result = sysexec.run(["getent", database, key])
    if result.returncode == 2:
        return None
    if result.returncode != 0:
        raise sysexec.CommandError(
            f"getent {database} {key}: exit code {result.returncode}",
            returncode=result.returncode,
            stderr=result.stderr.strip(),
        )
    line = result.stdout.strip().splitlines()
    if not line:
        return None
    return line[0].split(":")


def getent_group(name: str) -> GroupEntry | None:
    fields = getent("group", name)
    return parse_group_line(fields) if fields else None


def getent_passwd(name: str) -> PasswdEntry | None:
    fields = getent("passwd", name)
    return parse_passwd_line(fields) if fields else None


def primary_group(user: str) -> str:
    """Name of a user's primary group, through ``id -gn``."""
    return sysexec.run(["id", "-gn", user], check=True).stdout.strip()
