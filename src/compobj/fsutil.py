"""File helpers: atomic replace, session backups, ownership and mode parsing."""

from __future__ import annotations

import grp
import hashlib
import logging
import os
import pwd
import shutil
import tempfile
import time
from pathlib import Path

from compobj.config import CompConfig

logger = logging.getLogger(__name__)


def atomic_write(path: str | Path, data: bytes | str, *, like: str | Path | None = None) -> None:
    """Replace path with data through a temp file in the same directory.

    When the target (or ``like``) exists, its permission bits and owner are
    applied to the temp file before the rename.
    """
    path = Path(path)
    if isinstance(data, str):
        data = data.encode()
    reference = Path(like) if like is not None else path
    try:
        st = reference.stat()
    except FileNotFoundError:
        st = None

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.compobj-")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        if st is not None:
            os.chmod(tmp_name, st.st_mode & 0o7777)
            if (st.st_uid, st.st_gid) != _owner(tmp_name):
                os.chown(tmp_name, st.st_uid, st.st_gid)
        else:
            os.chmod(tmp_name, 0o666 & ~_umask())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


def _owner(path: str | Path) -> tuple[int, int]:
    st = os.stat(path)
    return st.st_uid, st.st_gid


def backup(path: str | Path, config: CompConfig) -> Path | None:
    """Copy path into the session backup directory, once per session."""
    path = Path(path)
    backup_dir = config.backup_dir
    if backup_dir is None or not path.is_file():
        return None
    dest = backup_dir / str(path.resolve()).lstrip(os.sep)
    if dest.exists():
        return None
    dest.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    shutil.copy2(path, dest)
    logger.info(f"backup {path} => {dest}")
    remove_old_backups(config)
    return dest


def remove_old_backups(config: CompConfig) -> list[Path]:
    """Drop session backup directories older than the retention period."""
    root = config.backup_root
    if root is None or not root.is_dir():
        return []
    threshold = time.time() - config.backup_retention_days * 86400
    removed = []
    for entry in root.iterdir():
        if not entry.is_dir() or entry.stat().st_mtime > threshold:
            continue
        shutil.rmtree(entry)
        removed.append(entry)
        logger.info(f"removed expired backup dir {entry}")
    return removed


def resolve_uid(value: int | str | None) -> int:
    """Map a user name or id to a uid. -1 means "don't care"."""
    if value is None or value == "":
        return -1
    if isinstance(value, int):
        return value if value >= 0 else -1
    if value.lstrip("-").isdigit():
        return max(int(value), -1)
    try:
        return pwd.getpwnam(value).pw_uid
    except KeyError:
        raise LookupError(f"user {value} not found")


def resolve_gid(value: int | str | None) -> int:
    """Map a group name or id to a gid. -1 means "don't care"."""
    if value is None or value == "":
        return -1
    if isinstance(value, int):
        return value if value >= 0 else -1
    if value.lstrip("-").isdigit():
        return max(int(value), -1)
    try:
        return grp.getgrnam(value).gr_gid
    except KeyError:
        raise LookupError(f"group {value} not found")


def parse_mode(value: int | str) -> int:
    """Read a permission written as octal digits: 644, "644" or "0644"."""
    text = str(value).strip()
    if not text or not text.isdigit():
        raise ValueError(f"invalid mode {value!r}")
    return int(text, 8)


def file_md5(path: str | Path) -> str:
    digest = hashlib.md5()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()
