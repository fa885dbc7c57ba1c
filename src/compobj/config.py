"""Runtime configuration read from the agent-provided environment."""

from __future__ import annotations

import logging
import os
import socket
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

_FALSE_VALUES = {"false", "0", "no", "off"}
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _hostname() -> str:
    return socket.gethostname()


@dataclass
class CompConfig:
    path_var: str = ""
    session_uuid: str = ""
    os_name: str = ""
    os_vendor: str = ""
    os_arch: str = ""
    hostname: str = ""
    collector_url: str = ""
    collector_user: str = ""
    collector_password: str = ""
    tls_verify: bool = True
    om_bin: str = "om"
    log_level: str = "WARNING"
    backup_retention_days: int = 7

    @property
    def short_hostname(self) -> str:
        return self.hostname.split(".")[0]

    @property
    def backup_root(self) -> Path | None:
        if not self.path_var:
            return None
        return Path(self.path_var) / "compliance_backup"

    @property
    def backup_dir(self) -> Path | None:
        """Per-session backup directory, or None when backups are disabled."""
        root = self.backup_root
        if root is None or not self.session_uuid:
            return None
        return root / self.session_uuid

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> CompConfig:
        env = os.environ if environ is None else environ
        hostname = env.get("OSVC_COMP_NODES_NODENAME") or _hostname()

        log_level = env.get("OSVC_COMP_LOG_LEVEL", "WARNING").upper()
        if log_level not in _LOG_LEVELS:
            logger.warning(f"Ignoring unknown OSVC_COMP_LOG_LEVEL {log_level!r}")
            log_level = "WARNING"

        return cls(
            path_var=env.get("OSVC_PATH_VAR", ""),
            session_uuid=env.get("OSVC_SESSION_UUID", ""),
            os_name=env.get("OSVC_COMP_NODES_OS_NAME", ""),
            os_vendor=env.get("OSVC_COMP_NODES_OS_VENDOR", ""),
            os_arch=env.get("OSVC_COMP_NODES_OS_ARCH", ""),
            hostname=hostname,
            collector_url=env.get("OSVC_COMP_COLLECTOR_URL", "").rstrip("/"),
            collector_user=env.get("OSVC_COMP_COLLECTOR_USER", hostname),
            collector_password=env.get("OSVC_COMP_COLLECTOR_PASSWORD", ""),
            tls_verify=env.get("OSVC_COMP_TLS_VERIFY", "true").lower() not in _FALSE_VALUES,
            om_bin=env.get("OSVC_COMP_OM_BIN") or "om",
            log_level=log_level,
        )
