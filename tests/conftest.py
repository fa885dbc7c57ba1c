"""Shared fixtures for compobj tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from compobj.config import CompConfig
from compobj.context import RuleContext


@pytest.fixture
def config(tmp_path: Path) -> CompConfig:
    """A config with session backups under tmp_path and no collector."""
    return CompConfig(
        path_var=str(tmp_path / "var"),
        session_uuid="0c6d6e3c-1d54-4b55-9a2f-5d0b0c5b1f00",
        os_name="Linux",
        os_vendor="Debian",
        hostname="node1.example.com",
    )


@pytest.fixture
def ctx() -> RuleContext:
    return RuleContext()
