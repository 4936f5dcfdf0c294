"""Tests for locating the agent server binary."""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING

import pytest

from agent_bridge.exceptions import BinaryNotFoundError
from agent_bridge.server import binary
from agent_bridge.server.binary import ensure_executable, executable_name, find_binary


if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def no_system_binary(monkeypatch: pytest.MonkeyPatch):
    """Hide install locations and PATH so only explicit directories are searched."""
    monkeypatch.setattr(binary, "_install_dirs", list)
    monkeypatch.setattr(binary.shutil, "which", lambda name: None)


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX executable names")
def test_executable_name_posix():
    assert executable_name("goosed") == "goosed"


@pytest.mark.usefixtures("no_system_binary")
def test_find_binary_in_extra_dir(tmp_path: Path):
    target = tmp_path / executable_name("goosed")
    target.write_text("")
    target.chmod(0o755)
    assert find_binary("goosed", [tmp_path]) == target


@pytest.mark.usefixtures("no_system_binary")
def test_find_binary_not_found(tmp_path: Path):
    with pytest.raises(BinaryNotFoundError) as exc_info:
        find_binary("goosed", [tmp_path])
    assert "goosed" in str(exc_info.value)
    assert exc_info.value.path == executable_name("goosed")


def test_find_binary_falls_back_to_path(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    monkeypatch.setattr(binary, "_install_dirs", list)
    monkeypatch.setattr(binary.shutil, "which", lambda name: str(tmp_path / name))
    assert find_binary("goosed") == tmp_path / executable_name("goosed")


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
def test_ensure_executable_sets_mode(tmp_path: Path):
    target = tmp_path / "goosed"
    target.write_text("")
    target.chmod(0o644)
    ensure_executable(target)
    assert os.access(target, os.X_OK)


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
@pytest.mark.usefixtures("no_system_binary")
def test_find_binary_fixes_permissions(tmp_path: Path):
    target = tmp_path / "goosed"
    target.write_text("")
    target.chmod(0o644)
    assert find_binary("goosed", [tmp_path]) == target
    assert os.access(target, os.X_OK)
