"""Locating the agent server binary."""

from __future__ import annotations

import os
from pathlib import Path
import shutil
import stat
import sys
from typing import TYPE_CHECKING

from agent_bridge.exceptions import BinaryNotFoundError
from agent_bridge.log import get_logger


if TYPE_CHECKING:
    from collections.abc import Sequence


logger = get_logger(__name__)

EXECUTABLE_MODE = 0o755


def executable_name(name: str) -> str:
    """Platform specific file name of an executable."""
    if sys.platform == "win32" and not name.lower().endswith(".exe"):
        return f"{name}.exe"
    return name


def _install_dirs() -> list[Path]:
    """Directories the desktop app installs its bundled binaries to."""
    home = Path.home()
    if sys.platform == "darwin":
        dirs: list[Path] = []
        for app in (Path("/Applications/Goose.app"), home / "Applications" / "Goose.app"):
            contents = app / "Contents"
            dirs.extend([
                contents / "Resources" / "app" / "bin",
                contents / "Resources" / "bin",
                contents / "MacOS",
                contents / "Resources",
                contents / "Resources" / "app.asar.unpacked" / "bin",
                contents / "Resources" / "app" / "node_modules" / ".bin",
            ])
        return dirs
    if sys.platform == "win32":
        local_app_data = Path(os.environ.get("LOCALAPPDATA") or home / "AppData" / "Local")
        program_files = Path(os.environ.get("ProgramFiles") or "C:\\Program Files")
        return [
            base / "resources" / sub
            for base in (local_app_data / "Programs" / "Goose", program_files / "Goose")
            for sub in ("app/bin", "bin", "app.asar.unpacked/bin")
        ]
    share = home / ".local" / "share" / "Goose" / "resources"
    return [
        Path("/opt/Goose/resources/app/bin"),
        Path("/opt/Goose/resources/bin"),
        Path("/opt/Goose/resources/app.asar.unpacked/bin"),
        Path("/usr/local/Goose/resources/app/bin"),
        Path("/usr/local/Goose/resources/bin"),
        Path("/usr/local/bin"),
        share / "app" / "bin",
        share / "bin",
        share / "app.asar.unpacked" / "bin",
    ]


def ensure_executable(path: Path) -> None:
    """Add the execute bit to a binary that lacks it. No-op on Windows.

    Raises:
        OSError: If the permissions cannot be changed
    """
    if sys.platform == "win32" or os.access(path, os.X_OK):
        return
    logger.warning("Binary is not executable, attempting chmod", path=str(path))
    path.chmod(EXECUTABLE_MODE)
    logger.info("Set executable permission", path=str(path))


def find_binary(name: str, extra_dirs: Sequence[str | os.PathLike[str]] = ()) -> Path:
    """Find the agent server binary.

    Searches `extra_dirs` first, then the desktop app install locations for
    the current platform, then `PATH`.

    Args:
        name: Binary name without platform suffix
        extra_dirs: Additional directories to search first

    Raises:
        BinaryNotFoundError: If no usable binary was found
    """
    exe = executable_name(name)
    candidates = [Path(d) / exe for d in extra_dirs] + [d / exe for d in _install_dirs()]
    logger.debug("Searching for binary", binary=exe, paths=[str(p) for p in candidates])
    for candidate in candidates:
        if not candidate.is_file():
            continue
        try:
            ensure_executable(candidate)
        except OSError:
            logger.exception("Failed to make binary executable", path=str(candidate))
            continue
        logger.info("Found binary", path=str(candidate))
        return candidate

    if found := shutil.which(exe):
        logger.info("Found binary on PATH", path=found)
        return Path(found)

    logger.error("Could not find binary", binary=exe, checked=[str(p) for p in candidates])
    msg = (
        f"Could not find the {name} executable. "
        "Please ensure Goose Desktop is installed or set an explicit binary path."
    )
    raise BinaryNotFoundError(exe, msg)
