"""Directory links from client skill folders to the canonical skill copy."""

import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path

logger = logging.getLogger(__name__)

LINKED = "linked"
JUNCTION = "junction"
COPIED = "copied"


def is_junction(path: Path) -> bool:
    """Check if a path is a Windows junction point."""
    if sys.platform != "win32":
        return False
    try:
        import ctypes
        FILE_ATTRIBUTE_REPARSE_POINT = 0x400
        attrs = ctypes.windll.kernel32.GetFileAttributesW(str(path))
        return attrs != -1 and bool(attrs & FILE_ATTRIBUTE_REPARSE_POINT)
    except (AttributeError, OSError):
        return False


def create_junction(source: Path, target: Path) -> bool:
    """Create a Windows junction point (directory link without elevation)."""
    if sys.platform != "win32":
        return False
    try:
        result = subprocess.run(
            ["cmd", "/c", "mklink", "/J", str(target), str(source)],
            capture_output=True,
            text=True,
        )
    except OSError:
        return False
    return result.returncode == 0


def relative_link_target(source: Path, link: Path) -> str:
    """Path to ``source`` as seen from the directory holding ``link``."""
    return os.path.relpath(Path(source), Path(link).parent)


def is_link_to(link: Path, source: Path) -> bool:
    """True if ``link`` is a symlink whose stored target is the relative path to ``source``."""
    link = Path(link)
    if not link.is_symlink():
        return False
    return os.readlink(link) == relative_link_target(source, link)


def create_link(source: Path, target: Path) -> str:
    """Link ``target`` to the directory ``source``.

    Strategy, in order:
    1. Relative symlink (Linux, macOS, Windows with Developer Mode)
    2. Junction point on Windows
    3. Physical copy

    The caller clears ``target`` first. Returns which strategy was used.
    Raises OSError only if the copy fallback fails too.
    """
    source = Path(source)
    target = Path(target)
    target.parent.mkdir(parents=True, exist_ok=True)

    try:
        target.symlink_to(relative_link_target(source, target), target_is_directory=True)
        return LINKED
    except OSError as e:
        logger.debug("Symlink %s -> %s failed: %s", target, source, e)

    if sys.platform == "win32" and source.is_dir():
        if create_junction(source.resolve(), target):
            return JUNCTION

    if source.is_dir():
        shutil.copytree(source, target)
    else:
        shutil.copy2(source, target)
    logger.info("Copied %s (symlink unavailable)", target)
    return COPIED
