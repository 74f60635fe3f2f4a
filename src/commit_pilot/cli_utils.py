"""Utilities for finding the external commit tool.

Provides cross-platform discovery of the tool executable, which is usually
installed with pip/pipx into a user-level bin directory that may not be on
PATH for GUI-launched shells.
"""

import os
import shutil
import sys
from pathlib import Path
from typing import Optional


def _candidate_paths(name: str) -> list[Path]:
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        candidates = [Path.home() / ".local" / "bin" / f"{name}.exe"]
        if appdata:
            candidates.append(Path(appdata) / "Python" / "Scripts" / f"{name}.exe")
        return candidates

    return [
        Path.home() / ".local" / "bin" / name,
        Path("/usr/local/bin") / name,
        Path("/opt/homebrew/bin") / name,
    ]


def find_tool_executable(name: str) -> Optional[str]:
    """Find an executable by name or path.

    Searches in order:
    1. An explicit path, if `name` contains a directory part
    2. PATH (via shutil.which)
    3. Common user-level installation directories

    Returns:
        Path to the executable, or None if not found.
    """
    if not name:
        return None

    if os.path.dirname(name):
        path = Path(name).expanduser()
        return str(path) if path.exists() else None

    found = shutil.which(name)
    if found:
        return found

    for candidate in _candidate_paths(name):
        if candidate.exists():
            return str(candidate)

    return None


def resolve_tool_executable(name: str) -> str:
    """Resolve `name` to a full path when possible.

    An unresolvable name is returned unchanged so the spawn itself reports
    the failure.
    """
    return find_tool_executable(name) or name
