"""
Storage directory discovery.

Search order:
1. Explicit path (``--store``)
2. CK_STORAGE_PATH environment variable
3. .contextkeeper/ in the working directory
4. .contextkeeper/ in a parent directory (up to MAX_PARENT_LEVELS up)
5. Platform default (see get_global_default)

Nothing here creates directories.
"""

import os
import platform
from pathlib import Path
from typing import Optional, Union

LOCAL_DIR_NAME = ".contextkeeper"
STORAGE_PATH_ENV = "CK_STORAGE_PATH"
MAX_PARENT_LEVELS = 10


def get_global_default() -> Path:
    """
    Per-user storage directory for items not tied to a repository.

    - Windows: %APPDATA%\\ContextKeeper
    - macOS: ~/Library/Application Support/ContextKeeper
    - Linux/BSD: ~/.local/share/contextkeeper
    """
    system = platform.system()
    if system == "Windows":
        appdata = os.environ.get("APPDATA")
        base = Path(appdata) if appdata else Path.home() / "AppData" / "Roaming"
        return base / "ContextKeeper"
    if system == "Darwin":
        return Path.home() / "Library" / "Application Support" / "ContextKeeper"
    return Path.home() / ".local" / "share" / "contextkeeper"


def find_local_dir(start: Path) -> Optional[Path]:
    """Nearest .contextkeeper/ directory at or above ``start``, or None."""
    current = start
    for _ in range(MAX_PARENT_LEVELS + 1):
        candidate = current / LOCAL_DIR_NAME
        if candidate.is_dir():
            return candidate
        parent = current.parent
        if parent == current:
            break
        current = parent
    return None


def find_storage_path(
    explicit: Optional[Union[str, Path]] = None,
    *,
    cwd: Optional[Path] = None,
) -> Path:
    """
    Resolve the storage directory to use.

    Args:
        explicit: Path given on the command line, used as-is
        cwd: Directory to start the local search from (default: os.getcwd())

    Returns:
        A directory path, or a path to items.json when the caller or
        environment named the file directly
    """
    if explicit:
        return Path(explicit).expanduser()

    env_path = os.environ.get(STORAGE_PATH_ENV)
    if env_path:
        return Path(env_path).expanduser()

    start = (cwd or Path.cwd()).resolve()
    local = find_local_dir(start)
    if local is not None:
        return local

    return get_global_default()


def storage_dir(path: Path) -> Path:
    """Directory part of a resolved storage path (strips a trailing items.json)."""
    from .item_store import ITEMS_FILENAME
    return path.parent if path.name == ITEMS_FILENAME else path
