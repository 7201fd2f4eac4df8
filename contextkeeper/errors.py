"""
Error types for the item store, and error logging for the ck CLI.

The store raises; it never prints or prompts. The CLI catches
``StoreError`` for clean one-line messages and logs anything unexpected
with a full stack trace.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .types import ContextItem


class StoreError(Exception):
    """Base class for item store errors."""


class ItemNotFoundError(StoreError, LookupError):
    """No item has the requested ID, or no ID starts with the requested prefix."""

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"item not found: {item_id}")


class AmbiguousIDError(StoreError, LookupError):
    """A prefix matches more than one item.

    ``matches`` holds copies of every matching item in store order, so
    callers can list the candidates without querying again.
    """

    def __init__(self, prefix: str, matches: "list[ContextItem]"):
        self.prefix = prefix
        self.matches = matches
        super().__init__(f"ambiguous ID: {len(matches)} items match {prefix!r}")


class DuplicateItemError(StoreError, ValueError):
    """An item with this ID is already stored."""

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"duplicate item ID: {item_id}")


class StoreIOError(StoreError, OSError):
    """Reading, writing or locking the backing file failed."""

    def __init__(self, operation: str, path: Path, cause: Optional[BaseException] = None):
        self.operation = operation
        self.path = Path(path)
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"failed to {operation} {self.path}{detail}")


class StoreDecodeError(StoreError, ValueError):
    """The backing file is not a JSON array of items."""

    def __init__(self, path: Path, cause: Optional[BaseException] = None):
        self.path = Path(path)
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"failed to decode {self.path}{detail}")


class StoreEncodeError(StoreError, ValueError):
    """An item holds a value that cannot be written to the backing file."""

    def __init__(self, path: Path, cause: Optional[BaseException] = None):
        self.path = Path(path)
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"failed to encode items for {self.path}{detail}")


ERROR_LOG_FILENAME = "ck-errors.log"


def _error_log_path(store_dir: Optional[Path] = None) -> Path:
    """Resolve error log path: the store in use, then CK_STORAGE_PATH, then home."""
    if store_dir is not None:
        return Path(store_dir) / ERROR_LOG_FILENAME
    store = os.environ.get("CK_STORAGE_PATH")
    if store:
        store_path = Path(store).expanduser()
        if store_path.name == "items.json":
            store_path = store_path.parent
        return store_path / ERROR_LOG_FILENAME
    return Path.home() / ".contextkeeper" / ERROR_LOG_FILENAME


def log_exception(exc: Exception, context: str = "", store_dir: Optional[Path] = None) -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)
        store_dir: Storage directory of the command, when it was resolved

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path(store_dir)
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(exc)))
    except OSError:
        pass  # error log is best-effort
    return log_path
