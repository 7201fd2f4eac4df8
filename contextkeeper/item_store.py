"""
Item store backed by a single JSON file.

The store keeps every context item in memory, in insertion order, and
rewrites the whole file on each mutation (write-through). It is the
source of truth for:
- Item identity (exact and prefix lookup)
- Item content, project and tags
- Completion and archival state

Thread safety: one readers-writer lock per store. Reads share it; load,
save and every mutation hold it exclusively across both the in-memory
change and the file write.

Failure model: a mutating call that returns has reached the disk. A
mutating call that raises leaves the in-memory list as it was before
the call. The file itself is overwritten in place (no rename step), so
a crash in the middle of a write can leave it truncated.

Cross-process: separate processes each hold their own snapshot, so two
concurrent read-modify-write cycles can lose an update. Opt in to
``file_lock=True`` and wrap the cycle in ``exclusive()`` to serialize
processes with an advisory lock.
"""

import json
import logging
from contextlib import ExitStack, contextmanager
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional, Union

from .errors import (
    AmbiguousIDError,
    DuplicateItemError,
    ItemNotFoundError,
    StoreDecodeError,
    StoreEncodeError,
    StoreIOError,
)
from .locking import ReadWriteLock, file_lock
from .types import ContextItem, utc_now

logger = logging.getLogger(__name__)


ITEMS_FILENAME = "items.json"
LOCK_SUFFIX = ".lock"


def _find_duplicate(items: list[ContextItem]) -> Optional[str]:
    """First ID that occurs more than once, or None."""
    seen: set[str] = set()
    for item in items:
        if item.id in seen:
            return item.id
        seen.add(item.id)
    return None


class ItemStore:
    """
    Thread-safe, file-backed collection of context items.

    Construction never touches the filesystem; call ``load()`` before
    querying. Every query returns copies, so callers may mutate results
    freely and hand them back through ``update()``.
    """

    def __init__(self, path: Union[str, Path], *, file_lock: bool = False):
        """
        Args:
            path: Storage directory, or the items file itself
            file_lock: Serialize ``exclusive()`` blocks across processes
        """
        path = Path(path).expanduser()
        if path.name != ITEMS_FILENAME:
            path = path / ITEMS_FILENAME
        self._path = path
        self._use_file_lock = file_lock
        self._items: list[ContextItem] = []
        self._lock = ReadWriteLock()

    @property
    def path(self) -> Path:
        """Path to the JSON items file."""
        return self._path

    @property
    def lock_path(self) -> Path:
        """Path to the advisory lock file beside the items file."""
        return self._path.with_name(self._path.name + LOCK_SUFFIX)

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._items)

    def __repr__(self) -> str:
        return f"ItemStore({str(self._path)!r})"

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _read_file(self) -> list[ContextItem]:
        """Read and decode the items file. Caller must hold the write lock."""
        try:
            data = self._path.read_bytes()
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StoreIOError("read", self._path, e) from e

        try:
            text = data.decode("utf-8")
            # A blank file (as older `ck init` left behind) holds no items
            if not text.strip():
                return []
            raw = json.loads(text)
            if not isinstance(raw, list):
                raise TypeError(f"expected a JSON array, got {type(raw).__name__}")
            return [ContextItem.from_dict(entry) for entry in raw]
        except (UnicodeDecodeError, TypeError, ValueError) as e:
            raise StoreDecodeError(self._path, e) from e

    def _serialize(self, items: list[ContextItem]) -> bytes:
        """Encode items to file bytes.

        Raises:
            StoreEncodeError: If an item has a value that cannot be written
        """
        try:
            return json.dumps(
                [item.to_dict() for item in items],
                indent=2,
                ensure_ascii=False,
            ).encode("utf-8")
        except (UnicodeEncodeError, TypeError, ValueError, AttributeError) as e:
            raise StoreEncodeError(self._path, e) from e

    def _persist_locked(self, items: list[ContextItem]) -> None:
        """Write ``items`` to disk. Caller must hold the write lock."""
        data = self._serialize(items)

        directory = self._path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreIOError("create directory", directory, e) from e

        try:
            self._path.write_bytes(data)
        except OSError as e:
            raise StoreIOError("write", self._path, e) from e

    def _commit_locked(self, items: list[ContextItem]) -> None:
        """Persist ``items``, then make them the in-memory list.

        Memory is only swapped after the write succeeds, so any error
        leaves the previous list in place.
        """
        self._persist_locked(items)
        self._items = items

    def load(self) -> None:
        """
        Replace the in-memory items with the contents of the file.

        A missing file yields an empty store.

        Raises:
            StoreIOError: If the file exists but cannot be read
            StoreDecodeError: If the file is not a JSON array of items
        """
        with self._lock.write_locked():
            self._items = self._read_file()
            logger.debug("Loaded %d items from %s", len(self._items), self._path)

    def save(self) -> None:
        """
        Overwrite the file with the in-memory items.

        Creates parent directories as needed.

        Raises:
            StoreIOError: If a directory or the file cannot be written
            StoreEncodeError: If an item holds a value that cannot be written
        """
        with self._lock.write_locked():
            self._persist_locked(self._items)

    @contextmanager
    def exclusive(self) -> Iterator["ItemStore"]:
        """
        Reload and yield the store for a read-modify-write cycle.

        With ``file_lock=True`` the block runs under an exclusive advisory
        lock, so cycles from separate processes are serialized. Without
        it, the store is only reloaded.

        Raises:
            StoreIOError: If the lock file cannot be created or locked
        """
        with ExitStack() as stack:
            if self._use_file_lock:
                try:
                    stack.enter_context(file_lock(self.lock_path))
                except OSError as e:
                    raise StoreIOError("lock", self.lock_path, e) from e
            self.load()
            yield self

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get_all(self) -> list[ContextItem]:
        """Copies of all items, in insertion order."""
        with self._lock.read_locked():
            return [item.copy() for item in self._items]

    def get_by_id(self, id: str) -> ContextItem:
        """
        Get an item by its full ID.

        Raises:
            ItemNotFoundError: If no item has this ID
        """
        with self._lock.read_locked():
            for item in self._items:
                if item.id == id:
                    return item.copy()
        raise ItemNotFoundError(id)

    def get_by_prefix(self, prefix: str) -> ContextItem:
        """
        Get the one item whose ID starts with ``prefix``.

        Matching is case-sensitive. Ambiguity is never resolved here;
        callers ask the user for more characters.

        Raises:
            ItemNotFoundError: If no ID starts with the prefix
            AmbiguousIDError: If two or more IDs start with the prefix
        """
        with self._lock.read_locked():
            matches = [item.copy() for item in self._items if item.id.startswith(prefix)]
        if not matches:
            raise ItemNotFoundError(prefix)
        if len(matches) > 1:
            raise AmbiguousIDError(prefix, matches)
        return matches[0]

    def resolve(self, id_or_prefix: str) -> ContextItem:
        """Exact ID match if there is one, otherwise a unique prefix match."""
        try:
            return self.get_by_id(id_or_prefix)
        except ItemNotFoundError:
            return self.get_by_prefix(id_or_prefix)

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def _index_of(self, id: str) -> Optional[int]:
        for i, item in enumerate(self._items):
            if item.id == id:
                return i
        return None

    def _replace_at(self, index: int, item: ContextItem) -> None:
        """Swap in a new list with ``item`` at ``index`` and persist."""
        items = list(self._items)
        items[index] = item
        self._commit_locked(items)

    def add(self, item: ContextItem) -> None:
        """
        Append an item and persist.

        Raises:
            DuplicateItemError: If an item with this ID is already stored
            StoreIOError: If persisting fails (the item is not added)
            StoreEncodeError: If the item holds a value that cannot be written
        """
        with self._lock.write_locked():
            if self._index_of(item.id) is not None:
                raise DuplicateItemError(item.id)
            self._commit_locked(self._items + [item.copy()])
        logger.debug("Added item %s", item.id)

    def update(self, item: ContextItem) -> None:
        """
        Replace the stored item with the same ID, all fields at once.

        Callers read the item, change it, and pass the whole object back.

        Raises:
            ItemNotFoundError: If no item has this ID
            StoreIOError: If persisting fails (the old item is kept)
            StoreEncodeError: If the item holds a value that cannot be written
        """
        with self._lock.write_locked():
            index = self._index_of(item.id)
            if index is None:
                raise ItemNotFoundError(item.id)
            self._replace_at(index, item.copy())
        logger.debug("Updated item %s", item.id)

    def archive(self, id: str) -> None:
        """
        Mark an item archived. Completion state is left as it is.

        Raises:
            ItemNotFoundError: If no item has this ID
            StoreIOError: If persisting fails
        """
        with self._lock.write_locked():
            index = self._index_of(id)
            if index is None:
                raise ItemNotFoundError(id)
            self._replace_at(index, replace(self._items[index], archived=True))
        logger.debug("Archived item %s", id)

    def complete(self, id: str, when: Optional[datetime] = None) -> None:
        """
        Mark an item completed. Archived state is left as it is.

        Args:
            id: Full item ID
            when: Completion time (default: now, UTC)

        Raises:
            ItemNotFoundError: If no item has this ID
            StoreIOError: If persisting fails
        """
        with self._lock.write_locked():
            index = self._index_of(id)
            if index is None:
                raise ItemNotFoundError(id)
            completed_at = when if when is not None else utc_now()
            self._replace_at(index, replace(self._items[index], completed_at=completed_at))
        logger.debug("Completed item %s", id)

    def delete(self, id: str) -> None:
        """
        Remove an item permanently, keeping the order of the rest.

        Raises:
            ItemNotFoundError: If no item has this ID (nothing changes)
            StoreIOError: If persisting fails (the item is kept)
        """
        with self._lock.write_locked():
            index = self._index_of(id)
            if index is None:
                raise ItemNotFoundError(id)
            self._commit_locked(self._items[:index] + self._items[index + 1:])
        logger.debug("Deleted item %s", id)

    def set_items(self, items: list[ContextItem]) -> None:
        """
        Replace every item at once and persist.

        Raises:
            DuplicateItemError: If two of the given items share an ID
            StoreIOError: If persisting fails (the old items are kept)
        """
        duplicate = _find_duplicate(items)
        if duplicate is not None:
            raise DuplicateItemError(duplicate)
        with self._lock.write_locked():
            self._commit_locked([item.copy() for item in items])
        logger.debug("Replaced all items (%d)", len(items))
