"""
ContextKeeper

Small notes ("context items") tagged and grouped by project, stored in a
JSON file inside the repository they belong to.

Quick Start:
    from contextkeeper import ContextItem, ItemStore

    store = ItemStore(".contextkeeper")   # directory or .../items.json
    store.load()                          # missing file -> empty store
    store.add(ContextItem.new("Rotate the API keys", project="infra", tags=["ops"]))
    item = store.get_by_prefix("3f2a")    # unique prefix lookup

CLI Usage:
    ck init
    ck add "Fix bug #123" --project web-app --tags bug,urgent
    ck list --json
    ck done 3f2a

Default Store:
    .contextkeeper/ in the current directory or a parent, found by `ck`.
    Override with CK_STORAGE_PATH or --store.

Environment Variables:
    CK_STORAGE_PATH     - Override the storage directory
    CK_DEFAULT_PROJECT  - Project for new items when --project is not given
    CK_VERBOSE          - Set to 1 for debug logging
"""

from importlib.metadata import PackageNotFoundError, version

from .errors import (
    AmbiguousIDError,
    DuplicateItemError,
    ItemNotFoundError,
    StoreDecodeError,
    StoreEncodeError,
    StoreError,
    StoreIOError,
)
from .item_store import ITEMS_FILENAME, ItemStore
from .types import ContextItem

try:
    __version__ = version("contextkeeper")
except PackageNotFoundError:  # running from a source checkout
    __version__ = "0.0.0"


__all__ = [
    "AmbiguousIDError",
    "ContextItem",
    "DuplicateItemError",
    "ITEMS_FILENAME",
    "ItemNotFoundError",
    "ItemStore",
    "StoreDecodeError",
    "StoreEncodeError",
    "StoreError",
    "StoreIOError",
]
