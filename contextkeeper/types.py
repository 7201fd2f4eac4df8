"""
Data types for context items.
"""

import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Optional


# Display prefix length for item IDs
SHORT_ID_LENGTH = 8

MAX_TAG_LENGTH = 50

# Tags: alphanumeric, underscore, hyphen
_TAG_RE = re.compile(r'^[a-zA-Z0-9_-]+$')

# Separators accepted by parse_tags: commas and/or whitespace
_TAG_SPLIT_RE = re.compile(r'[,\s]+')


def generate_id() -> str:
    """New item identifier: lowercase hyphenated UUID4 (36 characters)."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Current UTC time, truncated to whole seconds.

    Creation and completion stamps use this so that a saved item
    compares equal to itself after a load.
    """
    return datetime.now(timezone.utc).replace(microsecond=0)


def format_timestamp(dt: datetime) -> str:
    """Format a datetime as RFC 3339 in UTC with a 'Z' suffix.

    Naive datetimes are taken to be UTC. Fractional seconds are kept
    only when present.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(ts: str) -> datetime:
    """Parse an RFC 3339 timestamp to a timezone-aware datetime.

    Accepts 'Z' or numeric offsets and any number of fractional digits.
    Values without an offset are taken to be UTC.
    """
    if not isinstance(ts, str):
        raise ValueError(f"Timestamp must be a string, got {type(ts).__name__}")
    dt = datetime.fromisoformat(ts.strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_tags(text: Optional[str]) -> list[str]:
    """Split a comma and/or whitespace separated tag string.

    Empty entries are dropped and duplicates removed, keeping the
    first occurrence order.
    """
    if not text or not text.strip():
        return []
    seen: set[str] = set()
    tags: list[str] = []
    for tag in _TAG_SPLIT_RE.split(text.strip()):
        if tag and tag not in seen:
            seen.add(tag)
            tags.append(tag)
    return tags


def validate_tags(tags: list[str]) -> None:
    """Validate tag format. Raises ValueError on the first bad tag."""
    for tag in tags:
        if not tag:
            raise ValueError("Tag cannot be empty")
        if len(tag) > MAX_TAG_LENGTH:
            raise ValueError(f"Tag too long (maximum {MAX_TAG_LENGTH} characters): {tag!r}")
        if not _TAG_RE.match(tag):
            raise ValueError(
                f"Invalid tag {tag!r}: only letters, digits, underscores and hyphens are allowed"
            )


@dataclass
class ContextItem:
    """
    A single note kept in the item store.

    ``completed_at`` and ``archived`` are independent: an item can be
    archived while active, completed without being archived, or both.
    """
    id: str
    content: str
    project: str = ""
    tags: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    archived: bool = False

    @classmethod
    def new(
        cls,
        content: str,
        *,
        project: str = "",
        tags: Optional[list[str]] = None,
    ) -> "ContextItem":
        """Create an item with a fresh ID and creation time."""
        return cls(
            id=generate_id(),
            content=content,
            project=project,
            tags=list(tags or []),
            created_at=utc_now(),
        )

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    @property
    def is_archived(self) -> bool:
        return self.archived

    @property
    def short_id(self) -> str:
        return self.id[:SHORT_ID_LENGTH]

    def copy(self) -> "ContextItem":
        """Copy with its own tag list."""
        return replace(self, tags=list(self.tags))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the on-disk mapping. Empty optional fields are omitted."""
        d: dict[str, Any] = {"id": self.id, "content": self.content}
        if self.project:
            d["project"] = self.project
        if self.tags:
            d["tags"] = list(self.tags)
        d["created_at"] = format_timestamp(self.created_at)
        if self.completed_at is not None:
            d["completed_at"] = format_timestamp(self.completed_at)
        d["archived"] = self.archived
        return d

    @classmethod
    def from_dict(cls, data: Any) -> "ContextItem":
        """Build an item from its on-disk mapping.

        Raises ValueError (or TypeError) when required keys are missing
        or a value has the wrong type.
        """
        if not isinstance(data, dict):
            raise TypeError(f"Item must be a JSON object, got {type(data).__name__}")
        if "id" not in data:
            raise ValueError("Item is missing 'id'")
        if "created_at" not in data:
            raise ValueError(f"Item {data['id']!r} is missing 'created_at'")

        item_id = data["id"]
        content = data.get("content", "")
        project = data.get("project", "")
        tags = data.get("tags") or []
        archived = data.get("archived", False)

        if not isinstance(item_id, str):
            raise TypeError("'id' must be a string")
        if not isinstance(content, str):
            raise TypeError(f"'content' of {item_id!r} must be a string")
        if not isinstance(project, str):
            raise TypeError(f"'project' of {item_id!r} must be a string")
        if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            raise TypeError(f"'tags' of {item_id!r} must be a list of strings")
        if not isinstance(archived, bool):
            raise TypeError(f"'archived' of {item_id!r} must be a boolean")

        completed_raw = data.get("completed_at")
        return cls(
            id=item_id,
            content=content,
            project=project,
            tags=list(tags),
            created_at=parse_timestamp(data["created_at"]),
            completed_at=parse_timestamp(completed_raw) if completed_raw is not None else None,
            archived=archived,
        )
