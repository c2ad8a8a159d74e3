"""Conversation thread entity."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)

PLACEHOLDER_TITLES = frozenset({"", "new chat", "new conversation", "untitled"})


@dataclass
class Conversation:
    id: str
    title: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    message_count: int = 0
    status: str | None = None
    is_archived: bool = False
    project_id: str | None = None

    @property
    def is_deleted(self) -> bool:
        return self.status == "deleted"

    @property
    def is_hidden(self) -> bool:
        """Deleted or archived conversations are hidden from the list."""
        return self.is_deleted or self.is_archived

    @property
    def last_activity(self) -> datetime:
        return self.updated_at or self.created_at or _EPOCH

    @property
    def has_placeholder_title(self) -> bool:
        return is_placeholder_title(self.title)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "message_count": self.message_count,
            "status": self.status,
            "is_archived": self.is_archived,
            "project_id": self.project_id,
        }


def is_placeholder_title(title: str | None) -> bool:
    return title is None or title.strip().lower() in PLACEHOLDER_TITLES
