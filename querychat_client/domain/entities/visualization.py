"""Chart visualization attached to an AI message."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class Visualization:
    """Canonical chart result.

    ``data`` is the image payload, usually base64. Records coming from the
    visualization list endpoint also carry their own ``id``.
    """

    type: str | None = None
    data: str | None = None
    title: str | None = None
    query: str | None = None
    id: str | None = None
    created_at: datetime | None = None

    @property
    def payload_length(self) -> int:
        return len(self.data) if isinstance(self.data, str) else 0

    def has_payload(self) -> bool:
        return self.payload_length > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "data": self.data,
            "title": self.title,
            "query": self.query,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
