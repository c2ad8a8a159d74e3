"""Wire models for conversation list and history payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from querychat.utils.timestamps import parse_timestamp
from querychat_client.domain.entities.conversation import Conversation

_TRUTHY = {"1", "true", "yes"}


def coerce_flag(v: Any) -> bool:
    """Boolean flags arrive as bool, 0/1 or a string."""
    if isinstance(v, bool):
        return v
    if v is None:
        return False
    if isinstance(v, (int, float)):
        return v == 1
    return str(v).strip().lower() in _TRUTHY


class ConversationRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    title: str | None = None
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")
    message_count: int = Field(default=0, alias="messageCount")
    status: str | None = None
    is_archived: bool = Field(default=False, alias="isArchived")
    project_id: str | None = Field(default=None, alias="projectId")

    @field_validator("id", "project_id", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> Any:
        if v is None or isinstance(v, str):
            return v
        return str(v)

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def lenient_timestamps(cls, v: Any) -> datetime | None:
        return parse_timestamp(v)

    @field_validator("message_count", mode="before")
    @classmethod
    def coerce_count(cls, v: Any) -> int:
        try:
            return int(v or 0)
        except (TypeError, ValueError):
            return 0

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v: Any) -> str | None:
        if v is None:
            return None
        return str(v).strip().lower() or None

    @field_validator("is_archived", mode="before")
    @classmethod
    def coerce_archived(cls, v: Any) -> bool:
        return coerce_flag(v)

    def to_entity(self) -> Conversation:
        return Conversation(
            id=self.id,
            title=self.title,
            created_at=self.created_at,
            updated_at=self.updated_at,
            message_count=self.message_count,
            status=self.status,
            is_archived=self.is_archived,
            project_id=self.project_id,
        )


class HistoryPayload(BaseModel):
    """Unwrapped ``GET /conversations/{id}`` payload.

    Messages stay raw; the normalizer owns their shape.
    """

    conversation: ConversationRecord
    messages: list[dict[str, Any]] = Field(default_factory=list)

    @field_validator("messages", mode="before")
    @classmethod
    def keep_mappings(cls, v: Any) -> list[dict[str, Any]]:
        if not isinstance(v, list):
            return []
        return [m for m in v if isinstance(m, dict)]
