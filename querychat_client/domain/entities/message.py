"""Message entity for a conversation transcript."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from querychat_client.domain.entities.visualization import Visualization


class MessageRole(str, Enum):
    """Author of a conversation turn."""

    HUMAN = "human"
    AI = "ai"


@dataclass
class Message:
    """One turn in a conversation.

    ``id`` stays ``None`` until the server confirms the message; such
    messages are optimistic and get reconciled when the reply arrives.
    """

    role: MessageRole
    content: str = ""
    id: str | None = None
    conversation_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    created_at_is_fallback: bool = False
    query_type: str | None = None
    generated_sql: str | None = None
    is_important: bool = False
    visualization: Visualization | None = None
    is_error: bool = False

    @property
    def is_confirmed(self) -> bool:
        return self.id is not None

    @property
    def is_human(self) -> bool:
        return self.role is MessageRole.HUMAN

    @property
    def is_ai(self) -> bool:
        return self.role is MessageRole.AI

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "conversation_id": self.conversation_id,
            "created_at": self.created_at.isoformat(),
            "query_type": self.query_type,
            "generated_sql": self.generated_sql,
            "is_important": self.is_important,
            "visualization": self.visualization.to_dict() if self.visualization else None,
            "is_error": self.is_error,
        }
