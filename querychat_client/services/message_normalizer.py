"""
Message normalization.

Server message records use camelCase or snake_case keys depending on the
endpoint. Each field is resolved camelCase first, then snake_case, then a
computed default.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Any

from querychat.utils.logger import get_logger
from querychat.utils.timestamps import parse_timestamp, utcnow
from querychat_client.domain.entities.message import Message, MessageRole
from querychat_client.domain.entities.visualization import Visualization
from querychat_client.models.conversation import coerce_flag
from querychat_client.services.visualization_resolver import (
    decode_chart_data,
    visualization_from_mapping,
)

logger = get_logger(__name__)

ID_KEYS = ("id", "ID", "messageId", "message_id")
_HUMAN_ROLES = {"human", "user"}
_AI_ROLES = {"ai", "assistant"}


def pick(raw: Mapping[str, Any], *keys: str) -> Any:
    """Return the first key present with a non-empty value."""
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def parse_role(raw: Mapping[str, Any]) -> MessageRole:
    role = raw.get("role")
    if isinstance(role, str):
        lowered = role.strip().lower()
        if lowered in _HUMAN_ROLES:
            return MessageRole.HUMAN
        if lowered in _AI_ROLES:
            return MessageRole.AI
    return MessageRole.HUMAN if raw.get("sender") == "user" else MessageRole.AI


def extract_visualization(raw: Mapping[str, Any]) -> Visualization | None:
    inline = raw.get("visualization")
    if isinstance(inline, Mapping):
        return visualization_from_mapping(inline)

    chart_data = pick(raw, "chartData", "chart_data")
    if chart_data is None:
        return None
    return decode_chart_data(
        chart_data,
        chart_type=pick(raw, "chartType", "chart_type"),
        title=raw.get("title"),
        query=pick(raw, "queryUsed", "query_used"),
        created_at=pick(raw, "createdAt", "created_at"),
    )


class MessageNormalizer:
    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock

    def normalize(
        self,
        raw: Mapping[str, Any],
        *,
        conversation_id: str | None = None,
    ) -> Message | None:
        """Build a canonical Message, or None when the record has no id."""
        message_id = pick(raw, *ID_KEYS)
        if message_id is None:
            logger.warning(f"Dropping message without identifier: keys={sorted(raw.keys())}")
            return None

        created_at = parse_timestamp(pick(raw, "createdAt", "created_at"))
        is_fallback = created_at is None
        if created_at is None:
            created_at = self._clock()

        owner = pick(raw, "conversationId", "conversation_id")

        return Message(
            id=str(message_id),
            role=parse_role(raw),
            content=str(pick(raw, "content", "message_content") or ""),
            conversation_id=str(owner) if owner is not None else conversation_id,
            created_at=created_at,
            created_at_is_fallback=is_fallback,
            query_type=pick(raw, "queryType", "query_type"),
            generated_sql=pick(raw, "generatedSql", "generated_sql"),
            is_important=coerce_flag(pick(raw, "isImportant", "is_important")),
            visualization=extract_visualization(raw),
        )

    def normalize_many(
        self,
        raws: Iterable[Any],
        *,
        conversation_id: str | None = None,
    ) -> list[Message]:
        messages: list[Message] = []
        for raw in raws:
            if not isinstance(raw, Mapping):
                logger.warning(f"Dropping non-mapping message record: {type(raw).__name__}")
                continue
            try:
                message = self.normalize(raw, conversation_id=conversation_id)
            except (TypeError, ValueError) as e:
                logger.warning(f"Dropping unreadable message record: {e}")
                continue
            if message is not None:
                messages.append(message)
        return messages
