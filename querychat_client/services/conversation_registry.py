"""
Conversation registry.

Holds the deduplicated, filtered and sorted conversation list of a project.
Server snapshots are the source of truth; the only local entries that
survive a refresh without appearing in the snapshot are the conversation
the user is viewing and conversations created moments ago that the backend
may not be returning yet.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import fields, replace
from datetime import datetime, timedelta
from typing import Any, Union

from pydantic import ValidationError

from querychat.utils.logger import get_logger
from querychat.utils.timestamps import utcnow
from querychat_client.domain.entities.conversation import Conversation, is_placeholder_title
from querychat_client.models.conversation import ConversationRecord

logger = get_logger(__name__)

DEFAULT_RECENT_WINDOW_SECONDS = 30.0

ConversationInput = Union[Conversation, ConversationRecord, Mapping[str, Any]]


def to_conversation(raw: ConversationInput) -> Conversation | None:
    if isinstance(raw, Conversation):
        return replace(raw)
    if isinstance(raw, ConversationRecord):
        return raw.to_entity()
    try:
        return ConversationRecord.model_validate(raw).to_entity()
    except ValidationError as e:
        logger.warning(f"Skipping malformed conversation record: {e.errors()[0]['msg']}")
        return None


def sort_by_activity(conversations: Iterable[Conversation]) -> list[Conversation]:
    """Most recently updated first, ``created_at`` when never updated."""
    return sorted(conversations, key=lambda c: c.last_activity, reverse=True)


class ConversationRegistry:
    def __init__(
        self,
        recent_window_seconds: float = DEFAULT_RECENT_WINDOW_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._recent_window = timedelta(seconds=recent_window_seconds)
        self._clock = clock
        self._conversations: list[Conversation] = []

    @property
    def conversations(self) -> tuple[Conversation, ...]:
        """Read-only snapshot of the list."""
        return tuple(replace(c) for c in self._conversations)

    @property
    def ids(self) -> list[str]:
        return [c.id for c in self._conversations]

    def __len__(self) -> int:
        return len(self._conversations)

    def __contains__(self, conversation_id: object) -> bool:
        return any(c.id == conversation_id for c in self._conversations)

    def get(self, conversation_id: str) -> Conversation | None:
        index = self._index_of(conversation_id)
        return replace(self._conversations[index]) if index is not None else None

    def first(self) -> Conversation | None:
        return replace(self._conversations[0]) if self._conversations else None

    def replace_from_server(
        self,
        fresh: Iterable[ConversationInput],
        active_conversation_id: str | None = None,
    ) -> tuple[Conversation, ...]:
        """Reconcile a fresh server snapshot with the locally held list."""
        snapshot: list[Conversation] = []
        for raw in fresh:
            conversation = to_conversation(raw)
            if conversation is not None:
                snapshot.append(conversation)
        snapshot_ids = {c.id for c in snapshot}

        kept: dict[str, Conversation] = {}
        for conversation in snapshot:
            if conversation.is_hidden and conversation.id != active_conversation_id:
                continue
            if conversation.id in kept:
                continue
            kept[conversation.id] = conversation

        now = self._clock()
        dropped: list[str] = []
        for local in self._conversations:
            if local.id in snapshot_ids:
                continue
            if local.id == active_conversation_id or self._is_recent(local, now):
                kept.setdefault(local.id, local)
            else:
                dropped.append(local.id)

        if dropped:
            logger.info(f"Dropping {len(dropped)} conversation(s) missing from server: {dropped}")

        self._conversations = sort_by_activity(kept.values())
        return self.conversations

    def upsert_optimistic(self, conversation: ConversationInput) -> Conversation | None:
        """Insert a conversation learned from a send response, most recent first."""
        incoming = to_conversation(conversation)
        if incoming is None:
            return None

        index = self._index_of(incoming.id)
        if index is None:
            merged = incoming
        else:
            existing = self._conversations.pop(index)
            updates = {
                f.name: getattr(incoming, f.name)
                for f in fields(Conversation)
                if getattr(incoming, f.name) is not None
            }
            merged = replace(existing, **updates)
            if is_placeholder_title(incoming.title) and not is_placeholder_title(existing.title):
                merged.title = existing.title

        self._conversations.insert(0, merged)
        return replace(merged)

    def rename(self, conversation_id: str, title: str) -> bool:
        index = self._index_of(conversation_id)
        if index is None:
            return False
        self._conversations[index].title = title
        return True

    def touch(self, conversation_id: str, updated_at: datetime | None = None) -> bool:
        index = self._index_of(conversation_id)
        if index is None:
            return False
        self._conversations[index].updated_at = updated_at or self._clock()
        return True

    def remove(self, conversation_id: str) -> bool:
        index = self._index_of(conversation_id)
        if index is None:
            return False
        del self._conversations[index]
        return True

    def clear(self) -> None:
        self._conversations = []

    def _index_of(self, conversation_id: str) -> int | None:
        for index, conversation in enumerate(self._conversations):
            if conversation.id == conversation_id:
                return index
        return None

    def _is_recent(self, conversation: Conversation, now: datetime) -> bool:
        created = conversation.created_at or conversation.updated_at
        if created is None:
            return False
        return now - created < self._recent_window
