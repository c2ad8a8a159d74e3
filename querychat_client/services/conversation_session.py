"""
Conversation session state machine.

Owns the active conversation's ordered transcript and the independent
status tracks. Every response handler starts with
``belongs_to_active_conversation`` so replies for a conversation the user
already left never touch the transcript.

All mutation goes through the methods below and happens on the event loop
thread; readers get copies through ``messages`` and ``snapshot()``.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Union

from querychat.utils.logger import get_logger
from querychat.utils.timestamps import utcnow
from querychat_client.domain.entities.conversation import Conversation
from querychat_client.domain.entities.message import Message, MessageRole
from querychat_client.domain.value_objects.failure import Failure, FailureKind
from querychat_client.domain.value_objects.operation_status import OperationStatus
from querychat_client.models.conversation import ConversationRecord
from querychat_client.models.turn import SendTurnResponse, VisualizationResponse
from querychat_client.services.conversation_registry import ConversationRegistry, to_conversation
from querychat_client.services.message_normalizer import MessageNormalizer
from querychat_client.services.request_coordinator import RequestCoordinator
from querychat_client.services.visualization_resolver import (
    VisualizationResolver,
    visualization_from_mapping,
)

logger = get_logger(__name__)

DEFAULT_TITLE_MAX_LENGTH = 60
FALLBACK_TITLE = "New Chat"
ERROR_MESSAGE_PREFIX = "Sorry, an error occurred: "


class StatusTrack(str, Enum):
    """Independent operation tracks; none of them gates another."""

    SEND = "send"
    HISTORY = "history"
    CONVERSATIONS = "conversations"
    IMPORTANT_MESSAGES = "important_messages"
    IMPORTANCE_OPERATION = "importance_operation"
    VISUALIZATIONS = "visualizations"
    DELETE = "delete"


@dataclass(frozen=True)
class SessionStatus:
    send: OperationStatus = OperationStatus.IDLE
    history: OperationStatus = OperationStatus.IDLE
    conversations: OperationStatus = OperationStatus.IDLE
    important_messages: OperationStatus = OperationStatus.IDLE
    importance_operation: OperationStatus = OperationStatus.IDLE
    visualizations: OperationStatus = OperationStatus.IDLE
    delete: OperationStatus = OperationStatus.IDLE


@dataclass(frozen=True)
class SessionSnapshot:
    active_conversation_id: str | None
    current_conversation: Conversation | None
    messages: tuple[Message, ...]
    important_messages: tuple[Message, ...]
    status: SessionStatus
    errors: dict[StatusTrack, Failure]

    @property
    def is_responding(self) -> bool:
        return self.status.send is OperationStatus.LOADING


SnapshotListener = Callable[[SessionSnapshot], None]
SendResponseInput = Union[SendTurnResponse, Mapping[str, Any]]
VisualizationResponseInput = Union[VisualizationResponse, Mapping[str, Any]]


def transcript_order(message: Message) -> tuple[datetime, int, str]:
    """Chronological, humans before ai on equal timestamps, then by id."""
    return (message.created_at, 0 if message.is_human else 1, message.id or "")


def truncate_title(text: str | None, max_length: int) -> str | None:
    if not text:
        return None
    stripped = " ".join(text.split())
    return stripped[:max_length] or None


class ConversationSession:
    def __init__(
        self,
        registry: ConversationRegistry,
        resolver: VisualizationResolver | None = None,
        normalizer: MessageNormalizer | None = None,
        coordinator: RequestCoordinator | None = None,
        *,
        title_max_length: int = DEFAULT_TITLE_MAX_LENGTH,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._registry = registry
        self._resolver = resolver or VisualizationResolver()
        self._clock = clock
        self._normalizer = normalizer or MessageNormalizer(clock=clock)
        self._coordinator = coordinator
        self._title_max_length = title_max_length

        self._active_conversation_id: str | None = None
        self._current_conversation: Conversation | None = None
        self._messages: list[Message] = []
        self._important_messages: list[Message] = []
        self._status: dict[StatusTrack, OperationStatus] = {
            track: OperationStatus.IDLE for track in StatusTrack
        }
        self._errors: dict[StatusTrack, Failure] = {}
        self._listeners: list[SnapshotListener] = []

    # ------------------------------------------------------------------ reads

    @property
    def active_conversation_id(self) -> str | None:
        return self._active_conversation_id

    @property
    def current_conversation(self) -> Conversation | None:
        return replace(self._current_conversation) if self._current_conversation else None

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(replace(m) for m in self._messages)

    @property
    def important_messages(self) -> tuple[Message, ...]:
        return tuple(replace(m) for m in self._important_messages)

    @property
    def status(self) -> SessionStatus:
        return SessionStatus(**{track.value: state for track, state in self._status.items()})

    @property
    def registry(self) -> ConversationRegistry:
        return self._registry

    @property
    def resolver(self) -> VisualizationResolver:
        return self._resolver

    @property
    def is_responding(self) -> bool:
        return self._status[StatusTrack.SEND] is OperationStatus.LOADING

    def status_of(self, track: StatusTrack) -> OperationStatus:
        return self._status[track]

    def error_for(self, track: StatusTrack) -> Failure | None:
        return self._errors.get(track)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            active_conversation_id=self._active_conversation_id,
            current_conversation=self.current_conversation,
            messages=self.messages,
            important_messages=self.important_messages,
            status=self.status,
            errors=dict(self._errors),
        )

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register a listener called with a snapshot after every change."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ----------------------------------------------------------------- guards

    def belongs_to_active_conversation(self, conversation_id: str | None) -> bool:
        """Stale-response guard shared by every response handler."""
        if self._active_conversation_id is None or conversation_id is None:
            return True
        return conversation_id == self._active_conversation_id

    # ----------------------------------------------------------------- status

    def mark(
        self,
        track: StatusTrack,
        status: OperationStatus,
        failure: Failure | None = None,
    ) -> None:
        self._status[track] = status
        if failure is not None:
            self._errors[track] = failure
        elif status is not OperationStatus.FAILED:
            self._errors.pop(track, None)
        self._notify()

    # -------------------------------------------------------------- send path

    def begin_new_turn(self, human_text: str) -> Message:
        """Append the optimistic human message and flag the send as loading."""
        message = Message(
            role=MessageRole.HUMAN,
            content=human_text,
            id=None,
            conversation_id=self._active_conversation_id,
            created_at=self._clock(),
        )
        self._messages.append(message)
        self._status[StatusTrack.SEND] = OperationStatus.LOADING
        self._errors.pop(StatusTrack.SEND, None)
        self._notify()
        return replace(message)

    def complete_turn(self, server_response: SendResponseInput) -> bool:
        """Reconcile a send-turn reply. Returns False when it was discarded."""
        response = (
            server_response
            if isinstance(server_response, SendTurnResponse)
            else SendTurnResponse.model_validate(server_response)
        )
        if not self.belongs_to_active_conversation(response.conversation_id):
            logger.info(
                f"Ignoring send response for conversation {response.conversation_id}, "
                f"current is {self._active_conversation_id}"
            )
            return False

        was_new_conversation = (
            self._active_conversation_id is None and response.conversation_id is not None
        )
        if response.conversation_id is not None:
            self._active_conversation_id = response.conversation_id
        conversation_id = self._active_conversation_id
        self._status[StatusTrack.SEND] = OperationStatus.SUCCEEDED
        self._errors.pop(StatusTrack.SEND, None)

        human_index = self._confirm_human_message(response, conversation_id)

        ai_message = self._build_ai_message(response, conversation_id)
        if self._is_duplicate_ai(ai_message):
            logger.debug(f"AI message {ai_message.id} already present; not inserting again")
        elif human_index is not None:
            self._messages.insert(human_index + 1, ai_message)
        else:
            self._messages.append(ai_message)

        if was_new_conversation:
            self._register_new_conversation(response, human_index)
        elif conversation_id is not None:
            self._registry.touch(conversation_id, response.ai_created_at)

        self._notify()
        return True

    def fail_turn(self, failure: Failure) -> Message | None:
        """Record a failed send; appends a visible error message in the transcript."""
        if failure.kind is FailureKind.CANCELLED:
            self.mark_send_cancelled()
            return None

        error_message = Message(
            role=MessageRole.AI,
            content=f"{ERROR_MESSAGE_PREFIX}{failure.message}",
            conversation_id=self._active_conversation_id,
            created_at=self._clock(),
            is_error=True,
        )
        self._messages.append(error_message)
        self._status[StatusTrack.SEND] = OperationStatus.FAILED
        self._errors[StatusTrack.SEND] = failure
        logger.warning(f"Send failed ({failure.kind.value}): {failure.message}")
        self._notify()
        return replace(error_message)

    def mark_send_cancelled(self) -> None:
        self._status[StatusTrack.SEND] = OperationStatus.IDLE
        self._errors.pop(StatusTrack.SEND, None)
        self._notify()

    def cancel_in_flight(self) -> bool:
        """Abort the outstanding request and return the send path to idle.

        Nothing is appended; the optimistic human message stays as it is.
        """
        aborted = self._coordinator.cancel() if self._coordinator is not None else False
        self.mark_send_cancelled()
        return aborted

    def attach_visualization(self, server_response: VisualizationResponseInput) -> bool:
        """Attach a freshly generated chart to its AI message."""
        response = (
            server_response
            if isinstance(server_response, VisualizationResponse)
            else VisualizationResponse.model_validate(server_response)
        )
        if not self.belongs_to_active_conversation(response.conversation_id):
            logger.info(
                f"Ignoring visualization for conversation {response.conversation_id}, "
                f"current is {self._active_conversation_id}"
            )
            return False

        self._status[StatusTrack.SEND] = OperationStatus.SUCCEEDED
        self._errors.pop(StatusTrack.SEND, None)
        if not response.visualization:
            self._notify()
            return False
        visualization = visualization_from_mapping(response.visualization)

        target = None
        if response.ai_message_id is not None:
            target = self._index_of(response.ai_message_id)
        if target is None:
            for index in range(len(self._messages) - 1, -1, -1):
                candidate = self._messages[index]
                if candidate.is_ai and not candidate.is_error:
                    target = index
                    break
        if target is None:
            logger.warning("Generated visualization has no AI message to attach to")
            self._notify()
            return False

        # A chart without payload never replaces one that has it
        if visualization.has_payload() or self._messages[target].visualization is None:
            self._messages[target].visualization = visualization
        self._notify()
        return True

    # ----------------------------------------------------------- history path

    def begin_history_fetch(self, conversation_id: str) -> None:
        if not self.belongs_to_active_conversation(conversation_id):
            return
        self.mark(StatusTrack.HISTORY, OperationStatus.LOADING)

    def load_history(
        self,
        server_conversation: Conversation | ConversationRecord | Mapping[str, Any],
        server_messages: Iterable[Message | Mapping[str, Any]],
    ) -> bool:
        """Replace the transcript with a fetched conversation.

        Discarded when the user has meanwhile moved to another conversation.
        """
        conversation = to_conversation(server_conversation)
        if conversation is None:
            self.mark(
                StatusTrack.HISTORY,
                OperationStatus.FAILED,
                Failure(FailureKind.TRANSIENT, "Invalid conversation data received"),
            )
            return False
        if not self.belongs_to_active_conversation(conversation.id):
            logger.info(
                f"Ignoring history for conversation {conversation.id}, "
                f"current is {self._active_conversation_id}"
            )
            return False

        raw_records: list[Mapping[str, Any]] = []
        ready: list[Message] = []
        for item in server_messages:
            if isinstance(item, Message):
                if item.id is not None:
                    ready.append(replace(item))
            else:
                raw_records.append(item)
        ready.extend(self._normalizer.normalize_many(raw_records, conversation_id=conversation.id))

        messages: list[Message] = []
        for message in ready:
            if message.conversation_id not in (None, conversation.id):
                logger.warning(
                    f"Dropping message {message.id} of conversation {message.conversation_id} "
                    f"from history of {conversation.id}"
                )
                continue
            message.conversation_id = conversation.id
            messages.append(message)

        merged = self._resolver.merge(messages)
        merged.sort(key=transcript_order)

        self._messages = merged
        self._current_conversation = conversation
        self._active_conversation_id = conversation.id
        self._status[StatusTrack.HISTORY] = OperationStatus.SUCCEEDED
        self._errors.pop(StatusTrack.HISTORY, None)
        logger.debug(
            f"Loaded {len(merged)} message(s) for conversation {conversation.id} "
            f"({sum(1 for m in merged if m.visualization)} with visualization)"
        )
        self._notify()
        return True

    def fail_history(self, conversation_id: str, failure: Failure) -> bool:
        """Record a failed history fetch.

        A not-found failure also drops the dead conversation from the session.
        """
        if not self.belongs_to_active_conversation(conversation_id):
            return False
        self._status[StatusTrack.HISTORY] = OperationStatus.FAILED
        self._errors[StatusTrack.HISTORY] = failure
        if failure.is_not_found:
            logger.info(f"Conversation {conversation_id} not found; clearing session")
            self._reset_conversation()
        self._notify()
        return True

    def switch_conversation(self, new_id: str | None) -> None:
        """Clear the transcript before the next conversation is fetched.

        ``None`` starts a new, uncommitted thread. A reply still pending for the
        thread being left is aborted.
        """
        self._abort_pending_request()
        self._reset_conversation()
        self._active_conversation_id = new_id
        for track in (StatusTrack.SEND, StatusTrack.HISTORY):
            self._status[track] = OperationStatus.IDLE
            self._errors.pop(track, None)
        self._notify()

    def clear(self) -> None:
        self.switch_conversation(None)

    def forget_conversation(self, conversation_id: str) -> bool:
        """Drop session state of a conversation that was deleted."""
        if self._active_conversation_id != conversation_id:
            return False
        if self._abort_pending_request():
            self._status[StatusTrack.SEND] = OperationStatus.IDLE
            self._errors.pop(StatusTrack.SEND, None)
        self._reset_conversation()
        self._notify()
        return True

    def apply_rename(self, conversation_id: str, title: str) -> bool:
        if self._current_conversation is None or self._current_conversation.id != conversation_id:
            return False
        self._current_conversation = replace(self._current_conversation, title=title)
        self._notify()
        return True

    # -------------------------------------------------------------- importance

    def toggle_importance(self, message_id: str, new_value: bool) -> bool | None:
        """Flip ``is_important`` locally. Returns the prior value, None if unknown."""
        index = self._index_of(message_id)
        self._status[StatusTrack.IMPORTANCE_OPERATION] = OperationStatus.LOADING
        self._errors.pop(StatusTrack.IMPORTANCE_OPERATION, None)
        if index is None:
            self._notify()
            return None
        prior = self._messages[index].is_important
        self._messages[index].is_important = new_value
        self._notify()
        return prior

    def resolve_importance(self, message_id: str, important: bool) -> None:
        index = self._index_of(message_id)
        if index is not None:
            self._messages[index].is_important = important
        if not important:
            self._important_messages = [
                m for m in self._important_messages if str(m.id) != str(message_id)
            ]
        self._status[StatusTrack.IMPORTANCE_OPERATION] = OperationStatus.SUCCEEDED
        self._notify()

    def reject_importance(self, message_id: str, prior: bool | None, failure: Failure) -> None:
        index = self._index_of(message_id)
        if index is not None and prior is not None:
            self._messages[index].is_important = prior
        self._status[StatusTrack.IMPORTANCE_OPERATION] = OperationStatus.FAILED
        self._errors[StatusTrack.IMPORTANCE_OPERATION] = failure
        logger.warning(f"Importance update for {message_id} failed: {failure.message}")
        self._notify()

    def set_important_messages(self, messages: Iterable[Message | Mapping[str, Any]]) -> None:
        collected: list[Message] = []
        raw_records: list[Mapping[str, Any]] = []
        for item in messages:
            if isinstance(item, Message):
                collected.append(replace(item))
            else:
                raw_records.append(item)
        collected.extend(self._normalizer.normalize_many(raw_records))
        for message in collected:
            message.is_important = True
        self._important_messages = collected
        self._notify()

    # ----------------------------------------------------------- side-loading

    def apply_side_loaded_visualizations(self) -> int:
        """Re-run the resolver merge over the transcript."""
        before = [m.visualization for m in self._messages]
        self._messages = self._resolver.merge(self._messages)
        changed = sum(
            1 for old, message in zip(before, self._messages) if old != message.visualization
        )
        if changed:
            self._notify()
        return changed

    def remove_message(self, message_id: str) -> bool:
        before = len(self._messages)
        self._messages = [m for m in self._messages if str(m.id) != str(message_id)]
        self._important_messages = [
            m for m in self._important_messages if str(m.id) != str(message_id)
        ]
        removed = len(self._messages) != before
        self._notify()
        return removed

    # ---------------------------------------------------------------- helpers

    def _index_of(self, message_id: str | None) -> int | None:
        if message_id is None:
            return None
        wanted = str(message_id)
        for index, message in enumerate(self._messages):
            if message.id is not None and str(message.id) == wanted:
                return index
        return None

    def _confirm_human_message(
        self, response: SendTurnResponse, conversation_id: str | None
    ) -> int | None:
        if response.user_message_id is None:
            return None

        existing = self._index_of(response.user_message_id)
        if existing is not None:
            return existing

        for index in range(len(self._messages) - 1, -1, -1):
            message = self._messages[index]
            if message.is_human and not message.is_confirmed:
                message.id = response.user_message_id
                message.conversation_id = conversation_id
                if response.user_created_at is not None:
                    message.created_at = response.user_created_at
                    message.created_at_is_fallback = False
                return index
        return None

    def _build_ai_message(
        self, response: SendTurnResponse, conversation_id: str | None
    ) -> Message:
        created_at = response.ai_created_at
        return Message(
            role=MessageRole.AI,
            content=response.analysis or "",
            id=response.ai_message_id or str(uuid.uuid4()),
            conversation_id=conversation_id,
            created_at=created_at or self._clock(),
            created_at_is_fallback=created_at is None,
            query_type=response.query_type,
            generated_sql=response.generated_sql,
            is_important=False,
            visualization=(
                visualization_from_mapping(response.visualization)
                if response.visualization
                else None
            ),
        )

    def _is_duplicate_ai(self, candidate: Message) -> bool:
        for message in self._messages:
            if message.id is not None and message.id == candidate.id:
                return True
            if message.is_ai and message.id is not None and message.content == candidate.content:
                return True
        return False

    def _register_new_conversation(
        self, response: SendTurnResponse, human_index: int | None
    ) -> None:
        human_text = None
        if human_index is not None:
            human_text = self._messages[human_index].content
        else:
            humans = [m for m in self._messages if m.is_human]
            human_text = humans[-1].content if humans else None

        title = (
            truncate_title(human_text, self._title_max_length)
            or truncate_title(response.analysis, self._title_max_length)
            or FALLBACK_TITLE
        )
        now = self._clock()
        conversation = Conversation(
            id=response.conversation_id or "",
            title=title,
            created_at=response.user_created_at or now,
            updated_at=response.ai_created_at or now,
            message_count=2,
            status="active",
            is_archived=False,
            project_id=response.project_id,
        )
        self._registry.upsert_optimistic(conversation)
        self._current_conversation = conversation
        logger.info(f"Registered new conversation {conversation.id}: {title!r}")

    def _abort_pending_request(self) -> bool:
        if self._coordinator is None:
            return False
        return self._coordinator.cancel()

    def _reset_conversation(self) -> None:
        self._active_conversation_id = None
        self._current_conversation = None
        self._messages = []

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            listener(snapshot)
