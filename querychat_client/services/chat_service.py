"""
Chat service: the operations a front-end calls.

Each operation drives the backend, feeds the reply through the session and
the registry, and returns an ``OperationResult``. Recoverable errors never
escape as exceptions; they become a ``Failure`` on the result and on the
matching status track.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Awaitable, Callable
from typing import Any

from querychat.config import Settings, get_settings
from querychat.utils.logger import get_logger
from querychat_client.domain.entities.conversation import Conversation
from querychat_client.domain.entities.message import Message
from querychat_client.domain.repositories.chat_backend import ChatBackend
from querychat_client.domain.value_objects.failure import Failure, FailureKind, OperationResult
from querychat_client.domain.value_objects.operation_status import OperationStatus
from querychat_client.errors import ChatClientError, RequestCancelledError
from querychat_client.services.conversation_registry import ConversationRegistry
from querychat_client.services.conversation_session import ConversationSession, StatusTrack
from querychat_client.services.request_coordinator import RequestCoordinator
from querychat_client.services.visualization_resolver import VisualizationResolver

logger = get_logger(__name__)

INVALID_CONVERSATION_ID_MESSAGE = "Invalid or missing conversation ID."
SWITCHED_AWAY_MESSAGE = "Conversation changed before the reply arrived"

Sleep = Callable[[float], Awaitable[Any]]


class ChatService:
    def __init__(
        self,
        backend: ChatBackend,
        session: ConversationSession,
        coordinator: RequestCoordinator,
        *,
        project_id: str | None = None,
        settings: Settings | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._backend = backend
        self._session = session
        self._coordinator = coordinator
        self._project_id = project_id
        self._settings = settings or get_settings()
        self._sleep = sleep
        self._id_pattern = re.compile(self._settings.conversation_id_pattern)

    @property
    def session(self) -> ConversationSession:
        return self._session

    @property
    def registry(self) -> ConversationRegistry:
        return self._session.registry

    @property
    def resolver(self) -> VisualizationResolver:
        return self._session.resolver

    @property
    def project_id(self) -> str | None:
        return self._project_id

    def _project(self, project_id: str | None) -> str | None:
        return project_id if project_id is not None else self._project_id

    # ------------------------------------------------------------------- turns

    async def submit_query(
        self, text: str, project_id: str | None = None
    ) -> OperationResult[Message]:
        """Ask a question in the active conversation, or start a new one."""
        text = text.strip()
        if not text:
            return OperationResult.failed(
                Failure(FailureKind.LOCAL_PRECONDITION, "Query must not be empty")
            )

        self._session.begin_new_turn(text)
        conversation_id = self._session.active_conversation_id
        try:
            response = await self._coordinator.send(
                text, conversation_id, self._project(project_id)
            )
        except RequestCancelledError as e:
            # Either cancel_in_flight already reset the track or a newer send owns it
            return OperationResult.failed(e.to_failure())
        except ChatClientError as e:
            failure = e.to_failure()
            self._session.fail_turn(failure)
            return OperationResult.failed(failure)

        if not self._session.complete_turn(response):
            return OperationResult.failed(
                Failure(FailureKind.CANCELLED, "Reply arrived for a conversation no longer open")
            )

        ai_message = next(
            (m for m in self._session.messages if m.id == response.ai_message_id and m.is_ai),
            None,
        )
        if ai_message is None:
            ai_messages = [m for m in self._session.messages if m.is_ai]
            ai_message = ai_messages[-1] if ai_messages else None
        return OperationResult.success(ai_message)

    async def generate_visualization(
        self, text: str, project_id: str | None = None
    ) -> OperationResult[Message]:
        """Ask for a chart of ``text`` and attach it to its AI message."""
        self._session.mark(StatusTrack.SEND, OperationStatus.LOADING)
        conversation_id = self._session.active_conversation_id
        try:
            response = await self._coordinator.generate_visualization(
                text, conversation_id, self._project(project_id)
            )
        except RequestCancelledError as e:
            return OperationResult.failed(e.to_failure())
        except ChatClientError as e:
            failure = e.to_failure()
            self._session.mark(StatusTrack.SEND, OperationStatus.FAILED, failure)
            return OperationResult.failed(failure)

        if not self._session.attach_visualization(response):
            return OperationResult.failed(
                Failure(FailureKind.TRANSIENT, "No visualization could be attached")
            )

        target = None
        if response.ai_message_id is not None:
            target = next(
                (m for m in self._session.messages if m.id == response.ai_message_id), None
            )
        if target is None:
            candidates = [m for m in self._session.messages if m.is_ai and not m.is_error]
            target = candidates[-1] if candidates else None
        return OperationResult.success(target)

    def cancel_in_flight(self) -> bool:
        return self._session.cancel_in_flight()

    # ----------------------------------------------------------- conversations

    async def open_conversation(
        self, conversation_id: str, *, with_visualizations: bool = True
    ) -> OperationResult[tuple[Message, ...]]:
        """Switch to a conversation and load its history.

        Transient failures are retried while the conversation is still the
        active one and still listed in the registry; a not-found reply ends
        the attempt and clears the session.
        """
        if not conversation_id or not self._id_pattern.match(conversation_id):
            failure = Failure(FailureKind.LOCAL_PRECONDITION, INVALID_CONVERSATION_ID_MESSAGE)
            self._session.mark(StatusTrack.HISTORY, OperationStatus.FAILED, failure)
            return OperationResult.failed(failure)

        if self._session.active_conversation_id != conversation_id:
            self._session.switch_conversation(conversation_id)

        max_retries = self._settings.history_fetch_max_retries
        attempt = 0
        while True:
            self._session.begin_history_fetch(conversation_id)
            try:
                payload = await self._backend.get_history(conversation_id)
            except ChatClientError as e:
                failure = e.to_failure()
                if self._session.active_conversation_id != conversation_id:
                    return OperationResult.failed(
                        Failure(FailureKind.CANCELLED, SWITCHED_AWAY_MESSAGE)
                    )
                if (
                    failure.retryable
                    and attempt < max_retries
                    and conversation_id in self.registry
                ):
                    attempt += 1
                    delay = self._settings.history_fetch_backoff_seconds * attempt
                    logger.info(
                        f"History fetch for {conversation_id} failed ({failure.message}); "
                        f"retry {attempt}/{max_retries} in {delay:.1f}s"
                    )
                    await self._sleep(delay)
                    if self._session.active_conversation_id != conversation_id:
                        return OperationResult.failed(
                            Failure(FailureKind.CANCELLED, SWITCHED_AWAY_MESSAGE)
                        )
                    continue
                self._session.fail_history(conversation_id, failure)
                return OperationResult.failed(failure)
            break

        if not self._session.load_history(payload.conversation, payload.messages):
            return OperationResult.failed(Failure(FailureKind.CANCELLED, SWITCHED_AWAY_MESSAGE))

        if with_visualizations:
            await self.refresh_visualizations(conversation_id=conversation_id)
        return OperationResult.success(self._session.messages)

    def start_new_conversation(self) -> None:
        self._session.switch_conversation(None)

    async def refresh_conversations(
        self, project_id: str | None = None
    ) -> OperationResult[tuple[Conversation, ...]]:
        project = self._project(project_id)
        if not project:
            failure = Failure(FailureKind.LOCAL_PRECONDITION, "A project id is required")
            self._session.mark(StatusTrack.CONVERSATIONS, OperationStatus.FAILED, failure)
            return OperationResult.failed(failure)

        self._session.mark(StatusTrack.CONVERSATIONS, OperationStatus.LOADING)
        try:
            fresh = await self._backend.list_conversations(project)
        except ChatClientError as e:
            failure = e.to_failure()
            self._session.mark(StatusTrack.CONVERSATIONS, OperationStatus.FAILED, failure)
            return OperationResult.failed(failure)

        conversations = self.registry.replace_from_server(
            fresh, active_conversation_id=self._session.active_conversation_id
        )
        self._session.mark(StatusTrack.CONVERSATIONS, OperationStatus.SUCCEEDED)
        return OperationResult.success(tuple(conversations))

    async def rename_conversation(self, conversation_id: str, title: str) -> OperationResult[str]:
        title = title.strip()
        if not title:
            return OperationResult.failed(
                Failure(FailureKind.LOCAL_PRECONDITION, "Title must not be empty")
            )
        try:
            await self._backend.rename_conversation(conversation_id, title)
        except ChatClientError as e:
            return OperationResult.failed(e.to_failure())

        self.registry.rename(conversation_id, title)
        self._session.apply_rename(conversation_id, title)
        return OperationResult.success(title)

    async def delete_conversation(self, conversation_id: str) -> OperationResult[str]:
        self._session.mark(StatusTrack.DELETE, OperationStatus.LOADING)
        try:
            await self._backend.delete_conversation(conversation_id)
        except ChatClientError as e:
            failure = e.to_failure()
            self._session.mark(StatusTrack.DELETE, OperationStatus.FAILED, failure)
            return OperationResult.failed(failure)

        self.registry.remove(conversation_id)
        self._session.forget_conversation(conversation_id)
        self._session.mark(StatusTrack.DELETE, OperationStatus.SUCCEEDED)
        return OperationResult.success(conversation_id)

    # ---------------------------------------------------------------- messages

    async def delete_message(self, message_id: str) -> OperationResult[str]:
        self._session.mark(StatusTrack.DELETE, OperationStatus.LOADING)
        try:
            await self._backend.delete_message(message_id)
        except ChatClientError as e:
            failure = e.to_failure()
            self._session.mark(StatusTrack.DELETE, OperationStatus.FAILED, failure)
            return OperationResult.failed(failure)

        self._session.remove_message(message_id)
        self._session.mark(StatusTrack.DELETE, OperationStatus.SUCCEEDED)
        return OperationResult.success(message_id)

    async def toggle_importance(self, message_id: str, important: bool) -> OperationResult[bool]:
        """Flip importance optimistically, rolling back if the server refuses."""
        prior = self._session.toggle_importance(message_id, important)
        try:
            response = await self._backend.set_importance(message_id, important)
        except ChatClientError as e:
            failure = e.to_failure()
            self._session.reject_importance(message_id, prior, failure)
            return OperationResult.failed(failure)

        self._session.resolve_importance(response.message_id or message_id, response.important)
        return OperationResult.success(response.important)

    async def refresh_important_messages(
        self, project_id: str | None = None
    ) -> OperationResult[tuple[Message, ...]]:
        self._session.mark(StatusTrack.IMPORTANT_MESSAGES, OperationStatus.LOADING)
        try:
            records = await self._backend.list_important_messages(self._project(project_id))
        except ChatClientError as e:
            failure = e.to_failure()
            self._session.mark(StatusTrack.IMPORTANT_MESSAGES, OperationStatus.FAILED, failure)
            return OperationResult.failed(failure)

        self._session.set_important_messages(records)
        self._session.mark(StatusTrack.IMPORTANT_MESSAGES, OperationStatus.SUCCEEDED)
        return OperationResult.success(self._session.important_messages)

    # ---------------------------------------------------------- visualizations

    async def refresh_visualizations(
        self, project_id: str | None = None, conversation_id: str | None = None
    ) -> OperationResult[int]:
        """Load side-loaded charts and merge them into the transcript.

        The value is the number of messages whose chart changed.
        """
        self._session.mark(StatusTrack.VISUALIZATIONS, OperationStatus.LOADING)
        try:
            records = await self._backend.list_visualizations(
                self._project(project_id),
                conversation_id,
                limit=self._settings.visualization_page_size,
            )
        except ChatClientError as e:
            failure = e.to_failure()
            self._session.mark(StatusTrack.VISUALIZATIONS, OperationStatus.FAILED, failure)
            return OperationResult.failed(failure)

        self.resolver.ingest(records)
        if not self._session.belongs_to_active_conversation(conversation_id):
            self._session.mark(StatusTrack.VISUALIZATIONS, OperationStatus.IDLE)
            return OperationResult.failed(Failure(FailureKind.CANCELLED, SWITCHED_AWAY_MESSAGE))
        changed = self._session.apply_side_loaded_visualizations()
        self._session.mark(StatusTrack.VISUALIZATIONS, OperationStatus.SUCCEEDED)
        if changed:
            logger.debug(f"Side-loaded visualizations updated {changed} message(s)")
        return OperationResult.success(changed)

    async def delete_visualization(self, visualization_id: str) -> OperationResult[str]:
        self._session.mark(StatusTrack.DELETE, OperationStatus.LOADING)
        try:
            await self._backend.delete_visualization(visualization_id)
        except ChatClientError as e:
            failure = e.to_failure()
            self._session.mark(StatusTrack.DELETE, OperationStatus.FAILED, failure)
            return OperationResult.failed(failure)

        self.resolver.forget(visualization_id)
        self._session.mark(StatusTrack.DELETE, OperationStatus.SUCCEEDED)
        return OperationResult.success(visualization_id)

    async def close(self) -> None:
        self._coordinator.cancel()
        close = getattr(self._backend, "close", None)
        if close is not None:
            await close()
