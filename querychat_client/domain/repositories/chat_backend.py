"""Interface of the analysis backend as seen by the client."""

from __future__ import annotations

from typing import Any, Protocol

from querychat_client.models.conversation import HistoryPayload
from querychat_client.models.turn import ImportanceResponse, SendTurnResponse, VisualizationResponse


class ChatBackend(Protocol):
    async def ask(
        self, query: str, conversation_id: str | None, project_id: str | None
    ) -> SendTurnResponse: ...

    async def generate_visualization(
        self, query: str, conversation_id: str | None, project_id: str | None
    ) -> VisualizationResponse: ...

    async def get_history(self, conversation_id: str) -> HistoryPayload: ...

    async def list_conversations(self, project_id: str) -> list[dict[str, Any]]: ...

    async def rename_conversation(self, conversation_id: str, title: str) -> None: ...

    async def delete_conversation(self, conversation_id: str) -> None: ...

    async def delete_message(self, message_id: str) -> None: ...

    async def set_importance(self, message_id: str, important: bool) -> ImportanceResponse: ...

    async def list_important_messages(self, project_id: str | None) -> list[dict[str, Any]]: ...

    async def list_visualizations(
        self,
        project_id: str | None,
        conversation_id: str | None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]: ...

    async def delete_visualization(self, visualization_id: str) -> None: ...
