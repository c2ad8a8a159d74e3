"""
HTTP transport for the analysis backend.

Every endpoint answers with a ``{"success": ..., "data": ...}`` envelope,
except the importance endpoints which answer with a bare object. A bearer
token is mandatory; without one no request leaves the process.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from querychat.utils.logger import get_logger
from querychat_client.errors import (
    ConversationNotFoundError,
    MISSING_TOKEN_MESSAGE,
    LocalPreconditionError,
    TransientRequestError,
    looks_like_not_found,
)
from querychat_client.models.conversation import HistoryPayload
from querychat_client.models.turn import ImportanceResponse, SendTurnResponse, VisualizationResponse

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 120.0
_NO_BODY = object()


class ChatApiClient:
    """Async client for the chat, conversation and visualization endpoints."""

    def __init__(
        self,
        base_url: str,
        token_provider: Callable[[], Optional[str]],
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._token_provider = token_provider
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers={"Content-Type": "application/json", "Accept": "application/json"},
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    def _auth_headers(self) -> dict[str, str]:
        token = self._token_provider()
        if not token:
            raise LocalPreconditionError(MISSING_TOKEN_MESSAGE)
        return {"Authorization": f"Bearer {token}"}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        conversation_scoped: bool = False,
        allow_empty: bool = False,
    ) -> Any:
        headers = self._auth_headers()
        client = self._get_client()

        try:
            response = await client.request(method, path, json=json, params=params, headers=headers)
        except httpx.RequestError as e:
            logger.warning(f"{method} {path} failed: {type(e).__name__}: {e}")
            raise TransientRequestError(f"Network error: {e}") from e

        body = self._parse_body(response)

        if response.is_error:
            detail = self._error_detail(body, response)
            logger.warning(f"{method} {path} -> {response.status_code}: {detail}")
            if conversation_scoped and (
                response.status_code == 404 or looks_like_not_found(detail)
            ):
                raise ConversationNotFoundError(detail, status_code=response.status_code)
            raise TransientRequestError(detail, status_code=response.status_code)

        if body is _NO_BODY:
            if allow_empty:
                return None
            raise TransientRequestError(
                "Invalid response from server.", status_code=response.status_code
            )

        if isinstance(body, dict) and body.get("success") is False:
            detail = self._error_detail(body, response)
            if conversation_scoped and looks_like_not_found(detail):
                raise ConversationNotFoundError(detail, status_code=response.status_code)
            raise TransientRequestError(detail, status_code=response.status_code)

        return body

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        if not response.content or not response.content.strip():
            return _NO_BODY
        try:
            return response.json()
        except ValueError:
            return _NO_BODY

    @staticmethod
    def _error_detail(body: Any, response: httpx.Response) -> str:
        if isinstance(body, dict):
            for key in ("detail", "error", "details", "message"):
                value = body.get(key)
                if value:
                    return value if isinstance(value, str) else str(value)
        text = response.text.strip() if response.content else ""
        if text and body is _NO_BODY:
            return text
        return f"HTTP {response.status_code}: {response.reason_phrase}"

    @staticmethod
    def _unwrap(body: Any) -> Any:
        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    # ------------------------------------------------------------------ chat

    async def ask(
        self, query: str, conversation_id: str | None, project_id: str | None
    ) -> SendTurnResponse:
        payload: dict[str, Any] = {"naturalLanguageQuery": query, "projectId": project_id}
        if conversation_id:
            payload["conversationId"] = conversation_id

        data = self._unwrap(await self._request("POST", "/analyze-data", json=payload))
        if not isinstance(data, dict) or not data.get("conversationId"):
            raise TransientRequestError("Invalid server response")
        data.setdefault("projectId", project_id)
        try:
            return SendTurnResponse.model_validate(data)
        except ValidationError as e:
            raise TransientRequestError(f"Invalid server response: {e.errors()[0]['msg']}") from e

    async def generate_visualization(
        self, query: str, conversation_id: str | None, project_id: str | None
    ) -> VisualizationResponse:
        payload = {
            "naturalLanguageQuery": query,
            "conversationId": conversation_id,
            "projectId": project_id,
        }
        body = await self._request("POST", "/generate-visualization", json=payload)
        data = self._unwrap(body)
        if not isinstance(data, dict) or not data:
            error = body.get("error") if isinstance(body, dict) else None
            raise TransientRequestError(error or "Invalid response from server.")
        if isinstance(data.get("visualization"), dict):
            viz = data["visualization"]
            logger.debug(
                f"Generated visualization type={viz.get('type')} has_data={bool(viz.get('data'))}"
            )
        try:
            return VisualizationResponse.model_validate(data)
        except ValidationError as e:
            raise TransientRequestError(f"Invalid server response: {e.errors()[0]['msg']}") from e

    # --------------------------------------------------------- conversations

    async def get_history(self, conversation_id: str) -> HistoryPayload:
        body = await self._request(
            "GET", f"/conversations/{conversation_id}", conversation_scoped=True
        )

        conversation: Any = None
        messages: Any = []
        data = body.get("data") if isinstance(body, dict) else None
        if isinstance(data, dict):
            if isinstance(data.get("conversation"), dict):
                conversation = data["conversation"]
                messages = data.get("messages") or []
            else:
                conversation = data
                messages = data.get("messages") or []
        elif isinstance(body, dict) and body.get("id"):
            logger.warning("Received conversation without data wrapper")
            conversation = body
            messages = body.get("messages") or []
        else:
            raise TransientRequestError("Invalid response format from server.")

        if not isinstance(conversation, dict) or not conversation.get("id"):
            raise TransientRequestError("Invalid conversation data received from server.")

        try:
            return HistoryPayload.model_validate(
                {"conversation": conversation, "messages": messages}
            )
        except ValidationError as e:
            raise TransientRequestError(
                f"Invalid conversation data received from server: {e.errors()[0]['msg']}"
            ) from e

    async def list_conversations(self, project_id: str) -> list[dict[str, Any]]:
        body = await self._request("GET", "/conversations", params={"project_id": project_id})
        data = self._unwrap(body)
        return data if isinstance(data, list) else []

    async def rename_conversation(self, conversation_id: str, title: str) -> None:
        await self._request(
            "PUT",
            f"/conversations/{conversation_id}",
            json={"title": title},
            conversation_scoped=True,
            allow_empty=True,
        )

    async def delete_conversation(self, conversation_id: str) -> None:
        await self._request(
            "DELETE",
            f"/conversations/{conversation_id}",
            conversation_scoped=True,
            allow_empty=True,
        )

    # --------------------------------------------------------------- messages

    async def delete_message(self, message_id: str) -> None:
        await self._request("DELETE", f"/messages/{message_id}", allow_empty=True)

    async def set_importance(self, message_id: str, important: bool) -> ImportanceResponse:
        method = "PUT" if important else "DELETE"
        body = await self._request(method, f"/messages/{message_id}/important")
        data = self._unwrap(body)
        if not isinstance(data, dict):
            raise TransientRequestError("Invalid response from server.")
        data.setdefault("messageId", message_id)
        data.setdefault("important", important)
        try:
            return ImportanceResponse.model_validate(data)
        except ValidationError as e:
            raise TransientRequestError(f"Invalid server response: {e.errors()[0]['msg']}") from e

    async def list_important_messages(self, project_id: str | None) -> list[dict[str, Any]]:
        params = {"project_id": project_id} if project_id else None
        body = await self._request("GET", "/important-messages", params=params)
        if isinstance(body, dict) and body.get("success") and isinstance(body.get("data"), list):
            return body["data"]
        return []

    # --------------------------------------------------------- visualizations

    async def list_visualizations(
        self,
        project_id: str | None,
        conversation_id: str | None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if project_id:
            params["project_id"] = project_id
        if conversation_id:
            params["conversation_id"] = conversation_id
        data = self._unwrap(await self._request("GET", "/visualizations", params=params))
        return data if isinstance(data, list) else []

    async def delete_visualization(self, visualization_id: str) -> None:
        await self._request("DELETE", f"/visualizations/{visualization_id}", allow_empty=True)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ChatApiClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
