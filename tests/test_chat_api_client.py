from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

import httpx
import pytest

from querychat_client.errors import (
    ConversationNotFoundError,
    LocalPreconditionError,
    TransientRequestError,
)
from querychat_client.infrastructure.http.chat_api_client import ChatApiClient

BASE = "http://backend.test/api"


def _client(
    handler: Callable[[httpx.Request], httpx.Response], token: str | None = "secret"
) -> ChatApiClient:
    return ChatApiClient(BASE, lambda: token, transport=httpx.MockTransport(handler))


def _run(client: ChatApiClient, call: Callable[[ChatApiClient], Any]) -> Any:
    async def _inner() -> Any:
        async with client:
            return await call(client)

    return asyncio.run(_inner())


def test_ask_sends_bearer_token_and_parses_envelope() -> None:
    seen: dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "success": True,
                "data": {
                    "conversationId": 15,
                    "userMessageId": "m1",
                    "aiMessageId": "m2",
                    "aiCreatedAt": "2024-05-01T12:00:00Z",
                    "analysis": "Done",
                    "generatedSql": "SELECT 1",
                },
            },
        )

    response = _run(_client(handler), lambda c: c.ask("How many?", "c-9", "p1"))

    assert seen["auth"] == "Bearer secret"
    assert seen["path"] == "/api/analyze-data"
    assert seen["body"] == {
        "naturalLanguageQuery": "How many?",
        "projectId": "p1",
        "conversationId": "c-9",
    }
    assert response.conversation_id == "15"
    assert response.ai_message_id == "m2"
    assert response.generated_sql == "SELECT 1"
    assert response.project_id == "p1"
    assert response.ai_created_at is not None


def test_ask_without_conversation_id_is_invalid() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "data": {"analysis": "x"}})

    with pytest.raises(TransientRequestError, match="Invalid server response"):
        _run(_client(handler), lambda c: c.ask("q", None, "p1"))


def test_missing_token_never_reaches_network() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    with pytest.raises(LocalPreconditionError):
        _run(_client(handler, token=None), lambda c: c.list_conversations("p1"))
    assert calls == []


def test_error_detail_is_surfaced() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"detail": "Database unavailable"})

    with pytest.raises(TransientRequestError) as exc_info:
        _run(_client(handler), lambda c: c.ask("q", None, "p1"))

    assert exc_info.value.message == "Database unavailable"
    assert exc_info.value.status_code == 500


def test_unparseable_body_is_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>oops</html>")

    with pytest.raises(TransientRequestError):
        _run(_client(handler), lambda c: c.list_conversations("p1"))


def test_network_error_is_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientRequestError, match="Network error"):
        _run(_client(handler), lambda c: c.list_conversations("p1"))


def test_history_not_found_is_terminal() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "Conversation not found"})

    with pytest.raises(ConversationNotFoundError) as exc_info:
        _run(_client(handler), lambda c: c.get_history("c1"))
    assert exc_info.value.to_failure().is_not_found


def test_history_success_false_with_not_found_text_is_terminal() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": False, "error": "Conversation not found"})

    with pytest.raises(ConversationNotFoundError):
        _run(_client(handler), lambda c: c.get_history("c1"))


def test_history_accepts_all_envelope_variants() -> None:
    conversation = {"id": "c1", "title": "Sales", "created_at": "2024-05-01T10:00:00Z"}
    messages = [{"id": "m1", "role": "human", "content": "q"}, "junk"]
    bodies = [
        {"success": True, "data": {"conversation": conversation, "messages": messages}},
        {"success": True, "data": {**conversation, "messages": messages}},
        {**conversation, "messages": messages},
    ]

    for body in bodies:
        payload = _run(
            _client(lambda request, body=body: httpx.Response(200, json=body)),
            lambda c: c.get_history("c1"),
        )
        assert payload.conversation.id == "c1"
        assert payload.conversation.title == "Sales"
        assert payload.messages == [{"id": "m1", "role": "human", "content": "q"}]


def test_history_without_conversation_id_is_invalid() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "data": {"conversation": {"title": "x"}}})

    with pytest.raises(TransientRequestError):
        _run(_client(handler), lambda c: c.get_history("c1"))


def test_list_conversations_passes_project_filter() -> None:
    seen: dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json={"success": True, "data": [{"id": "c1"}]})

    result = _run(_client(handler), lambda c: c.list_conversations("p1"))

    assert seen["params"] == {"project_id": "p1"}
    assert result == [{"id": "c1"}]


def test_set_importance_uses_put_and_delete() -> None:
    methods: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        methods.append(request.method)
        assert request.url.path == "/api/messages/m1/important"
        if request.method == "PUT":
            return httpx.Response(200, json={"messageId": "m1", "important": True})
        return httpx.Response(200, json={"success": True})

    marked = _run(_client(handler), lambda c: c.set_importance("m1", True))
    unmarked = _run(_client(handler), lambda c: c.set_importance("m1", False))

    assert methods == ["PUT", "DELETE"]
    assert marked.important is True
    assert unmarked.message_id == "m1"
    assert unmarked.important is False


def test_delete_endpoints_accept_empty_body() -> None:
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(f"{request.method} {request.url.path}")
        return httpx.Response(204)

    async def _calls(client: ChatApiClient) -> None:
        await client.delete_message("m1")
        await client.delete_conversation("c1")
        await client.delete_visualization("v1")

    _run(_client(handler), _calls)

    assert paths == [
        "DELETE /api/messages/m1",
        "DELETE /api/conversations/c1",
        "DELETE /api/visualizations/v1",
    ]


def test_list_visualizations_query_parameters() -> None:
    seen: dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        return httpx.Response(
            200, json={"success": True, "data": [{"id": "v1", "message_id": "m1"}]}
        )

    result = _run(_client(handler), lambda c: c.list_visualizations("p1", "c1", limit=20))

    assert seen["params"] == {
        "limit": "20",
        "offset": "0",
        "project_id": "p1",
        "conversation_id": "c1",
    }
    assert result == [{"id": "v1", "message_id": "m1"}]


def test_important_messages_require_success_flag() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": [{"id": "m1"}]})

    assert _run(_client(handler), lambda c: c.list_important_messages("p1")) == []
