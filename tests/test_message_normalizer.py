from __future__ import annotations

import json
from datetime import datetime, timezone

from querychat_client.domain.entities.message import MessageRole
from querychat_client.services.message_normalizer import MessageNormalizer, parse_role

FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _normalizer() -> MessageNormalizer:
    return MessageNormalizer(clock=lambda: FIXED_NOW)


def test_camel_case_wins_over_snake_case() -> None:
    message = _normalizer().normalize(
        {
            "messageId": "m-1",
            "role": "ai",
            "content": "42 rows",
            "createdAt": "2024-04-01T10:00:00Z",
            "created_at": "2020-01-01T00:00:00Z",
            "queryType": "aggregate",
            "query_type": "ignored",
            "generated_sql": "SELECT 1",
        }
    )

    assert message is not None
    assert message.id == "m-1"
    assert message.role is MessageRole.AI
    assert message.created_at == datetime(2024, 4, 1, 10, 0, tzinfo=timezone.utc)
    assert message.created_at_is_fallback is False
    assert message.query_type == "aggregate"
    assert message.generated_sql == "SELECT 1"


def test_identifier_aliases_are_all_accepted() -> None:
    normalizer = _normalizer()
    for key in ("id", "ID", "messageId", "message_id"):
        message = normalizer.normalize({key: 7, "role": "human", "content": "hi"})
        assert message is not None
        assert message.id == "7"


def test_missing_timestamp_falls_back_to_local_clock() -> None:
    message = _normalizer().normalize({"id": "m-2", "role": "human", "created_at": "not a date"})

    assert message is not None
    assert message.created_at == FIXED_NOW
    assert message.created_at_is_fallback is True


def test_message_without_identifier_is_dropped() -> None:
    normalizer = _normalizer()
    assert normalizer.normalize({"role": "ai", "content": "orphan"}) is None

    messages = normalizer.normalize_many(
        [
            {"id": "a", "role": "human", "content": "q"},
            {"role": "ai", "content": "orphan"},
            "garbage",
            {"id": "b", "role": "assistant", "content": "answer"},
        ]
    )
    assert [m.id for m in messages] == ["a", "b"]


def test_role_aliases_and_sender_fallback() -> None:
    assert parse_role({"role": "user"}) is MessageRole.HUMAN
    assert parse_role({"role": "Assistant"}) is MessageRole.AI
    assert parse_role({"sender": "user"}) is MessageRole.HUMAN
    assert parse_role({"sender": "bot"}) is MessageRole.AI


def test_inline_visualization_is_used_verbatim() -> None:
    message = _normalizer().normalize(
        {
            "id": "m-3",
            "role": "ai",
            "visualization": {"type": "bar", "data": "AAAA", "title": "Sales", "query": "q"},
            "chart_data": json.dumps({"type": "pie", "data": "BBBB"}),
        }
    )

    assert message is not None
    assert message.visualization is not None
    assert message.visualization.type == "bar"
    assert message.visualization.data == "AAAA"
    assert message.visualization.title == "Sales"


def test_json_encoded_chart_data_uses_sibling_fallbacks() -> None:
    message = _normalizer().normalize(
        {
            "id": "m-4",
            "role": "ai",
            "chart_data": json.dumps({"data": "iVBORw0KGgo"}),
            "chart_type": "line",
            "title": "Revenue",
            "query_used": "revenue by month",
        }
    )

    assert message is not None
    viz = message.visualization
    assert viz is not None
    assert viz.data == "iVBORw0KGgo"
    assert viz.type == "line"
    assert viz.title == "Revenue"
    assert viz.query == "revenue by month"


def test_raw_chart_data_string_is_the_payload() -> None:
    message = _normalizer().normalize(
        {"id": "m-5", "role": "ai", "chartData": "iVBORw0KGgoAAAANSUhEUg", "chartType": "bar"}
    )

    assert message is not None
    assert message.visualization is not None
    assert message.visualization.data == "iVBORw0KGgoAAAANSUhEUg"
    assert message.visualization.type == "bar"


def test_conversation_id_defaults_to_the_owner_passed_in() -> None:
    normalizer = _normalizer()
    owned = normalizer.normalize({"id": "m-6", "role": "ai"}, conversation_id="c1")
    tagged = normalizer.normalize(
        {"id": "m-7", "role": "ai", "conversationId": "c2"}, conversation_id="c1"
    )

    assert owned is not None and owned.conversation_id == "c1"
    assert tagged is not None and tagged.conversation_id == "c2"


def test_importance_flag_strings_are_coerced() -> None:
    normalizer = _normalizer()

    flags = [
        normalizer.normalize({"id": f"m-{i}", "role": "ai", "isImportant": raw}).is_important
        for i, raw in enumerate(["false", "0", "true", 1, None])
    ]

    assert flags == [False, False, True, True, False]
