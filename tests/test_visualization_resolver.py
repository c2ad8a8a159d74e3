from __future__ import annotations

import json

from querychat_client.domain.entities.message import Message, MessageRole
from querychat_client.domain.entities.visualization import Visualization
from querychat_client.services.visualization_resolver import (
    ChartPayloadShape,
    VisualizationResolver,
    classify_chart_data,
)

FULL_PAYLOAD = "A" * 500
PLACEHOLDER = "A" * 20


def _ai(message_id: str, visualization: Visualization | None = None) -> Message:
    return Message(role=MessageRole.AI, id=message_id, content="answer", visualization=visualization)


def test_classify_chart_data_shapes() -> None:
    assert classify_chart_data(None)[0] is ChartPayloadShape.ABSENT
    assert classify_chart_data("   ")[0] is ChartPayloadShape.ABSENT
    assert classify_chart_data({"data": "x"})[0] is ChartPayloadShape.MAPPING

    shape, parsed = classify_chart_data(json.dumps({"type": "bar", "data": "xyz"}))
    assert shape is ChartPayloadShape.JSON_STRING
    assert parsed["data"] == "xyz"

    assert classify_chart_data("iVBORw0KGgo")[0] is ChartPayloadShape.RAW_STRING
    assert classify_chart_data("{broken json")[0] is ChartPayloadShape.RAW_STRING


def test_side_loaded_replaces_placeholder() -> None:
    resolver = VisualizationResolver()
    resolver.ingest([{"id": "v1", "message_id": "m1", "chart_data": FULL_PAYLOAD}])

    merged = resolver.merge([_ai("m1", Visualization(type="bar", data=PLACEHOLDER))])

    assert merged[0].visualization is not None
    assert merged[0].visualization.data == FULL_PAYLOAD
    assert merged[0].visualization.id == "v1"


def test_full_embedded_payload_is_kept() -> None:
    resolver = VisualizationResolver()
    resolver.ingest([{"message_id": "m1", "chart_data": "B" * 900}])
    embedded = Visualization(type="bar", data=FULL_PAYLOAD)

    merged = resolver.merge([_ai("m1", embedded)])

    assert merged[0].visualization == embedded


def test_shorter_side_loaded_never_replaces_placeholder() -> None:
    resolver = VisualizationResolver()
    resolver.ingest([{"message_id": "m1", "chart_data": "B" * 10}])
    embedded = Visualization(type="bar", data=PLACEHOLDER)

    merged = resolver.merge([_ai("m1", embedded)])

    assert merged[0].visualization == embedded


def test_message_without_visualization_gets_side_loaded() -> None:
    resolver = VisualizationResolver()
    resolver.ingest(
        [
            {
                "messageId": "m1",
                "chartData": json.dumps({"type": "pie", "data": FULL_PAYLOAD}),
                "title": "Share",
            }
        ]
    )

    merged = resolver.merge([_ai("m1"), _ai("m2")])

    assert merged[0].visualization is not None
    assert merged[0].visualization.type == "pie"
    assert merged[0].visualization.title == "Share"
    assert merged[1].visualization is None


def test_merge_is_idempotent() -> None:
    resolver = VisualizationResolver()
    resolver.ingest([{"message_id": "m1", "chart_data": FULL_PAYLOAD}])
    messages = [_ai("m1", Visualization(data=PLACEHOLDER)), _ai("m2")]

    once = resolver.merge(messages)
    twice = resolver.merge(once)

    assert once == twice


def test_ingest_keeps_longest_payload_and_skips_unusable_records() -> None:
    resolver = VisualizationResolver()
    count = resolver.ingest(
        [
            {"message_id": "m1", "chart_data": "short"},
            {"message_id": "m1", "chart_data": FULL_PAYLOAD},
            {"message_id": "m1", "chart_data": "mid" * 10},
            {"message_id": None, "chart_data": FULL_PAYLOAD},
            {"message_id": "m2", "chart_data": None},
        ]
    )

    assert count == 1
    assert "m1" in resolver
    assert "m2" not in resolver
    visualization = resolver.lookup("m1")
    assert visualization is not None
    assert visualization.data == FULL_PAYLOAD


def test_threshold_is_configurable() -> None:
    resolver = VisualizationResolver(min_payload_length=10)
    resolver.ingest([{"message_id": "m1", "chart_data": FULL_PAYLOAD}])
    embedded = Visualization(data=PLACEHOLDER)

    merged = resolver.merge([_ai("m1", embedded)])

    assert merged[0].visualization == embedded


def test_forget_removes_entry_by_visualization_id() -> None:
    resolver = VisualizationResolver()
    resolver.ingest([{"id": 9, "message_id": "m1", "chart_data": FULL_PAYLOAD}])

    assert resolver.forget("9") is True
    assert resolver.lookup("m1") is None
    assert resolver.forget("9") is False
