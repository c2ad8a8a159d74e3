"""
Visualization decoding and side-loaded lookup.

Chart payloads reach the client in several shapes: an inline
``visualization`` object, a ``chart_data`` string that is itself a JSON
document, or a ``chart_data`` string that already is the image payload.
Everything is decoded into one ``Visualization`` here so that the rest of
the client only ever sees the canonical shape.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import replace
from enum import Enum
from typing import Any

from pydantic import ValidationError

from querychat.utils.logger import get_logger
from querychat.utils.timestamps import parse_timestamp
from querychat_client.domain.entities.message import Message
from querychat_client.domain.entities.visualization import Visualization
from querychat_client.models.visualization import VisualizationRecord

logger = get_logger(__name__)

DEFAULT_MIN_PAYLOAD_LENGTH = 100


class ChartPayloadShape(str, Enum):
    ABSENT = "absent"
    MAPPING = "mapping"
    JSON_STRING = "json_string"
    RAW_STRING = "raw_string"


def classify_chart_data(chart_data: Any) -> tuple[ChartPayloadShape, Any]:
    """Tag a ``chart_data`` value with its wire shape.

    JSON strings are returned already parsed. A string that looks like JSON
    but does not parse is treated as a raw payload.
    """
    if chart_data is None:
        return ChartPayloadShape.ABSENT, None
    if isinstance(chart_data, Mapping):
        return ChartPayloadShape.MAPPING, chart_data
    if not isinstance(chart_data, str):
        return ChartPayloadShape.ABSENT, None

    text = chart_data.strip()
    if not text:
        return ChartPayloadShape.ABSENT, None
    if text.startswith("{"):
        try:
            parsed = json.loads(text)
        except ValueError:
            logger.debug("chart_data looks like JSON but does not parse; using it as raw payload")
            return ChartPayloadShape.RAW_STRING, chart_data
        if isinstance(parsed, dict):
            return ChartPayloadShape.JSON_STRING, parsed
    return ChartPayloadShape.RAW_STRING, chart_data


def decode_chart_data(
    chart_data: Any,
    *,
    chart_type: str | None = None,
    title: str | None = None,
    query: str | None = None,
    visualization_id: str | None = None,
    created_at: Any = None,
) -> Visualization | None:
    """Decode ``chart_data`` plus its sibling fields into a Visualization."""
    shape, value = classify_chart_data(chart_data)
    timestamp = parse_timestamp(created_at)

    if shape is ChartPayloadShape.ABSENT:
        return None
    if shape is ChartPayloadShape.RAW_STRING:
        return Visualization(
            type=chart_type,
            data=value,
            title=title,
            query=query,
            id=visualization_id,
            created_at=timestamp,
        )

    # MAPPING and JSON_STRING carry {type, data, title, query}
    data = value.get("data")
    return Visualization(
        type=value.get("type") or chart_type,
        data=data if isinstance(data, str) else (json.dumps(data) if data is not None else None),
        title=value.get("title") or title,
        query=value.get("query") or query,
        id=visualization_id,
        created_at=timestamp,
    )


def visualization_from_mapping(raw: Mapping[str, Any]) -> Visualization:
    """Take an inline ``visualization`` object verbatim."""
    data = raw.get("data")
    raw_id = raw.get("id")
    return Visualization(
        type=raw.get("type") or raw.get("chart_type"),
        data=data if isinstance(data, str) or data is None else json.dumps(data),
        title=raw.get("title"),
        query=raw.get("query") or raw.get("query_used"),
        id=str(raw_id) if raw_id is not None else None,
        created_at=parse_timestamp(raw.get("createdAt") or raw.get("created_at")),
    )


def visualization_from_record(record: VisualizationRecord) -> Visualization | None:
    return decode_chart_data(
        record.chart_data,
        chart_type=record.chart_type,
        title=record.title,
        query=record.query_used,
        visualization_id=record.id,
        created_at=record.created_at,
    )


class VisualizationResolver:
    """Side-loaded ``message id -> Visualization`` lookup and merge policy."""

    def __init__(self, min_payload_length: int = DEFAULT_MIN_PAYLOAD_LENGTH) -> None:
        self._min_payload_length = min_payload_length
        self._by_message: dict[str, Visualization] = {}

    @property
    def min_payload_length(self) -> int:
        return self._min_payload_length

    def __len__(self) -> int:
        return len(self._by_message)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._by_message

    def lookup(self, message_id: str | None) -> Visualization | None:
        if message_id is None:
            return None
        return self._by_message.get(message_id)

    def is_placeholder(self, visualization: Visualization | None) -> bool:
        return visualization is None or visualization.payload_length < self._min_payload_length

    def ingest(
        self,
        records: Iterable[VisualizationRecord | Mapping[str, Any]],
        *,
        replace_existing: bool = True,
    ) -> int:
        """Load visualization list records into the lookup.

        Returns the number of messages that now have a side-loaded entry.
        """
        if replace_existing:
            self._by_message.clear()

        for raw in records:
            if isinstance(raw, VisualizationRecord):
                record = raw
            else:
                try:
                    record = VisualizationRecord.model_validate(raw)
                except ValidationError as e:
                    logger.warning(f"Skipping malformed visualization record: {e}")
                    continue

            if not record.message_id:
                continue
            visualization = visualization_from_record(record)
            if visualization is None or not visualization.has_payload():
                continue

            current = self._by_message.get(record.message_id)
            if current is None or visualization.payload_length > current.payload_length:
                self._by_message[record.message_id] = visualization

        logger.debug(f"Visualization lookup holds {len(self._by_message)} message(s)")
        return len(self._by_message)

    def forget(self, visualization_id: str) -> bool:
        for message_id, visualization in list(self._by_message.items()):
            if visualization.id == visualization_id:
                del self._by_message[message_id]
                return True
        return False

    def clear(self) -> None:
        self._by_message.clear()

    def choose(
        self,
        embedded: Visualization | None,
        side_loaded: Visualization | None,
    ) -> Visualization | None:
        """Pick the better of an embedded and a side-loaded visualization."""
        if side_loaded is None or not side_loaded.has_payload():
            return embedded
        if embedded is None:
            return side_loaded
        if (
            self.is_placeholder(embedded)
            and side_loaded.payload_length >= embedded.payload_length
        ):
            return side_loaded
        return embedded

    def merge(self, messages: Iterable[Message]) -> list[Message]:
        """Attach side-loaded visualizations to messages.

        Returns a new list; messages whose visualization changes are copied,
        the others are passed through. Running it twice is a no-op.
        """
        merged: list[Message] = []
        attached = 0
        for message in messages:
            chosen = self.choose(message.visualization, self.lookup(message.id))
            if chosen is not message.visualization and chosen != message.visualization:
                message = replace(message, visualization=chosen)
                attached += 1
            merged.append(message)
        if attached:
            logger.debug(f"Merged {attached} side-loaded visualization(s) into messages")
        return merged
