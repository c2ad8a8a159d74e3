"""Wire model for the visualization list endpoint."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class VisualizationRecord(BaseModel):
    """One entry of ``GET /visualizations``.

    ``chart_data`` is either the image payload itself or a JSON document
    wrapping it; decoding happens in the visualization resolver.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = None
    message_id: str | None = Field(default=None, alias="messageId")
    chart_type: str | None = Field(default=None, alias="chartType")
    chart_data: str | dict[str, Any] | None = Field(default=None, alias="chartData")
    title: str | None = None
    query_used: str | None = Field(default=None, alias="queryUsed")
    created_at: Any = Field(default=None, alias="createdAt")
    is_favorite: bool = Field(default=False, alias="isFavorite")

    @field_validator("id", "message_id", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> str | None:
        if v is None or v == "":
            return None
        return str(v)

    @field_validator("is_favorite", mode="before")
    @classmethod
    def coerce_favorite(cls, v: Any) -> bool:
        return bool(v)
