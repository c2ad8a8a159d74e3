"""Wire models for the ask and generate-visualization endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from querychat.utils.timestamps import parse_timestamp


def _coerce_id(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


class SendTurnResponse(BaseModel):
    """Payload of a successful ``POST /analyze-data``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    conversation_id: str | None = Field(default=None, alias="conversationId")
    user_message_id: str | None = Field(default=None, alias="userMessageId")
    user_created_at: datetime | None = Field(default=None, alias="userCreatedAt")
    ai_message_id: str | None = Field(default=None, alias="aiMessageId")
    ai_created_at: datetime | None = Field(default=None, alias="aiCreatedAt")
    analysis: str | None = None
    query_type: str | None = Field(default=None, alias="queryType")
    generated_sql: str | None = Field(default=None, alias="generatedSql")
    visualization: dict[str, Any] | None = None
    project_id: str | None = Field(default=None, alias="projectId")

    @field_validator("conversation_id", "user_message_id", "ai_message_id", "project_id", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> str | None:
        return _coerce_id(v)

    @field_validator("user_created_at", "ai_created_at", mode="before")
    @classmethod
    def lenient_timestamps(cls, v: Any) -> datetime | None:
        return parse_timestamp(v)

    @field_validator("visualization", mode="before")
    @classmethod
    def drop_non_mapping_visualization(cls, v: Any) -> dict[str, Any] | None:
        return v if isinstance(v, dict) else None


class VisualizationResponse(BaseModel):
    """Payload of a successful ``POST /generate-visualization``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    conversation_id: str | None = Field(default=None, alias="conversationId")
    ai_message_id: str | None = Field(default=None, alias="aiMessageId")
    visualization: dict[str, Any] | None = None

    @field_validator("conversation_id", "ai_message_id", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> str | None:
        return _coerce_id(v)

    @field_validator("visualization", mode="before")
    @classmethod
    def drop_non_mapping_visualization(cls, v: Any) -> dict[str, Any] | None:
        return v if isinstance(v, dict) else None


class ImportanceResponse(BaseModel):
    """Payload of ``PUT``/``DELETE /messages/{id}/important``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    message_id: str | None = Field(default=None, alias="messageId")
    important: bool

    @field_validator("message_id", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> str | None:
        return _coerce_id(v)
