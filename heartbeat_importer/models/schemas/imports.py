"""
Pydantic schemas for import requests and the queue wire payload.
"""
import json
from datetime import date, datetime, time, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_serializer, field_validator

from heartbeat_importer.errors import MalformedPayloadError
from heartbeat_importer.models.db.enums import JobStatus


def _format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class ImportRequestPayload(BaseModel):
    """What to import: the remote API key and the (inclusive) day range."""
    api_token: str = Field(alias="apiToken", min_length=1, description="Remote API key used for the import")
    start_date: datetime = Field(alias="startDate", description="First day to import")
    end_date: datetime = Field(alias="endDate", description="Last day to import (inclusive)")

    model_config = ConfigDict(
        populate_by_name=True,
        frozen=True,
        json_schema_extra={
            "example": {
                "apiToken": "waka_0000-1111",
                "startDate": "2023-01-01T00:00:00Z",
                "endDate": "2023-01-03T00:00:00Z",
            }
        },
    )

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _accept_plain_dates(cls, value: Any) -> Any:
        if isinstance(value, str) and len(value) == 10:
            return datetime.combine(date.fromisoformat(value), time(), tzinfo=timezone.utc)
        if isinstance(value, date) and not isinstance(value, datetime):
            return datetime.combine(value, time(), tzinfo=timezone.utc)
        return value

    @field_validator("start_date", "end_date")
    @classmethod
    def _normalize_utc(cls, value: datetime) -> datetime:
        # Naive timestamps are taken as UTC so equal requests fingerprint equally.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @field_serializer("start_date", "end_date")
    def _serialize_timestamp(self, value: datetime) -> str:
        return _format_timestamp(value)


class ImportRequestResponse(BaseModel):
    job_status: JobStatus


class QueueItem(BaseModel):
    """Job fingerprint: who asked for which import.

    Two submissions with the same requester and request parameters produce the
    same serialized payload and are therefore the same logical job.
    """
    requester: str = Field(min_length=1)
    req_payload: ImportRequestPayload = Field(alias="reqPayload")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_payload(self) -> str:
        """Canonical JSON used as the queue row content."""
        data = self.model_dump(mode="json", by_alias=True)
        return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_payload(cls, raw: str | bytes | dict) -> "QueueItem":
        try:
            if isinstance(raw, dict):
                return cls.model_validate(raw)
            return cls.model_validate_json(raw)
        except ValidationError as e:
            raise MalformedPayloadError(f"Undecodable queue payload: {e.error_count()} error(s): {e.errors()[0]['msg']}") from e


__all__ = ["ImportRequestPayload", "ImportRequestResponse", "QueueItem"]
