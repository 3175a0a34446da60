"""
Pydantic schemas for the remote WakaTime API responses consumed by the importer.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from heartbeat_importer.models.db.enums import EntityType


class UserAgentPayload(BaseModel):
    id: str
    value: str

    model_config = ConfigDict(extra="ignore")


class UserAgentList(BaseModel):
    data: List[UserAgentPayload] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")


class ImportHeartbeatPayload(BaseModel):
    """One remote heartbeat as returned by ``/users/current/heartbeats``."""
    machine_name_id: Optional[str] = None
    user_agent_id: str
    branch: Optional[str] = None
    category: Optional[str] = None
    cursorpos: Optional[str] = None
    dependencies: Optional[List[str]] = None
    entity: str
    is_write: Optional[bool] = None
    language: Optional[str] = None
    lineno: Optional[str] = None
    lines: Optional[int] = None
    project: Optional[str] = None
    type: EntityType
    time: float

    model_config = ConfigDict(extra="ignore")

    @field_validator("cursorpos", "lineno", mode="before")
    @classmethod
    def _numbers_as_text(cls, value):
        # The remote API is not consistent about numeric vs string positions.
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class HeartbeatList(BaseModel):
    """One remote day bucket."""
    data: List[ImportHeartbeatPayload] = Field(default_factory=list)
    start: datetime
    end: datetime
    timezone: str

    model_config = ConfigDict(extra="ignore")


__all__ = ["UserAgentPayload", "UserAgentList", "ImportHeartbeatPayload", "HeartbeatList"]
