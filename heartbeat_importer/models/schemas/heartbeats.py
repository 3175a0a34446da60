"""
Local heartbeat record produced by the importer.
"""
from typing import List, Optional
from pydantic import BaseModel, ConfigDict

from heartbeat_importer.models.db.enums import EntityType


class HeartbeatPayload(BaseModel):
    branch: Optional[str] = None
    category: Optional[str] = None
    cursorpos: Optional[str] = None
    dependencies: Optional[List[str]] = None
    editor: Optional[str] = None
    plugin: Optional[str] = None
    platform: Optional[str] = None
    machine: Optional[str] = None
    entity: str
    file_lines: Optional[int] = None
    is_write: Optional[bool] = None
    language: Optional[str] = None
    lineno: Optional[str] = None
    project: Optional[str] = None
    user_agent: str
    sender: Optional[str] = None
    time_sent: float
    ty: EntityType

    model_config = ConfigDict(frozen=True)


__all__ = ["HeartbeatPayload"]
