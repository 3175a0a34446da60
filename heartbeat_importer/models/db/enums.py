"""Central Enum definitions for queue and heartbeat states."""
from __future__ import annotations
import enum


class QueueRowState(str, enum.Enum):
    PENDING = "pending"
    LOCKED = "locked"
    FAILED = "failed"


class JobStatus(str, enum.Enum):
    """Externally visible import job status (wire values match the API contract)."""
    SUBMITTED = "JobSubmitted"
    PENDING = "JobPending"
    FAILED = "JobFailed"
    FINISHED = "JobFinished"


class EntityType(str, enum.Enum):
    FILE = "file"
    APP = "app"
    DOMAIN = "domain"


__all__ = [
    "QueueRowState",
    "JobStatus",
    "EntityType",
]
