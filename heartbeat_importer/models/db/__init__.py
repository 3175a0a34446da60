from .users import User
from .queue_rows import QueueRow
from .heartbeats import Heartbeat
from .enums import QueueRowState, JobStatus, EntityType

__all__ = [
    "User",
    "QueueRow",
    "Heartbeat",
    "QueueRowState",
    "JobStatus",
    "EntityType",
]
