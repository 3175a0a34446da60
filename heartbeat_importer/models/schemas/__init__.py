from .imports import ImportRequestPayload, ImportRequestResponse, QueueItem
from .wakatime import UserAgentPayload, UserAgentList, ImportHeartbeatPayload, HeartbeatList
from .heartbeats import HeartbeatPayload

__all__ = [
    # Import requests
    "ImportRequestPayload",
    "ImportRequestResponse",
    "QueueItem",

    # Remote API
    "UserAgentPayload",
    "UserAgentList",
    "ImportHeartbeatPayload",
    "HeartbeatList",

    # Local records
    "HeartbeatPayload",
]
