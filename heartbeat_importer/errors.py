"""Exception hierarchy shared by the queue, the import executor and the API.

HTTP mapping (see ``heartbeat_importer.main``):
    MissingAuthError / InvalidTokenError -> 401
    QueueConnectionError                 -> 503
Everything raised during background execution is only visible in logs and,
once the retry budget is spent, as a failed job.
"""
from __future__ import annotations


class ImportServiceError(Exception):
    """Base class for all import pipeline errors."""


class QueueConnectionError(ImportServiceError, ConnectionError):
    """The backing store of the queue (or the heartbeat store) is unreachable."""


class MalformedPayloadError(ImportServiceError):
    """A dequeued batch could not be decoded or had the wrong size. Never retried."""


class MissingAuthError(ImportServiceError):
    """No credential supplied with the request."""

    def __init__(self, message: str = "Missing authorization token"):
        super().__init__(message)


class InvalidTokenError(ImportServiceError):
    """The credential does not belong to an active user."""

    def __init__(self, message: str = "Invalid or inactive API key"):
        super().__init__(message)


class UnknownUserAgentError(ImportServiceError, LookupError):
    """A remote heartbeat references a user agent id missing from the catalog."""

    def __init__(self, user_agent_id: str):
        self.user_agent_id = user_agent_id
        super().__init__(f"Unknown user agent id: {user_agent_id}")


class LeaseLostError(ImportServiceError):
    """The consumer no longer holds the queue row it is working on."""


class RemoteApiError(ImportServiceError):
    """The remote API answered with an error status or an undecodable body."""

    def __init__(self, message: str, status: int | None = None):
        self.status = status
        super().__init__(message)


__all__ = [
    "ImportServiceError",
    "QueueConnectionError",
    "MalformedPayloadError",
    "MissingAuthError",
    "InvalidTokenError",
    "UnknownUserAgentError",
    "RemoteApiError",
    "LeaseLostError",
]
