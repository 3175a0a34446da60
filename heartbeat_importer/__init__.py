"""Heartbeat importer package.

Imports historical heartbeats from a remote WakaTime-compatible API through a
durable background job queue.
"""

__all__: list[str] = []
