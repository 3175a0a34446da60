"""
Integrations package initialization.
Exports the remote API clients used by the importer.
"""
from .wakatime import WakatimeClient

__all__ = [
    "WakatimeClient",
]
