"""Time utilities (UTC now)."""
from __future__ import annotations
from datetime import datetime, timezone

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

__all__ = ["utc_now"]
