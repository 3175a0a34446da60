"""Heartbeat persistence for imports.

``import_heartbeats`` is tolerant of re-delivery: rows whose natural key
``(sender, entity, entity_type, time_sent)`` already exists are skipped, so a
job restarted from its first day does not duplicate records. Failures are
reported through ``DbResult`` instead of raised.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from sqlalchemy import insert, select, tuple_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from heartbeat_importer.models.db.heartbeats import Heartbeat
from heartbeat_importer.models.schemas.heartbeats import HeartbeatPayload
from heartbeat_importer.utils import get_logger

logger = get_logger(__name__)

_NATURAL_KEY = ("sender", "entity", "entity_type", "time_sent")
_CHUNK_SIZE = 200


@dataclass(frozen=True)
class DbResult:
    ok: bool
    affected: int = 0
    error: str | None = None


def _to_row(requester: str, source: str | None, hb: HeartbeatPayload) -> dict:
    return {
        "sender": hb.sender or requester,
        "entity": hb.entity,
        "entity_type": hb.ty,
        "time_sent": hb.time_sent,
        "user_agent": hb.user_agent,
        "editor": hb.editor,
        "plugin": hb.plugin,
        "platform": hb.platform,
        "machine": hb.machine,
        "branch": hb.branch,
        "category": hb.category,
        "cursorpos": hb.cursorpos,
        "dependencies": hb.dependencies,
        "file_lines": hb.file_lines,
        "is_write": hb.is_write,
        "language": hb.language,
        "lineno": hb.lineno,
        "project": hb.project,
        "source": source,
    }


def _dedupe(rows: list[dict]) -> list[dict]:
    seen: set[tuple] = set()
    unique = []
    for row in rows:
        key = tuple(row[k] for k in _NATURAL_KEY)
        if key in seen:
            continue
        seen.add(key)
        unique.append(row)
    return unique


def _insert_ignoring_existing(session: Session, rows: list[dict]) -> int:
    dialect = session.get_bind().dialect.name
    if dialect in ("postgresql", "sqlite"):
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert as dialect_insert
        else:
            from sqlalchemy.dialects.sqlite import insert as dialect_insert
        inserted = 0
        for start in range(0, len(rows), _CHUNK_SIZE):
            chunk = rows[start:start + _CHUNK_SIZE]
            stmt = dialect_insert(Heartbeat.__table__).values(chunk).on_conflict_do_nothing(index_elements=list(_NATURAL_KEY))
            inserted += session.execute(stmt).rowcount or 0
        return inserted

    # Generic path: filter out keys that already exist, then plain insert.
    keys = [tuple(row[k] for k in _NATURAL_KEY) for row in rows]
    columns = [Heartbeat.__table__.c[k] for k in _NATURAL_KEY]
    existing = set(session.execute(select(*columns).where(tuple_(*columns).in_(keys))).all())
    fresh = [row for row, key in zip(rows, keys) if key not in existing]
    if fresh:
        session.execute(insert(Heartbeat.__table__), fresh)
    return len(fresh)


def import_heartbeats(
    session: Session,
    requester: str,
    source: str | None,
    heartbeats: Sequence[HeartbeatPayload],
) -> DbResult:
    """Bulk insert heartbeats attributed to ``requester`` and tagged with ``source``."""
    if not heartbeats:
        return DbResult(ok=True, affected=0)
    rows = _dedupe([_to_row(requester, source, hb) for hb in heartbeats])
    try:
        affected = _insert_ignoring_existing(session, rows)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        return DbResult(ok=False, error=str(e))
    if affected < len(heartbeats):
        logger.debug("Skipped already imported heartbeats", requester=requester, skipped=len(heartbeats) - affected)
    return DbResult(ok=True, affected=affected)


__all__ = ["DbResult", "import_heartbeats"]
