from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from heartbeat_importer.models.db import Heartbeat
from heartbeat_importer.models.db.enums import EntityType
from heartbeat_importer.models.schemas.heartbeats import HeartbeatPayload
from heartbeat_importer.services.heartbeat_store import import_heartbeats


def _hb(entity: str, ts: float, sender: str | None = "alice") -> HeartbeatPayload:
    return HeartbeatPayload(entity=entity, time_sent=ts, ty=EntityType.FILE, user_agent="Chrome/1", sender=sender, dependencies=["fastapi"])


def test_import_tags_source_and_requester(db_session):
    result = import_heartbeats(db_session, "alice", "wakatime-import", [_hb("a.py", 1.0, sender=None)])
    assert result.ok and result.affected == 1
    row = db_session.query(Heartbeat).one()
    assert row.sender == "alice"
    assert row.source == "wakatime-import"
    assert row.dependencies == ["fastapi"]


def test_existing_natural_key_is_skipped(db_session):
    import_heartbeats(db_session, "alice", "wakatime-import", [_hb("a.py", 1.0)])
    result = import_heartbeats(db_session, "alice", "wakatime-import", [_hb("a.py", 1.0), _hb("b.py", 2.0)])
    assert result.ok
    assert db_session.query(Heartbeat).count() == 2


def test_large_batches_are_chunked(db_session):
    batch = [_hb(f"f{i}.py", float(i)) for i in range(450)]
    result = import_heartbeats(db_session, "alice", "wakatime-import", batch)
    assert result.ok
    assert db_session.query(Heartbeat).count() == 450


def test_empty_batch_is_a_noop():
    session = MagicMock()
    result = import_heartbeats(session, "alice", "wakatime-import", [])
    assert result.ok and result.affected == 0
    session.execute.assert_not_called()


def test_store_failure_is_reported_not_raised():
    session = MagicMock()
    session.get_bind.return_value.dialect.name = "sqlite"
    session.execute.side_effect = OperationalError("INSERT", {}, Exception("disk I/O error"))
    result = import_heartbeats(session, "alice", "wakatime-import", [_hb("a.py", 1.0)])
    assert result.ok is False
    assert "disk I/O error" in result.error
    session.rollback.assert_called_once()
