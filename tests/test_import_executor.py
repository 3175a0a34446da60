import asyncio
from datetime import date

import pytest

from heartbeat_importer.errors import LeaseLostError, MalformedPayloadError, RemoteApiError, UnknownUserAgentError
from heartbeat_importer.models.db import Heartbeat
from heartbeat_importer.models.db.enums import EntityType
from heartbeat_importer.models.schemas.imports import ImportRequestPayload, QueueItem
from heartbeat_importer.models.schemas.wakatime import ImportHeartbeatPayload, UserAgentPayload
from heartbeat_importer.services.import_executor import ImportExecutor, convert_for_db, decode_batch

from conftest import TestingSessionLocal, day_bucket, heartbeat_json


def _item(start: str = "2023-01-01", end: str = "2023-01-02") -> QueueItem:
    return QueueItem(
        requester="alice",
        req_payload=ImportRequestPayload(api_token="waka_key", start_date=start, end_date=end),
    )


def _stored(db_session):
    db_session.expire_all()
    return db_session.query(Heartbeat).order_by(Heartbeat.time_sent).all()


def test_convert_resolves_user_agent_and_sender():
    agents = [UserAgentPayload(id="a1", value="Chrome/1")]
    hb = ImportHeartbeatPayload.model_validate(heartbeat_json("src/main.py", 1672531200.0, lines=120, lineno=7, cursorpos=42))
    [converted] = convert_for_db("alice", agents, [hb])
    assert converted.user_agent == "Chrome/1"
    assert converted.sender == "alice"
    assert converted.entity == "src/main.py"
    assert converted.ty == EntityType.FILE
    assert converted.time_sent == 1672531200.0
    assert converted.file_lines == 120
    assert converted.lineno == "7"
    assert converted.cursorpos == "42"
    assert converted.editor is None and converted.plugin is None
    assert converted.platform is None and converted.machine is None


def test_convert_first_catalog_entry_wins():
    agents = [UserAgentPayload(id="a1", value="first"), UserAgentPayload(id="a1", value="second")]
    hb = ImportHeartbeatPayload.model_validate(heartbeat_json("x.py", 1.0))
    [converted] = convert_for_db("alice", agents, [hb])
    assert converted.user_agent == "first"


def test_convert_unknown_user_agent_raises():
    hb = ImportHeartbeatPayload.model_validate(heartbeat_json("x.py", 1.0, user_agent_id="zz"))
    with pytest.raises(UnknownUserAgentError) as exc:
        convert_for_db("alice", [UserAgentPayload(id="a1", value="Chrome/1")], [hb])
    assert exc.value.user_agent_id == "zz"


def test_decode_batch_rejects_empty_and_oversized_batches():
    with pytest.raises(MalformedPayloadError, match="Received empty payload list"):
        decode_batch([])
    payload = _item().to_payload()
    with pytest.raises(MalformedPayloadError):
        decode_batch([payload, payload])
    assert decode_batch([payload]) == _item()


def test_process_imports_each_day_with_provenance(fake_remote, db_session):
    fake_remote["days"][date(2023, 1, 1)] = day_bucket(date(2023, 1, 1), [
        heartbeat_json("a.py", 1672531200.0),
        heartbeat_json("b.py", 1672531260.0),
    ])
    fake_remote["days"][date(2023, 1, 2)] = day_bucket(date(2023, 1, 2), [
        heartbeat_json("c.py", 1672617600.0),
    ])
    executor = ImportExecutor(TestingSessionLocal, fake_remote["factory"])

    summary = asyncio.run(executor.process(_item()))

    assert summary.days_processed == 2
    assert summary.heartbeats_received == 3
    rows = _stored(db_session)
    assert [r.entity for r in rows] == ["a.py", "b.py", "c.py"]
    assert {r.sender for r in rows} == {"alice"}
    assert {r.user_agent for r in rows} == {"Chrome/1"}
    assert {r.source for r in rows} == {"wakatime-import"}
    # Catalog fetched once, then one call per day in order.
    assert fake_remote["calls"] == [
        ("user_agents", "waka_key"),
        ("heartbeats", date(2023, 1, 1)),
        ("heartbeats", date(2023, 1, 2)),
    ]


def test_unknown_user_agent_skips_only_that_day(fake_remote, db_session):
    fake_remote["days"][date(2023, 1, 1)] = day_bucket(date(2023, 1, 1), [
        heartbeat_json("a.py", 1672531200.0),
        heartbeat_json("b.py", 1672531260.0, user_agent_id="missing"),
    ])
    fake_remote["days"][date(2023, 1, 2)] = day_bucket(date(2023, 1, 2), [
        heartbeat_json("c.py", 1672617600.0),
    ])
    executor = ImportExecutor(TestingSessionLocal, fake_remote["factory"])

    summary = asyncio.run(executor.process(_item()))

    assert summary.days_skipped == [date(2023, 1, 1)]
    assert summary.days_processed == 1
    assert [r.entity for r in _stored(db_session)] == ["c.py"]


def test_remote_failure_propagates_after_earlier_days_stored(fake_remote, remote_failure, db_session):
    fake_remote["days"][date(2023, 1, 1)] = day_bucket(date(2023, 1, 1), [heartbeat_json("a.py", 1672531200.0)])
    fake_remote["days"][date(2023, 1, 2)] = remote_failure
    executor = ImportExecutor(TestingSessionLocal, fake_remote["factory"])

    with pytest.raises(RemoteApiError):
        asyncio.run(executor.process(_item()))
    assert [r.entity for r in _stored(db_session)] == ["a.py"]


def test_redelivered_job_does_not_duplicate_heartbeats(fake_remote, db_session):
    fake_remote["days"][date(2023, 1, 1)] = day_bucket(date(2023, 1, 1), [
        heartbeat_json("a.py", 1672531200.0),
        heartbeat_json("a.py", 1672531200.0),
        heartbeat_json("b.py", 1672531260.0),
    ])
    executor = ImportExecutor(TestingSessionLocal, fake_remote["factory"])

    asyncio.run(executor.process(_item(end="2023-01-01")))
    asyncio.run(executor.process(_item(end="2023-01-01")))

    assert [r.entity for r in _stored(db_session)] == ["a.py", "b.py"]


def test_empty_day_is_not_an_error(fake_remote, db_session):
    executor = ImportExecutor(TestingSessionLocal, fake_remote["factory"])
    summary = asyncio.run(executor.process_items([_item(end="2023-01-03").to_payload()]))
    assert summary.days_processed == 3
    assert summary.heartbeats_received == 0
    assert _stored(db_session) == []


def test_store_failure_skips_day_and_continues(fake_remote, monkeypatch):
    from heartbeat_importer.services import import_executor as executor_mod
    from heartbeat_importer.services.heartbeat_store import DbResult

    stored_days = []

    def _failing_store(session, requester, source, heartbeats):
        stored_days.append(heartbeats[0].entity if heartbeats else None)
        if len(stored_days) == 1:
            return DbResult(ok=False, error="disk full")
        return DbResult(ok=True, affected=len(heartbeats))

    monkeypatch.setattr(executor_mod, "import_heartbeats", _failing_store)
    fake_remote["days"][date(2023, 1, 1)] = day_bucket(date(2023, 1, 1), [heartbeat_json("a.py", 1672531200.0)])
    fake_remote["days"][date(2023, 1, 2)] = day_bucket(date(2023, 1, 2), [heartbeat_json("b.py", 1672617600.0)])
    executor = ImportExecutor(TestingSessionLocal, fake_remote["factory"])

    summary = asyncio.run(executor.process(_item()))

    assert stored_days == ["a.py", "b.py"]
    assert summary.days_skipped == [date(2023, 1, 1)]
    assert summary.heartbeats_imported == 1


def test_lease_is_extended_before_each_day(fake_remote):
    touches = []

    def _touch():
        touches.append(len(fake_remote["calls"]))
        return True

    executor = ImportExecutor(TestingSessionLocal, fake_remote["factory"])
    asyncio.run(executor.process(_item(end="2023-01-03"), _touch))

    # Catalog call first, then one touch ahead of each day fetch.
    assert touches == [1, 2, 3]


def test_lost_lease_aborts_remaining_days(fake_remote):
    answers = iter([True, False])
    executor = ImportExecutor(TestingSessionLocal, fake_remote["factory"])

    with pytest.raises(LeaseLostError):
        asyncio.run(executor.process(_item(), lambda: next(answers)))
    assert ("heartbeats", date(2023, 1, 1)) in fake_remote["calls"]
    assert ("heartbeats", date(2023, 1, 2)) not in fake_remote["calls"]
