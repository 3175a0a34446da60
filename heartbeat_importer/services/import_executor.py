"""Import executor: runs one dequeued import job.

Steps for a job:
1. Decode the single queue payload into a ``QueueItem``.
2. Fetch the requester's remote user-agent catalog (once per job).
3. Walk the inclusive day range oldest to newest, one day at a time:
   fetch the day bucket, convert every heartbeat with the catalog, store the
   batch tagged with the import source.
4. Return normally; the queue deletes the row, which is what marks the job
   finished.

When run by a worker, ``touch`` is called before every day to extend the
queue lease, so a long range does not outlive a single visibility timeout. A
lost lease aborts the attempt with ``LeaseLostError``: the row has already been
reclaimed by another consumer.

Failure policy per day:
* Unknown user agent id -> that day is skipped (logged), next day continues.
* Store failure (``DbResult.ok`` is False) -> logged, next day continues.
* Remote API failure -> propagates; the whole job is retried by the queue
  from the first day. Days already stored are deduplicated on re-import.

Days are processed sequentially: this keeps request volume against the remote
API predictable and writes ordered by day.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Iterable, Optional, Sequence

from sqlalchemy.orm import Session

from heartbeat_importer.config import IMPORT_SOURCE
from heartbeat_importer.errors import LeaseLostError, MalformedPayloadError, UnknownUserAgentError
from heartbeat_importer.integrations.wakatime import WakatimeClient
from heartbeat_importer.models.schemas.heartbeats import HeartbeatPayload
from heartbeat_importer.models.schemas.imports import QueueItem
from heartbeat_importer.models.schemas.wakatime import ImportHeartbeatPayload, UserAgentPayload
from heartbeat_importer.services.heartbeat_store import import_heartbeats
from heartbeat_importer.utils import gen_date_range, get_logger, log_performance

logger = get_logger(__name__)


@dataclass
class ImportSummary:
    requester: str
    days_processed: int = 0
    heartbeats_received: int = 0
    heartbeats_imported: int = 0
    days_skipped: list[date] = field(default_factory=list)


def convert_for_db(
    user: str,
    user_agents: Iterable[UserAgentPayload],
    heartbeats: Iterable[ImportHeartbeatPayload],
) -> list[HeartbeatPayload]:
    """Map remote heartbeats to local records, resolving the user agent string.

    Raises ``UnknownUserAgentError`` on the first heartbeat whose agent id is
    not in the catalog.
    """
    catalog: dict[str, str] = {}
    for ua in user_agents:
        catalog.setdefault(ua.id, ua.value)

    converted = []
    for hb in heartbeats:
        try:
            user_agent = catalog[hb.user_agent_id]
        except KeyError:
            raise UnknownUserAgentError(hb.user_agent_id) from None
        converted.append(
            HeartbeatPayload(
                branch=hb.branch,
                category=hb.category,
                cursorpos=hb.cursorpos,
                dependencies=hb.dependencies,
                editor=None,
                plugin=None,
                platform=None,
                machine=None,
                entity=hb.entity,
                file_lines=hb.lines,
                is_write=hb.is_write,
                language=hb.language,
                lineno=hb.lineno,
                project=hb.project,
                user_agent=user_agent,
                sender=user,
                time_sent=hb.time,
                ty=hb.type,
            )
        )
    return converted


def decode_batch(items: Sequence[str | bytes | dict]) -> QueueItem:
    """Validate a dequeued batch; exactly one payload is expected."""
    if not items:
        raise MalformedPayloadError("Received empty payload list")
    if len(items) != 1:
        raise MalformedPayloadError(f"Expected a single payload per batch, received {len(items)}")
    return QueueItem.from_payload(items[0])


class ImportExecutor:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        client_factory: Callable[[str], WakatimeClient] = WakatimeClient,
        *,
        import_source: str = IMPORT_SOURCE,
    ):
        self._session_factory = session_factory
        self._client_factory = client_factory
        self.import_source = import_source

    async def process_items(self, items: Sequence[str | bytes | dict], touch: Optional[Callable[[], bool]] = None) -> ImportSummary:
        item = decode_batch(items)
        return await self.process(item, touch)

    async def process(self, item: QueueItem, touch: Optional[Callable[[], bool]] = None) -> ImportSummary:
        request = item.req_payload
        summary = ImportSummary(requester=item.requester)
        started = time.time()
        logger.info(
            "Processing import request",
            requester=item.requester,
            start_date=request.start_date.date().isoformat(),
            end_date=request.end_date.date().isoformat(),
        )

        session = self._session_factory()
        try:
            async with self._client_factory(request.api_token) as client:
                user_agents = await client.fetch_user_agents()

                for day in gen_date_range(request.start_date, request.end_date):
                    if touch is not None and not touch():
                        raise LeaseLostError(f"Lease on import job for {item.requester} lost before {day.isoformat()}")
                    bucket = await client.fetch_heartbeats(day)
                    summary.heartbeats_received += len(bucket.data)
                    logger.info(
                        "Importing heartbeats for day",
                        requester=item.requester,
                        day=day.isoformat(),
                        count=len(bucket.data),
                    )

                    try:
                        heartbeats = convert_for_db(item.requester, user_agents.data, bucket.data)
                    except UnknownUserAgentError as e:
                        logger.error(
                            "Skipping day: heartbeat references unknown user agent",
                            requester=item.requester,
                            day=day.isoformat(),
                            user_agent_id=e.user_agent_id,
                        )
                        summary.days_skipped.append(day)
                        continue

                    result = import_heartbeats(session, item.requester, self.import_source, heartbeats)
                    if not result.ok:
                        logger.error(
                            "Failed to store heartbeats for day",
                            requester=item.requester,
                            day=day.isoformat(),
                            error=result.error,
                        )
                        summary.days_skipped.append(day)
                        continue

                    summary.days_processed += 1
                    summary.heartbeats_imported += result.affected
        finally:
            session.close()

        logger.info(
            "Import completed",
            requester=item.requester,
            days_processed=summary.days_processed,
            days_skipped=len(summary.days_skipped),
            heartbeats_imported=summary.heartbeats_imported,
        )
        log_performance(
            operation="import_job",
            duration_ms=(time.time() - started) * 1000,
            additional_data={"requester": item.requester, "days": summary.days_processed + len(summary.days_skipped)},
        )
        return summary


__all__ = ["ImportExecutor", "ImportSummary", "convert_for_db", "decode_batch"]
