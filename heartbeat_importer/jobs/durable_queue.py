"""Durable at-least-once job queue stored in the ``import_queue`` table.

Row life cycle:
  enqueue          -> PENDING (available_at = now)
  dequeue_batch    -> LOCKED  (locked_until = now + visibility timeout)
  handler returns  -> row deleted
  handler raises   -> retry_count + 1, then PENDING after a backoff, or FAILED
                      once retry_count reaches max_retries
  malformed batch  -> FAILED immediately
  lease expires    -> reclaimable; the lost attempt counts towards retry_count

Every claim issues a fresh lease token. Acks, failure records and lease
extensions only touch rows still LOCKED under the caller's token, so a
consumer that overran its lease cannot settle a row another consumer has
reclaimed since. Long handlers keep their lease alive with ``extend_lease``.

FAILED rows are never handed out again. They stay in the table so status
checks can report them and a resubmission can delete them.

Claims use ``SELECT ... FOR UPDATE SKIP LOCKED`` where the dialect supports it
so several worker processes can share the table. Idempotency is the caller's
responsibility: ``enqueue`` does not dedup.
"""
from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterator, Optional, Sequence

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session

from heartbeat_importer.config import QueueConfig
from heartbeat_importer.errors import MalformedPayloadError, QueueConnectionError
from heartbeat_importer.jobs.notifier import LocalNotifier
from heartbeat_importer.models.db.enums import QueueRowState
from heartbeat_importer.models.db.queue_rows import QueueRow
from heartbeat_importer.models.schemas.imports import QueueItem
from heartbeat_importer.utils import get_logger
from heartbeat_importer.utils.time import utc_now

logger = get_logger(__name__)

_MAX_ERROR_LENGTH = 2000


@dataclass(frozen=True, slots=True)
class DequeuedRow:
    id: int
    payload: str
    retry_count: int
    lease_token: str


def _payload_of(item: QueueItem | str) -> str:
    return item.to_payload() if isinstance(item, QueueItem) else item


class DurableQueue:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: QueueConfig | None = None,
        notifier=None,
        *,
        backoff: Optional[Callable[[int], float]] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self.config = config or QueueConfig.from_settings()
        self.notifier = notifier if notifier is not None else LocalNotifier()
        self._backoff = backoff if backoff is not None else self.config.retry_delay
        self._clock = clock

    @property
    def name(self) -> str:
        return self.config.queue_name

    # ----------------------------- internal helpers ----------------------------- #
    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except (OperationalError, InterfaceError) as e:
            session.rollback()
            raise QueueConnectionError(f"Queue store unreachable: {e.orig or e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _matching(self, payload: str):
        return and_(QueueRow.queue_name == self.name, QueueRow.payload == payload)

    def _owned(self, rows: Sequence[DequeuedRow]):
        return and_(
            QueueRow.state == QueueRowState.LOCKED,
            or_(*[and_(QueueRow.id == row.id, QueueRow.lease_token == row.lease_token) for row in rows]),
        )

    # ----------------------------- public API ----------------------------- #
    def enqueue(self, item: QueueItem | str) -> int:
        """Persist a new PENDING row and wake consumers. Returns the row id."""
        payload = _payload_of(item)
        now = self._clock()
        with self._session() as session:
            row = QueueRow(
                queue_name=self.name,
                payload=payload,
                state=QueueRowState.PENDING,
                retry_count=0,
                enqueued_at=now,
                available_at=now,
            )
            session.add(row)
            session.flush()
            row_id = row.id
        self.notifier.notify()
        logger.debug("Enqueued import job", queue=self.name, row_id=row_id)
        return row_id

    def delete_matching(self, item: QueueItem | str, *, state: QueueRowState | None = QueueRowState.FAILED) -> int:
        """Delete rows whose payload equals ``item`` (only FAILED ones by default)."""
        condition = self._matching(_payload_of(item))
        if state is not None:
            condition = and_(condition, QueueRow.state == state)
        with self._session() as session:
            result = session.execute(delete(QueueRow).where(condition))
            affected = result.rowcount or 0
        if affected:
            logger.info("Deleted queue rows matching payload", queue=self.name, affected=affected, state=state.value if state else None)
        return affected

    def find_state(self, item: QueueItem | str) -> QueueRowState | None:
        """Current state of the job, or None when no row matches.

        A live (pending/locked) row takes precedence over a failed one.
        """
        with self._session() as session:
            states = set(session.scalars(select(QueueRow.state).where(self._matching(_payload_of(item)))).all())
        if not states:
            return None
        for state in (QueueRowState.LOCKED, QueueRowState.PENDING):
            if state in states:
                return state
        return QueueRowState.FAILED

    def dequeue_batch(self, max_retries: int | None = None, batch_size: int | None = None) -> list[DequeuedRow]:
        """Claim up to ``batch_size`` visible rows, oldest first.

        Returns an empty list when nothing is visible.
        """
        max_retries = self.config.max_retries if max_retries is None else max_retries
        batch_size = self.config.batch_size if batch_size is None else batch_size
        lease = timedelta(seconds=self.config.visibility_timeout_seconds)

        while True:
            now = self._clock()
            claimed: list[DequeuedRow] = []
            exhausted = 0
            with self._session() as session:
                stmt = (
                    select(QueueRow)
                    .where(
                        QueueRow.queue_name == self.name,
                        or_(
                            and_(QueueRow.state == QueueRowState.PENDING, QueueRow.available_at <= now),
                            and_(QueueRow.state == QueueRowState.LOCKED, QueueRow.locked_until <= now),
                        ),
                    )
                    .order_by(QueueRow.id)
                    .limit(batch_size)
                    .with_for_update(skip_locked=True)
                )
                candidates = session.scalars(stmt).all()
                if not candidates:
                    return []
                token = uuid.uuid4().hex
                for row in candidates:
                    if row.state == QueueRowState.LOCKED:
                        # Previous consumer died or overran its lease.
                        row.retry_count += 1
                        row.last_error = "visibility timeout expired before the job completed"
                        logger.warning("Reclaiming import job with expired lease", row_id=row.id, retry_count=row.retry_count)
                        if row.retry_count >= max_retries:
                            row.state = QueueRowState.FAILED
                            row.locked_until = None
                            row.lease_token = None
                            exhausted += 1
                            continue
                    row.state = QueueRowState.LOCKED
                    row.locked_until = now + lease
                    row.lease_token = token
                    claimed.append(DequeuedRow(id=row.id, payload=row.payload, retry_count=row.retry_count, lease_token=token))
            if claimed or not exhausted:
                return claimed
            # Every candidate hit the retry ceiling; look again for live rows.

    def extend_lease(self, rows: Sequence[DequeuedRow]) -> bool:
        """Push the lease of claimed ``rows`` a full visibility timeout past now.

        Returns False when none of them is still held under its claim, i.e. the
        lease already expired and the row was reclaimed, failed or deleted.
        """
        locked_until = self._clock() + timedelta(seconds=self.config.visibility_timeout_seconds)
        with self._session() as session:
            rows_held = session.scalars(select(QueueRow).where(self._owned(rows))).all()
            for row in rows_held:
                row.locked_until = locked_until
        if not rows_held:
            logger.warning("Lease lost before it could be extended", row_ids=[row.id for row in rows])
            return False
        return True

    def with_dequeue(
        self,
        handler: Callable[..., object],
        *,
        max_retries: int | None = None,
        batch_size: int | None = None,
        timeout: Optional[float] = None,
        keep_alive: bool = False,
    ) -> bool:
        """Wait for a batch, run ``handler`` on its payloads and settle the rows.

        With ``keep_alive`` the handler is called as ``handler(payloads, touch)``;
        ``touch()`` extends the batch's lease and returns False once it is lost.

        Returns False if ``timeout`` expired before any row could be claimed.
        Exceptions raised by the handler are recorded on the rows and re-raised.
        """
        max_retries = self.config.max_retries if max_retries is None else max_retries
        deadline = None if timeout is None else time.monotonic() + timeout

        while True:
            batch = self.dequeue_batch(max_retries, batch_size)
            if batch:
                break
            wait_for = self.config.poll_timeout_seconds
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                wait_for = min(wait_for, remaining)
            self.notifier.wait(wait_for)

        payloads = [row.payload for row in batch]
        try:
            if keep_alive:
                handler(payloads, lambda: self.extend_lease(batch))
            else:
                handler(payloads)
        except MalformedPayloadError as e:
            self._record_failure(batch, e, max_retries, permanent=True)
            raise
        except Exception as e:
            self._record_failure(batch, e, max_retries)
            raise
        self._ack(batch)
        return True

    def _ack(self, batch: Sequence[DequeuedRow]) -> None:
        with self._session() as session:
            deleted = session.execute(delete(QueueRow).where(self._owned(batch))).rowcount or 0
        if deleted < len(batch):
            logger.warning(
                "Completed import job no longer held; leaving it to its current owner",
                row_ids=[row.id for row in batch],
                acked=deleted,
            )

    def _record_failure(self, batch: Sequence[DequeuedRow], error: BaseException, max_retries: int, *, permanent: bool = False) -> None:
        now = self._clock()
        message = f"{type(error).__name__}: {error}"[:_MAX_ERROR_LENGTH]
        with self._session() as session:
            rows = session.scalars(select(QueueRow).where(self._owned(batch))).all()
            if len(rows) < len(batch):
                logger.warning(
                    "Failed import job no longer held; failure not recorded",
                    row_ids=[row.id for row in batch],
                    held=len(rows),
                    error=message,
                )
            for row in rows:
                row.retry_count += 1
                row.last_error = message
                row.locked_until = None
                row.lease_token = None
                if permanent or row.retry_count >= max_retries:
                    row.state = QueueRowState.FAILED
                    logger.error("Import job marked failed", row_id=row.id, retry_count=row.retry_count, error=message)
                else:
                    delay = self._backoff(row.retry_count)
                    row.state = QueueRowState.PENDING
                    row.available_at = now + timedelta(seconds=delay)
                    logger.warning(
                        "Import job retry scheduled",
                        row_id=row.id,
                        retry_count=row.retry_count,
                        backoff_seconds=round(delay, 2),
                    )

    # ----------------------------- test utilities ----------------------------- #
    def purge(self) -> None:
        """Remove every row of this queue. Intended for test isolation only."""
        with self._session() as session:
            session.execute(delete(QueueRow).where(QueueRow.queue_name == self.name))

    # ----------------------------- inspection ----------------------------- #
    def counts(self) -> dict[str, int]:
        with self._session() as session:
            rows = session.execute(
                select(QueueRow.state, func.count(QueueRow.id))
                .where(QueueRow.queue_name == self.name)
                .group_by(QueueRow.state)
            ).all()
        counts = {state.value: 0 for state in QueueRowState}
        for state, count in rows:
            counts[state.value] = int(count)
        return counts

    def depth(self) -> int:
        counts = self.counts()
        return counts[QueueRowState.PENDING.value] + counts[QueueRowState.LOCKED.value]

    def snapshot(self) -> dict:
        counts = self.counts()
        return {
            "queue": self.name,
            "depth": counts[QueueRowState.PENDING.value] + counts[QueueRowState.LOCKED.value],
            **counts,
            "notifier": self.notifier.snapshot(),
        }


__all__ = ["DurableQueue", "DequeuedRow"]
