"""Submission and status-check operations behind the import endpoints."""
from __future__ import annotations

from typing import Callable, Optional

from heartbeat_importer.errors import MissingAuthError
from heartbeat_importer.jobs.durable_queue import DurableQueue
from heartbeat_importer.models.db.enums import JobStatus
from heartbeat_importer.models.schemas.imports import ImportRequestPayload, ImportRequestResponse, QueueItem
from heartbeat_importer.services.job_status import resolve_job_status
from heartbeat_importer.utils import get_logger, log_business_event

logger = get_logger(__name__)


class ImportRequestService:
    """Builds job fingerprints for authenticated requesters and talks to the queue.

    ``resolve_requester`` maps a credential to the requester identity and
    raises ``InvalidTokenError`` for unknown credentials.
    """

    def __init__(self, queue: DurableQueue, resolve_requester: Callable[[str], str]):
        self.queue = queue
        self._resolve_requester = resolve_requester

    def _fingerprint(self, token: Optional[str], payload: ImportRequestPayload) -> QueueItem:
        if not token:
            raise MissingAuthError()
        requester = self._resolve_requester(token)
        return QueueItem(requester=requester, req_payload=payload)

    def submit(self, token: Optional[str], payload: ImportRequestPayload, *, request_id: str | None = None) -> ImportRequestResponse:
        item = self._fingerprint(token, payload)
        logger.info("Received an import request", requester=item.requester, request_id=request_id)

        # A resubmitted job must not collide with its own dead row.
        removed = self.queue.delete_matching(item)
        self.queue.enqueue(item)

        log_business_event(
            event_type="import_submitted",
            details={
                "start_date": payload.start_date.date().isoformat(),
                "end_date": payload.end_date.date().isoformat(),
                "failed_rows_removed": removed,
            },
            requester=item.requester,
            request_id=request_id,
        )
        return ImportRequestResponse(job_status=JobStatus.SUBMITTED)

    def check_status(self, token: Optional[str], payload: ImportRequestPayload, *, request_id: str | None = None) -> ImportRequestResponse:
        item = self._fingerprint(token, payload)
        logger.info("Checking import request status", requester=item.requester, request_id=request_id)
        status = resolve_job_status(self.queue, item)
        return ImportRequestResponse(job_status=status)


__all__ = ["ImportRequestService"]
