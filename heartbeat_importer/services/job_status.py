"""Job status resolution from queue state.

A job has no explicit "finished" record: the queue deletes its row when the
import succeeds, so the absence of a matching row reads as finished. This also
means a job that was never enqueued reads as finished; submission always
enqueues before it returns so a client never observes that gap for its own job.
"""
from __future__ import annotations

from heartbeat_importer.jobs.durable_queue import DurableQueue
from heartbeat_importer.models.db.enums import JobStatus, QueueRowState
from heartbeat_importer.models.schemas.imports import QueueItem


def status_from_state(state: QueueRowState | None) -> JobStatus:
    if state is None:
        return JobStatus.FINISHED
    if state == QueueRowState.FAILED:
        return JobStatus.FAILED
    return JobStatus.PENDING


def resolve_job_status(queue: DurableQueue, item: QueueItem) -> JobStatus:
    """Point-in-time status of the job identified by ``item``. Takes no locks."""
    return status_from_state(queue.find_state(item))


__all__ = ["resolve_job_status", "status_from_state"]
