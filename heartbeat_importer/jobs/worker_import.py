"""Background worker consuming import jobs from the durable queue.

The API process runs one embedded worker thread; additional workers can be
started as standalone processes with ``python -m heartbeat_importer.jobs.worker_import``.
They coordinate only through the queue table.
"""
from __future__ import annotations

import asyncio
import os
import threading

from heartbeat_importer.config import QueueConfig
from heartbeat_importer.errors import LeaseLostError, MalformedPayloadError, QueueConnectionError
from heartbeat_importer.jobs.durable_queue import DurableQueue
from heartbeat_importer.services.import_executor import ImportExecutor
from heartbeat_importer.utils import get_logger, setup_logging

logger = get_logger(__name__)


class ImportWorker:
    def __init__(self, queue: DurableQueue, executor: ImportExecutor, *, poll_timeout: float | None = None):
        self.queue = queue
        self.executor = executor
        self.poll_timeout = poll_timeout if poll_timeout is not None else queue.config.poll_timeout_seconds
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():  # pragma: no cover
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run, name="import-worker", daemon=True)
        self._thread.start()
        logger.info("Import worker started", queue=self.queue.name)

    def stop(self, join_timeout: float | None = None) -> None:
        self._stop_event.set()
        self.queue.notifier.notify()
        logger.info("Import worker stop requested")
        if join_timeout is not None and self._thread is not None:
            self._thread.join(join_timeout)

    def is_alive(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def _handle(self, payloads: list[str], touch) -> None:
        asyncio.run(self.executor.process_items(payloads, touch))

    def run_once(self) -> bool:
        """Wait up to the poll timeout for one batch and process it."""
        return self.queue.with_dequeue(
            self._handle,
            max_retries=self.queue.config.max_retries,
            batch_size=self.queue.config.batch_size,
            timeout=self.poll_timeout,
            keep_alive=True,
        )

    def run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except MalformedPayloadError as e:
                logger.error("Discarded malformed import payload", error=str(e))
            except LeaseLostError as e:
                logger.warning("Abandoned import job after losing its lease", error=str(e))
            except QueueConnectionError as e:
                logger.error("Import queue store unreachable", error=str(e))
                self._stop_event.wait(1)
            except Exception as e:
                logger.error("Import job attempt failed", error=str(e), error_type=type(e).__name__, exc_info=True)


def run_standalone_worker() -> None:  # pragma: no cover
    from heartbeat_importer.database import Base, SessionLocal, engine
    from heartbeat_importer.jobs.notifier import create_notifier

    setup_logging(log_level=os.getenv("LOG_LEVEL", "INFO"), log_file=os.getenv("LOG_FILE"))
    Base.metadata.create_all(bind=engine)
    config = QueueConfig.from_settings()
    queue = DurableQueue(SessionLocal, config, create_notifier(config))
    worker = ImportWorker(queue, ImportExecutor(SessionLocal))
    logger.info("Standalone import worker running", queue=config.queue_name)
    try:
        worker.run()
    except KeyboardInterrupt:
        logger.info("Standalone import worker interrupted")


__all__ = ["ImportWorker", "run_standalone_worker"]


if __name__ == "__main__":  # pragma: no cover
    run_standalone_worker()
