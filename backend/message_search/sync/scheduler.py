"""Background sync execution.

Runs for different owners proceed in parallel on a thread pool. A second
request for an (owner, source) pair that is still running is rejected by the
tracker before anything is queued.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor

from message_search.core.logging import get_logger, log_context
from message_search.ingest.pipeline import IngestPipeline, SyncRun
from message_search.ingest.types import SyncReport
from message_search.models.entities import SyncStateSnapshot
from message_search.security.identity import Principal, require_principal

logger = get_logger(__name__)


class SyncScheduler:
    def __init__(self, pipeline: IngestPipeline, workers: int = 4) -> None:
        self.pipeline = pipeline
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sync")
        self._lock = threading.Lock()
        self._runs: dict[tuple[str, str], tuple[SyncRun, Future]] = {}
        orphaned = pipeline.tracker.abandon_orphaned()
        if orphaned:
            logger.warning("Recovered %d sync runs left running by a previous process", orphaned)

    def submit(self, owner: Principal, source: str) -> SyncStateSnapshot:
        """Enter ``running`` synchronously and execute the run in the background.

        Raises:
            SyncAlreadyRunning: the pair already has a run in progress.
            ConfigurationError: no fetcher is registered for ``source``.
        """
        owner = require_principal(owner)
        with self._lock:
            run = self.pipeline.start_sync(owner, source)
            future = self._executor.submit(self._execute, run)
            self._runs[(owner.id, source)] = (run, future)
        return run.state

    def cancel(self, owner: Principal, source: str) -> bool:
        """Ask the active run to stop after its current message."""
        owner = require_principal(owner)
        with self._lock:
            entry = self._runs.get((owner.id, source))
        if entry is None:
            return False
        entry[0].cancel()
        logger.info("Sync cancellation requested", extra=log_context(owner, source))
        return True

    def is_running(self, owner: Principal, source: str) -> bool:
        owner = require_principal(owner)
        with self._lock:
            return (owner.id, source) in self._runs

    def wait(self, owner: Principal, source: str, timeout: float | None = None) -> SyncReport | None:
        """Block until the active run finishes; ``None`` when nothing is running.

        Errors raised by the run propagate.
        """
        owner = require_principal(owner)
        with self._lock:
            entry = self._runs.get((owner.id, source))
        if entry is None:
            return None
        return entry[1].result(timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            runs = list(self._runs.values())
        for run, _ in runs:
            run.cancel()
        self._executor.shutdown(wait=wait)

    def _execute(self, run: SyncRun) -> SyncReport:
        try:
            report = self.pipeline.execute(run)
            logger.info("Sync run finished", extra=log_context(run.owner, run.source, report=report.to_dict()))
            return report
        finally:
            with self._lock:
                self._runs.pop((run.owner.id, run.source), None)


__all__ = ["SyncScheduler"]
