"""Ingest pipeline orchestration."""

from __future__ import annotations

import threading
import time
from typing import Sequence

from message_search.core.config import Settings
from message_search.core.errors import (
    DimensionMismatch,
    DuplicateExternalId,
    MessageSearchError,
    OwnershipViolation,
    ProviderUnavailable,
)
from message_search.core.logging import get_logger, log_context
from message_search.core.metrics import EMBEDDING_FAILURES, MESSAGES_INGESTED, SYNC_DURATION, SYNC_RUNS
from message_search.db.store import MessageStore
from message_search.ingest.chunker import chunk_text
from message_search.ingest.dedupe import content_hash, dedupe_messages
from message_search.ingest.embeddings import EmbeddingGateway
from message_search.ingest.fetchers import FetcherRegistry
from message_search.ingest.resilience import RetryConfig, TimeoutRunner, call_with_retry
from message_search.ingest.types import FetchPage, IngestResult, RawMessage, SyncReport
from message_search.models.entities import ChunkDraft, EmbeddingStatus, SyncStateSnapshot
from message_search.retrieval.vector_index import VectorIndex
from message_search.security.identity import Principal, require_principal
from message_search.sync.state import SyncStateTracker

logger = get_logger(__name__)

CANCELLED_PREFIX = "cancelled"


class SyncRun:
    """Handle for a run that has already entered ``running``."""

    def __init__(self, owner: Principal, source: str, state: SyncStateSnapshot, cancel_event: threading.Event) -> None:
        self.owner = owner
        self.source = source
        self.state = state
        self.cancel_event = cancel_event

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


class IngestPipeline:
    """Coordinate fetch, dedup, chunking, embeddings, persistence and indexing."""

    def __init__(
        self,
        store: MessageStore,
        tracker: SyncStateTracker,
        gateway: EmbeddingGateway,
        vector_index: VectorIndex,
        fetchers: FetcherRegistry,
        settings: Settings,
        fetch_runner: TimeoutRunner | None = None,
    ) -> None:
        self.store = store
        self.tracker = tracker
        self.gateway = gateway
        self.vector_index = vector_index
        self.fetchers = fetchers
        self.settings = settings
        self.fetch_retry = RetryConfig(
            max_attempts=settings.embed_max_attempts,
            backoff_base=settings.embed_backoff_base,
            backoff_max=settings.embed_backoff_max,
            timeout=settings.fetch_timeout_s,
        )
        self.fetch_runner = fetch_runner

    # Sync orchestration -----------------------------------------------

    def run_sync(self, owner: Principal, source: str, cancel_event: threading.Event | None = None) -> SyncReport:
        """Fetch and ingest everything new for ``(owner, source)``.

        Raises:
            SyncAlreadyRunning: a run for the pair is in progress.
        """
        run = self.start_sync(owner, source, cancel_event)
        return self.execute(run)

    def start_sync(self, owner: Principal, source: str, cancel_event: threading.Event | None = None) -> SyncRun:
        owner = require_principal(owner)
        self.fetchers.get(source)
        state = self.tracker.begin(owner, source)
        return SyncRun(owner, source, state, cancel_event or threading.Event())

    def execute(self, run: SyncRun) -> SyncReport:
        owner, source = run.owner, run.source
        report = SyncReport(owner_id=owner.id, source=source, status="running", cursor=run.state.cursor)
        started = time.perf_counter()
        try:
            report.stats.reembedded = self.reembed_pending(owner)
            cursor = run.state.cursor
            while True:
                if run.cancelled:
                    return self._cancel(run, report)
                page = self._fetch(owner, source, cursor)
                report.pages += 1
                for message, digest in dedupe_messages(page.messages):
                    if run.cancelled:
                        return self._cancel(run, report)
                    result = self._ingest_unit(owner, source, message, digest)
                    report.results.append(result)
                    report.stats.add(result)
                    if result.status == "processed" and result.embedded < result.chunks:
                        report.stats.unembedded += result.chunks - result.embedded
                cursor = page.next_cursor
                if page.has_more:
                    self.tracker.advance(owner, source, cursor)
                    continue
                self.tracker.complete(owner, source, cursor)
                report.cursor = cursor
                report.status = "idle"
                SYNC_RUNS.labels(source=source, outcome="idle").inc()
                return report
        except Exception as exc:
            detail = _describe(exc)
            self.tracker.fail(owner, source, detail)
            SYNC_RUNS.labels(source=source, outcome="error").inc()
            logger.exception("Sync failed", extra=log_context(owner, source))
            raise
        finally:
            SYNC_DURATION.labels(source=source).observe(time.perf_counter() - started)

    # Per-message unit of work -----------------------------------------

    def ingest_message(self, owner: Principal, source: str, message: RawMessage) -> IngestResult:
        """Ingest a single message outside of a sync run."""
        owner = require_principal(owner)
        return self._ingest_unit(owner, source, message, content_hash(message))

    def _ingest_unit(self, owner: Principal, source: str, message: RawMessage, digest: str) -> IngestResult:
        if self.store.find_message_id(owner, message.external_id, digest):
            MESSAGES_INGESTED.labels(source=source, status="skipped").inc()
            return IngestResult(external_id=message.external_id, status="skipped", detail="duplicate")

        drafts = self._prepare_chunks(message.body)
        try:
            message_id = self.store.write_message(owner, message, digest, drafts)
        except DuplicateExternalId:
            MESSAGES_INGESTED.labels(source=source, status="skipped").inc()
            return IngestResult(external_id=message.external_id, status="skipped", detail="duplicate")
        except OwnershipViolation as exc:
            MESSAGES_INGESTED.labels(source=source, status="error").inc()
            logger.error("Message rejected: %s", exc.message, extra=log_context(owner, source))
            return IngestResult(external_id=message.external_id, status="error", detail=exc.message)

        embedded = self._index_chunks(owner, drafts)
        MESSAGES_INGESTED.labels(source=source, status="processed").inc()
        logger.debug(
            "Ingested message",
            extra=log_context(owner, source, message_id=message_id, chunks=len(drafts), embedded=embedded),
        )
        return IngestResult(
            external_id=message.external_id,
            status="processed",
            message_id=message_id,
            chunks=len(drafts),
            embedded=embedded,
        )

    def _prepare_chunks(self, body: str) -> list[ChunkDraft]:
        pieces = chunk_text(
            body,
            self.settings.max_chunk_chars,
            self.settings.overlap_chars,
            self.settings.lookback_chars,
        )
        drafts = [ChunkDraft(chunk_index=idx, content=piece) for idx, piece in enumerate(pieces)]
        if not drafts:
            return drafts
        try:
            results = self.gateway.embed([draft.content for draft in drafts])
        except ProviderUnavailable as exc:
            EMBEDDING_FAILURES.labels(reason="unavailable").inc(len(drafts))
            logger.warning("Embedding unavailable; chunks left pending: %s", exc.message)
            for draft in drafts:
                draft.embedding_error = exc.message
            return drafts
        for draft, result in zip(drafts, results):
            if result.ok:
                draft.embedding = result.vector
                draft.embedding_status = EmbeddingStatus.EMBEDDED
            else:
                EMBEDDING_FAILURES.labels(reason="rejected").inc()
                draft.embedding_status = EmbeddingStatus.FAILED
                draft.embedding_error = result.error
        return drafts

    def _index_chunks(self, owner: Principal, drafts: Sequence[ChunkDraft]) -> int:
        indexed = 0
        for draft in drafts:
            if draft.embedding is None or draft.id is None:
                continue
            try:
                self.vector_index.upsert(owner, draft.id, draft.embedding)
            except DimensionMismatch as exc:
                EMBEDDING_FAILURES.labels(reason="dimension").inc()
                logger.warning(
                    "Chunk skipped: %s",
                    exc.message,
                    extra=log_context(owner, chunk_id=draft.id),
                )
                self.store.mark_embedding_failed(owner, draft.id, exc.message)
                continue
            indexed += 1
        return indexed

    # Pending embeddings -----------------------------------------------

    def reembed_pending(self, owner: Principal) -> int:
        """Retry chunks whose embedding was deferred by an unavailable provider."""
        owner = require_principal(owner)
        pending = self.store.pending_chunks(owner)
        if not pending:
            return 0
        try:
            results = self.gateway.embed([content for _, content in pending])
        except ProviderUnavailable as exc:
            logger.warning("Provider still unavailable; %d chunks stay pending", len(pending), extra=log_context(owner))
            logger.debug("Pending retry error: %s", exc.message)
            return 0
        done = 0
        for (chunk_id, _), result in zip(pending, results):
            if not result.ok:
                self.store.mark_embedding_failed(owner, chunk_id, result.error or "embedding rejected")
                continue
            self.store.set_embedding(owner, chunk_id, result.vector)
            try:
                self.vector_index.upsert(owner, chunk_id, result.vector)
            except DimensionMismatch as exc:
                self.store.mark_embedding_failed(owner, chunk_id, exc.message)
                continue
            done += 1
        return done

    # Deletion ---------------------------------------------------------

    def delete_conversation(self, owner: Principal, conversation_id: str) -> int:
        """Delete a conversation with its messages and chunks; returns chunks removed."""
        owner = require_principal(owner)
        chunk_ids = self.store.delete_conversation(owner, conversation_id)
        self._unindex(owner, chunk_ids)
        logger.info(
            "Deleted conversation",
            extra=log_context(owner, conversation_id=conversation_id, chunks=len(chunk_ids)),
        )
        return len(chunk_ids)

    def delete_message(self, owner: Principal, message_id: str) -> int:
        owner = require_principal(owner)
        chunk_ids = self.store.delete_message(owner, message_id)
        self._unindex(owner, chunk_ids)
        logger.info("Deleted message", extra=log_context(owner, message_id=message_id, chunks=len(chunk_ids)))
        return len(chunk_ids)

    def _unindex(self, owner: Principal, chunk_ids: Sequence[str]) -> None:
        for chunk_id in chunk_ids:
            self.vector_index.remove(owner, chunk_id)

    # Helpers ----------------------------------------------------------

    def _fetch(self, owner: Principal, source: str, cursor: str | None) -> FetchPage:
        fetcher = self.fetchers.get(source)
        return call_with_retry(
            fetcher.fetch,
            owner,
            source,
            cursor,
            config=self.fetch_retry,
            runner=self.fetch_runner,
            operation="fetch",
        )

    def _cancel(self, run: SyncRun, report: SyncReport) -> SyncReport:
        detail = f"{CANCELLED_PREFIX}: run stopped between messages"
        state = self.tracker.fail(run.owner, run.source, detail)
        SYNC_RUNS.labels(source=run.source, outcome="cancelled").inc()
        report.status = "cancelled"
        report.cursor = state.cursor
        report.detail = detail
        return report


def _describe(exc: BaseException) -> str:
    if isinstance(exc, MessageSearchError):
        return f"{type(exc).__name__}: {exc.message}"
    return f"{type(exc).__name__}: {exc}"


__all__ = ["IngestPipeline", "SyncRun"]
