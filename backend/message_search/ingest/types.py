"""Common ingestion data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence


@dataclass(slots=True)
class RawMessage:
    """A message as handed over by a source fetcher."""

    conversation_external_id: str
    body: str
    external_id: str | None = None
    sender_id: str | None = None
    sent_at: datetime | None = None
    conversation_title: str | None = None
    participants: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # blank ids fall back to the content hash key
        if self.external_id is not None and not self.external_id.strip():
            self.external_id = None


@dataclass(slots=True)
class FetchPage:
    """One page returned by a :class:`MessageSourceFetcher`."""

    messages: Sequence[RawMessage]
    next_cursor: str | None
    has_more: bool


@dataclass(slots=True)
class IngestResult:
    """Outcome for a single message unit of work."""

    external_id: str | None
    status: str
    message_id: str | None = None
    chunks: int = 0
    embedded: int = 0
    detail: str | None = None


@dataclass(slots=True)
class IngestStats:
    """Aggregated ingest statistics."""

    processed: int = 0
    skipped: int = 0
    failed: int = 0
    chunks: int = 0
    embedded: int = 0
    unembedded: int = 0
    reembedded: int = 0

    def add(self, result: IngestResult) -> None:
        if result.status == "processed":
            self.processed += 1
            self.chunks += result.chunks
            self.embedded += result.embedded
        elif result.status == "skipped":
            self.skipped += 1
        elif result.status == "error":
            self.failed += 1

    def to_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "chunks": self.chunks,
            "embedded": self.embedded,
            "unembedded": self.unembedded,
            "reembedded": self.reembedded,
        }


@dataclass(slots=True)
class SyncReport:
    """Summary of one ``run_sync`` call."""

    owner_id: str
    source: str
    status: str
    cursor: str | None
    pages: int = 0
    stats: IngestStats = field(default_factory=IngestStats)
    results: list[IngestResult] = field(default_factory=list)
    detail: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "source": self.source,
            "status": self.status,
            "cursor": self.cursor,
            "pages": self.pages,
            "stats": self.stats.to_dict(),
            "detail": self.detail,
        }


__all__ = [
    "RawMessage",
    "FetchPage",
    "IngestResult",
    "IngestStats",
    "SyncReport",
]
