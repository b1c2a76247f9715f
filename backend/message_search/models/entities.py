"""Internal dataclasses representing persisted entities."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class SyncStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    ERROR = "error"


class EmbeddingStatus(str, Enum):
    PENDING = "pending"
    EMBEDDED = "embedded"
    FAILED = "failed"


@dataclass(slots=True)
class Conversation:
    id: str
    owner_id: str
    external_id: str
    title: str | None
    participants: list[str]
    last_message_at: datetime | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class Message:
    id: str
    owner_id: str
    conversation_id: str
    external_id: str | None
    content_hash: str
    sender_id: str | None
    sent_at: datetime | None
    body: str | None
    metadata: dict[str, Any]
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class Chunk:
    id: str
    owner_id: str
    message_id: str
    chunk_index: int
    content: str
    embedding: list[float] | None
    embedding_status: EmbeddingStatus
    embedding_error: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class SyncStateSnapshot:
    owner_id: str
    source: str
    cursor: str | None = None
    status: SyncStatus = SyncStatus.IDLE
    error: str | None = None
    last_synced_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class ChunkDraft:
    """Chunk prepared by the pipeline before it is written."""

    chunk_index: int
    content: str
    embedding: list[float] | None = None
    embedding_status: EmbeddingStatus = EmbeddingStatus.PENDING
    embedding_error: str | None = None
    id: str | None = None
