"""Search orchestration."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Sequence

from message_search.core.config import Settings
from message_search.core.errors import ConfigurationError
from message_search.db.store import MessageStore
from message_search.ingest.embeddings import EmbeddingGateway
from message_search.retrieval.vector_index import VectorIndex
from message_search.security.identity import Principal, require_principal

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SearchHit:
    chunk_id: str
    message_id: str
    conversation_id: str | None
    chunk_index: int
    content: str
    similarity: float
    sender_id: str | None = None
    sent_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "message_id": self.message_id,
            "conversation_id": self.conversation_id,
            "chunk_index": self.chunk_index,
            "content": self.content,
            "similarity": self.similarity,
            "sender_id": self.sender_id,
            "sent_at": self.sent_at,
        }


class SearchService:
    """Owner-scoped semantic search over message chunks."""

    def __init__(
        self,
        store: MessageStore,
        vector_index: VectorIndex,
        gateway: EmbeddingGateway,
        settings: Settings,
    ) -> None:
        self.store = store
        self.vector_index = vector_index
        self.gateway = gateway
        self.settings = settings

    def search(
        self,
        owner: Principal,
        query: str | Sequence[float],
        k: int | None = None,
        threshold: float | None = None,
    ) -> list[SearchHit]:
        """Rank ``owner``'s chunks against a query text or vector.

        Text queries are embedded through the gateway first.
        """
        owner = require_principal(owner)
        top_k = k if k is not None else self.settings.match_count
        similarity_threshold = threshold if threshold is not None else self.settings.similarity_threshold
        if top_k < 1:
            raise ConfigurationError("k must be >= 1", {"k": top_k})
        if not -1.0 <= similarity_threshold <= 1.0:
            raise ConfigurationError("threshold must be within [-1, 1]", {"threshold": similarity_threshold})

        if isinstance(query, str):
            if not query.strip():
                return []
            query_vector = self.gateway.embed_one(query)
        else:
            query_vector = list(query)

        while True:
            hits = self.vector_index.search(owner, query_vector, top_k, similarity_threshold)
            results = self._hydrate(owner, hits)
            # hydration evicted stale entries; rank again
            if len(results) == len(hits) or len(hits) < top_k:
                return results

    def _hydrate(self, owner: Principal, hits) -> list[SearchHit]:
        if not hits:
            return []
        chunks = self.store.get_chunks(owner, [hit.chunk_id for hit in hits])
        messages = self.store.get_messages(owner, sorted({chunk.message_id for chunk in chunks.values()}))
        results: list[SearchHit] = []
        for hit in hits:
            chunk = chunks.get(hit.chunk_id)
            if chunk is None:
                # index entry outlived its row
                logger.warning("Dropping stale index entry %s", hit.chunk_id)
                self.vector_index.remove(owner, hit.chunk_id)
                continue
            message = messages.get(chunk.message_id)
            results.append(
                SearchHit(
                    chunk_id=chunk.id,
                    message_id=chunk.message_id,
                    conversation_id=message.conversation_id if message else None,
                    chunk_index=chunk.chunk_index,
                    content=chunk.content,
                    similarity=hit.similarity,
                    sender_id=message.sender_id if message else None,
                    sent_at=message.sent_at if message else None,
                )
            )
        return results


__all__ = ["SearchService", "SearchHit"]
