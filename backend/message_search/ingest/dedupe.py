"""Deduplication helpers."""

from __future__ import annotations

from typing import Iterable

from message_search.ingest.types import RawMessage
from message_search.utils.hashing import sha256_parts
from message_search.utils.text import normalize
from message_search.utils.time import to_ms


def content_hash(message: RawMessage) -> str:
    """Stable hash used as the dedup key when a message has no external id."""
    sent = to_ms(message.sent_at)
    return sha256_parts(
        [
            message.conversation_external_id,
            message.sender_id,
            None if sent is None else str(sent),
            normalize(message.body),
        ]
    )


def dedupe_messages(messages: Iterable[RawMessage]) -> list[tuple[RawMessage, str]]:
    """Drop repeats within one fetched page while preserving order."""
    seen: set[str] = set()
    unique: list[tuple[RawMessage, str]] = []
    for message in messages:
        digest = content_hash(message)
        key = f"ext:{message.external_id}" if message.external_id else f"sha:{digest}"
        if key in seen:
            continue
        seen.add(key)
        unique.append((message, digest))
    return unique


__all__ = ["content_hash", "dedupe_messages"]
