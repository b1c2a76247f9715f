"""Owner-scoped persistence for conversations, messages and chunks.

Every public method takes the acting :class:`Principal` and every statement
filters on ``owner_id``; there is no unscoped read or write.
"""

from __future__ import annotations

import sqlite3
from typing import Iterator, Sequence

import orjson

from message_search.core.errors import DuplicateExternalId, NotFound, OwnershipViolation
from message_search.db.sqlite import SQLiteDatabase
from message_search.ingest.embeddings import blob_to_vector, vector_to_blob
from message_search.ingest.types import RawMessage
from message_search.models.entities import (
    Chunk,
    ChunkDraft,
    Conversation,
    EmbeddingStatus,
    Message,
)
from message_search.security.identity import Principal, require_principal
from message_search.utils.ids import new_id
from message_search.utils.time import from_ms, now_ms, to_ms


class MessageStore:
    """Repository over the SQLite schema."""

    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    # Dedup ------------------------------------------------------------

    def find_message_id(self, owner: Principal, external_id: str | None, content_hash: str) -> str | None:
        """Look up an existing message by its dedup key."""
        owner = require_principal(owner)
        if external_id:
            row = self.db.query_one(
                "SELECT id FROM messages WHERE owner_id = ? AND external_id = ?",
                [owner.id, external_id],
            )
        else:
            row = self.db.query_one(
                "SELECT id FROM messages WHERE owner_id = ? AND external_id IS NULL AND content_hash = ?",
                [owner.id, content_hash],
            )
        return row["id"] if row else None

    # Write units ------------------------------------------------------

    def write_message(
        self,
        owner: Principal,
        message: RawMessage,
        content_hash: str,
        chunks: Sequence[ChunkDraft],
    ) -> str:
        """Persist a message and its chunks in one transaction.

        Raises:
            DuplicateExternalId: the dedup key appeared since the caller checked.
        """
        owner = require_principal(owner)
        with self.db.transaction():
            if self.find_message_id(owner, message.external_id, content_hash):
                raise DuplicateExternalId(
                    "message already stored",
                    {"external_id": message.external_id, "content_hash": content_hash},
                )
            conversation_id = self.ensure_conversation(owner, message)
            message_id = self.insert_message(owner, conversation_id, message, content_hash)
            self.insert_chunks(owner, message_id, chunks)
        return message_id

    def ensure_conversation(self, owner: Principal, message: RawMessage) -> str:
        owner = require_principal(owner)
        now = now_ms()
        sent = to_ms(message.sent_at)
        with self.db.transaction():
            row = self.db.query_one(
                "SELECT id, last_message_at FROM conversations WHERE owner_id = ? AND external_id = ?",
                [owner.id, message.conversation_external_id],
            )
            if row is None:
                conversation_id = new_id("cnv")
                self.db.execute(
                    """
                    INSERT INTO conversations (
                      id, owner_id, external_id, title, participants_json, last_message_at, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        conversation_id,
                        owner.id,
                        message.conversation_external_id,
                        message.conversation_title,
                        orjson.dumps(message.participants).decode("utf-8"),
                        sent,
                        now,
                        now,
                    ],
                )
                return conversation_id
            conversation_id = row["id"]
            last = row["last_message_at"]
            self.db.execute(
                """
                UPDATE conversations
                SET title = COALESCE(?, title),
                    participants_json = CASE WHEN ? = '[]' THEN participants_json ELSE ? END,
                    last_message_at = ?,
                    updated_at = ?
                WHERE id = ? AND owner_id = ?
                """,
                [
                    message.conversation_title,
                    orjson.dumps(message.participants).decode("utf-8"),
                    orjson.dumps(message.participants).decode("utf-8"),
                    _latest(last, sent),
                    now,
                    conversation_id,
                    owner.id,
                ],
            )
            return conversation_id

    def insert_message(self, owner: Principal, conversation_id: str, message: RawMessage, content_hash: str) -> str:
        owner = require_principal(owner)
        owned = self.db.query_one(
            "SELECT 1 FROM conversations WHERE id = ? AND owner_id = ?",
            [conversation_id, owner.id],
        )
        if owned is None:
            raise OwnershipViolation("conversation does not belong to owner", {"conversation_id": conversation_id})
        message_id = new_id("msg")
        now = now_ms()
        try:
            self.db.execute(
                """
                INSERT INTO messages (
                  id, owner_id, conversation_id, external_id, content_hash, sender_id,
                  sent_at, body, meta_json, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    message_id,
                    owner.id,
                    conversation_id,
                    message.external_id,
                    content_hash,
                    message.sender_id,
                    to_ms(message.sent_at),
                    message.body,
                    orjson.dumps(message.metadata, default=str).decode("utf-8"),
                    now,
                    now,
                ],
            )
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" not in str(exc):
                raise
            raise DuplicateExternalId(
                "message already stored",
                {"external_id": message.external_id, "content_hash": content_hash},
            ) from exc
        return message_id

    def insert_chunks(self, owner: Principal, message_id: str, chunks: Sequence[ChunkDraft]) -> None:
        owner = require_principal(owner)
        now = now_ms()
        for draft in chunks:
            if draft.id is None:
                draft.id = new_id("chk")
        self.db.executemany(
            """
            INSERT INTO message_chunks (
              id, owner_id, message_id, chunk_index, content, embedding, embedding_dim,
              embedding_status, embedding_error, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    draft.id,
                    owner.id,
                    message_id,
                    draft.chunk_index,
                    draft.content,
                    vector_to_blob(draft.embedding) if draft.embedding is not None else None,
                    len(draft.embedding) if draft.embedding is not None else None,
                    draft.embedding_status.value,
                    draft.embedding_error,
                    now,
                    now,
                )
                for draft in chunks
            ],
        )

    # Embedding maintenance -------------------------------------------

    def pending_chunks(self, owner: Principal, limit: int = 500) -> list[tuple[str, str]]:
        owner = require_principal(owner)
        rows = self.db.query(
            """
            SELECT id, content FROM message_chunks
            WHERE owner_id = ? AND embedding_status = 'pending'
            ORDER BY created_at, id
            LIMIT ?
            """,
            [owner.id, limit],
        )
        return [(row["id"], row["content"]) for row in rows]

    def set_embedding(self, owner: Principal, chunk_id: str, vector: Sequence[float]) -> None:
        owner = require_principal(owner)
        self.db.execute(
            """
            UPDATE message_chunks
            SET embedding = ?, embedding_dim = ?, embedding_status = 'embedded', embedding_error = NULL, updated_at = ?
            WHERE id = ? AND owner_id = ?
            """,
            [vector_to_blob(vector), len(vector), now_ms(), chunk_id, owner.id],
        )

    def mark_embedding_failed(self, owner: Principal, chunk_id: str, error: str, pending: bool = False) -> None:
        owner = require_principal(owner)
        status = EmbeddingStatus.PENDING if pending else EmbeddingStatus.FAILED
        self.db.execute(
            """
            UPDATE message_chunks
            SET embedding = NULL, embedding_dim = NULL, embedding_status = ?, embedding_error = ?, updated_at = ?
            WHERE id = ? AND owner_id = ?
            """,
            [status.value, error, now_ms(), chunk_id, owner.id],
        )

    def iter_embeddings(self, owner: Principal) -> Iterator[tuple[str, list[float]]]:
        """Yield stored vectors of one owner; used to load its index partition."""
        owner = require_principal(owner)
        rows = self.db.query(
            "SELECT id, embedding FROM message_chunks WHERE owner_id = ? AND embedding IS NOT NULL",
            [owner.id],
        )
        for row in rows:
            yield row["id"], blob_to_vector(row["embedding"])

    # Reads ------------------------------------------------------------

    def get_chunks(self, owner: Principal, chunk_ids: Sequence[str]) -> dict[str, Chunk]:
        owner = require_principal(owner)
        if not chunk_ids:
            return {}
        placeholders = ",".join("?" for _ in chunk_ids)
        rows = self.db.query(
            f"SELECT * FROM message_chunks WHERE owner_id = ? AND id IN ({placeholders})",
            [owner.id, *chunk_ids],
        )
        return {row["id"]: _row_to_chunk(row) for row in rows}

    def list_chunks(self, owner: Principal, message_id: str | None = None) -> list[Chunk]:
        owner = require_principal(owner)
        if message_id is None:
            rows = self.db.query(
                "SELECT * FROM message_chunks WHERE owner_id = ? ORDER BY message_id, chunk_index",
                [owner.id],
            )
        else:
            rows = self.db.query(
                "SELECT * FROM message_chunks WHERE owner_id = ? AND message_id = ? ORDER BY chunk_index",
                [owner.id, message_id],
            )
        return [_row_to_chunk(row) for row in rows]

    def get_message(self, owner: Principal, message_id: str) -> Message:
        owner = require_principal(owner)
        row = self.db.query_one("SELECT * FROM messages WHERE id = ? AND owner_id = ?", [message_id, owner.id])
        if row is None:
            raise NotFound("message not found", {"message_id": message_id})
        return _row_to_message(row)

    def get_messages(self, owner: Principal, message_ids: Sequence[str]) -> dict[str, Message]:
        owner = require_principal(owner)
        if not message_ids:
            return {}
        placeholders = ",".join("?" for _ in message_ids)
        rows = self.db.query(
            f"SELECT * FROM messages WHERE owner_id = ? AND id IN ({placeholders})",
            [owner.id, *message_ids],
        )
        return {row["id"]: _row_to_message(row) for row in rows}

    def list_messages(self, owner: Principal) -> list[Message]:
        owner = require_principal(owner)
        rows = self.db.query("SELECT * FROM messages WHERE owner_id = ? ORDER BY sent_at, id", [owner.id])
        return [_row_to_message(row) for row in rows]

    def list_conversations(self, owner: Principal) -> list[Conversation]:
        owner = require_principal(owner)
        rows = self.db.query(
            "SELECT * FROM conversations WHERE owner_id = ? ORDER BY last_message_at DESC, id",
            [owner.id],
        )
        return [_row_to_conversation(row) for row in rows]

    def count_chunks(self, owner: Principal) -> int:
        owner = require_principal(owner)
        row = self.db.query_one("SELECT COUNT(*) AS count FROM message_chunks WHERE owner_id = ?", [owner.id])
        return int(row["count"]) if row else 0

    # Deletes ----------------------------------------------------------

    def delete_conversation(self, owner: Principal, conversation_id: str) -> list[str]:
        """Delete a conversation of ``owner``; returns the cascaded chunk ids."""
        owner = require_principal(owner)
        with self.db.transaction():
            row = self.db.query_one(
                "SELECT id FROM conversations WHERE id = ? AND owner_id = ?",
                [conversation_id, owner.id],
            )
            if row is None:
                raise NotFound("conversation not found", {"conversation_id": conversation_id})
            chunk_rows = self.db.query(
                """
                SELECT c.id FROM message_chunks c
                JOIN messages m ON m.id = c.message_id AND m.owner_id = c.owner_id
                WHERE m.conversation_id = ? AND c.owner_id = ?
                """,
                [conversation_id, owner.id],
            )
            self.db.execute("DELETE FROM conversations WHERE id = ? AND owner_id = ?", [conversation_id, owner.id])
        return [chunk["id"] for chunk in chunk_rows]

    def delete_message(self, owner: Principal, message_id: str) -> list[str]:
        """Delete a message of ``owner``; returns the cascaded chunk ids."""
        owner = require_principal(owner)
        with self.db.transaction():
            row = self.db.query_one("SELECT id FROM messages WHERE id = ? AND owner_id = ?", [message_id, owner.id])
            if row is None:
                raise NotFound("message not found", {"message_id": message_id})
            chunk_rows = self.db.query(
                "SELECT id FROM message_chunks WHERE message_id = ? AND owner_id = ?",
                [message_id, owner.id],
            )
            self.db.execute("DELETE FROM messages WHERE id = ? AND owner_id = ?", [message_id, owner.id])
        return [chunk["id"] for chunk in chunk_rows]


def _latest(*values: int | None) -> int | None:
    present = [value for value in values if value is not None]
    return max(present) if present else None


def _row_to_conversation(row: sqlite3.Row) -> Conversation:
    return Conversation(
        id=row["id"],
        owner_id=row["owner_id"],
        external_id=row["external_id"],
        title=row["title"],
        participants=orjson.loads(row["participants_json"]) if row["participants_json"] else [],
        last_message_at=from_ms(row["last_message_at"]),
        created_at=from_ms(row["created_at"]),
        updated_at=from_ms(row["updated_at"]),
    )


def _row_to_message(row: sqlite3.Row) -> Message:
    return Message(
        id=row["id"],
        owner_id=row["owner_id"],
        conversation_id=row["conversation_id"],
        external_id=row["external_id"],
        content_hash=row["content_hash"],
        sender_id=row["sender_id"],
        sent_at=from_ms(row["sent_at"]),
        body=row["body"],
        metadata=orjson.loads(row["meta_json"]) if row["meta_json"] else {},
        created_at=from_ms(row["created_at"]),
        updated_at=from_ms(row["updated_at"]),
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        owner_id=row["owner_id"],
        message_id=row["message_id"],
        chunk_index=row["chunk_index"],
        content=row["content"],
        embedding=blob_to_vector(row["embedding"]) if row["embedding"] is not None else None,
        embedding_status=EmbeddingStatus(row["embedding_status"]),
        embedding_error=row["embedding_error"],
        created_at=from_ms(row["created_at"]),
        updated_at=from_ms(row["updated_at"]),
    )


__all__ = ["MessageStore"]
