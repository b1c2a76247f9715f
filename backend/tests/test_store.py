"""Tests for owner-scoped persistence."""

import sqlite3
from datetime import datetime, timezone

import pytest

from message_search.core.errors import DuplicateExternalId, NotFound, Unauthenticated
from message_search.db.sqlite import SQLiteDatabase
from message_search.db.store import MessageStore
from message_search.ingest.dedupe import content_hash
from message_search.models.entities import ChunkDraft, EmbeddingStatus

from conftest import make_message


@pytest.fixture
def memory_store():
    with SQLiteDatabase(":memory:") as db:
        db.ensure_schema()
        yield MessageStore(db)


def _write(store, owner, external_id, body, **kwargs):
    message = make_message(external_id, body, **kwargs)
    drafts = [ChunkDraft(chunk_index=0, content=body, embedding=[0.5, 0.5], embedding_status=EmbeddingStatus.EMBEDDED)]
    return store.write_message(owner, message, content_hash(message), drafts), drafts


def test_write_and_read_back(memory_store, alice) -> None:
    sent = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    message_id, drafts = _write(
        memory_store, alice, "m1", "Hello", sender_id="dana", sent_at=sent, participants=["dana", "alex"]
    )
    message = memory_store.get_message(alice, message_id)
    assert message.sender_id == "dana"
    assert message.sent_at == sent
    chunk = memory_store.get_chunks(alice, [drafts[0].id])[drafts[0].id]
    assert chunk.embedding == [0.5, 0.5]
    conversation = memory_store.list_conversations(alice)[0]
    assert conversation.participants == ["dana", "alex"]
    assert conversation.last_message_at == sent


def test_reads_are_owner_scoped(memory_store, alice, bob) -> None:
    message_id, drafts = _write(memory_store, alice, "m1", "Private")
    with pytest.raises(NotFound):
        memory_store.get_message(bob, message_id)
    assert memory_store.get_chunks(bob, [drafts[0].id]) == {}
    assert list(memory_store.iter_embeddings(bob)) == []
    assert memory_store.find_message_id(bob, "m1", "unused") is None


def test_duplicate_key_rejected(memory_store, alice) -> None:
    _write(memory_store, alice, "m1", "Hello")
    with pytest.raises(DuplicateExternalId):
        _write(memory_store, alice, "m1", "Hello again")
    _write(memory_store, alice, None, "No id")
    with pytest.raises(DuplicateExternalId):
        _write(memory_store, alice, None, "No id")
    assert len(memory_store.list_messages(alice)) == 2


def test_chunk_index_unique_per_message(memory_store, alice) -> None:
    message = make_message("m1", "Hello")
    drafts = [ChunkDraft(chunk_index=0, content="a"), ChunkDraft(chunk_index=0, content="b")]
    with pytest.raises(sqlite3.IntegrityError):
        memory_store.write_message(alice, message, content_hash(message), drafts)
    assert memory_store.list_messages(alice) == []


def test_embedding_maintenance(memory_store, alice) -> None:
    message = make_message("m1", "Hello")
    drafts = [ChunkDraft(chunk_index=0, content="Hello")]
    memory_store.write_message(alice, message, content_hash(message), drafts)
    chunk_id = drafts[0].id
    assert memory_store.pending_chunks(alice) == [(chunk_id, "Hello")]

    memory_store.set_embedding(alice, chunk_id, [1.0, 0.0])
    assert memory_store.pending_chunks(alice) == []
    assert list(memory_store.iter_embeddings(alice)) == [(chunk_id, [1.0, 0.0])]

    memory_store.mark_embedding_failed(alice, chunk_id, "rejected")
    chunk = memory_store.list_chunks(alice)[0]
    assert chunk.embedding_status is EmbeddingStatus.FAILED
    assert chunk.embedding is None
    assert chunk.embedding_error == "rejected"


def test_store_requires_principal(memory_store) -> None:
    with pytest.raises(Unauthenticated):
        memory_store.list_messages("alice")
