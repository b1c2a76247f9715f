"""Test fixtures for Message Search."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, Sequence

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from message_search.core.config import Settings  # noqa: E402
from message_search.core.errors import PermanentProviderError, TransientProviderError  # noqa: E402
from message_search.db.sqlite import SQLiteDatabase  # noqa: E402
from message_search.db.store import MessageStore  # noqa: E402
from message_search.ingest.embeddings import EmbeddingGateway, HashedEmbeddingProvider  # noqa: E402
from message_search.ingest.fetchers import FetcherRegistry  # noqa: E402
from message_search.ingest.pipeline import IngestPipeline  # noqa: E402
from message_search.ingest.resilience import RetryConfig  # noqa: E402
from message_search.ingest.types import FetchPage, RawMessage  # noqa: E402
from message_search.retrieval import SearchService, VectorIndex  # noqa: E402
from message_search.security.identity import Principal, issue_principal  # noqa: E402
from message_search.sync.state import SyncStateTracker  # noqa: E402

DIM = 256


class FakeProvider:
    """Hashed embeddings with scriptable failures."""

    def __init__(self, dim: int = DIM) -> None:
        self.inner = HashedEmbeddingProvider(dim=dim)
        self.calls: list[list[str]] = []
        self.transient_failures = 0
        self.reject: set[str] = set()
        self.report_index = False
        self.hook: Callable[[Sequence[str]], None] | None = None

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.hook is not None:
            self.hook(texts)
        if self.transient_failures > 0:
            self.transient_failures -= 1
            raise TransientProviderError("rate limited")
        for position, text in enumerate(texts):
            if text in self.reject:
                raise PermanentProviderError("input rejected", index=position if self.report_index else None)
        return self.inner.embed(texts)


class FakeFetcher:
    """Serves pre-baked pages keyed by cursor; unknown cursors yield an empty page.

    A page entry may be an exception, which is raised for that cursor.
    """

    def __init__(self, pages: dict[str | None, FetchPage | Exception] | None = None) -> None:
        self.pages = pages or {}
        self.calls: list[str | None] = []
        self.error: Exception | None = None

    def fetch(self, owner: Principal, source: str, cursor: str | None) -> FetchPage:
        self.calls.append(cursor)
        if self.error is not None:
            raise self.error
        page = self.pages.get(cursor, FetchPage(messages=[], next_cursor=cursor, has_more=False))
        if isinstance(page, Exception):
            raise page
        return page


def make_message(external_id: str | None, body: str, conversation: str = "conv-1", **kwargs) -> RawMessage:
    return RawMessage(conversation_external_id=conversation, body=body, external_id=external_id, **kwargs)


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Reset global singletons and environment between tests."""
    monkeypatch.setenv("MSGS_DB_PATH", str(tmp_path / "api.db"))
    monkeypatch.setenv("MSGS_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("MSGS_API_TOKENS", raising=False)

    from message_search.api import dependencies as deps

    deps.reset_dependencies()
    yield
    deps.reset_dependencies()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        db_path=tmp_path / "test.db",
        embedding_dim=DIM,
        embed_batch_size=8,
        embed_max_attempts=3,
        embed_backoff_base=0.0,
        max_chunk_chars=100,
        overlap_chars=20,
        similarity_threshold=0.0,
        export_dir=tmp_path / "exports",
    )


@pytest.fixture
def db(settings: Settings):
    database = SQLiteDatabase(settings.db_path)
    database.ensure_schema()
    yield database
    database.close()


@pytest.fixture
def store(db: SQLiteDatabase) -> MessageStore:
    return MessageStore(db)


@pytest.fixture
def tracker(db: SQLiteDatabase) -> SyncStateTracker:
    return SyncStateTracker(db)


@pytest.fixture
def alice() -> Principal:
    return issue_principal("alice")


@pytest.fixture
def bob() -> Principal:
    return issue_principal("bob")


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def gateway(provider: FakeProvider) -> EmbeddingGateway:
    retry = RetryConfig(max_attempts=3, backoff_base=0.0, jitter=False)
    return EmbeddingGateway(provider, dim=DIM, batch_size=8, retry=retry)


@pytest.fixture
def index(store: MessageStore) -> VectorIndex:
    return VectorIndex(dim=DIM, loader=store.iter_embeddings)


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def pipeline(
    store: MessageStore,
    tracker: SyncStateTracker,
    gateway: EmbeddingGateway,
    index: VectorIndex,
    fetcher: FakeFetcher,
    settings: Settings,
) -> IngestPipeline:
    registry = FetcherRegistry()
    registry.register("linkedin", fetcher)
    return IngestPipeline(store, tracker, gateway, index, registry, settings)


@pytest.fixture
def search_service(
    store: MessageStore,
    index: VectorIndex,
    gateway: EmbeddingGateway,
    settings: Settings,
) -> SearchService:
    return SearchService(store, index, gateway, settings)
